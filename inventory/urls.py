from rest_framework.routers import DefaultRouter

from inventory.views import ProductViewSet, SupplierPurchaseViewSet, SupplierViewSet

router = DefaultRouter()
router.register(r"products", ProductViewSet, basename="product")
router.register(r"suppliers", SupplierViewSet, basename="supplier")
router.register(r"purchases", SupplierPurchaseViewSet, basename="purchase")

urlpatterns = router.urls
