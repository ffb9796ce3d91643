from rest_framework.routers import DefaultRouter

from cashbook.views import CashBookEntryViewSet

router = DefaultRouter()
router.register(r"cashbook", CashBookEntryViewSet, basename="cashbook")

urlpatterns = router.urls
