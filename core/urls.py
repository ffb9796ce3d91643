from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import AuditLogViewSet, StoreProfileView, UserViewSet, healthz, readyz

router = DefaultRouter()
router.register(r"admin/users", UserViewSet, basename="user")
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("store/", StoreProfileView.as_view(), name="store-profile"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
