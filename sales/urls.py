from django.urls import path
from rest_framework.routers import DefaultRouter

from sales.reports import (
    AdminDashboardView,
    CashierDashboardView,
    DailySalesReportView,
    PaymentBreakdownReportView,
    SummaryReportView,
    TopProductsReportView,
)
from sales.views import (
    CartQuoteView,
    CustomerViewSet,
    ShiftCloseView,
    ShiftCurrentView,
    ShiftOpenView,
    ShiftReportView,
    ShiftViewSet,
    TransactionViewSet,
)

router = DefaultRouter()
router.register(r"customers", CustomerViewSet, basename="customer")
router.register(r"shifts", ShiftViewSet, basename="shift")
router.register(r"transactions", TransactionViewSet, basename="transaction")

# Explicit shift routes come first so "open"/"current" are not read as shift ids.
urlpatterns = [
    path("shifts/open/", ShiftOpenView.as_view(), name="shift-open"),
    path("shifts/current/", ShiftCurrentView.as_view(), name="shift-current"),
    path("shifts/<uuid:shift_id>/close/", ShiftCloseView.as_view(), name="shift-close"),
    path("shifts/<uuid:shift_id>/report/", ShiftReportView.as_view(), name="shift-report"),
    path("cart/quote/", CartQuoteView.as_view(), name="cart-quote"),
    path("dashboard/admin/", AdminDashboardView.as_view(), name="dashboard-admin"),
    path("dashboard/cashier/", CashierDashboardView.as_view(), name="dashboard-cashier"),
    path("reports/daily-sales/", DailySalesReportView.as_view(), name="report-daily-sales"),
    path("reports/payment-breakdown/", PaymentBreakdownReportView.as_view(), name="report-payment-breakdown"),
    path("reports/top-products/", TopProductsReportView.as_view(), name="report-top-products"),
    path("reports/summary/", SummaryReportView.as_view(), name="report-summary"),
] + router.urls
