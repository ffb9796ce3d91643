import csv
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, time
from decimal import Decimal

from asgiref.sync import sync_to_async
from django.conf import settings
from django.core.cache import cache
from django.db.models import Count, Sum
from django.db.models.functions import TruncDate
from django.http import HttpResponse
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from cashbook.services import cash_balance
from common.permissions import RoleCapabilityPermission
from common.utils import DateRange, local_date, store_timezone
from inventory.models import Product
from inventory.services import low_stock_products
from sales.models import Customer, Transaction, TransactionItem
from sales.pricing import to_money


@dataclass(frozen=True)
class SaleRecord:
    """Settled sales sharing a payment method; ``count`` is how many sales were folded in."""

    created_at: datetime
    total: int
    payment_method: str
    count: int = 1


@dataclass(frozen=True)
class ItemRecord:
    product_name: str
    quantity: int
    subtotal: int


def _settled(date_range):
    start, end = date_range.bounds()
    return Transaction.objects.filter(status=Transaction.Status.SUCCESS, created_at__gte=start, created_at__lt=end)


def load_settled_sales(date_range, cashier=None):
    """One record per store-local day and payment method, summed in the database."""
    tz = store_timezone()
    qs = _settled(date_range)
    if cashier is not None:
        qs = qs.filter(cashier=cashier)
    rows = (
        qs.annotate(day=TruncDate("created_at", tzinfo=tz))
        .values("day", "payment_method")
        .annotate(amount=Sum("total"), transactions=Count("id"))
        .order_by("day", "payment_method")
    )
    return [
        SaleRecord(
            created_at=datetime.combine(row["day"], time.min).replace(tzinfo=tz),
            total=row["amount"],
            payment_method=row["payment_method"],
            count=row["transactions"],
        )
        for row in rows
    ]


def load_settled_items(date_range):
    rows = (
        TransactionItem.objects.filter(transaction__in=_settled(date_range))
        .values("product_name")
        .annotate(qty=Sum("quantity"), revenue=Sum("subtotal"))
        .order_by("product_name")
    )
    return [ItemRecord(product_name=row["product_name"], quantity=row["qty"], subtotal=row["revenue"]) for row in rows]


# Pure aggregators: same records in, same figures out.


def daily_sales(sales, date_range):
    tz = store_timezone()
    buckets = OrderedDict((day, {"sales": 0, "transactions": 0}) for day in date_range.days())
    for sale in sales:
        bucket = buckets.get(sale.created_at.astimezone(tz).date())
        if bucket is None:
            continue
        bucket["sales"] += sale.total
        bucket["transactions"] += sale.count
    return [{"date": day.isoformat(), **values} for day, values in buckets.items()]


def payment_breakdown(sales):
    """Share of transactions (not of amount) per payment method, largest first."""
    counts = OrderedDict()
    amounts = {}
    for sale in sales:
        counts[sale.payment_method] = counts.get(sale.payment_method, 0) + sale.count
        amounts[sale.payment_method] = amounts.get(sale.payment_method, 0) + sale.total

    total_count = sum(sale.count for sale in sales)
    rows = [
        {
            "method": method,
            "count": count,
            "amount": amounts[method],
            "percentage": to_money(Decimal(count * 100) / total_count) if total_count else 0,
        }
        for method, count in counts.items()
    ]
    return sorted(rows, key=lambda row: row["percentage"], reverse=True)


def top_products(items, limit=10):
    """Best sellers by quantity, keyed by the product name captured at sale time.

    A renamed product shows up as two entries.
    """
    by_name = OrderedDict()
    for item in items:
        entry = by_name.setdefault(item.product_name, {"name": item.product_name, "qty": 0, "revenue": 0})
        entry["qty"] += item.quantity
        entry["revenue"] += item.subtotal
    return sorted(by_name.values(), key=lambda entry: entry["qty"], reverse=True)[:limit]


def summarize(sales):
    total_sales = sum(sale.total for sale in sales)
    count = sum(sale.count for sale in sales)
    return {
        "total_sales": total_sales,
        "total_transactions": count,
        "avg_transaction": to_money(Decimal(total_sales) / count) if count else 0,
    }


def get_daily_sales(date_range):
    return daily_sales(load_settled_sales(date_range), date_range)


def get_payment_breakdown(date_range):
    return payment_breakdown(load_settled_sales(date_range))


def get_top_products(date_range, limit=None):
    return top_products(load_settled_items(date_range), limit or settings.POS_TOP_PRODUCTS_LIMIT)


def get_summary(date_range):
    return summarize(load_settled_sales(date_range))


aget_daily_sales = sync_to_async(get_daily_sales)
aget_payment_breakdown = sync_to_async(get_payment_breakdown)
aget_top_products = sync_to_async(get_top_products)
aget_summary = sync_to_async(get_summary)


def admin_dashboard(today=None):
    today = today or local_date()
    month = DateRange(today.replace(day=1), today)
    last_week = DateRange.last_days(7, today)
    today_summary = summarize(load_settled_sales(DateRange.single_day(today)))
    return {
        "date": today.isoformat(),
        "today_sales": today_summary["total_sales"],
        "today_transactions": today_summary["total_transactions"],
        "monthly_sales": summarize(load_settled_sales(month))["total_sales"],
        "weekly_sales": get_daily_sales(last_week),
        "top_products": top_products(load_settled_items(month), limit=5),
        "low_stock_count": low_stock_products().count(),
        "total_products": Product.objects.count(),
        "total_customers": Customer.objects.count(),
        "cash_balance": cash_balance(),
    }


def cashier_dashboard(cashier, today=None):
    today = today or local_date()
    sales = load_settled_sales(DateRange.single_day(today), cashier=cashier)
    summary = summarize(sales)
    by_method = OrderedDict()
    for sale in sales:
        by_method[sale.payment_method] = by_method.get(sale.payment_method, 0) + sale.total

    start, end = DateRange.single_day(today).bounds()
    recent = (
        Transaction.objects.filter(
            cashier=cashier,
            status=Transaction.Status.SUCCESS,
            created_at__gte=start,
            created_at__lt=end,
        )
        .order_by("-created_at")
        .values("id", "invoice_number", "total", "payment_method", "status", "created_at")[:5]
    )
    return {
        "date": today.isoformat(),
        "today_sales": summary["total_sales"],
        "today_transactions": summary["total_transactions"],
        "avg_transaction": summary["avg_transaction"],
        "payment_breakdown": by_method,
        "recent_transactions": [{**row, "id": str(row["id"]), "created_at": row["created_at"].isoformat()} for row in recent],
    }


class BaseReportView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "reports.view"}

    @property
    def cache_timeout(self):
        return settings.POS_REPORT_CACHE_SECONDS

    def _parse_limit(self, request, default=None, minimum=1, maximum=100):
        default = default or settings.POS_TOP_PRODUCTS_LIMIT
        raw_limit = request.query_params.get("limit")
        if raw_limit is None:
            return default

        try:
            limit = int(raw_limit)
        except (TypeError, ValueError):
            raise ValidationError({"limit": f"Limit must be an integer between {minimum} and {maximum}."})

        if not minimum <= limit <= maximum:
            raise ValidationError({"limit": f"Limit must be between {minimum} and {maximum}."})
        return limit

    def _date_range(self, request):
        raw_from = request.query_params.get("date_from", "")
        raw_to = request.query_params.get("date_to", "")
        if not raw_from and not raw_to:
            return DateRange.single_day(local_date())

        try:
            date_from = parse_date(raw_from)
            date_to = parse_date(raw_to)
        except ValueError:
            date_from = date_to = None
        if not date_from or not date_to:
            raise ValidationError({"date_range": "Both date_from and date_to are required (YYYY-MM-DD)."})
        if date_from > date_to:
            raise ValidationError({"date_range": "date_from must be before or equal to date_to."})
        max_days = settings.POS_REPORT_MAX_DAYS
        if (date_to - date_from).days + 1 > max_days:
            raise ValidationError({"date_range": f"Date range cannot exceed {max_days} days."})
        return DateRange(date_from, date_to)

    def _csv_response(self, filename, rows):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="{filename}"'

        if not rows:
            return response

        writer = csv.DictWriter(response, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return response

    def _cached(self, request, key, callback):
        cache_key = f"reports:{key}:{request.get_full_path()}"
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback()
            cache.set(cache_key, payload, self.cache_timeout)
        return payload

    def _range_payload(self, date_range):
        return {"date_from": date_range.start.isoformat(), "date_to": date_range.end.isoformat()}


class DailySalesReportView(BaseReportView):
    def get(self, request):
        date_range = self._date_range(request)
        rows = self._cached(request, "daily-sales", lambda: get_daily_sales(date_range))
        if request.query_params.get("export") == "csv":
            return self._csv_response("daily_sales.csv", rows)
        return Response({**self._range_payload(date_range), "results": rows})


class PaymentBreakdownReportView(BaseReportView):
    def get(self, request):
        date_range = self._date_range(request)
        rows = self._cached(request, "payment-breakdown", lambda: get_payment_breakdown(date_range))
        if request.query_params.get("export") == "csv":
            return self._csv_response("payment_breakdown.csv", rows)
        return Response({**self._range_payload(date_range), "results": rows})


class TopProductsReportView(BaseReportView):
    def get(self, request):
        date_range = self._date_range(request)
        limit = self._parse_limit(request)
        rows = self._cached(request, "top-products", lambda: get_top_products(date_range, limit))
        if request.query_params.get("export") == "csv":
            return self._csv_response("top_products.csv", rows)
        return Response({**self._range_payload(date_range), "results": rows})


class SummaryReportView(BaseReportView):
    def get(self, request):
        date_range = self._date_range(request)
        payload = self._cached(request, "summary", lambda: get_summary(date_range))
        if request.query_params.get("export") == "csv":
            return self._csv_response("summary.csv", [payload])
        return Response({**self._range_payload(date_range), **payload})


class AdminDashboardView(BaseReportView):
    def get(self, request):
        payload = self._cached(request, "admin-dashboard", admin_dashboard)
        response = Response(payload)
        response["Cache-Control"] = f"private, max-age={self.cache_timeout}"
        return response


class CashierDashboardView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "dashboard.cashier"}

    def get(self, request):
        # Not cached: cashiers expect a sale to show up right after checkout.
        return Response(cashier_dashboard(request.user))
