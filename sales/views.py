import logging

from django.db.models import Q
from django.utils.dateparse import parse_date
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from common.exceptions import DomainError, domain_error_response
from common.mixins import ChangeFeedMutationMixin
from common.permissions import RoleCapabilityPermission, user_has_capability
from common.utils import DateRange, uuid_query_param
from sales.models import Customer, Shift, Transaction
from sales.receipts import build_receipt
from sales.serializers import (
    CartInputSerializer,
    CheckoutSerializer,
    CustomerSerializer,
    ReconciliationSerializer,
    RefundSerializer,
    SettlementCreateSerializer,
    ShiftCloseSerializer,
    ShiftOpenSerializer,
    ShiftSerializer,
    TransactionSerializer,
    cart_payload,
)
from sales.settlement import PaymentInfo, SettlementRequest, refund_transaction, settle
from sales.shifts import close_shift, get_active_shift, open_shift, shift_report

logger = logging.getLogger("pos.cart")


class CustomerViewSet(ChangeFeedMutationMixin, viewsets.ModelViewSet):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "customers.view",
        "retrieve": "customers.view",
        "create": "customers.manage",
        "update": "customers.manage",
        "partial_update": "customers.manage",
        "destroy": "customers.manage",
    }
    change_entity = "customer"
    audit_entity = "customer"

    def get_queryset(self):
        queryset = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(phone__icontains=search))
        return queryset


class ShiftOpenView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "shift.manage"}

    def post(self, request):
        serializer = ShiftOpenSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = open_shift(request.user, serializer.validated_data["starting_cash"], serializer.validated_data["notes"])
        if isinstance(result, DomainError):
            return domain_error_response(result)

        payload = ShiftSerializer(result).data
        create_audit_log_from_request(request, action="shift.open", entity="shift", entity_id=result.id, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)


class ShiftCurrentView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "shift.manage"}

    def get(self, request):
        shift = get_active_shift(request.user)
        if shift is None:
            raise NotFound("No active shift found for this cashier.")
        return Response(ShiftSerializer(shift).data)


def _visible_shifts(user):
    queryset = Shift.objects.select_related("cashier")
    if user_has_capability(user, "shift.view.all"):
        return queryset
    return queryset.filter(cashier=user)


class ShiftCloseView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "shift.manage"}

    def post(self, request, shift_id):
        serializer = ShiftCloseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        if not _visible_shifts(request.user).filter(id=shift_id).exists():
            raise NotFound("Shift not found.")

        result = close_shift(shift_id, serializer.validated_data["ending_cash"])
        if isinstance(result, DomainError):
            return domain_error_response(result)

        payload = ReconciliationSerializer(result.as_dict()).data
        create_audit_log_from_request(
            request,
            action="shift.close",
            entity="shift",
            entity_id=result.shift.id,
            after_snapshot=payload,
        )
        return Response(payload)


class ShiftReportView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "shift.manage"}

    def get(self, request, shift_id):
        shift = _visible_shifts(request.user).filter(id=shift_id).first()
        if shift is None:
            raise NotFound("Shift not found.")
        return Response(shift_report(shift))


class ShiftViewSet(viewsets.ReadOnlyModelViewSet):
    """Shift history; cashiers only see their own shifts."""

    serializer_class = ShiftSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "shift.manage", "retrieve": "shift.manage"}

    def get_queryset(self):
        queryset = _visible_shifts(self.request.user)
        cashier_id = uuid_query_param(self.request.query_params, "cashier")
        if cashier_id:
            queryset = queryset.filter(cashier_id=cashier_id)
        state = self.request.query_params.get("status")
        if state == "open":
            queryset = queryset.filter(closed_at__isnull=True)
        elif state == "closed":
            queryset = queryset.filter(closed_at__isnull=False)
        return queryset


class CartQuoteView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "pos.sell"}

    def post(self, request):
        serializer = CartInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart, missing = serializer.build_cart()
        if missing:
            logger.info("cart_products_missing", extra={"cashier_id": request.user.id})
        return Response(cart_payload(cart, missing))


def _parse_day(params, name):
    try:
        return parse_date(params.get(name) or "")
    except ValueError:
        raise ValidationError({name: "Invalid date."})


class TransactionViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = TransactionSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "transactions.view",
        "retrieve": "transactions.view",
        "receipt": "transactions.view",
        "create": "pos.sell",
        "checkout": "pos.sell",
        "refund": "transaction.refund",
    }

    def get_queryset(self):
        queryset = Transaction.objects.select_related("cashier", "customer").prefetch_related("items")
        user = self.request.user
        if not user_has_capability(user, "transactions.view.all"):
            queryset = queryset.filter(cashier=user)

        params = self.request.query_params
        shift_id = uuid_query_param(params, "shift")
        if shift_id:
            queryset = queryset.filter(shift_id=shift_id)
        cashier_id = uuid_query_param(params, "cashier")
        if cashier_id:
            queryset = queryset.filter(cashier_id=cashier_id)
        if params.get("status"):
            queryset = queryset.filter(status=params["status"])
        if params.get("payment_method"):
            queryset = queryset.filter(payment_method=params["payment_method"])
        if params.get("search"):
            queryset = queryset.filter(invoice_number__icontains=params["search"])

        date_from = _parse_day(params, "date_from")
        date_to = _parse_day(params, "date_to")
        if date_from or date_to:
            if not date_from or not date_to or date_from > date_to:
                raise ValidationError({"date_range": "Provide both date_from and date_to, with date_from <= date_to."})
            start, end = DateRange(date_from, date_to).bounds()
            queryset = queryset.filter(created_at__gte=start, created_at__lt=end)
        return queryset

    def _settled_response(self, request, result):
        if isinstance(result, DomainError):
            return domain_error_response(result)
        sale = Transaction.objects.select_related("cashier", "customer").prefetch_related("items").get(id=result.id)
        payload = TransactionSerializer(sale).data
        create_audit_log_from_request(
            request,
            action="transaction.create",
            entity="transaction",
            entity_id=sale.id,
            after_snapshot={"invoice_number": sale.invoice_number, "total": sale.total},
        )
        return Response(payload, status=status.HTTP_201_CREATED)

    def create(self, request, *args, **kwargs):
        serializer = SettlementCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return self._settled_response(request, settle(serializer.to_request(request.user)))

    @action(detail=False, methods=["post"], url_path="checkout")
    def checkout(self, request):
        """Price the cart server-side and settle it against the caller's shift."""
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        cart, missing = serializer.build_cart()
        if missing:
            return domain_error_response(
                DomainError.not_found("product_not_found", "Some products no longer exist.", product_ids=missing)
            )

        shift_id = data["shift_id"]
        if shift_id is None:
            shift = get_active_shift(request.user)
            if shift is None:
                return domain_error_response(DomainError.conflict("shift_not_open", "Open a shift before selling."))
            shift_id = shift.id

        paid_amount = data["paid_amount"]
        if paid_amount is None:
            if data["payment_method"] == Transaction.PaymentMethod.CASH:
                raise ValidationError({"paid_amount": "Paid amount is required for cash payments."})
            paid_amount = cart.total()

        payment = PaymentInfo(method=data["payment_method"], paid_amount=paid_amount)
        result = settle(SettlementRequest.from_cart(cart, payment, shift_id=shift_id, cashier=request.user))
        return self._settled_response(request, result)

    @action(detail=True, methods=["get"], url_path="receipt")
    def receipt(self, request, pk=None):
        return Response(build_receipt(self.get_object()))

    @action(detail=True, methods=["post"], url_path="refund")
    def refund(self, request, pk=None):
        sale = self.get_object()
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = refund_transaction(
            sale.id,
            request.user,
            restock=serializer.validated_data["restock"],
            reverse_cashbook=serializer.validated_data["reverse_cashbook"],
        )
        if isinstance(result, DomainError):
            return domain_error_response(result)

        create_audit_log_from_request(
            request,
            action="transaction.refund",
            entity="transaction",
            entity_id=result.id,
            before_snapshot={"status": Transaction.Status.SUCCESS},
            after_snapshot={"status": result.status},
        )
        result.refresh_from_db()
        return Response(TransactionSerializer(result).data)
