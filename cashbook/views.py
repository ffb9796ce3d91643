from django.utils.dateparse import parse_date
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from cashbook.models import CashBookEntry
from cashbook.serializers import CashBookEntrySerializer, CashBookSummarySerializer, ManualEntrySerializer
from cashbook.services import add_manual_entry, cash_balance, summarize
from common.audit import create_audit_log_from_request
from common.exceptions import DomainError, domain_error_response
from common.permissions import RoleCapabilityPermission
from common.utils import DateRange


class CashBookEntryViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    """Cash ledger. Entries are append-only; corrections are new entries."""

    serializer_class = CashBookEntrySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        action: "cashbook.manage" for action in ["list", "retrieve", "create", "summary", "balance"]
    }

    def _date_range(self):
        params = self.request.query_params
        raw_from, raw_to = params.get("date_from"), params.get("date_to")
        if not raw_from and not raw_to:
            return None
        try:
            date_from = parse_date(raw_from or "")
            date_to = parse_date(raw_to or "")
        except ValueError:
            date_from = date_to = None
        if not date_from or not date_to:
            raise ValidationError({"date_range": "Both date_from and date_to are required (YYYY-MM-DD)."})
        if date_from > date_to:
            raise ValidationError({"date_range": "date_from must be before or equal to date_to."})
        return DateRange(date_from, date_to)

    def get_queryset(self):
        queryset = CashBookEntry.objects.select_related("created_by")
        params = self.request.query_params
        if params.get("type"):
            queryset = queryset.filter(type=params["type"])
        if params.get("source"):
            queryset = queryset.filter(source=params["source"])
        date_range = self._date_range()
        if date_range is not None:
            start, end = date_range.bounds()
            queryset = queryset.filter(created_at__gte=start, created_at__lt=end)
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = ManualEntrySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = add_manual_entry(created_by=request.user, **serializer.validated_data)
        if isinstance(result, DomainError):
            return domain_error_response(result)

        payload = CashBookEntrySerializer(result).data
        create_audit_log_from_request(
            request,
            action="cashbook.create",
            entity="cash_book",
            entity_id=result.id,
            after_snapshot=payload,
        )
        return Response(payload, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["get"], url_path="summary")
    def summary(self, request):
        return Response(CashBookSummarySerializer(summarize(self.get_queryset()).as_dict()).data)

    @action(detail=False, methods=["get"], url_path="balance")
    def balance(self, request):
        return Response({"balance": cash_balance()})
