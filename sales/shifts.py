import logging
from dataclasses import dataclass

from asgiref.sync import sync_to_async
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Sum
from django.utils import timezone

from common.exceptions import DomainError
from common.logging import log_rejection
from common.utils import emit_change
from sales.models import Shift, Transaction

logger = logging.getLogger("pos.shift")


@dataclass(frozen=True)
class Reconciliation:
    shift: Shift
    expected_cash: int
    difference: int

    def as_dict(self):
        return {
            "shift_id": str(self.shift.id),
            "starting_cash": self.shift.starting_cash,
            "total_sales": self.shift.total_sales,
            "total_transactions": self.shift.total_transactions,
            "ending_cash": self.shift.ending_cash,
            "expected_cash": self.expected_cash,
            "difference": self.difference,
        }


def _shift_payload(shift):
    return {
        "cashier": shift.cashier_id,
        "opened_at": shift.opened_at,
        "closed_at": shift.closed_at,
        "starting_cash": shift.starting_cash,
        "ending_cash": shift.ending_cash,
        "total_sales": shift.total_sales,
        "total_transactions": shift.total_transactions,
    }


def get_active_shift(cashier):
    return Shift.objects.filter(cashier=cashier, closed_at__isnull=True).first()


def open_shift(cashier, starting_cash, notes=""):
    if starting_cash is None or starting_cash < 0:
        return DomainError.validation("invalid_starting_cash", "Starting cash must be zero or more.")

    already_open = DomainError.conflict(
        "shift_already_open",
        "An open shift already exists for this cashier.",
        cashier_id=str(cashier.id),
    )
    if Shift.objects.filter(cashier=cashier, closed_at__isnull=True).exists():
        log_rejection(logger, "shift_open_rejected", already_open, cashier_id=cashier.id)
        return already_open

    # The partial unique index settles the race the check above cannot.
    try:
        with transaction.atomic():
            shift = Shift.objects.create(cashier=cashier, starting_cash=starting_cash, notes=notes or "")
            emit_change("shift", shift.id, "upsert", _shift_payload(shift))
    except IntegrityError:
        log_rejection(logger, "shift_open_rejected", already_open, cashier_id=cashier.id)
        return already_open

    logger.info("shift_opened", extra={"cashier_id": cashier.id, "shift_id": shift.id, "amount": starting_cash})
    return shift


def record_settlement(shift_id, amount):
    """Add one sale to an open shift's running totals.

    Must run inside the settlement's transaction. Returns False when the shift
    is missing or already closed, in which case nothing is written.
    """
    updated = Shift.objects.filter(id=shift_id, closed_at__isnull=True).update(
        total_sales=F("total_sales") + amount,
        total_transactions=F("total_transactions") + 1,
    )
    return updated == 1


def close_shift(shift_id, ending_cash):
    if ending_cash is None or ending_cash < 0:
        return DomainError.validation("invalid_ending_cash", "Ending cash must be zero or more.")

    with transaction.atomic():
        # Waits for any settlement holding the row, so its totals are included.
        shift = Shift.objects.select_for_update().filter(id=shift_id).first()
        if shift is None:
            return DomainError.not_found("shift_not_found", "Shift not found.", shift_id=str(shift_id))
        if not shift.is_active:
            error = DomainError.conflict("shift_not_open", "Shift is already closed.", shift_id=str(shift_id))
            log_rejection(logger, "shift_close_rejected", error, shift_id=shift_id)
            return error

        expected_cash = shift.starting_cash + shift.total_sales
        shift.closed_at = timezone.now()
        shift.ending_cash = ending_cash
        shift.expected_cash = expected_cash
        shift.cash_difference = ending_cash - expected_cash
        shift.save(update_fields=["closed_at", "ending_cash", "expected_cash", "cash_difference"])
        emit_change("shift", shift.id, "upsert", _shift_payload(shift))

    logger.info(
        "shift_closed",
        extra={"cashier_id": shift.cashier_id, "shift_id": shift.id, "amount": shift.cash_difference},
    )
    return Reconciliation(shift=shift, expected_cash=expected_cash, difference=shift.cash_difference)


def shift_report(shift):
    """Totals of a shift plus how its successful sales split across payment methods."""
    settled = Transaction.objects.filter(shift=shift, status=Transaction.Status.SUCCESS)
    rows = settled.values("payment_method").annotate(count=Count("id"), amount=Sum("total")).order_by("payment_method")
    by_method = {method: {"count": 0, "amount": 0} for method in Transaction.PaymentMethod.values}
    for row in rows:
        by_method[row["payment_method"]] = {"count": row["count"], "amount": row["amount"] or 0}

    refunded = Transaction.objects.filter(shift=shift, status=Transaction.Status.REFUND).aggregate(
        count=Count("id"), amount=Sum("total")
    )
    expected_cash = shift.expected_cash if shift.expected_cash is not None else shift.starting_cash + shift.total_sales
    return {
        "shift_id": str(shift.id),
        "cashier": str(shift.cashier_id),
        "opened_at": shift.opened_at,
        "closed_at": shift.closed_at,
        "is_active": shift.is_active,
        "starting_cash": shift.starting_cash,
        "ending_cash": shift.ending_cash,
        "total_sales": shift.total_sales,
        "total_transactions": shift.total_transactions,
        "expected_cash": expected_cash,
        "difference": shift.cash_difference,
        "payment_methods": by_method,
        "refunded_count": refunded["count"],
        "refunded_amount": refunded["amount"] or 0,
    }


aget_active_shift = sync_to_async(get_active_shift)
aopen_shift = sync_to_async(open_shift)
aclose_shift = sync_to_async(close_shift)
