import logging
from dataclasses import dataclass

from django.db.models import BigIntegerField, Q, Sum
from django.db.models.functions import Coalesce

from cashbook.models import CashBookEntry
from common.exceptions import DomainError
from common.utils import emit_change

logger = logging.getLogger("pos.cashbook")


@dataclass(frozen=True)
class CashBookSummary:
    total_income: int
    total_expense: int

    @property
    def balance(self):
        return self.total_income - self.total_expense

    def as_dict(self):
        return {
            "total_income": self.total_income,
            "total_expense": self.total_expense,
            "balance": self.balance,
        }


def record_entry(*, type, source, amount, description=None, reference_id=None, created_by=None):
    """Insert one ledger line. Callers guarantee ``amount > 0``; the database enforces it."""
    entry = CashBookEntry.objects.create(
        type=type,
        source=source,
        amount=amount,
        description=description,
        reference_id=reference_id,
        created_by=created_by,
    )
    emit_change(
        "cash_book",
        entry.id,
        "upsert",
        {"type": entry.type, "source": entry.source, "amount": entry.amount, "reference_id": entry.reference_id},
    )
    logger.info(
        "cashbook_entry_recorded",
        extra={"amount": entry.amount, "transaction_id": reference_id},
    )
    return entry


def add_manual_entry(*, type, amount, description, created_by=None):
    if type not in CashBookEntry.Type.values:
        return DomainError.validation("invalid_entry_type", "Entry type must be 'in' or 'out'.", type=type)
    if amount is None or amount <= 0:
        return DomainError.validation("invalid_amount", "Amount must be greater than zero.", amount=amount)
    return record_entry(
        type=type,
        source=CashBookEntry.Source.MANUAL,
        amount=amount,
        description=description,
        created_by=created_by,
    )


def summarize(queryset=None):
    queryset = CashBookEntry.objects.all() if queryset is None else queryset
    totals = queryset.aggregate(
        total_income=Coalesce(Sum("amount", filter=Q(type=CashBookEntry.Type.IN)), 0, output_field=BigIntegerField()),
        total_expense=Coalesce(Sum("amount", filter=Q(type=CashBookEntry.Type.OUT)), 0, output_field=BigIntegerField()),
    )
    return CashBookSummary(total_income=int(totals["total_income"]), total_expense=int(totals["total_expense"]))


def cash_balance():
    return summarize().balance
