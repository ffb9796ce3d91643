"""Turning a priced cart into a durable transaction.

``settle`` runs as one database transaction: shift lock and re-check, invoice
number, conditional stock decrements, transaction rows, cash-book entry and
shift totals either all commit or none do. Expected business failures come
back as ``DomainError`` values; only unexpected database errors raise.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from asgiref.sync import sync_to_async
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from cashbook.models import CashBookEntry
from cashbook.services import record_entry
from common.exceptions import DomainError, RollbackError
from common.logging import log_rejection
from common.permissions import user_has_capability
from common.utils import emit_change
from inventory.models import InventoryLog, Product
from inventory.services import decrement_stock, increment_stock, log_movement
from sales.models import Customer, Shift, Transaction, TransactionItem, next_invoice_number
from sales.shifts import record_settlement

logger = logging.getLogger("pos.settlement")


@dataclass(frozen=True)
class SettlementLine:
    product_id: Optional[str]
    product_name: str
    quantity: int
    unit_price: int
    discount: int = 0
    subtotal: int = 0


@dataclass(frozen=True)
class PaymentInfo:
    method: str
    paid_amount: int
    change_amount: Optional[int] = None


@dataclass(frozen=True)
class SettlementRequest:
    cashier: object
    shift_id: object
    lines: tuple[SettlementLine, ...]
    subtotal: int
    discount: int
    tax: int
    total: int
    payment: PaymentInfo
    customer_id: Optional[str] = None
    notes: str = ""

    @classmethod
    def from_cart(cls, cart, payment, *, shift_id, cashier):
        """Freeze a ``pricing.Cart`` into settlement input."""
        totals = cart.totals()
        lines = tuple(
            SettlementLine(
                product_id=line.product_id,
                product_name=line.product.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount=line.discount_amount,
                subtotal=line.subtotal,
            )
            for line in cart.lines
        )
        return cls(
            cashier=cashier,
            shift_id=shift_id,
            lines=lines,
            subtotal=totals.subtotal,
            discount=totals.discount,
            tax=totals.tax,
            total=totals.total,
            payment=payment,
            customer_id=cart.customer_id,
            notes=cart.notes,
        )


def validate_request(request: SettlementRequest):
    """Pure checks that need no storage. Returns the change to give back or a DomainError."""
    if not request.lines:
        return DomainError.validation("empty_cart", "Cannot settle an empty cart.")

    for index, line in enumerate(request.lines):
        if line.quantity < 1:
            return DomainError.validation("invalid_quantity", "Line quantity must be at least 1.", line=index)
        if min(line.unit_price, line.discount, line.subtotal) < 0:
            return DomainError.validation("negative_amount", "Line amounts cannot be negative.", line=index)
        if line.subtotal != line.quantity * line.unit_price:
            return DomainError.integrity(
                "line_subtotal_mismatch",
                "Line subtotal does not equal quantity times unit price.",
                line=index,
            )
        if line.discount > line.subtotal:
            return DomainError.integrity("line_discount_exceeds_subtotal", "Line discount exceeds its subtotal.", line=index)

    if min(request.subtotal, request.discount, request.tax, request.total) < 0:
        return DomainError.validation("negative_amount", "Totals cannot be negative.")
    if request.subtotal != sum(line.subtotal for line in request.lines):
        return DomainError.integrity("subtotal_mismatch", "Subtotal does not match the sum of the lines.")
    if request.discount > request.subtotal:
        return DomainError.integrity("discount_exceeds_subtotal", "Discount exceeds the subtotal.")
    if request.total != request.subtotal - request.discount + request.tax:
        return DomainError.integrity(
            "total_mismatch",
            "Total does not equal subtotal minus discount plus tax.",
            subtotal=request.subtotal,
            discount=request.discount,
            tax=request.tax,
            total=request.total,
        )

    payment = request.payment
    if payment.method not in Transaction.PaymentMethod.values:
        return DomainError.validation("invalid_payment_method", "Unknown payment method.", method=payment.method)
    if payment.paid_amount < 0:
        return DomainError.validation("negative_amount", "Paid amount cannot be negative.")

    if payment.method == Transaction.PaymentMethod.CASH:
        if payment.paid_amount < request.total:
            return DomainError.validation(
                "insufficient_payment",
                "Paid amount is less than the total.",
                paid_amount=payment.paid_amount,
                total=request.total,
            )
        change = payment.paid_amount - request.total
    else:
        change = 0

    if payment.change_amount is not None and payment.change_amount != change:
        return DomainError.integrity(
            "change_mismatch",
            "Change amount does not match paid amount minus total.",
            expected=change,
            change_amount=payment.change_amount,
        )
    return change


def _check_shift(shift, cashier):
    if shift is None:
        return DomainError.not_found("shift_not_found", "Shift not found.")
    if shift.cashier_id != cashier.id:
        return DomainError.permission("shift_not_owned", "Shift belongs to another cashier.", shift_id=str(shift.id))
    if not shift.is_active:
        return DomainError.conflict("shift_not_open", "Shift is closed.", shift_id=str(shift.id))
    return None


def _parse_uuid(value):
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def _precheck(request, shift_id):
    error = _check_shift(Shift.objects.filter(id=shift_id).first() if shift_id else None, request.cashier)
    if error is not None:
        return error
    if request.customer_id:
        customer_id = _parse_uuid(request.customer_id)
        if customer_id is None or not Customer.objects.filter(id=customer_id).exists():
            return DomainError.not_found("customer_not_found", "Customer not found.", customer_id=str(request.customer_id))
    return None


def settle(request: SettlementRequest):
    """Persist a sale. Returns the created ``Transaction`` or a ``DomainError``."""
    change_amount = validate_request(request)
    if isinstance(change_amount, DomainError):
        log_rejection(logger, "settlement_rejected", change_amount, cashier_id=request.cashier.id, shift_id=request.shift_id)
        return change_amount

    shift_id = _parse_uuid(request.shift_id)
    # Fail fast before opening a transaction; the shift is re-checked under lock below.
    error = _precheck(request, shift_id)
    if error is not None:
        log_rejection(logger, "settlement_rejected", error, cashier_id=request.cashier.id, shift_id=request.shift_id)
        return error

    # Lines naming a product that no longer exists keep their snapshot only.
    requested_ids = {pid for pid in (_parse_uuid(line.product_id) for line in request.lines) if pid}
    known_ids = {str(pk) for pk in Product.objects.filter(id__in=requested_ids).values_list("id", flat=True)}

    def resolve(line):
        product_id = _parse_uuid(line.product_id)
        return str(product_id) if product_id and str(product_id) in known_ids else None

    for line in request.lines:
        if resolve(line) is None:
            logger.warning(
                "settlement_product_missing",
                extra={"cashier_id": request.cashier.id, "shift_id": request.shift_id, "product_id": line.product_id},
            )

    try:
        with transaction.atomic():
            shift = Shift.objects.select_for_update().filter(id=shift_id).first()
            error = _check_shift(shift, request.cashier)
            if error is not None:
                raise RollbackError(error)

            created_at = timezone.now()
            invoice_number = next_invoice_number(created_at)
            sale = Transaction.objects.create(
                invoice_number=invoice_number,
                cashier=request.cashier,
                customer_id=request.customer_id or None,
                shift=shift,
                subtotal=request.subtotal,
                discount=request.discount,
                tax=request.tax,
                total=request.total,
                payment_method=request.payment.method,
                paid_amount=request.payment.paid_amount,
                change_amount=change_amount,
                notes=request.notes or "",
                created_at=created_at,
            )

            items = [
                TransactionItem(
                    transaction=sale,
                    position=position,
                    product_id=resolve(line),
                    product_name=line.product_name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    discount=line.discount,
                    subtotal=line.subtotal,
                )
                for position, line in enumerate(request.lines)
            ]
            TransactionItem.objects.bulk_create(items)

            # Stable row-lock order across concurrent settlements.
            for item in sorted(items, key=lambda row: row.product_id or ""):
                if item.product_id is None:
                    continue
                if not decrement_stock(item.product_id, item.quantity):
                    raise RollbackError(
                        DomainError.conflict(
                            "insufficient_stock",
                            f"Not enough stock for {item.product_name}.",
                            product_id=item.product_id,
                            quantity=item.quantity,
                        )
                    )
                log_movement(
                    product_id=item.product_id,
                    type=InventoryLog.Type.OUT,
                    qty=item.quantity,
                    note=f"Sale {invoice_number}",
                    reference_id=sale.id,
                    created_by=request.cashier,
                )

            if sale.total > 0:
                record_entry(
                    type=CashBookEntry.Type.IN,
                    source=CashBookEntry.Source.TRANSACTION,
                    amount=sale.total,
                    description=f"Sale {invoice_number}",
                    reference_id=sale.id,
                    created_by=request.cashier,
                )

            if not record_settlement(shift.id, sale.total):
                raise RollbackError(DomainError.conflict("shift_not_open", "Shift is closed.", shift_id=str(shift.id)))

            emit_change(
                "transaction",
                sale.id,
                "upsert",
                {"invoice_number": invoice_number, "total": sale.total, "shift": shift.id, "status": sale.status},
            )
            emit_change("shift", shift.id, "upsert", {"total_sales_delta": sale.total})
            for item in items:
                if item.product_id:
                    emit_change("product", item.product_id, "upsert", {"stock_delta": -item.quantity})
    except RollbackError as exc:
        log_rejection(logger, "settlement_rejected", exc.error, cashier_id=request.cashier.id, shift_id=shift_id)
        return exc.error

    logger.info(
        "transaction_settled",
        extra={
            "cashier_id": request.cashier.id,
            "shift_id": shift.id,
            "transaction_id": sale.id,
            "invoice": invoice_number,
            "amount": sale.total,
        },
    )
    return sale


def refund_transaction(transaction_id, actor, *, restock=None, reverse_cashbook=None):
    """Mark a settled transaction as refunded.

    The status flip is one-way. Restocking the items and booking the money back
    out of the cash book are separate switches, defaulting to the
    ``POS_REFUND_RESTOCK`` and ``POS_REFUND_CASHBOOK_REVERSAL`` settings.
    """
    if not user_has_capability(actor, "transaction.refund"):
        return DomainError.permission("refund_not_allowed", "Only admins can refund transactions.")

    restock = settings.POS_REFUND_RESTOCK if restock is None else restock
    reverse_cashbook = settings.POS_REFUND_CASHBOOK_REVERSAL if reverse_cashbook is None else reverse_cashbook

    with transaction.atomic():
        sale = Transaction.objects.select_for_update().filter(id=transaction_id).first()
        if sale is None:
            return DomainError.not_found("transaction_not_found", "Transaction not found.")
        if sale.status != Transaction.Status.SUCCESS:
            error = DomainError.conflict(
                "transaction_not_refundable",
                f"Transaction is already {sale.status}.",
                status=sale.status,
            )
            log_rejection(logger, "refund_rejected", error, transaction_id=sale.id)
            return error

        sale.status = Transaction.Status.REFUND
        sale.refunded_at = timezone.now()
        sale.refunded_by = actor
        sale.save(update_fields=["status", "refunded_at", "refunded_by"])

        if restock:
            for item in sale.items.filter(product__isnull=False):
                increment_stock(item.product_id, item.quantity)
                log_movement(
                    product_id=item.product_id,
                    type=InventoryLog.Type.IN,
                    qty=item.quantity,
                    note=f"Refund {sale.invoice_number}",
                    reference_id=sale.id,
                    created_by=actor,
                )
                emit_change("product", item.product_id, "upsert", {"stock_delta": item.quantity})

        if reverse_cashbook and sale.total > 0:
            record_entry(
                type=CashBookEntry.Type.OUT,
                source=CashBookEntry.Source.TRANSACTION,
                amount=sale.total,
                description=f"Refund {sale.invoice_number}",
                reference_id=sale.id,
                created_by=actor,
            )

        emit_change("transaction", sale.id, "upsert", {"status": sale.status, "refunded_at": sale.refunded_at})

    logger.info(
        "transaction_refunded",
        extra={"transaction_id": sale.id, "invoice": sale.invoice_number, "amount": sale.total},
    )
    return sale


asettle = sync_to_async(settle)
arefund_transaction = sync_to_async(refund_transaction)
