import logging
from dataclasses import dataclass

from django.db import transaction
from django.db.models import F

from cashbook.models import CashBookEntry
from cashbook.services import record_entry
from common.exceptions import DomainError, RollbackError
from common.logging import log_rejection
from common.utils import emit_change
from inventory.models import InventoryLog, Product, SupplierPurchase, SupplierPurchaseItem

logger = logging.getLogger("pos.inventory")


def decrement_stock(product_id, quantity):
    """Conditionally take ``quantity`` units out of stock.

    Runs as a single ``UPDATE ... WHERE stock >= quantity`` so two concurrent
    sales of the last unit cannot both succeed. Returns False when the product
    is missing or short.
    """
    if quantity <= 0:
        return False
    updated = Product.objects.filter(id=product_id, stock__gte=quantity).update(stock=F("stock") - quantity)
    return updated == 1


def increment_stock(product_id, quantity):
    if quantity <= 0:
        return False
    updated = Product.objects.filter(id=product_id).update(stock=F("stock") + quantity)
    return updated == 1


def log_movement(*, product_id, type, qty, note="", reference_id=None, created_by=None):
    return InventoryLog.objects.create(
        product_id=product_id,
        type=type,
        qty=qty,
        note=note,
        reference_id=reference_id,
        created_by=created_by,
    )


def low_stock_products():
    return Product.objects.filter(stock__lte=F("min_stock")).order_by("stock", "name")


def adjust_stock(product, delta, *, note="", user=None):
    """Manual stock correction by an admin; positive adds, negative removes."""
    if delta == 0:
        return DomainError.validation("invalid_quantity", "Adjustment quantity must not be zero.")

    with transaction.atomic():
        if delta > 0:
            ok = increment_stock(product.id, delta)
            movement = InventoryLog.Type.IN
        else:
            ok = decrement_stock(product.id, -delta)
            movement = InventoryLog.Type.OUT
        if not ok:
            return DomainError.conflict(
                "insufficient_stock",
                "Stock cannot go below zero.",
                product_id=str(product.id),
            )
        log_movement(product_id=product.id, type=movement, qty=abs(delta), note=note or "Stock adjustment", created_by=user)
        product.refresh_from_db(fields=["stock", "updated_at"])
        emit_change("product", product.id, "upsert", {"stock": product.stock})

    logger.info("stock_adjusted", extra={"product_id": product.id, "amount": delta})
    return product


@dataclass(frozen=True)
class PurchaseLine:
    product: Product
    qty: int
    buy_price: int

    @property
    def subtotal(self):
        return self.qty * self.buy_price


def record_supplier_purchase(*, supplier, lines, is_paid=True, user=None):
    """Receive goods from a supplier in one transaction.

    Stock goes up, every line is logged as an inventory movement and a paid
    purchase books its total as cash going out.
    """
    if not lines:
        return DomainError.validation("empty_purchase", "A purchase needs at least one line.")
    if any(line.qty <= 0 for line in lines):
        return DomainError.validation("invalid_quantity", "Purchase quantities must be at least 1.")

    total = sum(line.subtotal for line in lines)
    try:
        with transaction.atomic():
            purchase = SupplierPurchase.objects.create(supplier=supplier, total=total, is_paid=is_paid, created_by=user)
            SupplierPurchaseItem.objects.bulk_create(
                [
                    SupplierPurchaseItem(
                        purchase=purchase,
                        product=line.product,
                        product_name=line.product.name,
                        qty=line.qty,
                        buy_price=line.buy_price,
                        subtotal=line.subtotal,
                    )
                    for line in lines
                ]
            )
            for line in lines:
                if not increment_stock(line.product.id, line.qty):
                    raise RollbackError(
                        DomainError.not_found("product_not_found", "Product no longer exists.", product_id=str(line.product.id))
                    )
                Product.objects.filter(id=line.product.id).update(buy_price=line.buy_price)
                log_movement(
                    product_id=line.product.id,
                    type=InventoryLog.Type.IN,
                    qty=line.qty,
                    note="Supplier purchase",
                    reference_id=purchase.id,
                    created_by=user,
                )
                emit_change("product", line.product.id, "upsert", {"stock_delta": line.qty})

            if is_paid and total > 0:
                supplier_name = supplier.name if supplier else "supplier"
                record_entry(
                    type=CashBookEntry.Type.OUT,
                    source=CashBookEntry.Source.PURCHASE,
                    amount=total,
                    description=f"Purchase from {supplier_name}",
                    reference_id=purchase.id,
                    created_by=user,
                )
            emit_change("supplier_purchase", purchase.id, "upsert", {"total": total, "is_paid": is_paid})
    except RollbackError as exc:
        log_rejection(logger, "supplier_purchase_rejected", exc.error)
        return exc.error

    logger.info("supplier_purchase_recorded", extra={"amount": total})
    return purchase
