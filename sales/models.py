import uuid

from django.conf import settings
from django.db import models, transaction
from django.db.models import F, Q
from django.utils import timezone

from common.utils import local_date
from inventory.models import Product


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=64, null=True, blank=True)
    address = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [models.Index(fields=["phone"], name="customer_phone_idx")]

    def __str__(self):
        return self.name


class Shift(models.Model):
    """A cashier's till session. ``closed_at`` is null exactly while it is open."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    cashier = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="shifts")
    opened_at = models.DateTimeField(default=timezone.now)
    closed_at = models.DateTimeField(null=True, blank=True)
    starting_cash = models.PositiveBigIntegerField(default=0)
    ending_cash = models.PositiveBigIntegerField(null=True, blank=True)
    total_sales = models.PositiveBigIntegerField(default=0)
    total_transactions = models.PositiveIntegerField(default=0)
    expected_cash = models.PositiveBigIntegerField(null=True, blank=True)
    cash_difference = models.BigIntegerField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-opened_at"]
        indexes = [models.Index(fields=["cashier", "opened_at"], name="shift_cashier_opened_idx")]
        constraints = [
            models.UniqueConstraint(
                fields=["cashier"],
                condition=Q(closed_at__isnull=True),
                name="uniq_open_shift_per_cashier",
            ),
        ]

    @property
    def is_active(self):
        return self.closed_at is None


class Transaction(models.Model):
    class PaymentMethod(models.TextChoices):
        CASH = "cash", "Cash"
        QRIS = "qris", "QRIS"
        BANK = "bank", "Bank Transfer"
        CREDIT = "credit", "Credit"

    class Status(models.TextChoices):
        SUCCESS = "success", "Success"
        REFUND = "refund", "Refund"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice_number = models.CharField(max_length=64, unique=True)
    cashier = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="transactions")
    customer = models.ForeignKey(Customer, on_delete=models.SET_NULL, null=True, blank=True, related_name="transactions")
    shift = models.ForeignKey(Shift, on_delete=models.PROTECT, null=True, blank=True, related_name="transactions")
    subtotal = models.PositiveBigIntegerField()
    discount = models.PositiveBigIntegerField(default=0)
    tax = models.PositiveBigIntegerField(default=0)
    total = models.PositiveBigIntegerField()
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    paid_amount = models.PositiveBigIntegerField()
    change_amount = models.PositiveBigIntegerField(default=0)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.SUCCESS)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(default=timezone.now)
    refunded_at = models.DateTimeField(null=True, blank=True)
    refunded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="refunded_transactions",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["created_at"], name="txn_created_idx"),
            models.Index(fields=["status", "created_at"], name="txn_status_created_idx"),
            models.Index(fields=["shift", "status"], name="txn_shift_status_idx"),
            models.Index(fields=["cashier", "created_at"], name="txn_cashier_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(total=F("subtotal") - F("discount") + F("tax")),
                name="transaction_total_identity",
            ),
        ]

    def __str__(self):
        return self.invoice_number


class TransactionItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    transaction = models.ForeignKey(Transaction, on_delete=models.CASCADE, related_name="items")
    position = models.PositiveSmallIntegerField(default=0)
    # Nullable so history survives product deletion; the snapshots below stay authoritative.
    product = models.ForeignKey(Product, on_delete=models.SET_NULL, null=True, blank=True)
    product_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    unit_price = models.PositiveBigIntegerField()
    discount = models.PositiveBigIntegerField(default=0)
    subtotal = models.PositiveBigIntegerField()

    class Meta:
        ordering = ["position"]
        indexes = [
            models.Index(fields=["product_name"], name="txnitem_product_name_idx"),
        ]


class InvoiceSequence(models.Model):
    day = models.DateField(primary_key=True)
    last_number = models.PositiveIntegerField(default=0)


def next_invoice_number(now=None):
    """Return ``<prefix>-YYYYMMDD-NNNN`` for the store-local day of ``now``.

    The per-day counter row is locked for the rest of the caller's transaction,
    so concurrent settlements get distinct numbers.
    """
    day = local_date(now)
    with transaction.atomic():
        sequence, _ = InvoiceSequence.objects.select_for_update().get_or_create(day=day)
        InvoiceSequence.objects.filter(day=day).update(last_number=F("last_number") + 1)
        sequence.refresh_from_db(fields=["last_number"])
    return f"{settings.POS_INVOICE_PREFIX}-{day:%Y%m%d}-{sequence.last_number:04d}"
