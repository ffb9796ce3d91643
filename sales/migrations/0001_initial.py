import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("inventory", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("phone", models.CharField(blank=True, max_length=64, null=True)),
                ("address", models.CharField(blank=True, max_length=255, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "indexes": [models.Index(fields=["phone"], name="customer_phone_idx")],
            },
        ),
        migrations.CreateModel(
            name="InvoiceSequence",
            fields=[
                ("day", models.DateField(primary_key=True, serialize=False)),
                ("last_number", models.PositiveIntegerField(default=0)),
            ],
        ),
        migrations.CreateModel(
            name="Shift",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("opened_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
                ("starting_cash", models.PositiveBigIntegerField(default=0)),
                ("ending_cash", models.PositiveBigIntegerField(blank=True, null=True)),
                ("total_sales", models.PositiveBigIntegerField(default=0)),
                ("total_transactions", models.PositiveIntegerField(default=0)),
                ("expected_cash", models.PositiveBigIntegerField(blank=True, null=True)),
                ("cash_difference", models.BigIntegerField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "cashier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="shifts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-opened_at"],
                "indexes": [models.Index(fields=["cashier", "opened_at"], name="shift_cashier_opened_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("closed_at__isnull", True)),
                        fields=("cashier",),
                        name="uniq_open_shift_per_cashier",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("invoice_number", models.CharField(max_length=64, unique=True)),
                ("subtotal", models.PositiveBigIntegerField()),
                ("discount", models.PositiveBigIntegerField(default=0)),
                ("tax", models.PositiveBigIntegerField(default=0)),
                ("total", models.PositiveBigIntegerField()),
                (
                    "payment_method",
                    models.CharField(
                        choices=[("cash", "Cash"), ("qris", "QRIS"), ("bank", "Bank Transfer"), ("credit", "Credit")],
                        default="cash",
                        max_length=16,
                    ),
                ),
                ("paid_amount", models.PositiveBigIntegerField()),
                ("change_amount", models.PositiveBigIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[("success", "Success"), ("refund", "Refund"), ("cancelled", "Cancelled")],
                        default="success",
                        max_length=16,
                    ),
                ),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "cashier",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="transactions",
                        to="sales.customer",
                    ),
                ),
                (
                    "refunded_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="refunded_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "shift",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="sales.shift",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["created_at"], name="txn_created_idx"),
                    models.Index(fields=["status", "created_at"], name="txn_status_created_idx"),
                    models.Index(fields=["shift", "status"], name="txn_shift_status_idx"),
                    models.Index(fields=["cashier", "created_at"], name="txn_cashier_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("total", models.F("subtotal") - models.F("discount") + models.F("tax"))),
                        name="transaction_total_identity",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="TransactionItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("position", models.PositiveSmallIntegerField(default=0)),
                ("product_name", models.CharField(max_length=255)),
                ("quantity", models.PositiveIntegerField()),
                ("unit_price", models.PositiveBigIntegerField()),
                ("discount", models.PositiveBigIntegerField(default=0)),
                ("subtotal", models.PositiveBigIntegerField()),
                (
                    "product",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to="inventory.product",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="sales.transaction",
                    ),
                ),
            ],
            options={
                "ordering": ["position"],
                "indexes": [models.Index(fields=["product_name"], name="txnitem_product_name_idx")],
            },
        ),
    ]
