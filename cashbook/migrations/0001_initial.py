import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="CashBookEntry",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("type", models.CharField(choices=[("in", "In"), ("out", "Out")], max_length=8)),
                (
                    "source",
                    models.CharField(
                        choices=[("transaction", "Transaction"), ("purchase", "Purchase"), ("manual", "Manual")],
                        max_length=16,
                    ),
                ),
                ("amount", models.PositiveBigIntegerField()),
                ("description", models.CharField(blank=True, max_length=255, null=True)),
                ("reference_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["created_at"], name="cashbook_created_idx"),
                    models.Index(fields=["source", "reference_id"], name="cashbook_source_ref_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("amount__gt", 0)), name="cashbook_amount_positive"),
                ],
            },
        ),
    ]
