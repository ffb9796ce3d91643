import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class CashBookEntry(models.Model):
    class Type(models.TextChoices):
        IN = "in", "In"
        OUT = "out", "Out"

    class Source(models.TextChoices):
        TRANSACTION = "transaction", "Transaction"
        PURCHASE = "purchase", "Purchase"
        MANUAL = "manual", "Manual"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    type = models.CharField(max_length=8, choices=Type.choices)
    source = models.CharField(max_length=16, choices=Source.choices)
    amount = models.PositiveBigIntegerField()
    description = models.CharField(max_length=255, null=True, blank=True)
    reference_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["created_at"], name="cashbook_created_idx"),
            models.Index(fields=["source", "reference_id"], name="cashbook_source_ref_idx"),
        ]
        constraints = [
            # Direction lives in ``type``; the amount itself is always positive.
            models.CheckConstraint(condition=Q(amount__gt=0), name="cashbook_amount_positive"),
        ]
