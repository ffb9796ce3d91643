from django.db import models


class ChangeEvent(models.Model):
    """Append-only change feed; clients poll ``?since=<id>`` and re-fetch the entity."""

    class Op(models.TextChoices):
        UPSERT = "upsert", "Upsert"
        DELETE = "delete", "Delete"

    id = models.BigAutoField(primary_key=True)
    entity = models.CharField(max_length=64)
    entity_id = models.CharField(max_length=64)
    op = models.CharField(max_length=16, choices=Op.choices)
    payload = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["entity", "id"], name="change_entity_id_idx"),
        ]
