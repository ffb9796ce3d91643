from rest_framework import serializers

from sync.models import ChangeEvent


class ChangeFeedQuerySerializer(serializers.Serializer):
    since = serializers.IntegerField(required=False, min_value=0, default=0)
    entity = serializers.CharField(required=False, allow_blank=True, max_length=64)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=500, default=100)


class ChangeEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = ChangeEvent
        fields = ["id", "entity", "entity_id", "op", "payload", "created_at"]
        read_only_fields = fields
