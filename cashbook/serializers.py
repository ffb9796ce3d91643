from rest_framework import serializers

from cashbook.models import CashBookEntry


class CashBookEntrySerializer(serializers.ModelSerializer):
    created_by_name = serializers.CharField(source="created_by.display_name", read_only=True, default=None)

    class Meta:
        model = CashBookEntry
        fields = [
            "id",
            "type",
            "source",
            "amount",
            "description",
            "reference_id",
            "created_at",
            "created_by",
            "created_by_name",
        ]
        read_only_fields = fields


class ManualEntrySerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=CashBookEntry.Type.choices)
    amount = serializers.IntegerField(min_value=1)
    description = serializers.CharField(max_length=255)


class CashBookSummarySerializer(serializers.Serializer):
    total_income = serializers.IntegerField()
    total_expense = serializers.IntegerField()
    balance = serializers.IntegerField()
