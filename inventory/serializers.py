from rest_framework import serializers

from inventory.models import InventoryLog, Product, Supplier, SupplierPurchase, SupplierPurchaseItem
from inventory.services import PurchaseLine


class ProductSerializer(serializers.ModelSerializer):
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "category",
            "barcode",
            "buy_price",
            "sell_price",
            "unit",
            "stock",
            "min_stock",
            "is_low_stock",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "is_low_stock", "created_at", "updated_at"]

    def validate_barcode(self, value):
        # Blank barcodes are stored as NULL so the unique index ignores them.
        return value or None

    def validate_stock(self, value):
        if value < 0:
            raise serializers.ValidationError("Stock cannot be negative.")
        if self.instance is not None and value != self.instance.stock:
            raise serializers.ValidationError("Use the adjust-stock action to change stock.")
        return value


class StockAdjustmentSerializer(serializers.Serializer):
    delta = serializers.IntegerField()
    note = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_delta(self, value):
        if value == 0:
            raise serializers.ValidationError("Adjustment must not be zero.")
        return value


class InventoryLogSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = InventoryLog
        fields = ["id", "product", "product_name", "type", "qty", "note", "reference_id", "created_by", "created_at"]
        read_only_fields = fields


class SupplierSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = ["id", "name", "phone", "address", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class SupplierPurchaseItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = SupplierPurchaseItem
        fields = ["id", "product", "product_name", "qty", "buy_price", "subtotal"]
        read_only_fields = fields


class SupplierPurchaseSerializer(serializers.ModelSerializer):
    items = SupplierPurchaseItemSerializer(many=True, read_only=True)
    supplier_name = serializers.CharField(source="supplier.name", read_only=True, default=None)

    class Meta:
        model = SupplierPurchase
        fields = ["id", "supplier", "supplier_name", "total", "is_paid", "created_by", "created_at", "items"]
        read_only_fields = fields


class PurchaseLineInputSerializer(serializers.Serializer):
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all())
    qty = serializers.IntegerField(min_value=1)
    buy_price = serializers.IntegerField(min_value=0)


class SupplierPurchaseCreateSerializer(serializers.Serializer):
    supplier = serializers.PrimaryKeyRelatedField(queryset=Supplier.objects.all(), required=False, allow_null=True, default=None)
    items = PurchaseLineInputSerializer(many=True, allow_empty=False)
    is_paid = serializers.BooleanField(default=True)

    def purchase_lines(self):
        return [
            PurchaseLine(product=line["product"], qty=line["qty"], buy_price=line["buy_price"])
            for line in self.validated_data["items"]
        ]
