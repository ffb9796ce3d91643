from rest_framework import serializers

from core.models import StoreProfile
from inventory.models import Product
from sales.models import Customer, Shift, Transaction, TransactionItem
from sales.pricing import DISCOUNT_KINDS, Cart, Fixed, ProductSnapshot
from sales.settlement import PaymentInfo, SettlementLine, SettlementRequest


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ["id", "name", "phone", "address", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class ShiftSerializer(serializers.ModelSerializer):
    cashier_name = serializers.CharField(source="cashier.display_name", read_only=True)
    is_active = serializers.BooleanField(read_only=True)

    class Meta:
        model = Shift
        fields = [
            "id",
            "cashier",
            "cashier_name",
            "opened_at",
            "closed_at",
            "is_active",
            "starting_cash",
            "ending_cash",
            "total_sales",
            "total_transactions",
            "expected_cash",
            "cash_difference",
            "notes",
        ]
        read_only_fields = fields


class ShiftOpenSerializer(serializers.Serializer):
    starting_cash = serializers.IntegerField(min_value=0)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ShiftCloseSerializer(serializers.Serializer):
    ending_cash = serializers.IntegerField(min_value=0)


class ReconciliationSerializer(serializers.Serializer):
    shift_id = serializers.UUIDField()
    starting_cash = serializers.IntegerField()
    total_sales = serializers.IntegerField()
    total_transactions = serializers.IntegerField()
    ending_cash = serializers.IntegerField()
    expected_cash = serializers.IntegerField()
    difference = serializers.IntegerField()


class TransactionItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = TransactionItem
        fields = ["id", "product", "product_name", "quantity", "unit_price", "discount", "subtotal"]
        read_only_fields = fields


class TransactionSerializer(serializers.ModelSerializer):
    items = TransactionItemSerializer(many=True, read_only=True)
    cashier_name = serializers.CharField(source="cashier.display_name", read_only=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True, default=None)

    class Meta:
        model = Transaction
        fields = [
            "id",
            "invoice_number",
            "cashier",
            "cashier_name",
            "customer",
            "customer_name",
            "shift",
            "subtotal",
            "discount",
            "tax",
            "total",
            "payment_method",
            "paid_amount",
            "change_amount",
            "status",
            "notes",
            "created_at",
            "refunded_at",
            "refunded_by",
            "items",
        ]
        read_only_fields = fields


class SettlementLineSerializer(serializers.Serializer):
    product_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    product_name = serializers.CharField(max_length=255)
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.IntegerField(min_value=0)
    discount = serializers.IntegerField(min_value=0, default=0)
    subtotal = serializers.IntegerField(min_value=0)


class SettlementCreateSerializer(serializers.Serializer):
    """Client-priced settlement input; totals are re-validated, not recomputed."""

    shift_id = serializers.UUIDField()
    items = SettlementLineSerializer(many=True, allow_empty=False)
    customer_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    subtotal = serializers.IntegerField(min_value=0)
    discount = serializers.IntegerField(min_value=0, default=0)
    tax = serializers.IntegerField(min_value=0, default=0)
    total = serializers.IntegerField(min_value=0)
    payment_method = serializers.ChoiceField(choices=Transaction.PaymentMethod.choices)
    paid_amount = serializers.IntegerField(min_value=0)
    change_amount = serializers.IntegerField(min_value=0, required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def to_request(self, cashier):
        data = self.validated_data
        return SettlementRequest(
            cashier=cashier,
            shift_id=data["shift_id"],
            lines=tuple(
                SettlementLine(
                    product_id=str(line["product_id"]) if line["product_id"] else None,
                    product_name=line["product_name"],
                    quantity=line["quantity"],
                    unit_price=line["unit_price"],
                    discount=line["discount"],
                    subtotal=line["subtotal"],
                )
                for line in data["items"]
            ),
            subtotal=data["subtotal"],
            discount=data["discount"],
            tax=data["tax"],
            total=data["total"],
            payment=PaymentInfo(
                method=data["payment_method"],
                paid_amount=data["paid_amount"],
                change_amount=data["change_amount"],
            ),
            customer_id=str(data["customer_id"]) if data["customer_id"] else None,
            notes=data["notes"],
        )


def _validate_discount(attrs):
    if attrs["discount_type"] == "percent" and attrs["discount"] > 100:
        raise serializers.ValidationError({"discount": "Percent discount cannot exceed 100."})
    if attrs["discount_type"] == "fixed" and attrs["discount"] != int(attrs["discount"]):
        raise serializers.ValidationError({"discount": "Fixed discount must be a whole amount."})
    return attrs


class CartLineInputSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField()
    discount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0, default=0)
    discount_type = serializers.ChoiceField(choices=DISCOUNT_KINDS, default=Fixed.kind)

    def validate(self, attrs):
        return _validate_discount(attrs)


class CartInputSerializer(serializers.Serializer):
    items = CartLineInputSerializer(many=True)
    discount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0, default=0)
    discount_type = serializers.ChoiceField(choices=DISCOUNT_KINDS, default=Fixed.kind)
    customer_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        return _validate_discount(attrs)

    def build_cart(self):
        """Price the submitted lines against the live catalog.

        Returns ``(cart, missing_product_ids)``; lines naming unknown products
        are skipped the same way the cart ignores unknown ids.
        """
        data = self.validated_data
        product_ids = [line["product_id"] for line in data["items"]]
        products = {product.id: product for product in Product.objects.filter(id__in=product_ids)}

        cart = Cart(tax_rate=StoreProfile.current().tax_rate)
        missing = []
        for line in data["items"]:
            product = products.get(line["product_id"])
            if product is None:
                missing.append(str(line["product_id"]))
                continue
            snapshot = ProductSnapshot.from_model(product)
            if cart.add_item(snapshot, line["quantity"]) and line["discount"]:
                cart.set_item_discount(snapshot.id, line["discount"], line["discount_type"])

        cart.set_cart_discount(data["discount"], data["discount_type"])
        cart.set_customer(data["customer_id"])
        cart.set_notes(data["notes"])
        return cart, missing


class CheckoutSerializer(CartInputSerializer):
    shift_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    payment_method = serializers.ChoiceField(choices=Transaction.PaymentMethod.choices)
    paid_amount = serializers.IntegerField(min_value=0, required=False, allow_null=True, default=None)


def cart_payload(cart, missing=()):
    lines = [
        {
            "product_id": line.product_id,
            "product_name": line.product.name,
            "unit": line.product.unit,
            "quantity": line.quantity,
            "unit_price": line.unit_price,
            "subtotal": line.subtotal,
            "discount_type": line.discount.kind,
            "discount_value": str(line.discount.value),
            "discount_amount": line.discount_amount,
            "available_stock": line.product.stock,
            "exceeds_stock": line.exceeds_stock,
        }
        for line in cart.lines
    ]
    return {
        "items": lines,
        "customer_id": cart.customer_id,
        "notes": cart.notes,
        "tax_rate": str(cart.tax_rate),
        "cart_discount_type": cart.discount.kind,
        "cart_discount_value": str(cart.discount.value),
        "missing_products": list(missing),
        **cart.totals().as_dict(),
    }


class RefundSerializer(serializers.Serializer):
    restock = serializers.BooleanField(required=False, allow_null=True, default=None)
    reverse_cashbook = serializers.BooleanField(required=False, allow_null=True, default=None)
