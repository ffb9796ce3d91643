"""Cart pricing engine.

All amounts are non-negative integers in the smallest currency unit. Totals
are derived bottom-up on every call:

    subtotal -> minus item discounts -> minus cart discount -> plus tax = total

Item discounts apply first, the cart discount is computed off the
post-item-discount base and tax off the post-all-discounts base.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

ZERO = Decimal("0")


def to_money(value) -> int:
    """Round to the nearest whole currency unit, halves away from zero."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(base: int, rate) -> int:
    return to_money(Decimal(base) * Decimal(str(rate)) / Decimal("100"))


@dataclass(frozen=True)
class Percent:
    rate: Decimal

    def __post_init__(self):
        rate = Decimal(str(self.rate))
        if not ZERO <= rate <= Decimal("100"):
            raise ValueError("Percent discount must be between 0 and 100.")
        object.__setattr__(self, "rate", rate)

    kind = "percent"

    @property
    def value(self):
        return self.rate

    def apply(self, base: int, units: int = 1) -> int:
        return min(percent_of(base, self.rate), base)


@dataclass(frozen=True)
class Fixed:
    amount: int

    def __post_init__(self):
        if int(self.amount) != self.amount or self.amount < 0:
            raise ValueError("Fixed discount must be a non-negative whole amount.")
        object.__setattr__(self, "amount", int(self.amount))

    kind = "fixed"

    @property
    def value(self):
        return self.amount

    def apply(self, base: int, units: int = 1) -> int:
        # Per unit on lines, flat on the cart; never more than the base it reduces.
        return min(self.amount * units, base)


Discount = Union[Percent, Fixed]
NO_DISCOUNT = Fixed(0)
DISCOUNT_KINDS = (Percent.kind, Fixed.kind)


def make_discount(kind: str, value) -> Optional[Discount]:
    """Build a discount, or None when the kind is unknown or the value out of range.

    Fixed amounts must be whole currency units; fractions are rejected, not truncated.
    """
    try:
        value = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value < ZERO:
        return None
    if kind == Percent.kind:
        return Percent(value) if value <= Decimal("100") else None
    if kind == Fixed.kind:
        return Fixed(int(value)) if value == value.to_integral_value() else None
    return None


@dataclass(frozen=True)
class ProductSnapshot:
    """The canonical product value a cart line captures at add time."""

    id: str
    name: str
    price: int
    stock: int = 0
    unit: str = "pcs"
    category: str = ""
    barcode: Optional[str] = None
    min_stock: int = 0

    @classmethod
    def from_model(cls, product) -> ProductSnapshot:
        return cls(
            id=str(product.id),
            name=product.name,
            price=product.sell_price,
            stock=product.stock,
            unit=product.unit,
            category=product.category,
            barcode=product.barcode,
            min_stock=product.min_stock,
        )


@dataclass
class CartLine:
    product: ProductSnapshot
    quantity: int
    discount: Discount = NO_DISCOUNT

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def unit_price(self) -> int:
        return self.product.price

    @property
    def subtotal(self) -> int:
        return self.quantity * self.product.price

    @property
    def discount_amount(self) -> int:
        return self.discount.apply(self.subtotal, units=self.quantity)

    @property
    def exceeds_stock(self) -> bool:
        return self.quantity > self.product.stock


@dataclass(frozen=True)
class CartTotals:
    subtotal: int
    items_discount: int
    cart_discount: int
    tax: int
    total: int
    item_count: int

    @property
    def discount(self) -> int:
        return self.items_discount + self.cart_discount

    def as_dict(self) -> dict[str, int]:
        return {
            "subtotal": self.subtotal,
            "items_discount": self.items_discount,
            "cart_discount": self.cart_discount,
            "discount": self.discount,
            "tax": self.tax,
            "total": self.total,
            "item_count": self.item_count,
        }


@dataclass
class Cart:
    """One cashier's in-progress sale.

    Mutators never raise. They return False and leave the cart untouched when
    the product id is unknown or a discount is rejected. Shift checks belong to
    the caller.
    """

    tax_rate: Decimal = ZERO
    lines: list[CartLine] = field(default_factory=list)
    customer_id: Optional[str] = None
    discount: Discount = NO_DISCOUNT
    notes: str = ""

    def __post_init__(self):
        self.tax_rate = Decimal(str(self.tax_rate))
        if not ZERO <= self.tax_rate <= Decimal("100"):
            raise ValueError("Tax rate must be between 0 and 100.")

    def _find(self, product_id) -> Optional[CartLine]:
        product_id = str(product_id)
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def add_item(self, product: ProductSnapshot, quantity: int = 1) -> bool:
        """Add or merge a line. A merged quantity of zero or less drops the line."""
        line = self._find(product.id)
        if line is not None:
            return self.update_quantity(product.id, line.quantity + quantity)
        if quantity <= 0:
            return False
        self.lines.append(CartLine(product=product, quantity=quantity))
        return True

    def update_quantity(self, product_id, quantity: int) -> bool:
        line = self._find(product_id)
        if line is None:
            return False
        if quantity <= 0:
            self.lines.remove(line)
            return True
        line.quantity = quantity
        return True

    def remove_item(self, product_id) -> bool:
        line = self._find(product_id)
        if line is None:
            return False
        self.lines.remove(line)
        return True

    def set_item_discount(self, product_id, amount, kind: str = Fixed.kind) -> bool:
        line = self._find(product_id)
        if line is None:
            return False
        discount = make_discount(kind, amount)
        if discount is None:
            return False
        line.discount = discount
        return True

    def set_cart_discount(self, amount, kind: str = Fixed.kind) -> bool:
        discount = make_discount(kind, amount)
        if discount is None:
            return False
        self.discount = discount
        return True

    def set_customer(self, customer_id) -> None:
        self.customer_id = str(customer_id) if customer_id else None

    def set_notes(self, notes: str) -> None:
        self.notes = notes or ""

    def clear(self) -> None:
        self.lines = []
        self.customer_id = None
        self.discount = NO_DISCOUNT
        self.notes = ""

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def subtotal(self) -> int:
        return sum(line.subtotal for line in self.lines)

    def items_discount(self) -> int:
        return sum(line.discount_amount for line in self.lines)

    def cart_discount(self) -> int:
        base = self.subtotal() - self.items_discount()
        return self.discount.apply(base)

    def tax(self) -> int:
        taxable = self.subtotal() - self.items_discount() - self.cart_discount()
        return percent_of(taxable, self.tax_rate)

    def total(self) -> int:
        return self.subtotal() - self.items_discount() - self.cart_discount() + self.tax()

    def total_item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def totals(self) -> CartTotals:
        return CartTotals(
            subtotal=self.subtotal(),
            items_discount=self.items_discount(),
            cart_discount=self.cart_discount(),
            tax=self.tax(),
            total=self.total(),
            item_count=self.total_item_count(),
        )
