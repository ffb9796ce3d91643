from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from core.models import StoreProfile
from inventory.models import Product, Supplier
from inventory.services import PurchaseLine, record_supplier_purchase
from sales.models import Customer, Transaction
from sales.pricing import Cart, ProductSnapshot
from sales.settlement import PaymentInfo, SettlementRequest, settle
from sales.shifts import get_active_shift, open_shift

DEMO_PRODUCTS = [
    # name, category, barcode, buy, sell, unit, min_stock, initial purchase qty
    ("Beras Premium 5kg", "Sembako", "8990001000011", 62000, 75000, "sak", 5, 20),
    ("Minyak Goreng 1L", "Sembako", "8990001000028", 14500, 18000, "btl", 12, 48),
    ("Gula Pasir 1kg", "Sembako", "8990001000035", 13500, 16500, "kg", 10, 30),
    ("Telur Ayam 1kg", "Sembako", "8990001000042", 25000, 29000, "kg", 5, 15),
    ("Kopi Sachet", "Minuman", "8990001000059", 1100, 1500, "pcs", 20, 120),
    ("Mie Instan Goreng", "Makanan", "8990001000066", 2700, 3500, "pcs", 24, 96),
]


class Command(BaseCommand):
    help = "Seed demo store, catalog and one settled sale for local development."

    def handle(self, *args, **options):
        User = get_user_model()

        admin_user, admin_created = User.objects.get_or_create(
            username="admin",
            defaults={
                "email": "admin@example.com",
                "role": User.Role.ADMIN,
                "is_staff": True,
                "is_superuser": True,
                "is_active": True,
            },
        )
        if admin_created:
            admin_user.set_password("admin1234")
            admin_user.save(update_fields=["password"])

        cashier_user, cashier_created = User.objects.get_or_create(
            username="cashier",
            defaults={
                "email": "cashier@example.com",
                "role": User.Role.CASHIER,
                "is_active": True,
            },
        )
        if cashier_created:
            cashier_user.set_password("cashier1234")
            cashier_user.save(update_fields=["password"])

        store = StoreProfile.current()

        supplier, _ = Supplier.objects.get_or_create(
            name="CV Sumber Rejeki",
            defaults={"phone": "+6281200000001", "address": "Jl. Pasar Baru 12"},
        )

        lines = []
        for name, category, barcode, buy_price, sell_price, unit, min_stock, qty in DEMO_PRODUCTS:
            product, created = Product.objects.get_or_create(
                barcode=barcode,
                defaults={
                    "name": name,
                    "category": category,
                    "buy_price": buy_price,
                    "sell_price": sell_price,
                    "unit": unit,
                    "min_stock": min_stock,
                },
            )
            if created:
                lines.append(PurchaseLine(product=product, qty=qty, buy_price=buy_price))

        # Stock only arrives through purchases so the ledger and movement log stay consistent.
        if lines:
            purchase = record_supplier_purchase(supplier=supplier, lines=lines, user=admin_user)
            self.stdout.write(f"Recorded opening purchase {purchase.id} ({len(lines)} lines)")

        customer, _ = Customer.objects.get_or_create(
            phone="+6281300000001",
            defaults={"name": "Bu Siti", "address": "Gg. Melati 3"},
        )

        shift = get_active_shift(cashier_user) or open_shift(cashier_user, 200000, "Demo shift")

        if not Transaction.objects.filter(cashier=cashier_user).exists():
            cart = Cart(tax_rate=store.tax_rate)
            for barcode, qty in [("8990001000011", 1), ("8990001000059", 4)]:
                cart.add_item(ProductSnapshot.from_model(Product.objects.get(barcode=barcode)), qty)
            cart.set_customer(customer.id)
            result = settle(
                SettlementRequest.from_cart(
                    cart,
                    PaymentInfo(method=Transaction.PaymentMethod.CASH, paid_amount=100000),
                    shift_id=shift.id,
                    cashier=cashier_user,
                )
            )
            self.stdout.write(f"Demo sale: {getattr(result, 'invoice_number', result)}")

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write("Credentials: admin/admin1234, cashier/cashier1234")
        self.stdout.write(f"Store: {store.name} | Active shift: {shift.id}")
