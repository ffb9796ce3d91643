from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from cashbook.models import CashBookEntry
from common.exceptions import DomainError
from inventory.models import InventoryLog, Product, Supplier, SupplierPurchase
from inventory.services import PurchaseLine, adjust_stock, decrement_stock, low_stock_products, record_supplier_purchase
from sync.models import ChangeEvent


class StockServiceTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(name="Telur 1kg", sell_price=28000, buy_price=25000, stock=3, min_stock=5)

    def test_decrement_is_conditional(self):
        self.assertTrue(decrement_stock(self.product.id, 3))
        self.assertFalse(decrement_stock(self.product.id, 1))

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 0)

    def test_adjust_stock_logs_movement(self):
        result = adjust_stock(self.product, -2, note="Broken eggs")

        self.assertEqual(result.stock, 1)
        log = InventoryLog.objects.get(product=self.product)
        self.assertEqual(log.type, InventoryLog.Type.OUT)
        self.assertEqual(log.qty, 2)
        self.assertEqual(log.note, "Broken eggs")

    def test_adjust_stock_cannot_go_negative(self):
        result = adjust_stock(self.product, -4)

        self.assertIsInstance(result, DomainError)
        self.assertEqual(result.code, "insufficient_stock")
        self.assertFalse(InventoryLog.objects.exists())

    def test_low_stock_includes_products_at_threshold(self):
        Product.objects.create(name="Plenty", stock=50, min_stock=5)
        at_threshold = Product.objects.create(name="Edge", stock=5, min_stock=5)

        self.assertEqual(list(low_stock_products()), [self.product, at_threshold])


class SupplierPurchaseServiceTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="gudang", password="pass1234", role="admin")
        self.supplier = Supplier.objects.create(name="CV Sumber Rejeki")
        self.rice = Product.objects.create(name="Beras 5kg", sell_price=75000, buy_price=60000, stock=2)
        self.oil = Product.objects.create(name="Minyak 1L", sell_price=18000, buy_price=14000, stock=0)

    def test_paid_purchase_restocks_and_books_cash_out(self):
        purchase = record_supplier_purchase(
            supplier=self.supplier,
            lines=[PurchaseLine(self.rice, 10, 62000), PurchaseLine(self.oil, 12, 14500)],
            user=self.user,
        )

        self.assertIsInstance(purchase, SupplierPurchase)
        self.assertEqual(purchase.total, 10 * 62000 + 12 * 14500)
        self.rice.refresh_from_db()
        self.oil.refresh_from_db()
        self.assertEqual(self.rice.stock, 12)
        self.assertEqual(self.rice.buy_price, 62000)
        self.assertEqual(self.oil.stock, 12)
        self.assertEqual(InventoryLog.objects.filter(reference_id=purchase.id, type=InventoryLog.Type.IN).count(), 2)

        entry = CashBookEntry.objects.get(reference_id=purchase.id)
        self.assertEqual(entry.type, CashBookEntry.Type.OUT)
        self.assertEqual(entry.source, CashBookEntry.Source.PURCHASE)
        self.assertEqual(entry.amount, purchase.total)

    def test_unpaid_purchase_books_no_cash(self):
        purchase = record_supplier_purchase(supplier=self.supplier, lines=[PurchaseLine(self.rice, 1, 60000)], is_paid=False)

        self.assertFalse(purchase.is_paid)
        self.assertFalse(CashBookEntry.objects.exists())

    def test_empty_purchase_is_rejected(self):
        result = record_supplier_purchase(supplier=self.supplier, lines=[])

        self.assertEqual(result.code, "empty_purchase")
        self.assertFalse(SupplierPurchase.objects.exists())


class ProductApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.cashier = self.user_model.objects.create_user(username="inv-cashier", password="pass1234", role="cashier")
        self.admin = self.user_model.objects.create_user(username="inv-admin", password="pass1234", role="admin")
        self.product = Product.objects.create(
            name="Kopi Sachet",
            category="Minuman",
            barcode="8991002101234",
            sell_price=1500,
            buy_price=1100,
            stock=40,
            min_stock=10,
        )

    def test_cashier_can_browse_but_not_edit_catalog(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/products/")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        self.assertEqual(payload["results"][0]["id"], str(self.product.id))

        response = self.client.post("/api/v1/products/", {"name": "Teh", "sell_price": 1000}, format="json")
        self.assertEqual(response.status_code, 403)

    def test_barcode_lookup(self):
        self.client.force_authenticate(user=self.cashier)

        found = self.client.get("/api/v1/products/barcode/8991002101234/")
        missing = self.client.get("/api/v1/products/barcode/000/")

        self.assertEqual(found.status_code, 200)
        self.assertEqual(found.json()["name"], "Kopi Sachet")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["code"], "not_found")

    def test_search_and_category_filters(self):
        Product.objects.create(name="Teh Celup", category="Minuman", sell_price=5000)
        Product.objects.create(name="Sabun", category="Toiletries", sell_price=4000)
        self.client.force_authenticate(user=self.cashier)

        by_name = self.client.get("/api/v1/products/", {"search": "kopi"}).json()
        by_category = self.client.get("/api/v1/products/", {"category": "minuman"}).json()
        categories = self.client.get("/api/v1/products/categories/").json()

        self.assertEqual(by_name["count"], 1)
        self.assertEqual(by_category["count"], 2)
        self.assertEqual(categories, ["Minuman", "Toiletries"])

    def test_admin_create_emits_change_and_blank_barcode_is_null(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/products/",
            {"name": "Mie Instan", "barcode": "", "sell_price": 3500, "buy_price": 2800, "stock": 24},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = Product.objects.get(id=response.json()["id"])
        self.assertIsNone(created.barcode)
        event = ChangeEvent.objects.get(entity="product", entity_id=str(created.id))
        self.assertEqual(event.op, "upsert")
        self.assertEqual(event.payload["name"], "Mie Instan")

    def test_stock_cannot_be_edited_directly(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(f"/api/v1/products/{self.product.id}/", {"stock": 99}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("stock", response.json()["errors"])

    def test_adjust_stock_action(self):
        self.client.force_authenticate(user=self.admin)

        ok = self.client.post(f"/api/v1/products/{self.product.id}/adjust-stock/", {"delta": 5}, format="json")
        short = self.client.post(f"/api/v1/products/{self.product.id}/adjust-stock/", {"delta": -100}, format="json")

        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json()["stock"], 45)
        self.assertEqual(short.status_code, 409)
        self.assertEqual(short.json()["code"], "insufficient_stock")

        logs = self.client.get(f"/api/v1/products/{self.product.id}/logs/").json()
        self.assertEqual(logs["count"], 1)
        self.assertEqual(logs["results"][0]["type"], "in")

    def test_low_stock_endpoint(self):
        Product.objects.create(name="Habis", stock=0, min_stock=3)
        self.client.force_authenticate(user=self.cashier)

        response = self.client.get("/api/v1/products/low-stock/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["name"] for row in response.json()], ["Habis"])

    def test_delete_emits_delete_event(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/products/{self.product.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertTrue(ChangeEvent.objects.filter(entity="product", entity_id=str(self.product.id), op="delete").exists())


class SupplierPurchaseApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.cashier = self.user_model.objects.create_user(username="sp-cashier", password="pass1234", role="cashier")
        self.admin = self.user_model.objects.create_user(username="sp-admin", password="pass1234", role="admin")
        self.supplier = Supplier.objects.create(name="UD Makmur")
        self.product = Product.objects.create(name="Gula 1kg", sell_price=16000, buy_price=13000, stock=1)

    def test_purchase_list_filters_by_supplier(self):
        self.client.force_authenticate(user=self.admin)
        other = Supplier.objects.create(name="CV Lain")
        self.client.post(
            "/api/v1/purchases/",
            {"supplier": str(self.supplier.id), "items": [{"product": str(self.product.id), "qty": 1, "buy_price": 13000}]},
            format="json",
        )

        self.assertEqual(self.client.get("/api/v1/purchases/", {"supplier": str(self.supplier.id)}).json()["count"], 1)
        self.assertEqual(self.client.get("/api/v1/purchases/", {"supplier": str(other.id)}).json()["count"], 0)

        response = self.client.get("/api/v1/purchases/", {"supplier": "not-a-uuid"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("supplier", response.json()["errors"])

    def test_admin_records_purchase(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/purchases/",
            {"supplier": str(self.supplier.id), "items": [{"product": str(self.product.id), "qty": 20, "buy_price": 13500}]},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["total"], 270000)
        self.assertEqual(body["supplier_name"], "UD Makmur")
        self.assertEqual(body["items"][0]["product_name"], "Gula 1kg")
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 21)

    def test_cashier_cannot_record_purchase(self):
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(
            "/api/v1/purchases/",
            {"items": [{"product": str(self.product.id), "qty": 1, "buy_price": 1}]},
            format="json",
        )

        self.assertEqual(response.status_code, 403)
        self.assertFalse(SupplierPurchase.objects.exists())

    def test_purchase_needs_items(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/purchases/", {"supplier": str(self.supplier.id), "items": []}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("items", response.json()["errors"])
