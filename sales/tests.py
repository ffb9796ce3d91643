import datetime
from decimal import Decimal
from unittest.mock import patch

from asgiref.sync import async_to_sync
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.db.models.query import QuerySet
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from cashbook.models import CashBookEntry
from common.exceptions import DomainError, ErrorCategory
from common.utils import DateRange
from core.models import StoreProfile
from inventory.models import InventoryLog, Product
from sales.models import Shift, Transaction, TransactionItem, next_invoice_number
from sales.pricing import Cart, Fixed, Percent, ProductSnapshot, make_discount, to_money
from sales.reports import (
    ItemRecord,
    SaleRecord,
    daily_sales,
    get_daily_sales,
    get_payment_breakdown,
    get_summary,
    get_top_products,
    load_settled_sales,
    payment_breakdown,
    summarize,
    top_products,
)
from sales.settlement import PaymentInfo, SettlementLine, SettlementRequest, refund_transaction, settle
from sales.shifts import aget_active_shift, close_shift, get_active_shift, open_shift, shift_report
from sync.models import ChangeEvent


def _snapshot(pid, price, stock=100, name=None):
    return ProductSnapshot(id=pid, name=name or f"Product {pid}", price=price, stock=stock)


class CartPricingTests(SimpleTestCase):
    def test_two_plain_lines_add_up(self):
        cart = Cart()
        cart.add_item(_snapshot("a", 10000), 2)
        cart.add_item(_snapshot("b", 15000), 1)

        totals = cart.totals()
        self.assertEqual(totals.subtotal, 35000)
        self.assertEqual(totals.items_discount, 0)
        self.assertEqual(totals.cart_discount, 0)
        self.assertEqual(totals.tax, 0)
        self.assertEqual(totals.total, 35000)
        self.assertEqual(totals.item_count, 3)

    def test_cart_percent_discount_uses_post_item_discount_base(self):
        cart = Cart()
        cart.add_item(_snapshot("a", 100000), 1)
        cart.set_item_discount("a", 5000, "fixed")
        cart.set_cart_discount(10, "percent")

        self.assertEqual(cart.items_discount(), 5000)
        self.assertEqual(cart.cart_discount(), 9500)
        self.assertEqual(cart.total(), 85500)

    def test_total_identity_holds_for_mixed_discounts_and_tax(self):
        cases = [
            ("fixed", 0, "fixed", 0, Decimal("0")),
            ("percent", Decimal("12.5"), "fixed", 3000, Decimal("11")),
            ("fixed", 700, "percent", Decimal("33.33"), Decimal("10")),
            ("percent", 100, "percent", 50, Decimal("7.5")),
        ]
        for item_kind, item_value, cart_kind, cart_value, tax_rate in cases:
            with self.subTest(item_kind=item_kind, cart_kind=cart_kind, tax_rate=tax_rate):
                cart = Cart(tax_rate=tax_rate)
                cart.add_item(_snapshot("a", 12345), 3)
                cart.add_item(_snapshot("b", 999), 7)
                cart.set_item_discount("a", item_value, item_kind)
                cart.set_cart_discount(cart_value, cart_kind)

                self.assertEqual(
                    cart.total(),
                    cart.subtotal() - cart.items_discount() - cart.cart_discount() + cart.tax(),
                )
                self.assertGreaterEqual(cart.total(), 0)

    def test_tax_applies_after_all_discounts(self):
        cart = Cart(tax_rate=Decimal("11"))
        cart.add_item(_snapshot("a", 10000), 1)
        cart.set_cart_discount(1000)

        self.assertEqual(cart.tax(), 990)
        self.assertEqual(cart.total(), 9990)

    def test_fixed_line_discount_is_per_unit_and_clamped(self):
        cart = Cart()
        cart.add_item(_snapshot("a", 1000), 3)
        cart.set_item_discount("a", 200)
        self.assertEqual(cart.items_discount(), 600)

        cart.set_item_discount("a", 5000)
        self.assertEqual(cart.items_discount(), 3000)
        self.assertEqual(cart.total(), 0)

    def test_adding_same_product_merges_quantity(self):
        cart = Cart()
        cart.add_item(_snapshot("a", 1000), 1)
        cart.add_item(_snapshot("a", 1000), 2)

        self.assertEqual(len(cart.lines), 1)
        self.assertEqual(cart.lines[0].quantity, 3)

    def test_zero_quantity_removes_line(self):
        cart = Cart()
        cart.add_item(_snapshot("a", 1000), 2)

        self.assertTrue(cart.update_quantity("a", 0))
        self.assertTrue(cart.is_empty)
        self.assertFalse(cart.update_quantity("a", 0))

    def test_adding_negative_quantity_to_existing_line_drops_it(self):
        cart = Cart()
        cart.add_item(_snapshot("a", 1000), 2)
        cart.add_item(_snapshot("b", 500), 1)

        self.assertTrue(cart.add_item(_snapshot("a", 1000), -2))
        self.assertEqual([line.product_id for line in cart.lines], ["b"])
        self.assertFalse(cart.add_item(_snapshot("c", 700), 0))
        self.assertEqual(len(cart.lines), 1)

    def test_unknown_product_is_ignored(self):
        cart = Cart()
        cart.add_item(_snapshot("a", 1000), 1)

        self.assertFalse(cart.update_quantity("missing", 5))
        self.assertFalse(cart.remove_item("missing"))
        self.assertFalse(cart.set_item_discount("missing", 100))
        self.assertEqual(cart.subtotal(), 1000)

    def test_exceeds_stock_is_reported_not_enforced(self):
        cart = Cart()
        self.assertTrue(cart.add_item(_snapshot("a", 1000, stock=1), 2))

        self.assertTrue(cart.lines[0].exceeds_stock)
        self.assertEqual(cart.subtotal(), 2000)

    def test_clear_resets_cart(self):
        cart = Cart()
        cart.add_item(_snapshot("a", 1000), 1)
        cart.set_customer("c-1")
        cart.set_cart_discount(10, "percent")
        cart.set_notes("bag")

        cart.clear()

        self.assertTrue(cart.is_empty)
        self.assertIsNone(cart.customer_id)
        self.assertEqual(cart.cart_discount(), 0)
        self.assertEqual(cart.notes, "")

    def test_invalid_discounts_are_rejected_without_changing_the_cart(self):
        cart = Cart()
        cart.add_item(_snapshot("a", 1000), 2)
        cart.set_item_discount("a", 100, "fixed")
        cart.set_cart_discount(10, "percent")

        self.assertFalse(cart.set_item_discount("a", 150, "percent"))
        self.assertFalse(cart.set_item_discount("a", Decimal("5.7"), "fixed"))
        self.assertFalse(cart.set_item_discount("a", 10, "bogo"))
        self.assertFalse(cart.set_cart_discount(-5, "fixed"))
        self.assertFalse(cart.set_cart_discount("abc", "percent"))

        self.assertEqual(cart.lines[0].discount, Fixed(100))
        self.assertEqual(cart.discount, Percent(Decimal("10")))
        self.assertEqual(cart.total(), 1620)

    def test_make_discount(self):
        self.assertEqual(make_discount("percent", "12.5"), Percent(Decimal("12.5")))
        self.assertEqual(make_discount("fixed", Decimal("500.00")), Fixed(500))
        self.assertIsNone(make_discount("percent", 101))
        self.assertIsNone(make_discount("fixed", -1))
        self.assertIsNone(make_discount("fixed", 5.7))
        self.assertIsNone(make_discount("bogo", 1))
        with self.assertRaises(ValueError):
            Percent(Decimal("101"))

    def test_to_money_rounds_half_up(self):
        self.assertEqual(to_money(Decimal("2.5")), 3)
        self.assertEqual(to_money(Decimal("2.49")), 2)


class SalesFixtureMixin:
    def setUp(self):
        cache.clear()
        self.user_model = get_user_model()
        self.cashier = self.user_model.objects.create_user(username="kasir-1", password="pass1234", role="cashier")
        self.other_cashier = self.user_model.objects.create_user(username="kasir-2", password="pass1234", role="cashier")
        self.admin = self.user_model.objects.create_user(username="owner", password="pass1234", role="admin")
        StoreProfile.objects.create(name="Toko Test", address="Jl. Pasar 1", phone="0800", tax_rate=Decimal("0"))

        self.rice = Product.objects.create(name="Beras 5kg", sell_price=10000, buy_price=8000, stock=10)
        self.oil = Product.objects.create(name="Minyak 1L", sell_price=15000, buy_price=12000, stock=5)
        self.sugar = Product.objects.create(name="Gula 1kg", sell_price=100000, buy_price=90000, stock=3)

    def _cart(self, *lines, tax_rate=Decimal("0")):
        cart = Cart(tax_rate=tax_rate)
        for product, quantity in lines:
            cart.add_item(ProductSnapshot.from_model(product), quantity)
        return cart

    def _request(self, cart, shift, paid_amount=None, method="cash", cashier=None):
        payment = PaymentInfo(method=method, paid_amount=cart.total() if paid_amount is None else paid_amount)
        return SettlementRequest.from_cart(cart, payment, shift_id=shift.id, cashier=cashier or self.cashier)


class ShiftTests(SalesFixtureMixin, TestCase):
    def test_open_shift_records_starting_cash(self):
        shift = open_shift(self.cashier, 500000)

        self.assertIsInstance(shift, Shift)
        self.assertTrue(shift.is_active)
        self.assertEqual(shift.starting_cash, 500000)
        self.assertEqual(get_active_shift(self.cashier), shift)
        self.assertTrue(ChangeEvent.objects.filter(entity="shift", entity_id=str(shift.id)).exists())

    def test_second_open_shift_is_rejected_and_original_untouched(self):
        original = open_shift(self.cashier, 500000, "morning")

        result = open_shift(self.cashier, 100)

        self.assertIsInstance(result, DomainError)
        self.assertEqual(result.code, "shift_already_open")
        self.assertEqual(result.category, ErrorCategory.CONFLICT)
        self.assertEqual(Shift.objects.filter(cashier=self.cashier).count(), 1)
        original.refresh_from_db()
        self.assertEqual(original.starting_cash, 500000)
        self.assertEqual(original.notes, "morning")
        self.assertIsNone(original.closed_at)

    def test_double_open_that_passes_the_precheck_hits_the_unique_index(self):
        original = open_shift(self.cashier, 1000)

        with patch.object(QuerySet, "exists", return_value=False):
            result = open_shift(self.cashier, 2000)

        self.assertIsInstance(result, DomainError)
        self.assertEqual(result.code, "shift_already_open")
        self.assertEqual(list(Shift.objects.filter(cashier=self.cashier, closed_at__isnull=True)), [original])

    def test_each_cashier_gets_their_own_shift(self):
        open_shift(self.cashier, 0)

        self.assertIsInstance(open_shift(self.other_cashier, 0), Shift)

    def test_negative_starting_cash_is_rejected(self):
        result = open_shift(self.cashier, -1)

        self.assertEqual(result.category, ErrorCategory.VALIDATION)
        self.assertFalse(Shift.objects.exists())

    def test_close_shift_reconciles_cash(self):
        shift = open_shift(self.cashier, 500000)
        sale = settle(self._request(self._cart((self.rice, 2)), shift, paid_amount=50000))
        self.assertIsInstance(sale, Transaction)

        result = close_shift(shift.id, 515000)

        self.assertEqual(result.expected_cash, 520000)
        self.assertEqual(result.difference, -5000)
        shift.refresh_from_db()
        self.assertFalse(shift.is_active)
        self.assertEqual(shift.cash_difference, -5000)

    def test_open_settle_close_with_exact_cash_has_no_difference(self):
        shift = open_shift(self.cashier, 500000)
        cart = self._cart((self.sugar, 1))
        cart.set_item_discount(str(self.sugar.id), 5000)
        cart.set_cart_discount(10, "percent")
        sale = settle(self._request(cart, shift, paid_amount=100000))
        self.assertEqual(sale.total, 85500)

        result = close_shift(shift.id, 585500)

        self.assertEqual(result.expected_cash, 585500)
        self.assertEqual(result.difference, 0)

    def test_closing_twice_is_a_conflict(self):
        shift = open_shift(self.cashier, 0)
        close_shift(shift.id, 0)

        result = close_shift(shift.id, 0)

        self.assertEqual(result.code, "shift_not_open")
        self.assertEqual(result.category, ErrorCategory.CONFLICT)

    def test_close_unknown_shift_is_not_found(self):
        result = close_shift("00000000-0000-0000-0000-000000000000", 0)

        self.assertEqual(result.category, ErrorCategory.NOT_FOUND)

    def test_cashier_can_reopen_after_closing(self):
        shift = open_shift(self.cashier, 0)
        close_shift(shift.id, 0)

        self.assertIsInstance(open_shift(self.cashier, 1000), Shift)

    def test_shift_report_splits_payment_methods(self):
        shift = open_shift(self.cashier, 0)
        settle(self._request(self._cart((self.rice, 1)), shift))
        settle(self._request(self._cart((self.oil, 1)), shift, method="qris"))

        report = shift_report(shift)

        self.assertEqual(report["payment_methods"]["cash"], {"count": 1, "amount": 10000})
        self.assertEqual(report["payment_methods"]["qris"], {"count": 1, "amount": 15000})
        self.assertEqual(report["payment_methods"]["bank"], {"count": 0, "amount": 0})
        self.assertEqual(report["expected_cash"], 25000)

    def test_async_active_shift_lookup(self):
        shift = open_shift(self.cashier, 0)

        self.assertEqual(async_to_sync(aget_active_shift)(self.cashier), shift)


class SettlementTests(SalesFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.shift = open_shift(self.cashier, 0)

    def test_cash_settlement_persists_everything(self):
        cart = self._cart((self.rice, 2), (self.oil, 1))

        sale = settle(self._request(cart, self.shift, paid_amount=50000))

        self.assertIsInstance(sale, Transaction)
        self.assertEqual(sale.subtotal, 35000)
        self.assertEqual(sale.total, 35000)
        self.assertEqual(sale.change_amount, 15000)
        self.assertEqual(sale.status, Transaction.Status.SUCCESS)
        self.assertRegex(sale.invoice_number, r"^INV-\d{8}-0001$")
        self.assertEqual([item.product_name for item in sale.items.all()], ["Beras 5kg", "Minyak 1L"])

        self.rice.refresh_from_db()
        self.oil.refresh_from_db()
        self.assertEqual(self.rice.stock, 8)
        self.assertEqual(self.oil.stock, 4)
        self.assertEqual(InventoryLog.objects.filter(reference_id=sale.id, type=InventoryLog.Type.OUT).count(), 2)

        entry = CashBookEntry.objects.get(reference_id=sale.id)
        self.assertEqual(entry.type, CashBookEntry.Type.IN)
        self.assertEqual(entry.source, CashBookEntry.Source.TRANSACTION)
        self.assertEqual(entry.amount, 35000)
        self.assertTrue(ChangeEvent.objects.filter(entity="transaction", entity_id=str(sale.id)).exists())

    def test_shift_totals_track_settlements(self):
        totals = []
        for product, quantity in [(self.rice, 1), (self.oil, 2), (self.rice, 3)]:
            sale = settle(self._request(self._cart((product, quantity)), self.shift))
            totals.append(sale.total)

        self.shift.refresh_from_db()
        self.assertEqual(self.shift.total_transactions, 3)
        self.assertEqual(self.shift.total_sales, sum(totals))

    def test_invoice_numbers_increase_within_a_day(self):
        first = settle(self._request(self._cart((self.rice, 1)), self.shift))
        second = settle(self._request(self._cart((self.rice, 1)), self.shift))

        self.assertTrue(first.invoice_number.endswith("-0001"))
        self.assertTrue(second.invoice_number.endswith("-0002"))

    def test_next_invoice_number_uses_store_day(self):
        with override_settings(POS_STORE_TIMEZONE="Asia/Jakarta", POS_INVOICE_PREFIX="TK"):
            late_utc = datetime.datetime(2026, 3, 1, 20, 0, tzinfo=datetime.timezone.utc)
            self.assertEqual(next_invoice_number(late_utc), "TK-20260302-0001")

    def test_insufficient_stock_rolls_back_every_line(self):
        cart = self._cart((self.rice, 2), (self.oil, 6))

        result = settle(self._request(cart, self.shift))

        self.assertEqual(result.code, "insufficient_stock")
        self.assertEqual(result.category, ErrorCategory.CONFLICT)
        self.rice.refresh_from_db()
        self.oil.refresh_from_db()
        self.assertEqual(self.rice.stock, 10)
        self.assertEqual(self.oil.stock, 5)
        self.assertFalse(Transaction.objects.exists())
        self.assertFalse(TransactionItem.objects.exists())
        self.assertFalse(CashBookEntry.objects.exists())
        self.shift.refresh_from_db()
        self.assertEqual(self.shift.total_transactions, 0)

    def test_closed_shift_rejects_settlement(self):
        close_shift(self.shift.id, 0)

        result = settle(self._request(self._cart((self.rice, 1)), self.shift))

        self.assertEqual(result.code, "shift_not_open")
        self.assertEqual(result.category, ErrorCategory.CONFLICT)
        self.assertFalse(Transaction.objects.exists())
        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 10)

    def test_other_cashiers_shift_is_rejected(self):
        result = settle(self._request(self._cart((self.rice, 1)), self.shift, cashier=self.other_cashier))

        self.assertEqual(result.code, "shift_not_owned")
        self.assertEqual(result.category, ErrorCategory.PERMISSION)

    def test_insufficient_cash_payment_is_rejected(self):
        result = settle(self._request(self._cart((self.rice, 2)), self.shift, paid_amount=19999))

        self.assertEqual(result.code, "insufficient_payment")
        self.assertEqual(result.category, ErrorCategory.VALIDATION)
        self.assertFalse(Transaction.objects.exists())

    def test_non_cash_payment_gives_no_change(self):
        sale = settle(self._request(self._cart((self.rice, 1)), self.shift, paid_amount=10000, method="qris"))

        self.assertEqual(sale.change_amount, 0)

    def test_tampered_total_is_an_integrity_error(self):
        request = SettlementRequest(
            cashier=self.cashier,
            shift_id=self.shift.id,
            lines=(SettlementLine(str(self.rice.id), self.rice.name, 1, 10000, 0, 10000),),
            subtotal=10000,
            discount=0,
            tax=0,
            total=9000,
            payment=PaymentInfo("cash", 10000),
        )

        result = settle(request)

        self.assertEqual(result.code, "total_mismatch")
        self.assertEqual(result.category, ErrorCategory.INTEGRITY)

    def test_tampered_line_subtotal_is_an_integrity_error(self):
        request = SettlementRequest(
            cashier=self.cashier,
            shift_id=self.shift.id,
            lines=(SettlementLine(str(self.rice.id), self.rice.name, 2, 10000, 0, 10000),),
            subtotal=10000,
            discount=0,
            tax=0,
            total=10000,
            payment=PaymentInfo("cash", 10000),
        )

        self.assertEqual(settle(request).code, "line_subtotal_mismatch")

    def test_wrong_change_amount_is_an_integrity_error(self):
        cart = self._cart((self.rice, 1))
        request = SettlementRequest.from_cart(
            cart, PaymentInfo("cash", 20000, change_amount=5000), shift_id=self.shift.id, cashier=self.cashier
        )

        self.assertEqual(settle(request).code, "change_mismatch")

    def test_empty_cart_is_rejected(self):
        self.assertEqual(settle(self._request(Cart(), self.shift)).code, "empty_cart")

    def test_unknown_customer_is_not_found(self):
        cart = self._cart((self.rice, 1))
        cart.set_customer("11111111-1111-1111-1111-111111111111")

        result = settle(self._request(cart, self.shift))

        self.assertEqual(result.code, "customer_not_found")

    def test_shift_closed_after_precheck_rolls_back(self):
        cart = self._cart((self.rice, 2))
        close_shift(self.shift.id, 0)

        with patch("sales.settlement._precheck", return_value=None):
            result = settle(self._request(cart, self.shift))

        self.assertIsInstance(result, DomainError)
        self.assertEqual(result.code, "shift_not_open")
        self.assertFalse(Transaction.objects.exists())
        self.assertFalse(CashBookEntry.objects.exists())
        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 10)

    def test_deleted_product_keeps_snapshot_without_stock_change(self):
        cart = self._cart((self.rice, 1))
        self.rice.delete()

        with self.assertLogs("pos.settlement", level="WARNING") as cm:
            sale = settle(self._request(cart, self.shift))

        self.assertTrue(any("settlement_product_missing" in message for message in cm.output))

        item = sale.items.get()
        self.assertIsNone(item.product_id)
        self.assertEqual(item.product_name, "Beras 5kg")

    def test_zero_total_sale_books_no_cash(self):
        cart = self._cart((self.rice, 1))
        cart.set_cart_discount(100, "percent")

        sale = settle(self._request(cart, self.shift))

        self.assertEqual(sale.total, 0)
        self.assertFalse(CashBookEntry.objects.exists())


class RefundTests(SalesFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        shift = open_shift(self.cashier, 0)
        self.sale = settle(self._request(self._cart((self.rice, 2)), shift))

    def test_refund_flips_status_once(self):
        result = refund_transaction(self.sale.id, self.admin, restock=False, reverse_cashbook=False)

        self.assertEqual(result.status, Transaction.Status.REFUND)
        self.assertEqual(result.refunded_by, self.admin)
        self.assertIsNotNone(result.refunded_at)
        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 8)

        again = refund_transaction(self.sale.id, self.admin)
        self.assertEqual(again.code, "transaction_not_refundable")

    def test_refund_can_restock_and_reverse_cash(self):
        refund_transaction(self.sale.id, self.admin, restock=True, reverse_cashbook=True)

        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 10)
        reversal = CashBookEntry.objects.get(reference_id=self.sale.id, type=CashBookEntry.Type.OUT)
        self.assertEqual(reversal.amount, 20000)

    @override_settings(POS_REFUND_RESTOCK=True, POS_REFUND_CASHBOOK_REVERSAL=False)
    def test_refund_defaults_come_from_settings(self):
        refund_transaction(self.sale.id, self.admin)

        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 10)
        self.assertFalse(CashBookEntry.objects.filter(type=CashBookEntry.Type.OUT).exists())

    def test_cashier_cannot_refund(self):
        result = refund_transaction(self.sale.id, self.cashier)

        self.assertEqual(result.category, ErrorCategory.PERMISSION)
        self.sale.refresh_from_db()
        self.assertEqual(self.sale.status, Transaction.Status.SUCCESS)

    def test_refund_does_not_touch_shift_totals(self):
        refund_transaction(self.sale.id, self.admin)

        self.sale.shift.refresh_from_db()
        self.assertEqual(self.sale.shift.total_sales, 20000)


@override_settings(POS_STORE_TIMEZONE="Asia/Jakarta")
class ReportAggregationTests(SimpleTestCase):
    def _at(self, day, hour):
        return datetime.datetime(2026, 3, day, hour, 0, tzinfo=datetime.timezone.utc)

    def test_daily_sales_zero_fills_and_buckets_by_store_day(self):
        sales = [
            SaleRecord(self._at(1, 3), 10000, "cash"),
            # 20:00 UTC is already the next day in Jakarta.
            SaleRecord(self._at(1, 20), 5000, "cash"),
        ]

        rows = daily_sales(sales, DateRange(datetime.date(2026, 3, 1), datetime.date(2026, 3, 3)))

        self.assertEqual(
            rows,
            [
                {"date": "2026-03-01", "sales": 10000, "transactions": 1},
                {"date": "2026-03-02", "sales": 5000, "transactions": 1},
                {"date": "2026-03-03", "sales": 0, "transactions": 0},
            ],
        )

    def test_payment_breakdown_shares_by_count(self):
        sales = [
            SaleRecord(self._at(1, 1), 1000, "qris"),
            SaleRecord(self._at(1, 2), 1000, "cash"),
            SaleRecord(self._at(1, 3), 50000, "cash"),
        ]

        rows = payment_breakdown(sales)

        self.assertEqual(rows[0], {"method": "cash", "count": 2, "amount": 51000, "percentage": 67})
        self.assertEqual(rows[1], {"method": "qris", "count": 1, "amount": 1000, "percentage": 33})
        self.assertEqual(payment_breakdown([]), [])

    def test_top_products_by_quantity(self):
        items = [
            ItemRecord("Beras", 2, 20000),
            ItemRecord("Gula", 5, 50000),
            ItemRecord("Beras", 4, 40000),
            ItemRecord("Minyak", 1, 15000),
        ]

        rows = top_products(items, limit=2)

        self.assertEqual(rows, [{"name": "Beras", "qty": 6, "revenue": 60000}, {"name": "Gula", "qty": 5, "revenue": 50000}])

    def test_summary_average(self):
        sales = [SaleRecord(self._at(1, 1), 1000, "cash"), SaleRecord(self._at(1, 2), 2001, "cash")]

        self.assertEqual(summarize(sales), {"total_sales": 3001, "total_transactions": 2, "avg_transaction": 1501})
        self.assertEqual(summarize([]), {"total_sales": 0, "total_transactions": 0, "avg_transaction": 0})


class ReportQueryTests(SalesFixtureMixin, TestCase):
    def test_summary_is_repeatable_and_ignores_refunds(self):
        shift = open_shift(self.cashier, 0)
        settle(self._request(self._cart((self.rice, 1)), shift))
        refunded = settle(self._request(self._cart((self.oil, 1)), shift))
        refund_transaction(refunded.id, self.admin)

        date_range = DateRange.last_days(1)
        first = get_summary(date_range)

        self.assertEqual(first, get_summary(date_range))
        self.assertEqual(first["total_sales"], 10000)
        self.assertEqual(first["total_transactions"], 1)

    def test_sums_are_grouped_per_day_and_method(self):
        shift = open_shift(self.cashier, 0)
        settle(self._request(self._cart((self.rice, 2)), shift))
        settle(self._request(self._cart((self.rice, 1), (self.oil, 1)), shift))
        settle(self._request(self._cart((self.oil, 1)), shift, method="qris"))
        date_range = DateRange.last_days(1)

        records = load_settled_sales(date_range)
        days = get_daily_sales(date_range)
        breakdown = get_payment_breakdown(date_range)
        top = get_top_products(date_range, limit=5)

        self.assertEqual([(row.payment_method, row.count, row.total) for row in records], [("cash", 2, 45000), ("qris", 1, 15000)])
        self.assertEqual(days, [{"date": date_range.end.isoformat(), "sales": 60000, "transactions": 3}])
        self.assertEqual([(row["method"], row["count"], row["percentage"]) for row in breakdown], [("cash", 2, 67), ("qris", 1, 33)])
        self.assertEqual(
            top,
            [{"name": "Beras 5kg", "qty": 3, "revenue": 30000}, {"name": "Minyak 1L", "qty": 2, "revenue": 30000}],
        )


class SalesApiTests(SalesFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def _open_shift(self, user, starting_cash=0):
        self.client.force_authenticate(user=user)
        return self.client.post("/api/v1/shifts/open/", {"starting_cash": starting_cash}, format="json")

    def _checkout(self, **overrides):
        payload = {
            "items": [
                {"product_id": str(self.rice.id), "quantity": 2},
                {"product_id": str(self.oil.id), "quantity": 1},
            ],
            "payment_method": "cash",
            "paid_amount": 50000,
        }
        payload.update(overrides)
        return self.client.post("/api/v1/transactions/checkout/", payload, format="json")

    def test_open_shift_twice_returns_conflict_envelope(self):
        self.assertEqual(self._open_shift(self.cashier, 500000).status_code, 201)

        response = self._open_shift(self.cashier)

        self.assertEqual(response.status_code, 409)
        body = response.json()
        self.assertEqual(body["code"], "shift_already_open")
        self.assertEqual(body["errors"]["category"], "conflict")
        self.assertEqual(body["status"], 409)

    def test_current_shift_is_404_without_open_shift(self):
        self.client.force_authenticate(user=self.cashier)

        self.assertEqual(self.client.get("/api/v1/shifts/current/").status_code, 404)

    def test_checkout_settles_against_active_shift(self):
        shift_id = self._open_shift(self.cashier).json()["id"]

        response = self._checkout()

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["shift"], shift_id)
        self.assertEqual(body["total"], 35000)
        self.assertEqual(body["change_amount"], 15000)
        self.assertEqual(len(body["items"]), 2)
        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 8)

    def test_checkout_without_shift_is_conflict(self):
        self.client.force_authenticate(user=self.cashier)

        response = self._checkout()

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "shift_not_open")

    def test_checkout_cash_requires_paid_amount(self):
        self._open_shift(self.cashier)
        payload = {"items": [{"product_id": str(self.rice.id), "quantity": 1}], "payment_method": "cash"}

        response = self.client.post("/api/v1/transactions/checkout/", payload, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_checkout_over_stock_is_conflict(self):
        self._open_shift(self.cashier)

        response = self._checkout(items=[{"product_id": str(self.oil.id), "quantity": 6}], paid_amount=100000)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "insufficient_stock")

    def test_client_priced_settlement_with_bad_total_is_422(self):
        shift_id = self._open_shift(self.cashier).json()["id"]
        payload = {
            "shift_id": shift_id,
            "items": [
                {
                    "product_id": str(self.rice.id),
                    "product_name": self.rice.name,
                    "quantity": 1,
                    "unit_price": 10000,
                    "subtotal": 10000,
                }
            ],
            "subtotal": 10000,
            "total": 1,
            "payment_method": "cash",
            "paid_amount": 10000,
        }

        response = self.client.post("/api/v1/transactions/", payload, format="json")

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "total_mismatch")

    def test_cart_quote_prices_without_persisting(self):
        self.client.force_authenticate(user=self.cashier)
        payload = {
            "items": [{"product_id": str(self.sugar.id), "quantity": 1, "discount": "5000"}],
            "discount": "10",
            "discount_type": "percent",
        }

        response = self.client.post("/api/v1/cart/quote/", payload, format="json")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["items_discount"], 5000)
        self.assertEqual(body["cart_discount"], 9500)
        self.assertEqual(body["total"], 85500)
        self.assertFalse(Transaction.objects.exists())

    def test_close_shift_returns_reconciliation(self):
        shift_id = self._open_shift(self.cashier, 500000).json()["id"]
        self._checkout()

        response = self.client.post(f"/api/v1/shifts/{shift_id}/close/", {"ending_cash": 535000}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["expected_cash"], 535000)
        self.assertEqual(response.json()["difference"], 0)

    def test_cashier_cannot_close_someone_elses_shift(self):
        shift_id = self._open_shift(self.other_cashier).json()["id"]
        self.client.force_authenticate(user=self.cashier)

        response = self.client.post(f"/api/v1/shifts/{shift_id}/close/", {"ending_cash": 0}, format="json")

        self.assertEqual(response.status_code, 404)

    def test_cashier_sees_only_own_transactions(self):
        self._open_shift(self.other_cashier)
        self._checkout()
        self._open_shift(self.cashier)

        response = self.client.get("/api/v1/transactions/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 0)

    def test_list_filters_reject_malformed_ids(self):
        self.client.force_authenticate(user=self.admin)

        for url, param in [
            ("/api/v1/transactions/", "shift"),
            ("/api/v1/transactions/", "cashier"),
            ("/api/v1/shifts/", "cashier"),
        ]:
            with self.subTest(url=url, param=param):
                response = self.client.get(url, {param: "abc"})

                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["code"], "validation_error")
                self.assertIn(param, response.json()["errors"])

    def test_list_filters_by_shift_and_cashier(self):
        shift_id = self._open_shift(self.cashier).json()["id"]
        self._checkout()
        self.client.force_authenticate(user=self.admin)

        by_shift = self.client.get("/api/v1/transactions/", {"shift": shift_id}).json()
        by_other = self.client.get("/api/v1/transactions/", {"cashier": str(self.other_cashier.id)}).json()
        shifts = self.client.get("/api/v1/shifts/", {"cashier": str(self.cashier.id)}).json()

        self.assertEqual(by_shift["count"], 1)
        self.assertEqual(by_other["count"], 0)
        self.assertEqual([row["id"] for row in shifts["results"]], [shift_id])

    def test_receipt_uses_store_profile_and_snapshots(self):
        self._open_shift(self.cashier)
        sale_id = self._checkout().json()["id"]
        Product.objects.filter(id=self.rice.id).update(name="Renamed")

        response = self.client.get(f"/api/v1/transactions/{sale_id}/receipt/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["store"]["name"], "Toko Test")
        self.assertEqual(body["items"][0]["name"], "Beras 5kg")
        self.assertEqual(body["change_amount"], 15000)

    def test_refund_requires_admin(self):
        self._open_shift(self.cashier)
        sale_id = self._checkout().json()["id"]

        response = self.client.post(f"/api/v1/transactions/{sale_id}/refund/", {}, format="json")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

        self.client.force_authenticate(user=self.admin)
        response = self.client.post(f"/api/v1/transactions/{sale_id}/refund/", {"restock": True}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "refund")
        self.rice.refresh_from_db()
        self.assertEqual(self.rice.stock, 10)

    def test_reports_are_admin_only(self):
        self.client.force_authenticate(user=self.cashier)
        self.assertEqual(self.client.get("/api/v1/reports/summary/").status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.get("/api/v1/reports/summary/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total_transactions"], 0)

    def test_report_rejects_half_open_range(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/reports/daily-sales/", {"date_from": "2026-03-01"})

        self.assertEqual(response.status_code, 400)

    @override_settings(POS_REPORT_MAX_DAYS=31)
    def test_report_rejects_overlong_range(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/reports/summary/", {"date_from": "2026-01-01", "date_to": "2026-02-01"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("date_range", response.json()["errors"])

    def test_daily_sales_csv_export(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get(
            "/api/v1/reports/daily-sales/", {"date_from": "2026-03-01", "date_to": "2026-03-02", "export": "csv"}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        lines = response.content.decode().splitlines()
        self.assertEqual(lines[0], "date,sales,transactions")
        self.assertEqual(len(lines), 3)

    def test_dashboards(self):
        self._open_shift(self.cashier)
        self._checkout()

        cashier_view = self.client.get("/api/v1/dashboard/cashier/").json()
        self.assertEqual(cashier_view["today_sales"], 35000)
        self.assertEqual(len(cashier_view["recent_transactions"]), 1)

        self.client.force_authenticate(user=self.admin)
        admin_view = self.client.get("/api/v1/dashboard/admin/").json()
        self.assertEqual(admin_view["today_sales"], 35000)
        self.assertEqual(admin_view["total_products"], 3)
        self.assertEqual(admin_view["cash_balance"], 35000)
        self.assertEqual(len(admin_view["weekly_sales"]), 7)
