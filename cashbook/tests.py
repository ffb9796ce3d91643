import datetime

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from cashbook.models import CashBookEntry
from cashbook.services import add_manual_entry, cash_balance, record_entry, summarize
from common.exceptions import ErrorCategory
from core.models import AuditLog
from sync.models import ChangeEvent


class CashBookServiceTests(TestCase):
    def test_summary_and_balance(self):
        record_entry(type=CashBookEntry.Type.IN, source=CashBookEntry.Source.TRANSACTION, amount=50000)
        record_entry(type=CashBookEntry.Type.IN, source=CashBookEntry.Source.MANUAL, amount=10000)
        record_entry(type=CashBookEntry.Type.OUT, source=CashBookEntry.Source.PURCHASE, amount=35000)

        summary = summarize()

        self.assertEqual(summary.total_income, 60000)
        self.assertEqual(summary.total_expense, 35000)
        self.assertEqual(summary.balance, 25000)
        self.assertEqual(cash_balance(), 25000)

    def test_empty_ledger_balances_to_zero(self):
        self.assertEqual(summarize().as_dict(), {"total_income": 0, "total_expense": 0, "balance": 0})

    def test_entries_feed_the_change_log(self):
        entry = record_entry(type=CashBookEntry.Type.IN, source=CashBookEntry.Source.MANUAL, amount=1)

        event = ChangeEvent.objects.get(entity="cash_book")
        self.assertEqual(event.entity_id, str(entry.id))
        self.assertEqual(event.payload["amount"], 1)

    def test_manual_entry_validation(self):
        self.assertEqual(add_manual_entry(type="in", amount=0, description="x").category, ErrorCategory.VALIDATION)
        self.assertEqual(add_manual_entry(type="sideways", amount=10, description="x").code, "invalid_entry_type")
        self.assertFalse(CashBookEntry.objects.exists())


class CashBookApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.cashier = self.user_model.objects.create_user(username="cb-cashier", password="pass1234", role="cashier")
        self.admin = self.user_model.objects.create_user(username="cb-admin", password="pass1234", role="admin")

    def test_admin_adds_manual_expense(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/cashbook/",
            {"type": "out", "amount": 20000, "description": "Listrik"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["source"], "manual")
        self.assertEqual(body["created_by"], str(self.admin.id))
        self.assertTrue(AuditLog.objects.filter(action="cashbook.create", entity_id=body["id"]).exists())
        self.assertEqual(self.client.get("/api/v1/cashbook/balance/").json(), {"balance": -20000})

    def test_amount_must_be_positive(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/cashbook/", {"type": "in", "amount": 0, "description": "Modal"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("amount", response.json()["errors"])

    def test_ledger_is_append_only(self):
        entry = record_entry(type=CashBookEntry.Type.IN, source=CashBookEntry.Source.MANUAL, amount=500)
        self.client.force_authenticate(user=self.admin)

        self.assertEqual(self.client.patch(f"/api/v1/cashbook/{entry.id}/", {"amount": 1}, format="json").status_code, 405)
        self.assertEqual(self.client.delete(f"/api/v1/cashbook/{entry.id}/").status_code, 405)

    def test_cashier_has_no_access(self):
        self.client.force_authenticate(user=self.cashier)

        self.assertEqual(self.client.get("/api/v1/cashbook/").status_code, 403)

    def test_summary_filters_by_source_and_date(self):
        record_entry(type=CashBookEntry.Type.IN, source=CashBookEntry.Source.TRANSACTION, amount=30000)
        record_entry(type=CashBookEntry.Type.OUT, source=CashBookEntry.Source.MANUAL, amount=5000)
        old = record_entry(type=CashBookEntry.Type.IN, source=CashBookEntry.Source.TRANSACTION, amount=99000)
        CashBookEntry.objects.filter(id=old.id).update(created_at=timezone.now() - datetime.timedelta(days=40))
        self.client.force_authenticate(user=self.admin)

        by_source = self.client.get("/api/v1/cashbook/summary/", {"source": "transaction"}).json()
        today = timezone.localdate()
        recent = self.client.get(
            "/api/v1/cashbook/summary/",
            {"date_from": (today - datetime.timedelta(days=7)).isoformat(), "date_to": (today + datetime.timedelta(days=1)).isoformat()},
        ).json()

        self.assertEqual(by_source, {"total_income": 129000, "total_expense": 0, "balance": 129000})
        self.assertEqual(recent, {"total_income": 30000, "total_expense": 5000, "balance": 25000})

    def test_half_open_date_range_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/cashbook/", {"date_to": "2026-01-31"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("date_range", response.json()["errors"])
