from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from common.permissions import get_user_role, user_has_capability
from core.models import AuditLog, StoreProfile
from inventory.models import Product
from sales.models import Shift, Transaction


class RolePermissionCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.cashier = self.user_model.objects.create_user(
            username="cashier-core",
            password="pass1234",
            role="cashier",
        )
        self.admin = self.user_model.objects.create_user(
            username="admin-core",
            password="pass1234",
            role="admin",
        )

    def test_cashier_cannot_manage_users_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.cashier)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(
                "/api/v1/admin/users/",
                {"username": "new-cashier", "password": "s3cure-pass!", "role": "cashier"},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_can_create_cashier(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post(
            "/api/v1/admin/users/",
            {"username": "new-cashier", "password": "s3cure-pass!", "role": "cashier"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = self.user_model.objects.get(username="new-cashier")
        self.assertEqual(created.role, "cashier")
        self.assertTrue(created.check_password("s3cure-pass!"))
        self.assertNotIn("password", response.json())

    def test_deleting_user_deactivates(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/admin/users/{self.cashier.id}/")

        self.assertEqual(response.status_code, 204)
        self.cashier.refresh_from_db()
        self.assertFalse(self.cashier.is_active)

    def test_capability_matrix(self):
        self.assertTrue(user_has_capability(self.cashier, "pos.sell"))
        self.assertFalse(user_has_capability(self.cashier, "reports.view"))
        self.assertTrue(user_has_capability(self.admin, "transaction.refund"))
        self.assertFalse(user_has_capability(self.admin, "unknown.capability"))

    def test_superuser_is_treated_as_admin(self):
        root = self.user_model.objects.create_superuser(username="root", password="pass1234", email="root@example.com")

        self.assertEqual(get_user_role(root), "admin")
        self.assertTrue(user_has_capability(root, "cashbook.manage"))


class StoreProfileTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.cashier = self.user_model.objects.create_user(username="sp-cashier", password="pass1234", role="cashier")
        self.admin = self.user_model.objects.create_user(username="sp-admin", password="pass1234", role="admin")

    @override_settings(POS_STORE_NAME="Toko Maju", POS_TAX_RATE=11)
    def test_current_profile_is_seeded_from_settings(self):
        profile = StoreProfile.current()

        self.assertEqual(profile.name, "Toko Maju")
        self.assertEqual(profile.tax_rate, Decimal("11"))
        self.assertEqual(StoreProfile.current().pk, profile.pk)
        self.assertEqual(StoreProfile.objects.count(), 1)

    def test_cashier_reads_admin_updates(self):
        self.client.force_authenticate(user=self.cashier)
        self.assertEqual(self.client.get("/api/v1/store/").status_code, 200)
        self.assertEqual(self.client.patch("/api/v1/store/", {"tax_rate": "10"}, format="json").status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.patch("/api/v1/store/", {"tax_rate": "10.00"}, format="json", HTTP_X_REQUEST_ID="req-store")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(StoreProfile.current().tax_rate, Decimal("10.00"))
        self.assertTrue(AuditLog.objects.filter(action="store.update", request_id="req-store").exists())

    def test_tax_rate_above_hundred_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch("/api/v1/store/", {"tax_rate": "150"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("tax_rate", response.json()["errors"])


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(
            username="audit-admin",
            password="pass1234",
            role="admin",
        )

    def test_customer_create_writes_audit_log(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.post(
            "/api/v1/customers/",
            {"name": "Bu Siti", "phone": "0812"},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(res.status_code, 201)
        self.assertTrue(AuditLog.objects.filter(action="customer.create", entity="customer", request_id="req-123").exists())

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_logs_filter_by_action(self):
        self.client.force_authenticate(user=self.admin)
        AuditLog.objects.create(action="shift.open", entity="shift", actor=self.admin)
        AuditLog.objects.create(action="shift.close", entity="shift", actor=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"action": "shift.open"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["action"] for row in response.json()["results"]], ["shift.open"])


class HealthTests(TestCase):
    def test_health_endpoints_are_public(self):
        client = APIClient()

        health = client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="probe-1")
        ready = client.get("/api/v1/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json()["request_id"], "probe-1")
        self.assertEqual(health["X-Request-ID"], "probe-1")
        self.assertEqual(ready.json()["status"], "ready")


class SeedDemoDataTests(TestCase):
    def test_seed_is_idempotent(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        self.assertEqual(Product.objects.count(), 6)
        self.assertEqual(Transaction.objects.count(), 1)
        self.assertEqual(Shift.objects.filter(closed_at__isnull=True).count(), 1)
        self.assertEqual(Product.objects.get(barcode="8990001000011").stock, 19)
