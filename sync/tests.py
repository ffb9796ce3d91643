import datetime
import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from common.utils import emit_change
from sync.models import ChangeEvent


class ChangeFeedEnvelopeTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="sync-user",
            password="pass1234",
            role="cashier",
        )

    def test_unauthenticated_error_uses_standard_envelope(self):
        response = self.client.get("/api/v1/changes/")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")
        self.assertIn("message", response.json())
        self.assertIn("errors", response.json())
        self.assertEqual(response.json()["status"], 401)

    def test_negative_cursor_uses_validation_envelope(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.get("/api/v1/changes/", {"since": -1})

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "validation_error")
        self.assertEqual(payload["message"], "Validation failed.")
        self.assertIn("since", payload["errors"])


class ChangeFeedTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="feed-user", password="pass1234", role="cashier")
        self.client.force_authenticate(user=self.user)

    def test_cursor_pages_through_events_in_order(self):
        events = [emit_change("product", f"p-{index}", "upsert", {"index": index}) for index in range(5)]

        first = self.client.get("/api/v1/changes/", {"limit": 3}).json()
        second = self.client.get("/api/v1/changes/", {"since": first["cursor"], "limit": 3}).json()

        self.assertEqual([row["entity_id"] for row in first["results"]], ["p-0", "p-1", "p-2"])
        self.assertTrue(first["has_more"])
        self.assertEqual(first["cursor"], events[2].id)
        self.assertEqual([row["entity_id"] for row in second["results"]], ["p-3", "p-4"])
        self.assertFalse(second["has_more"])

    def test_empty_feed_keeps_cursor(self):
        response = self.client.get("/api/v1/changes/", {"since": 42}).json()

        self.assertEqual(response, {"cursor": 42, "has_more": False, "results": []})

    def test_entity_filter(self):
        emit_change("product", "p-1", "upsert")
        emit_change("shift", "s-1", "upsert")

        response = self.client.get("/api/v1/changes/", {"entity": "shift"}).json()

        self.assertEqual([row["entity"] for row in response["results"]], ["shift"])

    def test_payload_is_made_json_safe(self):
        ref = uuid.uuid4()
        event = emit_change(
            "transaction",
            ref,
            "upsert",
            {"id": ref, "rate": Decimal("11.50"), "at": datetime.date(2026, 1, 2), "tags": ("a", "b")},
        )

        event.refresh_from_db()
        self.assertEqual(event.entity_id, str(ref))
        self.assertEqual(event.payload, {"id": str(ref), "rate": "11.50", "at": "2026-01-02", "tags": ["a", "b"]})
        self.assertEqual(ChangeEvent.objects.count(), 1)
