"""Tests for the REST API v1 endpoints."""

import json
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

from config import settings
from tracker.account import Account, AccountStatus
from tracker.account_store import AccountStore
from tracker.audit import AuditAction, AuditLog
from tracker.context import EngineContext
from tracker.line_user import LineMessage, LineUserStore
from tracker.thai_date import format_buddhist_datetime
from web import create_app


class RecordingTransport:

    def __init__(self):
        self.sent = []

    def send(self, recipient_id, messages):
        self.sent.append((recipient_id, messages))

    def reply(self, reply_token, messages):
        pass


class APITestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="api_test_")
        self.transport = RecordingTransport()
        self.context = EngineContext(
            store=AccountStore(str(Path(self.tmpdir) / "accounts.json")),
            transport=self.transport,
            audit_log=AuditLog(str(Path(self.tmpdir) / "audit.json")),
            users=LineUserStore(str(Path(self.tmpdir) / "line_users.json")),
        )
        self.app = create_app(context=self.context, testing=True)
        self.app.config["ADMIN_API_KEY"] = ""
        self.client = self.app.test_client()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _add(self, number, expires_in=timedelta(days=30), **kw):
        self.context.store.add(Account(
            account_number=number,
            license=f"LIC-{number}",
            expire_date_raw=format_buddhist_datetime(datetime.now() + expires_in),
            **kw,
        ))

    def _post(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type="application/json")


class TestAPIAccounts(APITestCase):

    def test_list_accounts_returns_json(self):
        self._add("100001")
        response = self.client.get("/api/v1/accounts")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content_type, "application/json")
        data = response.get_json()
        self.assertEqual(len(data), 1)
        self.assertEqual(data[0]["account_number"], "100001")

    def test_filter_by_status(self):
        self._add("100001")
        self._add("100002", status=AccountStatus.SUSPENDED)
        data = self.client.get("/api/v1/accounts?status=suspended").get_json()
        self.assertEqual([a["account_number"] for a in data], ["100002"])

    def test_invalid_status_filter(self):
        response = self.client.get("/api/v1/accounts?status=bogus")
        self.assertEqual(response.status_code, 400)

    def test_get_account(self):
        self._add("100001")
        response = self.client.get("/api/v1/accounts/100001")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["license"], "LIC-100001")

    def test_get_account_not_found(self):
        response = self.client.get("/api/v1/accounts/999999")
        self.assertEqual(response.status_code, 404)

    def test_expired_accounts(self):
        self._add("100001", expires_in=timedelta(days=-2))
        self._add("100002")
        data = self.client.get("/api/v1/accounts/expired").get_json()
        self.assertEqual([a["account_number"] for a in data], ["100001"])

    def test_history(self):
        self._add("100001")
        self.context.audit_log.log(AuditAction.ACCOUNT_LINK, "100001", "Linked to U1")
        self.context.audit_log.log(AuditAction.ACCOUNT_LINK, "100002", "Linked to U2")
        data = self.client.get("/api/v1/accounts/100001/history").get_json()
        self.assertEqual(len(data), 1)
        self.assertEqual(data[0]["action"], "account_link")

    def test_history_unknown_account(self):
        response = self.client.get("/api/v1/accounts/999999/history")
        self.assertEqual(response.status_code, 404)

    def test_summary(self):
        self._add("100001", recipient_id="U1")
        data = self.client.get("/api/v1/accounts/summary").get_json()
        self.assertEqual(data["total_accounts"], 1)
        self.assertEqual(data["linked_accounts"], 1)


class TestAPIAddAccount(APITestCase):

    def test_add_account(self):
        response = self._post("/api/v1/accounts", {
            "account_number": "123456",
            "license": "LIC-001",
            "expire_date": "31/12/2568 23:59",
            "user": "สมชาย",
        })
        self.assertEqual(response.status_code, 201)
        stored = self.context.store.get("123456")
        self.assertEqual(stored.expire_date_resolved, datetime(2025, 12, 31, 23, 59))
        self.assertEqual(stored.user, "สมชาย")
        entries = self.context.audit_log.filter(action=AuditAction.ACCOUNT_ADD)
        self.assertEqual(len(entries), 1)

    def test_add_account_missing_fields(self):
        response = self._post("/api/v1/accounts", {"account_number": "123456"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.get_json())

    def test_add_account_non_numeric(self):
        response = self._post("/api/v1/accounts", {
            "account_number": "ABC123",
            "license": "LIC-001",
            "expire_date": "31/12/2568",
        })
        self.assertEqual(response.status_code, 400)

    def test_add_account_bad_date(self):
        response = self._post("/api/v1/accounts", {
            "account_number": "123456",
            "license": "LIC-001",
            "expire_date": "2568-12-31",
        })
        self.assertEqual(response.status_code, 400)
        self.assertIsNone(self.context.store.get("123456"))

    def test_add_duplicate_account(self):
        self._add("123456")
        response = self._post("/api/v1/accounts", {
            "account_number": "123456",
            "license": "LIC-002",
            "expire_date": "31/12/2568",
        })
        self.assertEqual(response.status_code, 409)


class TestAPIReconciliation(APITestCase):

    def test_run_reconciliation(self):
        self._add("100001", expires_in=timedelta(days=-1),
                  recipient_id="U1", status=AccountStatus.EXPIRED)
        response = self.client.post("/api/v1/reconciliation/run")
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data["expired_sent"], 1)
        self.assertEqual(len(self.transport.sent), 1)

    def test_run_while_busy_is_conflict(self):
        self.context.job._run_lock.acquire()
        try:
            response = self.client.post("/api/v1/reconciliation/run")
        finally:
            self.context.job._run_lock.release()
        self.assertEqual(response.status_code, 409)


class TestAPIAuth(APITestCase):

    def setUp(self):
        super().setUp()
        self.app.config["ADMIN_API_KEY"] = "secret-key"

    def test_missing_key_rejected(self):
        response = self.client.get("/api/v1/accounts")
        self.assertEqual(response.status_code, 401)

    def test_header_key_accepted(self):
        response = self.client.get("/api/v1/accounts", headers={"X-API-Key": "secret-key"})
        self.assertEqual(response.status_code, 200)

    def test_health_does_not_need_key(self):
        self.assertEqual(self.client.get("/health").status_code, 200)


class TestAPIUsers(APITestCase):

    def _message(self, message_id, user_id, minutes=0):
        return LineMessage(
            message_id=message_id,
            user_id=user_id,
            text=f"text {message_id}",
            timestamp=datetime(2025, 6, 1, 9, 0) + timedelta(minutes=minutes),
        )

    def _seed(self):
        users = self.context.users
        users.follow("U1", {"displayName": "Somchai"})
        users.follow("U2", {"displayName": "Malee"})
        users.follow("U3")
        users.unfollow("U3")
        users.record_message(self._message("m1", "U1", 0))
        users.record_message(self._message("m2", "U2", 1))
        users.record_message(self._message("m3", "U1", 2))

    def test_stats(self):
        self._seed()
        data = self.client.get("/api/v1/users/stats").get_json()
        self.assertEqual(data["total_users"], 3)
        self.assertEqual(data["active_users"], 2)
        self.assertEqual(data["inactive_users"], 1)
        self.assertEqual(data["total_messages"], 3)

    def test_list_users_with_pagination(self):
        self._seed()
        data = self.client.get("/api/v1/users?limit=2").get_json()
        self.assertEqual(len(data["users"]), 2)
        self.assertEqual(data["users"][0]["user_id"], "U1")
        self.assertEqual(data["pagination"], {"total": 3, "limit": 2, "skip": 0, "has_more": True})

        data = self.client.get("/api/v1/users?limit=2&skip=2").get_json()
        self.assertEqual(len(data["users"]), 1)
        self.assertFalse(data["pagination"]["has_more"])

    def test_filter_by_friendship(self):
        self._seed()
        data = self.client.get("/api/v1/users?is_friend=false").get_json()
        self.assertEqual([u["user_id"] for u in data["users"]], ["U3"])
        data = self.client.get("/api/v1/users?is_friend=true").get_json()
        self.assertEqual(data["pagination"]["total"], 2)

    def test_bad_query_values(self):
        for url in ("/api/v1/users?limit=abc", "/api/v1/users?skip=-1",
                    "/api/v1/users?is_friend=maybe", "/api/v1/messages?limit=x"):
            with self.subTest(url=url):
                self.assertEqual(self.client.get(url).status_code, 400)

    def test_get_user(self):
        self._seed()
        data = self.client.get("/api/v1/users/U1").get_json()
        self.assertEqual(data["display_name"], "Somchai")
        self.assertEqual(data["message_count"], 2)
        self.assertEqual(self.client.get("/api/v1/users/U-none").status_code, 404)

    def test_user_messages(self):
        self._seed()
        data = self.client.get("/api/v1/users/U1/messages").get_json()
        self.assertEqual(data["user"]["user_id"], "U1")
        self.assertEqual([m["message_id"] for m in data["messages"]], ["m3", "m1"])
        self.assertEqual(data["count"], 2)
        self.assertEqual(self.client.get("/api/v1/users/U-none/messages").status_code, 404)

    def test_all_messages(self):
        self._seed()
        data = self.client.get("/api/v1/messages?limit=2").get_json()
        self.assertEqual([m["message_id"] for m in data["messages"]], ["m3", "m2"])
        self.assertEqual(data["pagination"]["total"], 3)
        self.assertTrue(data["pagination"]["has_more"])

    def test_registry_not_configured(self):
        self.context.users = None
        self.assertEqual(self.client.get("/api/v1/users").status_code, 503)
        self.assertEqual(self.client.get("/api/v1/messages").status_code, 503)


class TestAPIConfigCheck(APITestCase):

    def test_missing_credentials_warn(self):
        self.context.channel_secret = ""
        with patch.object(settings, "LINE_CHANNEL_ACCESS_TOKEN", ""):
            data = self.client.get("/api/v1/config-check").get_json()
        self.assertFalse(data["has_channel_secret"])
        self.assertFalse(data["has_access_token"])
        self.assertFalse(data["ok"])
        self.assertEqual(len(data["warnings"]), 2)

    def test_short_credentials_warn_without_leaking(self):
        self.context.channel_secret = "short-secret"
        with patch.object(settings, "LINE_CHANNEL_ACCESS_TOKEN", "short-token"):
            response = self.client.get("/api/v1/config-check")
        data = response.get_json()
        self.assertEqual(data["channel_secret_length"], len("short-secret"))
        self.assertEqual(data["access_token_length"], len("short-token"))
        self.assertIn("LINE_CHANNEL_SECRET looks too short", data["warnings"])
        self.assertIn("LINE_CHANNEL_ACCESS_TOKEN looks too short", data["warnings"])
        self.assertNotIn(b"short-secret", response.data)

    def test_good_credentials(self):
        self.context.channel_secret = "s" * 32
        with patch.object(settings, "LINE_CHANNEL_ACCESS_TOKEN", "t" * 172), \
                patch.object(settings, "PORT", 4100):
            data = self.client.get("/api/v1/config-check").get_json()
        self.assertTrue(data["ok"])
        self.assertEqual(data["warnings"], [])
        self.assertEqual(data["port"], 4100)


if __name__ == "__main__":
    unittest.main()
