"""Tests for the LINE webhook endpoint."""

import json
import shutil
import tempfile
import unittest
from pathlib import Path

from tracker.account import Account
from tracker.account_store import AccountStore
from tracker.context import EngineContext
from tracker.errors import TransportError
from tracker.line_user import LineUserStore
from web import create_app
from web.routes.webhook import compute_signature, verify_signature

SECRET = "test-channel-secret"


class FakeLineClient:

    def __init__(self, profile=None, fail_reply=False):
        self.sent = []
        self.replies = []
        self.profile = profile
        self.fail_reply = fail_reply

    def send(self, recipient_id, messages):
        self.sent.append((recipient_id, messages))

    def reply(self, reply_token, messages):
        if self.fail_reply:
            raise TransportError("reply failed", status=400)
        self.replies.append((reply_token, messages))

    def get_profile(self, user_id):
        return self.profile


class TestSignature(unittest.TestCase):

    def test_matching_signature(self):
        body = b'{"events":[]}'
        self.assertTrue(verify_signature(SECRET, body, compute_signature(SECRET, body)))

    def test_tampered_body(self):
        signature = compute_signature(SECRET, b'{"events":[]}')
        self.assertFalse(verify_signature(SECRET, b'{"events":[1]}', signature))

    def test_missing_signature_or_secret(self):
        self.assertFalse(verify_signature(SECRET, b"{}", ""))
        self.assertFalse(verify_signature("", b"{}", "abc"))


class TestWebhook(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="webhook_test_")
        self.transport = FakeLineClient(profile={"displayName": "Somchai"})
        self.context = EngineContext(
            store=AccountStore(str(Path(self.tmpdir) / "accounts.json")),
            transport=self.transport,
            channel_secret=SECRET,
            users=LineUserStore(str(Path(self.tmpdir) / "line_users.json")),
        )
        self.app = create_app(context=self.context, testing=True)
        self.client = self.app.test_client()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _post(self, payload, signature=None):
        body = json.dumps(payload).encode("utf-8")
        if signature is None:
            signature = compute_signature(SECRET, body)
        return self.client.post(
            "/webhook",
            data=body,
            content_type="application/json",
            headers={"X-Line-Signature": signature},
        )

    def _text_event(self, text, user_id="U-sender", reply_token="rt-1", message_id="1"):
        return {
            "type": "message",
            "replyToken": reply_token,
            "source": {"type": "user", "userId": user_id},
            "message": {"type": "text", "id": message_id, "text": text},
            "timestamp": 1748768400000,
        }

    def test_invalid_signature_rejected(self):
        response = self._post({"events": []}, signature="bm90LXZhbGlk")
        self.assertEqual(response.status_code, 401)

    def test_missing_secret_is_server_error(self):
        self.context.channel_secret = ""
        response = self._post({"events": []}, signature="x")
        self.assertEqual(response.status_code, 500)

    def test_no_events(self):
        response = self._post({"events": []})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["message"], "No events")

    def test_text_message_links_account(self):
        self.context.store.add(Account(
            account_number="123456", license="LIC-001", expire_date_raw="31/12/2568 23:59",
        ))
        response = self._post({"events": [self._text_event("my account is 123456")]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["handled"], 1)
        self.assertEqual(self.context.store.get("123456").recipient_id, "U-sender")
        self.assertEqual(len(self.transport.replies), 1)
        self.assertEqual(self.transport.replies[0][0], "rt-1")

    def test_unknown_number_is_ignored(self):
        response = self._post({"events": [self._text_event("999999")]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.transport.replies, [])

    def test_non_text_message_is_ignored(self):
        event = self._text_event("123456")
        event["message"] = {"type": "sticker", "id": "2"}
        response = self._post({"events": [event]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.transport.replies, [])

    def test_follow_sends_welcome(self):
        event = {
            "type": "follow",
            "replyToken": "rt-follow",
            "source": {"type": "user", "userId": "U-new"},
        }
        self._post({"events": [event]})
        self.assertEqual(len(self.transport.replies), 1)
        self.assertIn("Somchai", self.transport.replies[0][1][0]["text"])

    def test_follow_reply_failure_still_acknowledged(self):
        self.transport.fail_reply = True
        event = {
            "type": "follow",
            "replyToken": "rt-follow",
            "source": {"type": "user", "userId": "U-new"},
        }
        response = self._post({"events": [event]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["handled"], 1)

    def test_unfollow_is_acknowledged(self):
        event = {"type": "unfollow", "source": {"type": "user", "userId": "U-gone"}}
        response = self._post({"events": [event]})
        self.assertEqual(response.status_code, 200)

    def test_non_object_payload_rejected(self):
        response = self._post([1])
        self.assertEqual(response.status_code, 400)

    def test_events_must_be_a_list(self):
        response = self._post({"events": "oops"})
        self.assertEqual(response.status_code, 400)

    def test_malformed_event_is_skipped(self):
        response = self._post({"events": [1, "x", self._text_event("hello")]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["handled"], 1)

    def test_event_with_bad_source_is_skipped_quietly(self):
        event = self._text_event("hello")
        event["source"] = "U-sender"
        response = self._post({"events": [event]})
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(self.context.users.get("U-sender"))

    def test_follow_registers_friend(self):
        event = {
            "type": "follow",
            "replyToken": "rt-follow",
            "source": {"type": "user", "userId": "U-new"},
        }
        self._post({"events": [event]})
        user = self.context.users.get("U-new")
        self.assertTrue(user.is_friend)
        self.assertEqual(user.display_name, "Somchai")

    def test_unfollow_marks_user_inactive(self):
        self.context.users.follow("U-gone")
        event = {"type": "unfollow", "source": {"type": "user", "userId": "U-gone"}}
        self._post({"events": [event]})
        self.assertFalse(self.context.users.get("U-gone").is_friend)

    def test_text_messages_are_recorded(self):
        self._post({"events": [self._text_event("hello", message_id="m1")]})
        self._post({"events": [self._text_event("again", message_id="m2")]})

        user = self.context.users.get("U-sender")
        self.assertEqual(user.message_count, 2)
        self.assertEqual(user.display_name, "Somchai")
        messages = self.context.users.messages_for("U-sender")
        self.assertEqual(sorted(m.text for m in messages), ["again", "hello"])
        self.assertEqual(messages[0].reply_token, "rt-1")

    def test_redelivered_message_counted_once(self):
        self._post({"events": [self._text_event("hello", message_id="m1")]})
        self._post({"events": [self._text_event("hello", message_id="m1")]})
        self.assertEqual(self.context.users.get("U-sender").message_count, 1)

    def test_linking_works_without_user_registry(self):
        self.context.users = None
        self.context.store.add(Account(
            account_number="123456", license="LIC-001", expire_date_raw="31/12/2568 23:59",
        ))
        response = self._post({"events": [self._text_event("123456")]})
        self.assertEqual(response.get_json()["handled"], 1)
        self.assertEqual(self.context.store.get("123456").recipient_id, "U-sender")


if __name__ == "__main__":
    unittest.main()
