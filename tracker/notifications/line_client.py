"""
LINE Messaging API transport.

Supports:
- Push messages to a user (notifications)
- Reply messages to a webhook event (link confirmations, welcome)
- Profile lookup
- A dry-run transport that only logs
"""

import json
import logging
import urllib.error
import urllib.request
from typing import Optional

from tracker.errors import TransportError

logger = logging.getLogger(__name__)

# LINE rejects more than five message objects per request
MAX_MESSAGES_PER_REQUEST = 5


class LineMessagingClient:
    """Send messages through the LINE Messaging API (HTTP POST with JSON)."""

    def __init__(
        self,
        access_token: str,
        api_base: str = "https://api.line.me",
        timeout: int = 30,
    ):
        self.access_token = access_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def send(self, recipient_id: str, messages: list[dict]) -> None:
        """Push messages to a recipient. Raises TransportError on failure."""
        if not recipient_id:
            raise TransportError("No recipient to push to")
        self._post(
            "/v2/bot/message/push",
            {"to": recipient_id, "messages": messages[:MAX_MESSAGES_PER_REQUEST]},
        )
        logger.info("Pushed %d message(s) to %s", len(messages), recipient_id)

    def reply(self, reply_token: str, messages: list[dict]) -> None:
        """Answer a webhook event. Reply tokens are single-use."""
        if not reply_token:
            raise TransportError("No reply token")
        self._post(
            "/v2/bot/message/reply",
            {"replyToken": reply_token, "messages": messages[:MAX_MESSAGES_PER_REQUEST]},
        )

    def get_profile(self, user_id: str) -> Optional[dict]:
        """Fetch a user's display profile, or None if unavailable."""
        req = urllib.request.Request(
            f"{self.api_base}/v2/bot/profile/{user_id}",
            headers=self._headers(),
            method="GET",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode())
        except (urllib.error.URLError, json.JSONDecodeError) as e:
            logger.warning("Could not fetch LINE profile for %s: %s", user_id, e)
            return None

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.access_token}",
        }

    def _post(self, path: str, payload: dict) -> None:
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        req = urllib.request.Request(
            f"{self.api_base}{path}", data=data, headers=self._headers(), method="POST"
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                if resp.status >= 400:
                    raise TransportError(
                        f"LINE API {path} failed", status=resp.status,
                        body=resp.read().decode(errors="replace"),
                    )
        except urllib.error.HTTPError as e:
            body = e.read().decode(errors="replace") if e.fp else ""
            raise TransportError(f"LINE API {path} failed", status=e.code, body=body) from e
        except urllib.error.URLError as e:
            raise TransportError(f"LINE API {path} unreachable: {e.reason}") from e


class LoggingTransport:
    """Log messages instead of sending them (dry-run mode)."""

    def send(self, recipient_id: str, messages: list[dict]) -> None:
        for message in messages:
            logger.info("[dry-run] push to %s: %s", recipient_id, message.get("text", message))

    def reply(self, reply_token: str, messages: list[dict]) -> None:
        for message in messages:
            logger.info("[dry-run] reply %s: %s", reply_token, message.get("text", message))

    def get_profile(self, user_id: str) -> Optional[dict]:
        return None
