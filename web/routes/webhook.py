"""LINE webhook: signature check, event parsing and routing."""

import base64
import hashlib
import hmac
import logging
import uuid
from datetime import datetime

from flask import Blueprint, jsonify, request

from tracker.errors import StoreError, TransportError
from tracker.line_user import LineMessage
from tracker.linking import ChatEvent
from tracker.notifications.templates import WELCOME_TEMPLATE, text_message
from web import get_engine

logger = logging.getLogger(__name__)

bp = Blueprint("webhook", __name__)


def compute_signature(channel_secret: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 of the raw request body, as LINE signs it."""
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(channel_secret: str, body: bytes, signature: str) -> bool:
    if not channel_secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(channel_secret, body), signature)


@bp.route("/webhook", methods=["POST"])
def webhook():
    engine = get_engine()
    if not engine.channel_secret:
        logger.error("LINE_CHANNEL_SECRET is not set, rejecting webhook")
        return jsonify({"error": "LINE_CHANNEL_SECRET not configured"}), 500

    body = request.get_data()
    signature = request.headers.get("X-Line-Signature", "")
    if not verify_signature(engine.channel_secret, body, signature):
        logger.warning("Webhook signature validation failed")
        return jsonify({"error": "Invalid signature"}), 401

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid payload"}), 400
    events = payload.get("events") or []
    if not isinstance(events, list):
        return jsonify({"error": "events must be a list"}), 400
    if not events:
        return jsonify({"success": True, "message": "No events"}), 200

    handled = 0
    for event in events:
        if not isinstance(event, dict):
            logger.warning("Skipping malformed webhook event: %r", event)
            continue
        try:
            _handle_event(engine, event)
            handled += 1
        except Exception:
            logger.exception("Failed to handle %s event", event.get("type"))

    return jsonify({"success": True, "handled": handled}), 200


def _event_time(event: dict) -> datetime:
    """LINE event timestamps are epoch milliseconds."""
    try:
        return datetime.fromtimestamp(int(event["timestamp"]) / 1000)
    except (KeyError, TypeError, ValueError, OverflowError, OSError):
        return datetime.now()


def _handle_event(engine, event: dict) -> None:
    event_type = event.get("type")
    source = event.get("source")
    user_id = source.get("userId") if isinstance(source, dict) else None
    if not user_id:
        logger.debug("Ignoring %s event without a user source", event_type)
        return

    if event_type == "message":
        message = event.get("message")
        if not isinstance(message, dict) or message.get("type") != "text":
            return
        text = message.get("text") or ""
        logger.info("Message from %s: %r", user_id, text)
        _track_message(engine, user_id, message, event)
        engine.linking.handle(
            ChatEvent(
                sender_identity=user_id,
                text=text,
                reply_channel=event.get("replyToken"),
            )
        )

    elif event_type == "follow":
        logger.info("User followed: %s", user_id)
        profile = engine.transport.get_profile(user_id) or {}
        if engine.users is not None:
            try:
                engine.users.follow(user_id, profile, at=_event_time(event))
            except StoreError as exc:
                logger.warning("Could not record follow from %s: %s", user_id, exc)
        reply_token = event.get("replyToken")
        if not reply_token:
            return
        text = WELCOME_TEMPLATE.format(display_name=profile.get("displayName") or "คุณ")
        try:
            engine.transport.reply(reply_token, [text_message(text)])
        except TransportError as exc:
            logger.warning("Could not send welcome message to %s: %s", user_id, exc)

    elif event_type == "unfollow":
        logger.info("User unfollowed: %s", user_id)
        if engine.users is not None:
            try:
                engine.users.unfollow(user_id, at=_event_time(event))
            except StoreError as exc:
                logger.warning("Could not record unfollow from %s: %s", user_id, exc)


def _track_message(engine, user_id: str, message: dict, event: dict) -> None:
    """Record the message in the user registry. Failures never block linking."""
    if engine.users is None:
        return
    try:
        known = engine.users.get(user_id)
        profile = None
        if known is None or not known.display_name:
            profile = engine.transport.get_profile(user_id)
        user = engine.users.find_or_create(user_id, profile)
        engine.users.record_message(
            LineMessage(
                message_id=str(message.get("id") or uuid.uuid4().hex),
                user_id=user_id,
                text=message.get("text") or "",
                timestamp=_event_time(event),
                display_name=user.display_name,
                source_type=event["source"].get("type", "user"),
                reply_token=event.get("replyToken"),
            )
        )
    except StoreError as exc:
        logger.warning("Could not record message from %s: %s", user_id, exc)
