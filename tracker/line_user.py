"""LINE user registry: who follows the bot and what they have sent."""

import json
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Optional

from tracker.errors import StoreError

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("display_name", "picture_url", "status_message", "language")

# LINE profile JSON keys -> record fields
_PROFILE_KEYS = {
    "displayName": "display_name",
    "pictureUrl": "picture_url",
    "statusMessage": "status_message",
    "language": "language",
}


def profile_fields(profile: Optional[dict]) -> dict:
    """Map a LINE profile response onto LineUser field names, dropping blanks."""
    if not profile:
        return {}
    return {attr: profile[key] for key, attr in _PROFILE_KEYS.items() if profile.get(key)}


@dataclass
class LineUser:
    """A chat user who has followed or messaged the bot."""

    user_id: str
    display_name: Optional[str] = None
    picture_url: Optional[str] = None
    status_message: Optional[str] = None
    language: Optional[str] = None
    is_friend: bool = True
    friended_at: Optional[datetime] = None
    unfollowed_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    message_count: int = 0
    tags: list[str] = field(default_factory=list)
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        def fmt_dt(dt):
            return dt.isoformat() if dt else None

        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "picture_url": self.picture_url,
            "status_message": self.status_message,
            "language": self.language,
            "is_friend": self.is_friend,
            "friended_at": fmt_dt(self.friended_at),
            "unfollowed_at": fmt_dt(self.unfollowed_at),
            "last_message_at": fmt_dt(self.last_message_at),
            "message_count": self.message_count,
            "tags": list(self.tags),
            "notes": self.notes,
            "created_at": fmt_dt(self.created_at),
            "updated_at": fmt_dt(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineUser":
        def parse_dt(val):
            return datetime.fromisoformat(val) if val else None

        return cls(
            user_id=data["user_id"],
            display_name=data.get("display_name"),
            picture_url=data.get("picture_url"),
            status_message=data.get("status_message"),
            language=data.get("language"),
            is_friend=bool(data.get("is_friend", True)),
            friended_at=parse_dt(data.get("friended_at")),
            unfollowed_at=parse_dt(data.get("unfollowed_at")),
            last_message_at=parse_dt(data.get("last_message_at")),
            message_count=int(data.get("message_count", 0)),
            tags=list(data.get("tags") or []),
            notes=data.get("notes"),
            created_at=parse_dt(data.get("created_at")) or datetime.now(),
            updated_at=parse_dt(data.get("updated_at")) or datetime.now(),
        )


@dataclass
class LineMessage:
    """One inbound chat message."""

    message_id: str
    user_id: str
    text: str
    timestamp: datetime
    message_type: str = "text"
    display_name: Optional[str] = None
    source_type: str = "user"
    reply_token: Optional[str] = None
    is_first_message: bool = False

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "user_id": self.user_id,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "message_type": self.message_type,
            "display_name": self.display_name,
            "source_type": self.source_type,
            "reply_token": self.reply_token,
            "is_first_message": self.is_first_message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineMessage":
        return cls(
            message_id=data["message_id"],
            user_id=data["user_id"],
            text=data.get("text", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            message_type=data.get("message_type", "text"),
            display_name=data.get("display_name"),
            source_type=data.get("source_type", "user"),
            reply_token=data.get("reply_token"),
            is_first_message=bool(data.get("is_first_message", False)),
        )


class LineUserStore:
    """JSON-file-backed registry of chat users and their messages.

    Users and messages are kept in one file so a message and the user's
    counters are always written together.  Reads hand out copies.
    """

    def __init__(self, storage_path: str = "data/line_users.json"):
        self._path = Path(storage_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._users: dict[str, LineUser] = {}
        self._messages: list[LineMessage] = []
        self._message_ids: set[str] = set()
        # Rows that failed to parse, written back verbatim on every save
        self._unparsed_users: list = []
        self._unparsed_messages: list = []
        self._load()

    # ---- Users ----

    def get(self, user_id: str) -> Optional[LineUser]:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user else None

    def find_or_create(self, user_id: str, profile: Optional[dict] = None) -> LineUser:
        """Return the user, creating it if new; a profile with a name refreshes it."""
        with self._lock:
            user = self._users.get(user_id)
            fields = profile_fields(profile)
            if user is None:
                user = LineUser(user_id=user_id, friended_at=datetime.now(), **fields)
                self._commit_user(user)
            elif fields.get("display_name"):
                updated = replace(user, **fields, updated_at=datetime.now())
                self._commit_user(updated, previous=user)
                user = updated
            return replace(user)

    def follow(
        self, user_id: str, profile: Optional[dict] = None, at: Optional[datetime] = None
    ) -> LineUser:
        with self._lock:
            user = self.find_or_create(user_id, profile)
            updated = replace(
                user, is_friend=True, friended_at=at or datetime.now(),
                updated_at=datetime.now(),
            )
            self._commit_user(updated, previous=self._users[user_id])
            return replace(updated)

    def unfollow(self, user_id: str, at: Optional[datetime] = None) -> Optional[LineUser]:
        """Mark a known user as no longer a friend. Unknown users are ignored."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            updated = replace(
                user, is_friend=False, unfollowed_at=at or datetime.now(),
                updated_at=datetime.now(),
            )
            self._commit_user(updated, previous=user)
            return replace(updated)

    def list_users(
        self, is_friend: Optional[bool] = None, limit: int = 50, skip: int = 0
    ) -> tuple[list[LineUser], int]:
        """Page through users, most recently active first. Returns (page, total)."""
        with self._lock:
            users = [
                u for u in self._users.values()
                if is_friend is None or u.is_friend == is_friend
            ]
        users.sort(
            key=lambda u: (u.last_message_at or datetime.min, u.created_at),
            reverse=True,
        )
        return [replace(u) for u in users[skip:skip + limit]], len(users)

    # ---- Messages ----

    def record_message(self, message: LineMessage) -> Optional[LineMessage]:
        """Store an inbound message and bump the sender's counters.

        The sender must already exist (see ``find_or_create``).  A message id
        seen before is a redelivery and is ignored, returning None.
        """
        with self._lock:
            if message.message_id in self._message_ids:
                logger.info("Duplicate message %s ignored", message.message_id)
                return None
            user = self._users.get(message.user_id)
            if user is None:
                raise StoreError(f"Unknown LINE user {message.user_id}")

            stored = replace(
                message,
                display_name=message.display_name or user.display_name,
                is_first_message=user.message_count == 0,
            )
            updated_user = replace(
                user,
                message_count=user.message_count + 1,
                last_message_at=message.timestamp,
                updated_at=datetime.now(),
            )
            self._messages.append(stored)
            self._message_ids.add(stored.message_id)
            self._users[user.user_id] = updated_user
            try:
                self._save()
            except StoreError:
                self._messages.pop()
                self._message_ids.discard(stored.message_id)
                self._users[user.user_id] = user
                raise
            return replace(stored)

    def messages_for(self, user_id: str, limit: int = 50) -> list[LineMessage]:
        """A user's messages, newest first."""
        with self._lock:
            mine = [m for m in self._messages if m.user_id == user_id]
        mine.sort(key=lambda m: m.timestamp, reverse=True)
        return [replace(m) for m in mine[:limit]]

    def list_messages(self, limit: int = 100, skip: int = 0) -> tuple[list[LineMessage], int]:
        """Page through all messages, newest first. Returns (page, total)."""
        with self._lock:
            messages = list(self._messages)
        messages.sort(key=lambda m: m.timestamp, reverse=True)
        return [replace(m) for m in messages[skip:skip + limit]], len(messages)

    # ---- Stats ----

    def stats(self) -> dict:
        with self._lock:
            total = len(self._users)
            active = sum(1 for u in self._users.values() if u.is_friend)
            return {
                "total_users": total,
                "active_users": active,
                "inactive_users": total - active,
                "total_messages": len(self._messages),
            }

    # ---- Persistence ----

    def _commit_user(self, user: LineUser, previous: Optional[LineUser] = None) -> None:
        self._users[user.user_id] = user
        try:
            self._save()
        except StoreError:
            if previous is None:
                del self._users[user.user_id]
            else:
                self._users[user.user_id] = previous
            raise

    def _save(self) -> None:
        data = {
            "users": [u.to_dict() for u in self._users.values()] + self._unparsed_users,
            "messages": [m.to_dict() for m in self._messages] + self._unparsed_messages,
        }
        try:
            self._path.write_text(
                json.dumps(data, indent=2, ensure_ascii=False, default=str),
                encoding="utf-8",
            )
        except OSError as exc:
            raise StoreError(f"Cannot write LINE user store {self._path}: {exc}") from exc

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise StoreError(f"Cannot read LINE user store {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreError(f"LINE user store {self._path} is not a JSON object")

        for item in data.get("users", []):
            try:
                user = LineUser.from_dict(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Keeping unreadable LINE user record as is (%s): %r", exc, item)
                self._unparsed_users.append(item)
                continue
            self._users[user.user_id] = user
        for item in data.get("messages", []):
            try:
                message = LineMessage.from_dict(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Keeping unreadable LINE message as is (%s): %r", exc, item)
                self._unparsed_messages.append(item)
                continue
            self._messages.append(message)
            self._message_ids.add(message.message_id)
