"""Account store: persistent storage, filtered reads and conditional updates."""

import json
import logging
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from tracker.account import Account, AccountStatus
from tracker.errors import AccountLookupError

logger = logging.getLogger(__name__)


class AccountStore:
    """JSON-file-backed collection of customer accounts keyed by account number.

    Records live in memory behind a lock and every mutation is written through
    to disk before it becomes visible.  Reads hand out copies, so a caller
    always works on a snapshot and must go through ``update`` or
    ``compare_and_set`` to change anything.
    """

    def __init__(self, storage_path: str = "data/accounts.json"):
        self._path = Path(storage_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._accounts: dict[str, Account] = {}
        # Rows that failed to parse, written back verbatim on every save
        self._unparsed: list[dict] = []
        self._load()

    # ---- CRUD ----

    def add(self, account: Account) -> Account:
        """Add a new account. Account numbers are unique."""
        with self._lock:
            number = account.account_number
            if number in self._accounts or number in self._unparsed_numbers():
                raise ValueError(f"Account {account.account_number} already exists")
            now = datetime.now()
            stored = replace(account, created_at=now, updated_at=now)
            self._accounts[stored.account_number] = stored
            try:
                self._save()
            except AccountLookupError:
                del self._accounts[stored.account_number]
                raise
            return replace(stored)

    def get(self, account_number: str) -> Optional[Account]:
        """Get an account by its number (exact string match)."""
        with self._lock:
            account = self._accounts.get(account_number)
            return replace(account) if account else None

    def list_all(self) -> list[Account]:
        """Return all accounts."""
        with self._lock:
            return [replace(a) for a in self._accounts.values()]

    def update(self, account_number: str, **fields) -> Optional[Account]:
        """Unconditionally update fields on an existing account."""
        return self.compare_and_set(account_number, {}, **fields)

    def compare_and_set(
        self, account_number: str, expected: dict, **fields
    ) -> Optional[Account]:
        """Update ``fields`` only if every ``expected`` field still holds its value.

        Returns the updated account, or None if the account is missing or any
        expected value has changed since the caller read it.
        """
        with self._lock:
            current = self._accounts.get(account_number)
            if current is None:
                return None
            for key, value in expected.items():
                if getattr(current, key) != value:
                    logger.debug(
                        "Conditional update on %s rejected: %s is %r, expected %r",
                        account_number, key, getattr(current, key), value,
                    )
                    return None

            updated = replace(current)
            for key, value in fields.items():
                if key == "expire_date_raw":
                    updated.set_expire_date(value)
                elif key == "status":
                    updated.status = AccountStatus(value)
                elif key == "last_notified_status":
                    updated.last_notified_status = (
                        AccountStatus(value) if value is not None else None
                    )
                elif hasattr(updated, key) and key != "expire_date_resolved":
                    setattr(updated, key, value)
            updated.updated_at = datetime.now()

            self._accounts[account_number] = updated
            try:
                self._save()
            except AccountLookupError:
                self._accounts[account_number] = current
                raise
            return replace(updated)

    # ---- Filters ----

    def find(self, predicate: Callable[[Account], bool]) -> list[Account]:
        """Return accounts matching an arbitrary predicate."""
        with self._lock:
            return [replace(a) for a in self._accounts.values() if predicate(a)]

    def by_status(self, *statuses: AccountStatus) -> list[Account]:
        """Filter accounts by persisted status."""
        wanted = set(statuses)
        return self.find(lambda a: a.status in wanted)

    def linked_by_status(self, *statuses: AccountStatus) -> list[Account]:
        """Accounts in the given statuses that have a notification recipient."""
        wanted = set(statuses)
        return self.find(lambda a: a.status in wanted and a.is_linked)

    def by_recipient(self, recipient_id: str) -> list[Account]:
        """Accounts linked to a chat identity."""
        return self.find(lambda a: a.recipient_id == recipient_id)

    def expired(self, now: Optional[datetime] = None) -> list[Account]:
        """Accounts whose raw expiry date resolves to an instant before ``now``."""
        now = now or datetime.now()
        results = self.find(lambda a: a.is_expired_at(now))
        return sorted(results, key=lambda a: a.expire_date_resolved)

    def unresolvable(self) -> list[Account]:
        """Accounts whose expiry string cannot be parsed."""
        return self.find(lambda a: a.expire_date_resolved is None)

    # ---- Stats ----

    def summary(self) -> dict:
        """Counts by status and link state."""
        accounts = self.list_all()
        by_status = {}
        for a in accounts:
            by_status[a.status.value] = by_status.get(a.status.value, 0) + 1
        return {
            "total_accounts": len(accounts),
            "linked_accounts": sum(1 for a in accounts if a.is_linked),
            "unresolvable_expiry": sum(1 for a in accounts if a.expire_date_resolved is None),
            "unreadable_records": self.unreadable_count(),
            "by_status": by_status,
        }

    # ---- Persistence ----

    def _unparsed_numbers(self) -> set:
        return {
            str(item.get("account_number"))
            for item in self._unparsed
            if isinstance(item, dict) and item.get("account_number") is not None
        }

    def unreadable_count(self) -> int:
        """Number of stored rows that could not be parsed into accounts."""
        with self._lock:
            return len(self._unparsed)

    def _save(self) -> None:
        """Save accounts to disk."""
        data = [a.to_dict() for a in self._accounts.values()] + self._unparsed
        try:
            self._path.write_text(
                json.dumps(data, indent=2, ensure_ascii=False, default=str),
                encoding="utf-8",
            )
        except OSError as exc:
            raise AccountLookupError(f"Cannot write account store {self._path}: {exc}") from exc

    def _load(self) -> None:
        """Load accounts from disk."""
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            raise AccountLookupError(f"Cannot read account store {self._path}: {exc}") from exc
        if not isinstance(data, list):
            raise AccountLookupError(f"Account store {self._path} is not a JSON list")
        for item in data:
            try:
                account = Account.from_dict(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Keeping unreadable account record as is (%s): %r", exc, item)
                self._unparsed.append(item)
                continue
            self._accounts[account.account_number] = account
