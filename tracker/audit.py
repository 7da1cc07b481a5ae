"""Audit trail for account links, status changes and notification runs.

Entries are appended one JSON object per line, so a crash mid-write costs at
most the last line.  Reads return newest first.
"""

import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    ACCOUNT_ADD = "account_add"
    ACCOUNT_LINK = "account_link"
    STATUS_CHANGE = "status_change"
    NOTIFICATION_SENT = "notification_sent"
    RECONCILIATION_RUN = "reconciliation_run"
    RECONCILIATION_FAILED = "reconciliation_failed"


@dataclass
class AuditEntry:
    action: AuditAction
    target: str
    detail: str = ""
    user: str = ""
    timestamp: datetime = field(default_factory=datetime.now)
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "action": self.action.value,
            "target": self.target,
            "detail": self.detail,
            "user": self.user,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(
            entry_id=data.get("entry_id", ""),
            action=AuditAction(data["action"]),
            target=data.get("target", ""),
            detail=data.get("detail", ""),
            user=data.get("user", ""),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


# The file is compacted to this many lines once it grows past twice as many
MAX_ENTRIES = 10000


class AuditLog:
    """Append-only JSON Lines audit log."""

    def __init__(self, path: str, max_entries: int = MAX_ENTRIES):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._max_entries = max_entries
        self._lock = threading.Lock()
        # Lines on disk, counted once on first write and tracked after that
        self._line_count: Optional[int] = None

    def log(self, action, target: str, detail: str = "", user: str = "") -> AuditEntry:
        if isinstance(action, str):
            action = AuditAction(action)
        entry = AuditEntry(action=action, target=target, detail=detail, user=user)
        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with self._lock:
            if self._line_count is None:
                self._line_count = self._count_lines()
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
            self._line_count += 1
            if self._line_count > self._max_entries * 2:
                self._compact()
        return entry

    def recent(self, limit: int = 500) -> list[AuditEntry]:
        return self._read()[:limit]

    def filter(
        self,
        action: Optional[AuditAction] = None,
        target: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: int = 500,
    ) -> list[AuditEntry]:
        entries = self._read()
        if action:
            entries = [e for e in entries if e.action == action]
        if target:
            entries = [e for e in entries if e.target == target]
        if since:
            entries = [e for e in entries if e.timestamp >= since]
        return entries[:limit]

    def history(self, account_number: str) -> list[AuditEntry]:
        """Everything recorded against one account, newest first."""
        return self.filter(target=account_number, limit=self._max_entries)

    def counts(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for entry in self._read():
            totals[entry.action.value] = totals.get(entry.action.value, 0) + 1
        return totals

    def _read(self) -> list[AuditEntry]:
        if not self._path.exists():
            return []
        entries = []
        with self._path.open(encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, 1):
                if not line.strip():
                    continue
                try:
                    entries.append(AuditEntry.from_dict(json.loads(line)))
                except (ValueError, KeyError) as e:
                    logger.warning("Skipping bad audit line %d in %s: %s", lineno, self._path, e)
        entries.reverse()
        return entries

    def _count_lines(self) -> int:
        if not self._path.exists():
            return 0
        with self._path.open(encoding="utf-8") as fh:
            return sum(1 for _ in fh)

    def _compact(self) -> None:
        lines = self._path.read_text(encoding="utf-8").splitlines()
        kept = lines[-self._max_entries:]
        self._path.write_text("\n".join(kept) + "\n", encoding="utf-8")
        self._line_count = len(kept)
