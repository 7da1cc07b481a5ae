"""Customer account data model for licence expiry tracking."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from tracker.thai_date import ResolvedDate, resolve_expire_date


class AccountStatus(str, Enum):
    """Lifecycle status of a customer account."""

    VALID = "valid"
    NEARLY_EXPIRED = "nearly_expired"
    EXPIRED = "expired"
    SUSPENDED = "suspended"                  # Administrative override
    INVALID = "invalid"                      # Administrative override


# Statuses only an administrator sets or clears
OVERRIDE_STATUSES = frozenset({AccountStatus.SUSPENDED, AccountStatus.INVALID})

# Statuses notified once per occupancy, tracked by the ``notified`` flag
ONE_SHOT_STATUSES = frozenset({AccountStatus.EXPIRED, AccountStatus.SUSPENDED})


@dataclass
class Account:
    """A licensed customer account and its notification bookkeeping."""

    # Identity
    account_number: str
    license: str

    # Expiry, as entered (Buddhist Era, DD/MM/YYYY HH:MM)
    expire_date_raw: str = ""

    # Chat identity that receives notifications
    recipient_id: Optional[str] = None

    # Lifecycle
    status: AccountStatus = AccountStatus.VALID
    notified: bool = False
    last_notified_status: Optional[AccountStatus] = None
    last_nearly_expired_notified_at: Optional[datetime] = None

    # Metadata
    user: str = ""
    platform: str = ""
    plan: int = 0
    activated_at: Optional[datetime] = None
    created_by: str = ""
    admin_generated: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    # Derived from expire_date_raw, never set directly
    expire_date_resolved: Optional[datetime] = field(
        default=None, init=False, compare=False
    )

    def __post_init__(self):
        self.status = AccountStatus(self.status)
        if self.last_notified_status is not None:
            self.last_notified_status = AccountStatus(self.last_notified_status)
        self.set_expire_date(self.expire_date_raw)

    def set_expire_date(self, raw: str) -> ResolvedDate:
        """Replace the raw expiry string and recompute the resolved instant."""
        self.expire_date_raw = raw or ""
        resolved = resolve_expire_date(self.expire_date_raw)
        self.expire_date_resolved = resolved.instant
        return resolved

    def expire_resolution(self) -> ResolvedDate:
        return resolve_expire_date(self.expire_date_raw)

    @property
    def is_linked(self) -> bool:
        return bool(self.recipient_id)

    def is_expired_at(self, now: datetime) -> bool:
        """True if the expiry instant is known and already behind ``now``."""
        return self.expire_date_resolved is not None and now > self.expire_date_resolved

    def to_dict(self) -> dict:
        """Serialize account to dictionary."""
        def fmt_dt(dt):
            return dt.isoformat() if dt else None

        return {
            "account_number": self.account_number,
            "license": self.license,
            "expire_date_raw": self.expire_date_raw,
            "expire_date_resolved": fmt_dt(self.expire_date_resolved),
            "recipient_id": self.recipient_id,
            "status": self.status.value,
            "notified": self.notified,
            "last_notified_status": (
                self.last_notified_status.value if self.last_notified_status else None
            ),
            "last_nearly_expired_notified_at": fmt_dt(self.last_nearly_expired_notified_at),
            "user": self.user,
            "platform": self.platform,
            "plan": self.plan,
            "activated_at": fmt_dt(self.activated_at),
            "created_by": self.created_by,
            "admin_generated": self.admin_generated,
            "created_at": fmt_dt(self.created_at),
            "updated_at": fmt_dt(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Account":
        """Deserialize account from dictionary.

        ``expire_date_resolved`` is ignored; it is recomputed from the raw value.
        """
        def parse_dt(val):
            if not val:
                return None
            return datetime.fromisoformat(val)

        return cls(
            account_number=str(data["account_number"]),
            license=data.get("license", ""),
            expire_date_raw=data.get("expire_date_raw", ""),
            recipient_id=data.get("recipient_id") or None,
            status=AccountStatus(data.get("status", "valid")),
            notified=bool(data.get("notified", False)),
            last_notified_status=data.get("last_notified_status") or None,
            last_nearly_expired_notified_at=parse_dt(
                data.get("last_nearly_expired_notified_at")
            ),
            user=data.get("user", ""),
            platform=data.get("platform", ""),
            plan=int(data.get("plan", 0) or 0),
            activated_at=parse_dt(data.get("activated_at")),
            created_by=data.get("created_by", ""),
            admin_generated=bool(data.get("admin_generated", False)),
            created_at=parse_dt(data.get("created_at")) or datetime.now(),
            updated_at=parse_dt(data.get("updated_at")) or datetime.now(),
        )
