"""
Notification policy: decides whether an account is due a chat notification.

Rules:
  - expired / suspended: once per status occupancy.  Fires while ``notified``
    is false, or when the last notified status differs from the current one.
  - nearly_expired: at most once per local calendar day, with the message
    chosen by whole days left (rounded up, clamped to 1..3).
  - anything else, or an account with no recipient: never.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from tracker.account import Account, AccountStatus, ONE_SHOT_STATUSES
from tracker.notifications import templates
from tracker.thai_date import format_buddhist_datetime

MIN_DAYS_LEFT = 1
MAX_DAYS_LEFT = 3


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def days_left(expiry: datetime, now: datetime) -> int:
    """Whole days until expiry, rounded up and clamped to 1..3."""
    remaining = math.ceil((expiry - now) / timedelta(days=1))
    return max(MIN_DAYS_LEFT, min(MAX_DAYS_LEFT, remaining))


@dataclass
class Notification:
    """A notification the policy has decided to send."""

    account_number: str
    recipient_id: str
    kind: AccountStatus
    template_key: str
    text: str
    days_left: Optional[int] = None
    messages: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "account_number": self.account_number,
            "recipient_id": self.recipient_id,
            "kind": self.kind.value,
            "template_key": self.template_key,
            "days_left": self.days_left,
            "text": self.text,
        }


class NotificationPolicy:
    """Select due notifications and the bookkeeping that records them."""

    def decide(self, account: Account, now: datetime) -> Optional[Notification]:
        """Return the notification due for ``account`` now, or None."""
        if not account.is_linked:
            return None

        if account.status in ONE_SHOT_STATUSES:
            if not self._one_shot_due(account):
                return None
            if account.status == AccountStatus.EXPIRED:
                return self._build(account, "expired", templates.EXPIRED_TEMPLATE)
            return self._build(account, "suspended", templates.SUSPENDED_TEMPLATE)

        if account.status == AccountStatus.NEARLY_EXPIRED:
            if not self._reminder_due(account, now):
                return None
            expiry = account.expire_date_resolved
            if expiry is None:
                return self._build(
                    account, "nearly_expired", templates.NEARLY_EXPIRED_FALLBACK
                )
            left = days_left(expiry, now)
            return self._build(
                account,
                f"nearly_expired_{left}",
                templates.NEARLY_EXPIRED_TEMPLATES[left],
                days_left=left,
            )

        return None

    @staticmethod
    def guard(account: Account) -> dict:
        """Field values that must be unchanged for the bookkeeping to apply."""
        if account.status == AccountStatus.NEARLY_EXPIRED:
            return {
                "status": account.status,
                "last_nearly_expired_notified_at": account.last_nearly_expired_notified_at,
            }
        return {
            "status": account.status,
            "notified": account.notified,
            "last_notified_status": account.last_notified_status,
        }

    @staticmethod
    def bookkeeping(notification: Notification, now: datetime) -> dict:
        """Field updates that record a successfully delivered notification."""
        if notification.kind == AccountStatus.NEARLY_EXPIRED:
            return {"last_nearly_expired_notified_at": now}
        return {"notified": True, "last_notified_status": notification.kind}

    @staticmethod
    def _one_shot_due(account: Account) -> bool:
        return not account.notified or account.last_notified_status != account.status

    @staticmethod
    def _reminder_due(account: Account, now: datetime) -> bool:
        last = account.last_nearly_expired_notified_at
        return last is None or last < start_of_day(now)

    @staticmethod
    def _build(account, template_key, template, days_left=None) -> Notification:
        expire_date = (
            format_buddhist_datetime(account.expire_date_resolved)
            if account.expire_date_resolved
            else account.expire_date_raw
        )
        text = template.format(license=account.license, expire_date=expire_date)
        return Notification(
            account_number=account.account_number,
            recipient_id=account.recipient_id,
            kind=account.status,
            template_key=template_key,
            text=text,
            days_left=days_left,
            messages=[templates.text_message(text)],
        )
