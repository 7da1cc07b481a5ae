"""
Status evaluator: derives the lifecycle status an account should hold.

Pure: takes an account and the current instant, never touches storage.
Administrative overrides (suspended, invalid) are passed through untouched,
and an unparsable expiry date leaves the persisted status as it is.
"""

from datetime import datetime, timedelta
from typing import Optional

from tracker.account import Account, AccountStatus, OVERRIDE_STATUSES

DEFAULT_NEAR_EXPIRY_DAYS = 3


class StatusEvaluator:
    """Compute an account's current status from its expiry instant.

    Usage:
        evaluator = StatusEvaluator(near_expiry_days=3)
        status = evaluator.evaluate(account, datetime.now())
        if status != account.status:
            store.compare_and_set(
                account.account_number,
                {"status": account.status, "notified": account.notified},
                **evaluator.transition(account, status),
            )
    """

    def __init__(self, near_expiry_days: int = DEFAULT_NEAR_EXPIRY_DAYS):
        self._window = timedelta(days=near_expiry_days)

    @property
    def window(self) -> timedelta:
        return self._window

    def evaluate(self, account: Account, now: datetime) -> AccountStatus:
        """Return the status the account should currently hold."""
        if account.status in OVERRIDE_STATUSES:
            return account.status

        expiry = account.expire_date_resolved
        if expiry is None:
            return account.status

        if now > expiry:
            return AccountStatus.EXPIRED
        if expiry - now <= self._window:
            return AccountStatus.NEARLY_EXPIRED
        return AccountStatus.VALID

    @staticmethod
    def transition(account: Account, new_status: AccountStatus) -> dict:
        """Field updates that move ``account`` into ``new_status``.

        Leaving expired/suspended for a non-notifying status clears the
        ``notified`` flag so a later expiry notifies again.
        """
        fields: dict = {"status": new_status}
        if new_status in (AccountStatus.VALID, AccountStatus.NEARLY_EXPIRED) and account.notified:
            fields["notified"] = False
        return fields

    @staticmethod
    def time_remaining(account: Account, now: datetime) -> Optional[timedelta]:
        """Time left until expiry, negative once expired; None if unknown."""
        if account.expire_date_resolved is None:
            return None
        return account.expire_date_resolved - now
