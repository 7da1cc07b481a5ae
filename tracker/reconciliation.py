"""
Reconciliation job: the periodic driver that notifies account owners.

Each cycle runs four passes over the account store:

  1. Re-arm: valid accounts still flagged ``notified`` get the flag cleared,
     so a renewal done outside the engine re-enables the next expiry notice.
  2. Status refresh: accounts not under an administrative override get the
     status the evaluator derives from their expiry date.
  3. Expired / suspended: one notification per status occupancy.
  4. Nearly expired: one reminder per calendar day.

Every write is a conditional update against the values read at the start of
that account's step, and notification bookkeeping is only written after the
transport accepted the message.  A cycle interrupted at any point therefore
leaves each account either fully processed or untouched.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from tracker.account import Account, AccountStatus, OVERRIDE_STATUSES
from tracker.audit import AuditAction
from tracker.errors import AccountLookupError, JobCycleError, TransportError
from tracker.notifications.policy import NotificationPolicy
from tracker.status import StatusEvaluator

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """Counters for one reconciliation cycle."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    rearmed: int = 0
    status_changes: int = 0
    unresolvable: int = 0
    expired_sent: int = 0
    suspended_sent: int = 0
    reminders_sent: int = 0
    transport_failures: int = 0
    conflicts: int = 0
    errors: int = 0

    @property
    def total_sent(self) -> int:
        return self.expired_sent + self.suspended_sent + self.reminders_sent

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "rearmed": self.rearmed,
            "status_changes": self.status_changes,
            "unresolvable": self.unresolvable,
            "expired_sent": self.expired_sent,
            "suspended_sent": self.suspended_sent,
            "reminders_sent": self.reminders_sent,
            "total_sent": self.total_sent,
            "transport_failures": self.transport_failures,
            "conflicts": self.conflicts,
            "errors": self.errors,
        }


class ReconciliationJob:
    """Evaluate all accounts, send due notifications and record them.

    Usage:
        job = ReconciliationJob(store, transport, audit_log=audit)
        result = job.run_once()          # None if a cycle is already running

        # From a scheduler: never raises
        job.tick()
    """

    def __init__(
        self,
        store,
        transport,
        evaluator: Optional[StatusEvaluator] = None,
        policy: Optional[NotificationPolicy] = None,
        audit_log=None,
    ):
        self._store = store
        self._transport = transport
        self._evaluator = evaluator or StatusEvaluator()
        self._policy = policy or NotificationPolicy()
        self._audit = audit_log
        self._run_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def run_once(self, now: Optional[datetime] = None) -> Optional[CycleResult]:
        """Run one cycle. Returns None without doing anything if one is in flight.

        Raises JobCycleError if a candidate set cannot be loaded.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Reconciliation cycle already in flight, skipping")
            return None
        try:
            return self._run(now or datetime.now())
        finally:
            self._run_lock.release()

    def tick(self) -> Optional[CycleResult]:
        """Scheduled entry point: run a cycle, report cycle-level failures."""
        try:
            return self.run_once()
        except JobCycleError as exc:
            logger.exception("Reconciliation cycle failed")
            self._record(AuditAction.RECONCILIATION_FAILED, "cycle", str(exc))
            return None

    # ---- Passes ----

    def _run(self, now: datetime) -> CycleResult:
        result = CycleResult(started_at=now)

        valid = self._select(
            "re-arm candidates",
            lambda: self._store.find(
                lambda a: a.status == AccountStatus.VALID and a.notified
            ),
        )
        self._each(valid, lambda a: self._rearm(a, result), result)

        evaluable = self._select(
            "status refresh candidates",
            lambda: self._store.find(lambda a: a.status not in OVERRIDE_STATUSES),
        )
        self._each(evaluable, lambda a: self._refresh(a, now, result), result)

        one_shot = self._select(
            "expired/suspended accounts",
            lambda: self._store.linked_by_status(
                AccountStatus.EXPIRED, AccountStatus.SUSPENDED
            ),
        )
        self._each(one_shot, lambda a: self._notify(a, now, result), result)

        nearly = self._select(
            "nearly expired accounts",
            lambda: self._store.linked_by_status(AccountStatus.NEARLY_EXPIRED),
        )
        self._each(nearly, lambda a: self._notify(a, now, result), result)

        result.finished_at = datetime.now()
        logger.info(
            "Reconciliation complete: %d sent (%d expired, %d suspended, %d reminders), "
            "%d status change(s), %d re-armed, %d transport failure(s), %d error(s)",
            result.total_sent, result.expired_sent, result.suspended_sent,
            result.reminders_sent, result.status_changes, result.rearmed,
            result.transport_failures, result.errors,
        )
        self._record(
            AuditAction.RECONCILIATION_RUN, "cycle",
            f"{result.total_sent} sent, {result.status_changes} status change(s), "
            f"{result.transport_failures} failed",
        )
        return result

    def _rearm(self, account: Account, result: CycleResult) -> None:
        updated = self._store.compare_and_set(
            account.account_number,
            {"status": AccountStatus.VALID, "notified": True},
            notified=False,
        )
        if updated:
            result.rearmed += 1
            logger.info("Re-armed notifications for account %s", account.account_number)
        else:
            result.conflicts += 1

    def _refresh(self, account: Account, now: datetime, result: CycleResult) -> None:
        if account.expire_date_resolved is None:
            result.unresolvable += 1
            logger.warning(
                "Account %s has an unparsable expiry date %r (%s), status left as %s",
                account.account_number, account.expire_date_raw,
                account.expire_resolution().error, account.status.value,
            )
            return

        new_status = self._evaluator.evaluate(account, now)
        if new_status == account.status:
            return

        updated = self._store.compare_and_set(
            account.account_number,
            {"status": account.status, "notified": account.notified},
            **self._evaluator.transition(account, new_status),
        )
        if updated is None:
            result.conflicts += 1
            logger.warning(
                "Account %s changed during status refresh, will retry next cycle",
                account.account_number,
            )
            return

        result.status_changes += 1
        logger.info(
            "Account %s status %s -> %s",
            account.account_number, account.status.value, new_status.value,
        )
        self._record(
            AuditAction.STATUS_CHANGE, account.account_number,
            f"{account.status.value} -> {new_status.value}",
        )

    def _notify(self, account: Account, now: datetime, result: CycleResult) -> None:
        notification = self._policy.decide(account, now)
        if notification is None:
            return

        try:
            self._transport.send(notification.recipient_id, notification.messages)
        except TransportError as exc:
            result.transport_failures += 1
            logger.warning(
                "Could not notify %s about account %s (%s): %s",
                notification.recipient_id, account.account_number,
                notification.template_key, exc,
            )
            return

        updated = self._store.compare_and_set(
            account.account_number,
            self._policy.guard(account),
            **self._policy.bookkeeping(notification, now),
        )
        if updated is None:
            result.conflicts += 1
            logger.warning(
                "Account %s changed while notifying, bookkeeping not recorded",
                account.account_number,
            )
            return

        if notification.kind == AccountStatus.EXPIRED:
            result.expired_sent += 1
        elif notification.kind == AccountStatus.SUSPENDED:
            result.suspended_sent += 1
        else:
            result.reminders_sent += 1
        logger.info(
            "Sent %s notification for account %s to %s",
            notification.template_key, account.account_number, notification.recipient_id,
        )
        self._record(
            AuditAction.NOTIFICATION_SENT, account.account_number,
            f"{notification.template_key} to {notification.recipient_id}",
        )

    # ---- Helpers ----

    @staticmethod
    def _select(what: str, query: Callable[[], list[Account]]) -> list[Account]:
        try:
            return query()
        except Exception as exc:
            raise JobCycleError(f"Could not load {what}: {exc}") from exc

    @staticmethod
    def _each(
        accounts: list[Account],
        step: Callable[[Account], None],
        result: CycleResult,
    ) -> None:
        for account in accounts:
            try:
                step(account)
            except AccountLookupError as exc:
                result.errors += 1
                logger.warning(
                    "Store unavailable for account %s, skipped this cycle: %s",
                    account.account_number, exc,
                )
            except Exception:
                result.errors += 1
                logger.exception("Failed to process account %s", account.account_number)

    def _record(self, action: AuditAction, target: str, detail: str) -> None:
        if self._audit is None:
            return
        try:
            self._audit.log(action, target, detail, user="system")
        except Exception:
            logger.exception("Failed to write %s to audit log", action.value)
