"""Engine context: the explicitly constructed set of shared services."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from tracker.account_store import AccountStore
from tracker.audit import AuditLog
from tracker.linking import LinkingHandler
from tracker.line_user import LineUserStore
from tracker.notifications.line_client import LineMessagingClient, LoggingTransport
from tracker.notifications.policy import NotificationPolicy
from tracker.reconciliation import ReconciliationJob
from tracker.status import StatusEvaluator

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    """Stores, transport and audit log shared by the job and the linking handler.

    Build one per process with ``from_settings()`` (or directly in tests) and
    hand it to the web app, the scheduler or the CLI.  ``close()`` runs any
    registered teardown callbacks, e.g. stopping the scheduler.
    """

    store: AccountStore
    transport: object
    audit_log: Optional[AuditLog] = None
    near_expiry_days: int = 3
    link_min_digits: int = 5
    channel_secret: str = ""
    users: Optional[LineUserStore] = None
    _teardown: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        self.job = ReconciliationJob(
            self.store,
            self.transport,
            evaluator=StatusEvaluator(self.near_expiry_days),
            policy=NotificationPolicy(),
            audit_log=self.audit_log,
        )
        self.linking = LinkingHandler(
            self.store,
            self.transport,
            audit_log=self.audit_log,
            min_digits=self.link_min_digits,
        )

    @classmethod
    def from_settings(cls) -> "EngineContext":
        """Build the context from ``config.settings``."""
        from config import settings

        if settings.LINE_DRY_RUN or not settings.LINE_CHANNEL_ACCESS_TOKEN:
            if not settings.LINE_DRY_RUN:
                logger.warning("LINE_CHANNEL_ACCESS_TOKEN not set, messages will only be logged")
            transport = LoggingTransport()
        else:
            transport = LineMessagingClient(
                settings.LINE_CHANNEL_ACCESS_TOKEN,
                api_base=settings.LINE_API_BASE,
                timeout=settings.LINE_TIMEOUT_SECONDS,
            )

        return cls(
            store=AccountStore(str(settings.ACCOUNTS_PATH)),
            transport=transport,
            audit_log=AuditLog(str(settings.AUDIT_LOG_PATH)),
            near_expiry_days=settings.NEAR_EXPIRY_DAYS,
            link_min_digits=settings.LINK_MIN_DIGITS,
            channel_secret=settings.LINE_CHANNEL_SECRET,
            users=LineUserStore(str(settings.LINE_USERS_PATH)),
        )

    def on_close(self, callback) -> None:
        """Register a teardown callback, run in reverse order by close()."""
        self._teardown.append(callback)

    def close(self) -> None:
        while self._teardown:
            callback = self._teardown.pop()
            try:
                callback()
            except Exception:
                logger.exception("Engine teardown callback failed")
