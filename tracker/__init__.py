"""
Customer Account Licence Tracker.

Tracks licensed customer accounts and notifies their owners over LINE when a
licence is about to expire, has expired, or has been suspended.

Features:
- Buddhist Era expiry date normalization
- Account lifecycle status evaluation (valid, nearly expired, expired)
- Once-per-status and once-per-day notification policy
- Periodic reconciliation job with conditional, retry-safe updates
- Linking chat users to accounts by account number
- Registry of LINE followers and the messages they send
"""

from tracker.account import Account, AccountStatus
from tracker.account_store import AccountStore
from tracker.context import EngineContext
from tracker.line_user import LineMessage, LineUser, LineUserStore
from tracker.linking import ChatEvent, LinkingHandler
from tracker.reconciliation import CycleResult, ReconciliationJob
from tracker.status import StatusEvaluator

__all__ = [
    "Account",
    "AccountStatus",
    "AccountStore",
    "ChatEvent",
    "CycleResult",
    "EngineContext",
    "LinkingHandler",
    "LineMessage",
    "LineUser",
    "LineUserStore",
    "ReconciliationJob",
    "StatusEvaluator",
]
