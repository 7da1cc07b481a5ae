"""Exception types raised by the account lifecycle engine."""

from typing import Optional


class AccountError(Exception):
    """Base class for engine errors."""


class DateParseError(AccountError, ValueError):
    """An expiry string could not be turned into a calendar instant."""

    def __init__(self, value, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Cannot parse expiry date {value!r}: {reason}")


class StoreError(AccountError, LookupError):
    """A JSON-backed store could not be read or written."""


class AccountLookupError(StoreError):
    """The account store could not be read or written."""


class TransportError(AccountError):
    """An outbound chat message could not be delivered."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is None:
            return base
        return f"{base} (HTTP {self.status}: {self.body[:200]})"


class JobCycleError(AccountError):
    """A reconciliation cycle could not load its candidate accounts."""
