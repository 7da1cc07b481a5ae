"""Chat notifications for account lifecycle changes."""

from tracker.notifications.line_client import LineMessagingClient, LoggingTransport
from tracker.notifications.policy import Notification, NotificationPolicy, days_left

__all__ = [
    "LineMessagingClient",
    "LoggingTransport",
    "Notification",
    "NotificationPolicy",
    "days_left",
]
