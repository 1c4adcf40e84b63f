"""Notification routing package."""

from session_intel.notify.base import (
    URGENCY,
    NotificationKind,
    Notifier,
    RouteDispatchResult,
)
from session_intel.notify.dispatcher import NotificationDispatcher, build_notification_dispatcher

__all__ = [
    "NotificationDispatcher",
    "NotificationKind",
    "Notifier",
    "RouteDispatchResult",
    "URGENCY",
    "build_notification_dispatcher",
]
