"""Notification route interfaces and shared types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol


class NotificationKind(str, Enum):
    """Notifications raised by the pipeline."""

    SESSION_NO_SHOW = "session_no_show"
    COACH_NO_SHOW = "coach_no_show"
    SESSION_PARTIAL = "session_partial"
    BOT_ERROR = "bot_error"
    PARENT_SUMMARY = "session_summary_parent"


URGENCY = {
    NotificationKind.SESSION_NO_SHOW: "high",
    NotificationKind.COACH_NO_SHOW: "urgent",
    NotificationKind.SESSION_PARTIAL: "normal",
    NotificationKind.BOT_ERROR: "urgent",
    NotificationKind.PARENT_SUMMARY: "normal",
}


@dataclass(frozen=True)
class RouteDispatchResult:
    """Result of attempting one route dispatch."""

    route_id: str
    route_type: str
    ok: bool
    detail: str | None = None


class NotificationRoute(Protocol):
    """Interface for notification routes."""

    route_id: str
    route_type: str

    async def dispatch(self, payload: dict[str, Any]) -> RouteDispatchResult:
        """Dispatch one payload to this route. Never raises."""


class Notifier(Protocol):
    """Interface of the notification collaborator used by the pipeline."""

    async def notify(
        self,
        kind: NotificationKind,
        session_id: Optional[str],
        child_id: Optional[str],
        coach_id: Optional[str],
        details: dict[str, Any],
    ) -> list[RouteDispatchResult]:
        """Send one notification to every configured route."""
