"""Log notification route.

Always enabled: every notification lands in the service log so operations
can reconstruct what was sent even when no outbound channel is configured.
"""

from __future__ import annotations

import logging
from typing import Any

from session_intel.notify.base import RouteDispatchResult


logger = logging.getLogger(__name__)


class LogRoute:
    """Writes notifications to the service log."""

    route_type = "log"

    def __init__(self, route_id: str = "log") -> None:
        self.route_id = route_id

    async def dispatch(self, payload: dict[str, Any]) -> RouteDispatchResult:
        level = logging.WARNING if payload.get("urgency") == "urgent" else logging.INFO
        logger.log(
            level,
            "Notification %s (urgency=%s) session=%s child=%s coach=%s",
            payload.get("kind"),
            payload.get("urgency"),
            payload.get("session_id"),
            payload.get("child_id"),
            payload.get("coach_id"),
        )
        return RouteDispatchResult(
            route_id=self.route_id,
            route_type=self.route_type,
            ok=True,
            detail="Written to service log",
        )
