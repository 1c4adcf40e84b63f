"""Notification dispatcher fanning payloads out to configured routes."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from session_intel.config import RuntimeConfig
from session_intel.notify.base import (
    URGENCY,
    NotificationKind,
    NotificationRoute,
    RouteDispatchResult,
)
from session_intel.notify.log import LogRoute
from session_intel.notify.webhook import WebhookRoute


logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Dispatches notifications to all enabled routes."""

    def __init__(self, routes: tuple[NotificationRoute, ...]) -> None:
        self._routes = routes

    @property
    def route_count(self) -> int:
        return len(self._routes)

    async def dispatch_all(self, payload: dict[str, Any]) -> list[RouteDispatchResult]:
        results: list[RouteDispatchResult] = []
        for route in self._routes:
            results.append(await route.dispatch(payload))
        return results

    async def notify(
        self,
        kind: NotificationKind,
        session_id: Optional[str],
        child_id: Optional[str],
        coach_id: Optional[str],
        details: dict[str, Any],
    ) -> list[RouteDispatchResult]:
        payload = {
            "kind": kind.value,
            "urgency": URGENCY[kind],
            "session_id": session_id,
            "child_id": child_id,
            "coach_id": coach_id,
            "details": details,
            "sent_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        results = await self.dispatch_all(payload)
        for result in results:
            if not result.ok:
                logger.warning(
                    "Notification %s for session %s failed on route %s: %s",
                    kind.value,
                    session_id,
                    result.route_id,
                    result.detail,
                )
        return results


def build_notification_dispatcher(config: RuntimeConfig) -> NotificationDispatcher:
    """Create route instances from the runtime config."""
    routes: list[NotificationRoute] = [LogRoute("log")]

    if config.notify_webhook_url:
        headers = (
            {"Authorization": f"Bearer {config.notify_webhook_token}"}
            if config.notify_webhook_token
            else None
        )
        routes.append(
            WebhookRoute(
                route_id="notify_webhook",
                url=config.notify_webhook_url,
                headers=headers,
                timeout_seconds=config.notify_timeout_seconds,
            )
        )

    return NotificationDispatcher(tuple(routes))
