"""
Tests for notification routes and the dispatcher.

Outbound HTTP is served by httpx.MockTransport.

Last Grunted: 10/15/2026
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import httpx
import pytest

from session_intel.config import load_runtime_config
from session_intel.notify import (
    URGENCY,
    NotificationDispatcher,
    NotificationKind,
    build_notification_dispatcher,
)
from session_intel.notify.log import LogRoute
from session_intel.notify.webhook import WebhookRoute


class TestWebhookRoute:
    """Tests for WebhookRoute."""

    @pytest.mark.asyncio
    async def test_posts_json_payload(self) -> None:
        received: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        route = WebhookRoute(
            "ops",
            "https://hooks.example.com/notify",
            headers={"X-Token": "abc"},
            transport=httpx.MockTransport(handler),
        )

        result = await route.dispatch({"kind": "bot_error"})

        assert result.ok
        assert result.route_type == "webhook"
        assert received[0].headers["X-Token"] == "abc"
        assert json.loads(received[0].content) == {"kind": "bot_error"}

    @pytest.mark.asyncio
    async def test_http_error_is_a_failed_result(self) -> None:
        route = WebhookRoute(
            "ops",
            "https://hooks.example.com/notify",
            transport=httpx.MockTransport(lambda request: httpx.Response(503, text="busy")),
        )

        result = await route.dispatch({"kind": "bot_error"})

        assert not result.ok
        assert result.detail == "HTTP 503: busy"

    @pytest.mark.asyncio
    async def test_transport_error_never_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        route = WebhookRoute("ops", "https://hooks.example.com/notify", transport=httpx.MockTransport(handler))

        result = await route.dispatch({"kind": "bot_error"})

        assert not result.ok
        assert "refused" in result.detail


class TestLogRoute:
    """Tests for LogRoute."""

    @pytest.mark.asyncio
    async def test_urgent_notifications_log_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="session_intel.notify.log"):
            await LogRoute().dispatch({"kind": "coach_no_show", "urgency": "urgent", "session_id": "s1"})
            await LogRoute().dispatch({"kind": "session_partial", "urgency": "normal", "session_id": "s2"})

        levels = [record.levelno for record in caplog.records]
        assert levels == [logging.WARNING, logging.INFO]
        assert "coach_no_show" in caplog.records[0].getMessage()


class TestDispatcher:
    """Tests for NotificationDispatcher."""

    @pytest.mark.asyncio
    async def test_builds_payload_and_fans_out(self) -> None:
        bodies: list[dict] = []

        def ok(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        dispatcher = NotificationDispatcher(
            (
                LogRoute(),
                WebhookRoute("ok", "https://a.example.com", transport=httpx.MockTransport(ok)),
                WebhookRoute(
                    "down",
                    "https://b.example.com",
                    transport=httpx.MockTransport(lambda request: httpx.Response(500)),
                ),
            )
        )

        results = await dispatcher.notify(
            NotificationKind.COACH_NO_SHOW, "sess_001", "child_001", "coach_001", {"reason": "Coach did not join"}
        )

        assert [result.ok for result in results] == [True, True, False]
        payload = bodies[0]
        assert payload["kind"] == "coach_no_show"
        assert payload["urgency"] == "urgent"
        assert payload["session_id"] == "sess_001"
        assert payload["details"] == {"reason": "Coach did not join"}
        assert payload["sent_at"].endswith("Z")

    def test_every_kind_has_an_urgency(self) -> None:
        assert set(URGENCY) == set(NotificationKind)
        assert URGENCY[NotificationKind.PARENT_SUMMARY] == "normal"

    def test_webhook_token_becomes_auth_header(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.setenv("SESSION_DB_PATH", str(tmp_path / "db.sqlite"))
        monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.example.com/notify")
        monkeypatch.setenv("NOTIFY_WEBHOOK_TOKEN", "tok_123")

        dispatcher = build_notification_dispatcher(load_runtime_config())

        webhook = [route for route in dispatcher._routes if isinstance(route, WebhookRoute)]
        assert len(webhook) == 1
        assert webhook[0].headers == {"Authorization": "Bearer tok_123"}

    def test_build_from_config(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("SESSION_DB_PATH", str(tmp_path / "db.sqlite"))
        monkeypatch.delenv("NOTIFY_WEBHOOK_URL", raising=False)
        assert build_notification_dispatcher(load_runtime_config()).route_count == 1

        monkeypatch.delenv("NOTIFY_WEBHOOK_TOKEN", raising=False)
        monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "https://hooks.example.com/notify")
        assert build_notification_dispatcher(load_runtime_config()).route_count == 2
