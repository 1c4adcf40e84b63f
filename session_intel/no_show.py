"""Fast-path no-show detection from the bot's leave reason."""

from __future__ import annotations

from dataclasses import dataclass

from session_intel.lifecycle import SessionStatus


NO_SHOW_CODES = frozenset(
    {
        "waiting_room_timeout",
        "noone_joined_timeout",
        "everyone_left_timeout",
    }
)

BOT_ERROR_CODES = frozenset(
    {
        "fatal_error",
        "bot_kicked",
        "connection_failed",
    }
)


@dataclass(frozen=True)
class Detection:
    """Terminal status derived from a leave reason."""

    status: SessionStatus
    code: str
    reason: str


def detect_no_show(code: str | None, message: str | None = None) -> Detection | None:
    """
    Classify a ``(code, message)`` leave reason.

    Returns a ``no_show`` detection for the "nobody joined / everyone left"
    family, a ``bot_error`` detection for hard technical failures and None for
    every other code.
    """
    normalized = (code or "").strip().lower()
    if not normalized:
        return None

    reason = (message or "").strip() or normalized

    if normalized in NO_SHOW_CODES:
        return Detection(status=SessionStatus.NO_SHOW, code=normalized, reason=reason)
    if normalized in BOT_ERROR_CODES:
        return Detection(status=SessionStatus.BOT_ERROR, code=normalized, reason=reason)
    return None
