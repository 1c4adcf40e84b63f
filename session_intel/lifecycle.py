"""Session lifecycle state machine driven by recording-bot status changes."""

from __future__ import annotations

from enum import Enum


class SessionStatus(str, Enum):
    """Coarse status of a scheduled session."""

    SCHEDULED = "scheduled"
    BOT_JOINING = "bot_joining"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    COACH_NO_SHOW = "coach_no_show"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
    BOT_ERROR = "bot_error"


TERMINAL_STATUSES = frozenset(
    {
        SessionStatus.COMPLETED,
        SessionStatus.NO_SHOW,
        SessionStatus.COACH_NO_SHOW,
        SessionStatus.PARTIAL,
        SessionStatus.CANCELLED,
        SessionStatus.BOT_ERROR,
    }
)

_RANK = {
    SessionStatus.SCHEDULED: 0,
    SessionStatus.BOT_JOINING: 1,
    SessionStatus.IN_PROGRESS: 2,
}

# Provider bot status code -> coarse session status.
_PROVIDER_STATUS_MAP = {
    "joining_call": SessionStatus.BOT_JOINING,
    "in_waiting_room": SessionStatus.BOT_JOINING,
    "in_call_not_recording": SessionStatus.IN_PROGRESS,
    "recording_permission_allowed": SessionStatus.IN_PROGRESS,
    "in_call_recording": SessionStatus.IN_PROGRESS,
    "fatal": SessionStatus.BOT_ERROR,
}


def _coerce(status: SessionStatus | str) -> SessionStatus:
    return status if isinstance(status, SessionStatus) else SessionStatus(status)


def is_terminal(status: SessionStatus | str) -> bool:
    """Return True when no further automatic transition may leave ``status``."""
    return _coerce(status) in TERMINAL_STATUSES


def status_for_provider(code: str | None) -> SessionStatus | None:
    """Map a provider bot status code to the coarse session status it implies."""
    if not code:
        return None
    return _PROVIDER_STATUS_MAP.get(code.strip().lower())


def transition(
    current: SessionStatus | str,
    proposed: SessionStatus | str,
) -> SessionStatus | None:
    """
    Compute the next session status.

    Returns the status to store, or None when the proposal is a no-op:
    terminal statuses are never overwritten and non-terminal proposals only
    move forward (scheduled -> bot_joining -> in_progress). A terminal
    proposal is always accepted from a non-terminal state.
    """
    current_status = _coerce(current)
    proposed_status = _coerce(proposed)

    if current_status in TERMINAL_STATUSES:
        return None
    if proposed_status in TERMINAL_STATUSES:
        return proposed_status
    if _RANK[proposed_status] <= _RANK[current_status]:
        return None
    return proposed_status
