"""
Tests for the session lifecycle state machine and leave-reason detection.

Last Grunted: 10/15/2026
"""

from __future__ import annotations

import pytest

from session_intel.lifecycle import (
    TERMINAL_STATUSES,
    SessionStatus,
    is_terminal,
    status_for_provider,
    transition,
)
from session_intel.no_show import detect_no_show


# =============================================================================
# Transition Tests
# =============================================================================


class TestTransition:
    """Tests for transition()."""

    def test_forward_moves_are_applied(self) -> None:
        """Non-terminal statuses advance in order."""
        assert transition(SessionStatus.SCHEDULED, SessionStatus.BOT_JOINING) == SessionStatus.BOT_JOINING
        assert transition(SessionStatus.BOT_JOINING, SessionStatus.IN_PROGRESS) == SessionStatus.IN_PROGRESS
        assert transition(SessionStatus.SCHEDULED, SessionStatus.IN_PROGRESS) == SessionStatus.IN_PROGRESS

    def test_backward_moves_are_ignored(self) -> None:
        """A late joining status never rewinds an in-progress session."""
        assert transition(SessionStatus.IN_PROGRESS, SessionStatus.BOT_JOINING) is None
        assert transition(SessionStatus.BOT_JOINING, SessionStatus.SCHEDULED) is None

    def test_same_status_is_noop(self) -> None:
        assert transition(SessionStatus.IN_PROGRESS, SessionStatus.IN_PROGRESS) is None

    @pytest.mark.parametrize("current", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_status_is_never_overwritten(self, current: SessionStatus) -> None:
        """Nothing leaves a terminal status automatically."""
        for proposed in SessionStatus:
            assert transition(current, proposed) is None

    @pytest.mark.parametrize("proposed", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_proposal_accepted_from_any_open_status(self, proposed: SessionStatus) -> None:
        for current in (SessionStatus.SCHEDULED, SessionStatus.BOT_JOINING, SessionStatus.IN_PROGRESS):
            assert transition(current, proposed) == proposed

    def test_accepts_plain_strings(self) -> None:
        assert transition("scheduled", "in_progress") == SessionStatus.IN_PROGRESS
        assert transition("completed", "no_show") is None


class TestStatusHelpers:
    """Tests for is_terminal() and status_for_provider()."""

    def test_is_terminal(self) -> None:
        assert is_terminal(SessionStatus.PARTIAL)
        assert is_terminal("cancelled")
        assert not is_terminal(SessionStatus.BOT_JOINING)

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("joining_call", SessionStatus.BOT_JOINING),
            ("in_waiting_room", SessionStatus.BOT_JOINING),
            ("in_call_not_recording", SessionStatus.IN_PROGRESS),
            ("in_call_recording", SessionStatus.IN_PROGRESS),
            ("recording_permission_allowed", SessionStatus.IN_PROGRESS),
            ("fatal", SessionStatus.BOT_ERROR),
            ("  IN_CALL_RECORDING ", SessionStatus.IN_PROGRESS),
        ],
    )
    def test_provider_codes(self, code: str, expected: SessionStatus) -> None:
        assert status_for_provider(code) == expected

    def test_unknown_provider_codes(self) -> None:
        assert status_for_provider("call_ended") is None
        assert status_for_provider("done") is None
        assert status_for_provider(None) is None
        assert status_for_provider("") is None


# =============================================================================
# No-Show Detection Tests
# =============================================================================


class TestDetectNoShow:
    """Tests for detect_no_show()."""

    @pytest.mark.parametrize(
        "code",
        ["waiting_room_timeout", "noone_joined_timeout", "everyone_left_timeout"],
    )
    def test_no_show_codes(self, code: str) -> None:
        detection = detect_no_show(code)
        assert detection is not None
        assert detection.status == SessionStatus.NO_SHOW
        assert detection.code == code

    @pytest.mark.parametrize("code", ["fatal_error", "bot_kicked", "connection_failed"])
    def test_bot_error_codes(self, code: str) -> None:
        detection = detect_no_show(code)
        assert detection is not None
        assert detection.status == SessionStatus.BOT_ERROR

    def test_message_becomes_reason(self) -> None:
        detection = detect_no_show("noone_joined_timeout", "Nobody joined within 10 minutes")
        assert detection is not None
        assert detection.reason == "Nobody joined within 10 minutes"

    def test_code_is_fallback_reason(self) -> None:
        detection = detect_no_show("Waiting_Room_Timeout", "   ")
        assert detection is not None
        assert detection.code == "waiting_room_timeout"
        assert detection.reason == "waiting_room_timeout"

    @pytest.mark.parametrize("code", [None, "", "call_ended", "in_call_recording", "done"])
    def test_other_codes_are_not_detected(self, code: str | None) -> None:
        assert detect_no_show(code) is None
