"""Terminal outcome classification for a finished session."""

from __future__ import annotations

from session_intel.lifecycle import SessionStatus
from session_intel.models import AttendanceInfo, SessionOutcome


TOO_SHORT_SECONDS = 5 * 60
BRIEF_SECONDS = 10 * 60
MIN_TRANSCRIPT_CHARS = 100


def classify_outcome(
    attendance: AttendanceInfo,
    transcript_length: int,
    duration_seconds: float | None,
) -> SessionOutcome:
    """
    Decide the terminal outcome of a session.

    The ladder is evaluated strictly in order; the later, looser checks catch
    what the stricter ones let through (a long but silent recording, for
    instance).
    """
    duration = max(duration_seconds or 0.0, 0.0)
    minutes = round(duration / 60)

    if attendance.total_participants == 0:
        return SessionOutcome(
            status=SessionStatus.NO_SHOW,
            reason="No one joined the meeting",
        )

    if attendance.total_participants == 1:
        if attendance.coach_joined:
            return SessionOutcome(
                status=SessionStatus.NO_SHOW,
                reason="Child/parent did not join",
            )
        if attendance.non_coach_joined:
            return SessionOutcome(
                status=SessionStatus.COACH_NO_SHOW,
                reason="Coach did not join",
            )
        return SessionOutcome(
            status=SessionStatus.NO_SHOW,
            reason="Only one participant joined",
        )

    if duration < TOO_SHORT_SECONDS:
        return SessionOutcome(
            status=SessionStatus.PARTIAL,
            reason=f"Session too short ({minutes} min)",
        )

    if duration < BRIEF_SECONDS:
        return SessionOutcome(
            status=SessionStatus.PARTIAL,
            reason=f"Session was brief ({minutes} min)",
        )

    if transcript_length < MIN_TRANSCRIPT_CHARS:
        return SessionOutcome(
            status=SessionStatus.PARTIAL,
            reason="Recording/transcription issue",
        )

    return SessionOutcome(status=SessionStatus.COMPLETED, reason="Session completed")
