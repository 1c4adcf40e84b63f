"""Attendance heuristics over the final meeting roster."""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable, Sequence

from session_intel.models import AttendanceInfo, MeetingParticipant


DEFAULT_COACH_MARKERS: tuple[str, ...] = ("coach",)

MIN_VALID_PARTICIPANTS = 2
MIN_VALID_MINUTES = 10

_EMAIL_SHAPED = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ParticipantRole(str, Enum):
    """Best-effort role of one roster entry."""

    COACH = "coach"
    NON_COACH = "non_coach"
    UNKNOWN = "unknown"


def _normalize(name: str) -> str:
    return " ".join((name or "").lower().split())


def classify_participant(
    name: str,
    is_host: bool = False,
    coach_names: Iterable[str] = (),
    markers: Sequence[str] = DEFAULT_COACH_MARKERS,
) -> ParticipantRole:
    """
    Classify one participant as coach-like, non-coach or unknown.

    Coach-like when host-flagged, when the name contains a coach/organization
    marker, when the name is email-shaped (staff often join with their
    account address) or when it matches a coach name known to the scheduler.
    A blank, non-host name cannot be judged.
    """
    if is_host:
        return ParticipantRole.COACH

    normalized = _normalize(name)
    if not normalized:
        return ParticipantRole.UNKNOWN

    if any(marker.lower() in normalized for marker in markers if marker):
        return ParticipantRole.COACH
    if _EMAIL_SHAPED.match(normalized):
        return ParticipantRole.COACH

    for coach_name in coach_names:
        known = _normalize(coach_name)
        if known and (known in normalized or normalized == known.split()[0]):
            return ParticipantRole.COACH

    return ParticipantRole.NON_COACH


def analyze_attendance(
    participants: Sequence[MeetingParticipant],
    duration_seconds: float | None,
    coach_names: Iterable[str] = (),
    markers: Sequence[str] = DEFAULT_COACH_MARKERS,
) -> AttendanceInfo:
    """Summarize who joined and for how long."""
    known_coaches = tuple(coach_names)
    roles = [
        classify_participant(p.name, p.is_host, known_coaches, markers)
        for p in participants
    ]
    total = len(participants)
    seconds = max(duration_seconds or 0.0, 0.0)

    return AttendanceInfo(
        total_participants=total,
        participant_names=[p.name for p in participants],
        coach_joined=ParticipantRole.COACH in roles,
        non_coach_joined=ParticipantRole.NON_COACH in roles,
        child_joined=total >= 2 and not all(p.is_host for p in participants),
        duration_minutes=round(seconds / 60),
        is_valid_session=total >= MIN_VALID_PARTICIPANTS
        and seconds >= MIN_VALID_MINUTES * 60,
    )
