"""
Pydantic models for the Session Intelligence pipeline.

Defines the inbound webhook payload shapes (status changes, transcript words,
recordings, roster), the durable records the pipeline reads and mutates
(bot sessions, scheduled sessions, child context), and the derived values it
produces (attendance, outcome, diarized transcript, session analysis).

Last Grunted: 10/14/2026
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .lifecycle import SessionStatus


# =============================================================================
# Webhook payload pieces
# =============================================================================

class StatusChange(BaseModel):
    """One entry of a bot's status-change history."""

    code: str = Field(..., description="Provider status or leave-reason code")
    message: Optional[str] = Field(default=None, description="Provider message")
    created_at: Optional[str] = Field(
        default=None, description="ISO 8601 timestamp reported by the provider"
    )

    model_config = {"extra": "ignore"}

    @property
    def key(self) -> tuple[str, str]:
        """Identity used to de-duplicate redelivered history entries."""
        return (self.code, self.created_at or "")


class Recording(BaseModel):
    """Recording reference reported by the provider."""

    url: Optional[str] = None
    duration_seconds: Optional[float] = Field(default=None, ge=0)

    model_config = {"extra": "ignore"}


class TranscriptWord(BaseModel):
    """A single word of the provider transcript."""

    text: str = ""
    start_time: float = 0.0
    end_time: float = 0.0
    speaker_id: Optional[int] = Field(
        default=None, description="Provider-assigned speaker id (0 when absent)"
    )

    model_config = {"extra": "ignore"}


class Transcript(BaseModel):
    """Flat word stream of the whole meeting."""

    words: list[TranscriptWord] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class MeetingMetadata(BaseModel):
    """Meeting metadata attached to the bot-done event."""

    title: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    model_config = {"extra": "ignore"}


class MeetingParticipant(BaseModel):
    """One roster entry of the finished meeting."""

    id: Union[int, str, None] = None
    name: str = ""
    is_host: bool = False

    model_config = {"extra": "ignore"}

    @field_validator("name", mode="before")
    @classmethod
    def _none_name_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("is_host", mode="before")
    @classmethod
    def _none_host_to_false(cls, value: Any) -> Any:
        return False if value is None else value


# =============================================================================
# Durable records
# =============================================================================

class BotSession(BaseModel):
    """
    One row per provider bot instance.

    The audit trail for everything the provider told us about a bot. Rows
    are created on first sight of a bot id, updated on every later event and
    never deleted.
    """

    bot_id: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    child_id: Optional[str] = None
    coach_id: Optional[str] = None
    meeting_url: Optional[str] = None
    status: Optional[str] = Field(default=None, description="Last known provider status")
    status_history: list[StatusChange] = Field(default_factory=list)
    recording_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    processing_started_at: Optional[str] = None
    processing_completed_at: Optional[str] = None
    created_at: Optional[str] = None


class ScheduledSession(BaseModel):
    """The scheduling system's session as seen (and mutated) by the pipeline."""

    id: str = Field(..., min_length=1)
    child_id: Optional[str] = None
    coach_id: Optional[str] = None
    coach_name: Optional[str] = None
    child_name: Optional[str] = None
    scheduled_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    meeting_title: Optional[str] = None
    status: SessionStatus = SessionStatus.SCHEDULED
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    attendance: Optional[dict[str, Any]] = None
    status_reason: Optional[str] = None
    flagged_for_attention: bool = False
    flag_reason: Optional[str] = None
    recording_url: Optional[str] = None
    duration_minutes: Optional[int] = None
    transcript: Optional[str] = None
    audio_storage_path: Optional[str] = None
    audio_url: Optional[str] = None


class ChildContext(BaseModel):
    """Child history handed to the pedagogical analyzer."""

    name: str = "Child"
    age: Optional[int] = None
    score: Optional[float] = None
    sessions_completed: int = 0
    recent_sessions: list[str] = Field(default_factory=list)

    def to_prompt(self) -> str:
        """Render the context block embedded in the analyzer prompt."""
        lines = [
            "CHILD CONTEXT:",
            f"- Name: {self.name}",
            f"- Age: {self.age if self.age is not None else 'unknown'}",
            f"- Current Score: {self.score if self.score is not None else 'N/A'}/10",
            f"- Sessions Completed: {self.sessions_completed}",
        ]
        if self.recent_sessions:
            lines.append("Recent Sessions:")
            lines.extend(self.recent_sessions)
        return "\n".join(lines)


# =============================================================================
# Derived values
# =============================================================================

class AttendanceInfo(BaseModel):
    """Attendance summary derived from the final meeting roster."""

    total_participants: int = Field(default=0, ge=0)
    participant_names: list[str] = Field(default_factory=list)
    coach_joined: bool = Field(
        default=False, description="A coach-like participant was present"
    )
    non_coach_joined: bool = Field(
        default=False, description="A participant confidently classified as non-coach was present"
    )
    child_joined: bool = Field(
        default=False, description="At least two participants and not all host-flagged"
    )
    duration_minutes: int = Field(default=0, ge=0)
    is_valid_session: bool = False


class SessionOutcome(BaseModel):
    """Terminal classification of a session plus a reason for human review."""

    status: SessionStatus
    reason: str


class TranscriptLine(BaseModel):
    """One speaker turn of the reconstructed transcript."""

    speaker: str = Field(..., description="COACH, CHILD or SPEAKER_<id>")
    text: str


class DiarizedTranscript(BaseModel):
    """Speaker-labelled transcript built from the flat word stream."""

    lines: list[TranscriptLine] = Field(default_factory=list)
    coach_speaker_id: Optional[int] = None
    child_speaker_id: Optional[int] = None
    word_counts: dict[int, int] = Field(default_factory=dict)

    @property
    def text(self) -> str:
        return "\n".join(f"{line.speaker}: {line.text}" for line in self.lines)

    @property
    def labels(self) -> set[str]:
        return {line.speaker for line in self.lines}


class SessionAnalysis(BaseModel):
    """
    Structured pedagogical analysis of one completed session.

    Produced by the external analyzer (or the deterministic default on
    failure). Opaque to the pipeline beyond the fields it persists and fans
    out: flags, summaries and the focus area.
    """

    session_type: str = Field(default="coaching", description="coaching, parent_checkin, discovery or remedial")
    child_name: Optional[str] = None
    focus_area: Optional[str] = Field(
        default=None, description="phonics, fluency, comprehension or vocabulary"
    )
    skills_worked_on: list[str] = Field(default_factory=list)
    progress_rating: Optional[str] = Field(
        default=None, description="declined, same, improved or significant_improvement"
    )
    engagement_level: Optional[str] = Field(default=None, description="low, medium or high")
    confidence_level: Optional[int] = Field(default=None, ge=1, le=5)
    breakthrough_moment: Optional[str] = None
    concerns_noted: Optional[str] = None
    homework_assigned: bool = False
    homework_topic: Optional[str] = None
    homework_description: Optional[str] = None
    next_session_focus: Optional[str] = None
    coach_talk_ratio: Optional[float] = Field(default=None, ge=0, le=100)
    child_reading_samples: list[str] = Field(default_factory=list)
    key_observations: list[str] = Field(default_factory=list)
    flagged_for_attention: bool = False
    flag_reason: Optional[str] = None
    safety_flag: bool = False
    safety_reason: Optional[str] = None
    sentiment_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    summary: str = Field(default="", description="Technical summary for coach records")
    parent_summary: str = Field(default="", description="Warm summary for parents")
