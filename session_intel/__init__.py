"""
Session Intelligence Package.

Turns meeting-bot webhooks for scheduled tutoring sessions into a durable,
classified record of what happened, plus a pedagogical analysis of every
completed session.

Components:
    - parse_envelope: Validates and discriminates inbound webhook events
    - lifecycle: Monotonic session state machine driven by bot status
    - detect_no_show: Fast-path classification of bot leave reasons
    - analyze_attendance / classify_outcome: Roster and outcome heuristics
    - diarize: Speaker-labelled transcript reconstruction
    - BotSessionRegistry: Bot-to-session resolution with meeting heuristics
    - SessionPersister: Persistence and side-effect fan-out
    - WebhookPipeline: Per-event orchestration
    - SessionStore: SQLite persistence

Example:
    >>> from session_intel import WebhookPipeline, parse_envelope
    >>>
    >>> envelope = parse_envelope(request_body)
    >>> result = await pipeline.handle(envelope)
    >>> print(result.status, result.outcome)

Last Grunted: 10/15/2026
"""

from .lifecycle import SessionStatus, TERMINAL_STATUSES, is_terminal, status_for_provider, transition

from .models import (
    AttendanceInfo,
    BotSession,
    ChildContext,
    DiarizedTranscript,
    MeetingParticipant,
    ScheduledSession,
    SessionAnalysis,
    SessionOutcome,
    TranscriptWord,
)

from .envelope import EnvelopeError, EventKind, WebhookEnvelope, parse_envelope

from .no_show import Detection, detect_no_show

from .attendance import ParticipantRole, analyze_attendance, classify_participant

from .outcome import classify_outcome

from .diarizer import diarize, identify_speakers

from .store import SessionStore, StoreError

from .registry import BotSessionRegistry

from .persister import PersistResult, SessionPersister, SideEffectResult

from .pipeline import PipelineResult, WebhookPipeline


__all__ = [
    # Lifecycle
    "SessionStatus",
    "TERMINAL_STATUSES",
    "is_terminal",
    "status_for_provider",
    "transition",
    # Models
    "AttendanceInfo",
    "BotSession",
    "ChildContext",
    "DiarizedTranscript",
    "MeetingParticipant",
    "ScheduledSession",
    "SessionAnalysis",
    "SessionOutcome",
    "TranscriptWord",
    # Envelope
    "EnvelopeError",
    "EventKind",
    "WebhookEnvelope",
    "parse_envelope",
    # Heuristics
    "Detection",
    "detect_no_show",
    "ParticipantRole",
    "analyze_attendance",
    "classify_participant",
    "classify_outcome",
    "diarize",
    "identify_speakers",
    # Persistence and orchestration
    "SessionStore",
    "StoreError",
    "BotSessionRegistry",
    "PersistResult",
    "SessionPersister",
    "SideEffectResult",
    "PipelineResult",
    "WebhookPipeline",
]

__version__ = "0.1.0"
