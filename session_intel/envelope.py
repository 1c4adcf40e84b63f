"""Webhook envelope parsing and event-kind discrimination."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from session_intel.models import (
    MeetingMetadata,
    MeetingParticipant,
    Recording,
    StatusChange,
    Transcript,
)


class EventKind(str, Enum):
    """Supported webhook event kinds."""

    STATUS_CHANGE = "bot.status_change"
    TRANSCRIPTION = "bot.transcription"
    RECORDING_READY = "bot.recording_ready"
    BOT_DONE = "bot.done"


_KIND_ALIASES = {
    "status_change": EventKind.STATUS_CHANGE,
    "transcription": EventKind.TRANSCRIPTION,
    "recording_ready": EventKind.RECORDING_READY,
    "done": EventKind.BOT_DONE,
}


class EnvelopeError(Exception):
    """Raised when a webhook body cannot be turned into a known event."""


class StatusChangeData(BaseModel):
    """Payload of ``bot.status_change``."""

    bot_id: str = Field(..., min_length=1)
    status: Optional[str] = None
    status_changes: list[StatusChange] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("status", mode="before")
    @classmethod
    def _status_code(cls, value: Any) -> Any:
        # Some provider versions send {"code": ..., "message": ...}.
        if isinstance(value, dict):
            return value.get("code")
        return value

    @property
    def latest_change(self) -> StatusChange | None:
        return self.status_changes[-1] if self.status_changes else None

    @property
    def effective_status(self) -> str | None:
        if self.status:
            return self.status
        latest = self.latest_change
        return latest.code if latest else None


class TranscriptionData(BaseModel):
    """Payload of ``bot.transcription`` (acknowledged, not used)."""

    bot_id: str = Field(..., min_length=1)

    model_config = {"extra": "ignore"}


class RecordingReadyData(BaseModel):
    """Payload of ``bot.recording_ready``."""

    bot_id: str = Field(..., min_length=1)
    recording: Optional[Recording] = None

    model_config = {"extra": "ignore"}


class BotDoneData(BaseModel):
    """Payload of ``bot.done``."""

    bot_id: str = Field(..., min_length=1)
    transcript: Optional[Transcript] = None
    recording: Optional[Recording] = None
    meeting_metadata: Optional[MeetingMetadata] = None
    meeting_participants: list[MeetingParticipant] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("meeting_participants", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value


EventData = Union[StatusChangeData, TranscriptionData, RecordingReadyData, BotDoneData]

_DATA_MODELS: dict[EventKind, type[BaseModel]] = {
    EventKind.STATUS_CHANGE: StatusChangeData,
    EventKind.TRANSCRIPTION: TranscriptionData,
    EventKind.RECORDING_READY: RecordingReadyData,
    EventKind.BOT_DONE: BotDoneData,
}


@dataclass(frozen=True)
class WebhookEnvelope:
    """A validated, kind-discriminated webhook event."""

    kind: EventKind
    data: EventData

    @property
    def bot_id(self) -> str:
        return self.data.bot_id


def normalize_kind(raw_kind: Any) -> EventKind:
    """Resolve canonical, short and hyphenated event names."""
    if not isinstance(raw_kind, str) or not raw_kind.strip():
        raise EnvelopeError("Webhook payload has no event kind")

    candidate = raw_kind.strip().lower().replace("-", "_")
    try:
        return EventKind(candidate)
    except ValueError:
        pass

    short = candidate[4:] if candidate.startswith("bot.") else candidate
    kind = _KIND_ALIASES.get(short)
    if kind is None:
        raise EnvelopeError(f"Unknown webhook event kind '{raw_kind}'")
    return kind


def parse_envelope(body: Union[bytes, str, dict[str, Any]]) -> WebhookEnvelope:
    """
    Validate and discriminate an inbound webhook body.

    Args:
        body: Raw request body or an already-decoded JSON object.

    Returns:
        WebhookEnvelope with typed event data.

    Raises:
        EnvelopeError: If the body is not JSON, has an unknown kind, or the
            event data fails validation.
    """
    if isinstance(body, (bytes, str)):
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise EnvelopeError(f"Webhook body is not valid JSON: {exc}") from exc
    else:
        payload = body

    if not isinstance(payload, dict):
        raise EnvelopeError("Webhook body must be a JSON object")

    kind = normalize_kind(payload.get("event") or payload.get("type"))

    data = payload.get("data")
    if not isinstance(data, dict):
        raise EnvelopeError(f"Webhook event '{kind.value}' has no data object")

    try:
        parsed = _DATA_MODELS[kind].model_validate(data)
    except ValidationError as exc:
        raise EnvelopeError(f"Invalid '{kind.value}' payload: {exc}") from exc

    return WebhookEnvelope(kind=kind, data=parsed)  # type: ignore[arg-type]
