"""
Per-webhook orchestration of the session intelligence pipeline.

    status-change   -> bot row upsert -> no-show fast path or lifecycle step
    transcription   -> acknowledged only
    recording-ready -> recording details on bot row (and session)
    bot-done        -> attendance + diarization -> outcome -> persister

Every handler is safe to re-run with the same payload: history merges are
de-duplicated, status writes go through the lifecycle and analysis is
claimed at most once per bot.

Last Grunted: 10/15/2026
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from .attendance import DEFAULT_COACH_MARKERS, analyze_attendance
from .diarizer import diarize
from .envelope import (
    BotDoneData,
    EventKind,
    RecordingReadyData,
    StatusChangeData,
    WebhookEnvelope,
)
from .lifecycle import SessionStatus, is_terminal, status_for_provider
from .models import MeetingMetadata, Recording, ScheduledSession, SessionOutcome
from .no_show import detect_no_show
from .outcome import classify_outcome
from .persister import SessionPersister
from .registry import BotSessionRegistry
from .store import SessionStore, StoreError


__all__ = ["PipelineResult", "WebhookPipeline"]


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """What one webhook delivery did."""

    kind: EventKind
    status: str
    bot_id: str
    session_id: Optional[str] = None
    outcome: Optional[str] = None
    detail: Optional[str] = None


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _metadata_duration(metadata: Optional[MeetingMetadata]) -> Optional[float]:
    if metadata is None or not metadata.start_time or not metadata.end_time:
        return None
    try:
        start = datetime.fromisoformat(metadata.start_time.replace("Z", "+00:00"))
        end = datetime.fromisoformat(metadata.end_time.replace("Z", "+00:00"))
    except ValueError:
        return None
    seconds = (end - start).total_seconds()
    return seconds if seconds >= 0 else None


class WebhookPipeline:
    """Runs one webhook event through the pipeline components."""

    def __init__(
        self,
        store: SessionStore,
        registry: BotSessionRegistry,
        persister: SessionPersister,
        coach_markers: Sequence[str] = DEFAULT_COACH_MARKERS,
    ) -> None:
        self.store = store
        self.registry = registry
        self.persister = persister
        self.coach_markers = tuple(coach_markers)

    async def handle(self, envelope: WebhookEnvelope) -> PipelineResult:
        data = envelope.data
        if isinstance(data, StatusChangeData):
            return await self.handle_status_change(data)
        if isinstance(data, RecordingReadyData):
            return await self.handle_recording_ready(data)
        if isinstance(data, BotDoneData):
            return await self.handle_bot_done(data)

        logger.debug("Transcription chunk for bot %s acknowledged", data.bot_id)
        return PipelineResult(kind=envelope.kind, status="acknowledged", bot_id=data.bot_id)

    # -------------------------------------------------------------------------
    # status-change
    # -------------------------------------------------------------------------

    async def handle_status_change(self, data: StatusChangeData) -> PipelineResult:
        kind = EventKind.STATUS_CHANGE
        bot = await self.store.upsert_bot_session(
            data.bot_id, status=data.effective_status, status_changes=data.status_changes
        )

        session = await self.registry.resolve(bot)
        if session is None:
            logger.warning(
                "Status %s for bot %s has no session mapping yet", data.effective_status, data.bot_id
            )
            return PipelineResult(kind=kind, status="unresolved", bot_id=data.bot_id)

        latest = data.latest_change
        detection = (
            detect_no_show(latest.code, latest.message)
            if latest
            else detect_no_show(data.effective_status)
        )
        if detection is not None:
            persisted = await self.persister.persist_terminal(
                session,
                SessionOutcome(status=detection.status, reason=detection.reason),
                bot_id=data.bot_id,
            )
            logger.info(
                "bot=%s session=%s leave_reason=%s outcome=%s applied=%s",
                data.bot_id,
                session.id,
                detection.code,
                detection.status.value,
                persisted.applied,
            )
            return PipelineResult(
                kind=kind,
                status="processed" if persisted.applied else "no_change",
                bot_id=data.bot_id,
                session_id=session.id,
                outcome=detection.status.value,
                detail=detection.reason,
            )

        proposed = status_for_provider(data.effective_status)
        if proposed is None:
            return PipelineResult(
                kind=kind,
                status="no_change",
                bot_id=data.bot_id,
                session_id=session.id,
                detail=f"status '{data.effective_status}' has no session effect",
            )

        if proposed == SessionStatus.BOT_ERROR:
            reason = (latest.message if latest and latest.message else None) or "Bot reported a fatal error"
            persisted = await self.persister.persist_terminal(
                session,
                SessionOutcome(status=SessionStatus.BOT_ERROR, reason=reason),
                bot_id=data.bot_id,
            )
            applied = persisted.applied
        else:
            started_at = None
            if proposed == SessionStatus.IN_PROGRESS:
                started_at = (latest.created_at if latest else None) or _utc_now()
            applied = await self.store.advance_session_status(
                session.id, proposed, started_at=started_at
            )

        logger.info(
            "bot=%s session=%s provider_status=%s proposed=%s applied=%s",
            data.bot_id,
            session.id,
            data.effective_status,
            proposed.value,
            applied,
        )
        return PipelineResult(
            kind=kind,
            status="processed" if applied else "no_change",
            bot_id=data.bot_id,
            session_id=session.id,
            outcome=proposed.value,
        )

    # -------------------------------------------------------------------------
    # recording-ready
    # -------------------------------------------------------------------------

    async def handle_recording_ready(self, data: RecordingReadyData) -> PipelineResult:
        kind = EventKind.RECORDING_READY
        bot = await self.store.upsert_bot_session(data.bot_id, recording=data.recording)
        session = await self.registry.resolve(bot)
        if session is None:
            logger.info("Recording for bot %s stored; session not resolved yet", data.bot_id)
            return PipelineResult(kind=kind, status="processed", bot_id=data.bot_id)

        if data.recording is not None:
            duration = data.recording.duration_seconds
            await self.store.update_session_recording(
                session.id,
                data.recording.url,
                round(duration / 60) if duration is not None else None,
            )
        return PipelineResult(
            kind=kind, status="processed", bot_id=data.bot_id, session_id=session.id
        )

    # -------------------------------------------------------------------------
    # bot-done
    # -------------------------------------------------------------------------

    async def handle_bot_done(self, data: BotDoneData) -> PipelineResult:
        kind = EventKind.BOT_DONE
        bot = await self.store.upsert_bot_session(data.bot_id, recording=data.recording)

        participant_names = [p.name for p in data.meeting_participants]
        session = await self.registry.resolve_or_match(
            bot, data.meeting_metadata, participant_names
        )
        if session is None:
            logger.error(
                "Cannot resolve session for bot %s (meeting '%s'); nothing persisted",
                data.bot_id,
                data.meeting_metadata.title if data.meeting_metadata else None,
            )
            return PipelineResult(kind=kind, status="unresolved", bot_id=data.bot_id)

        if is_terminal(session.status):
            logger.info(
                "bot=%s session=%s already %s; skipping analysis",
                data.bot_id,
                session.id,
                session.status.value,
            )
            return PipelineResult(
                kind=kind,
                status="no_change",
                bot_id=data.bot_id,
                session_id=session.id,
                outcome=session.status.value,
                detail="session already terminal",
            )

        if not await self.store.claim_bot_processing(data.bot_id):
            logger.info("bot=%s session=%s already claimed; duplicate delivery", data.bot_id, session.id)
            return PipelineResult(
                kind=kind,
                status="duplicate",
                bot_id=data.bot_id,
                session_id=session.id,
                detail="bot already processed",
            )

        try:
            result = await self._classify_and_persist(data, bot.recording_url, bot.duration_seconds, session)
        except Exception:
            try:
                await self.store.release_bot_claim(data.bot_id)
            except StoreError as exc:
                logger.error("Could not release processing claim for bot %s: %s", data.bot_id, exc)
            raise

        await self.store.mark_bot_processed(data.bot_id)
        return result

    async def _classify_and_persist(
        self,
        data: BotDoneData,
        recording_url: Optional[str],
        recording_seconds: Optional[float],
        session: ScheduledSession,
    ) -> PipelineResult:
        recording = Recording(url=recording_url, duration_seconds=recording_seconds)
        duration = recording.duration_seconds
        if duration is None:
            duration = _metadata_duration(data.meeting_metadata)

        words = data.transcript.words if data.transcript else []
        participants = data.meeting_participants

        attendance = analyze_attendance(
            participants,
            duration,
            coach_names=[session.coach_name] if session.coach_name else (),
            markers=self.coach_markers,
        )
        diarized = diarize(words, participants)
        transcript_length = len(" ".join(word.text for word in words).strip())
        outcome = classify_outcome(attendance, transcript_length, duration)

        logger.info(
            "bot=%s session=%s participants=%d duration=%s transcript_chars=%d outcome=%s reason=%s",
            data.bot_id,
            session.id,
            attendance.total_participants,
            duration,
            transcript_length,
            outcome.status.value,
            outcome.reason,
        )

        if outcome.status == SessionStatus.COMPLETED:
            persisted = await self.persister.persist_completed(
                session,
                outcome,
                bot_id=data.bot_id,
                attendance=attendance,
                transcript=diarized,
                recording=recording,
            )
        else:
            persisted = await self.persister.persist_terminal(
                session,
                outcome,
                bot_id=data.bot_id,
                attendance=attendance,
                recording=recording,
            )

        failed = [effect.name for effect in persisted.side_effects if not effect.ok]
        return PipelineResult(
            kind=EventKind.BOT_DONE,
            status="processed" if persisted.applied else "no_change",
            bot_id=data.bot_id,
            session_id=session.id,
            outcome=outcome.status.value,
            detail=outcome.reason + (f" (failed side effects: {', '.join(failed)})" if failed else ""),
        )
