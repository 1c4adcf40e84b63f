"""
Session persister.

Single place where a classified session is written and where every side
effect fans out from:

    - non-completed outcomes: status + reason + attendance, then one
      notification for the outcome
    - completed outcomes: one analyzer call (falling back to a flagged default
      analysis), one transaction for the session/analysis/child writes, then
      concurrent best-effort side effects (learning event + embedding, audio
      archival, parent summary notification)

Side effects never change the session status and never cancel each other;
each one reports a SideEffectResult.

Last Grunted: 10/15/2026
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional

from .analyzer import SessionAnalyzer, default_analysis
from .archiver import Archiver
from .embeddings import Embedder, build_session_searchable_content
from .lifecycle import SessionStatus
from .models import (
    AttendanceInfo,
    DiarizedTranscript,
    Recording,
    ScheduledSession,
    SessionAnalysis,
    SessionOutcome,
)
from .notify import NotificationKind, Notifier
from .store import SessionStore


__all__ = ["PersistResult", "SessionPersister", "SideEffectResult"]


logger = logging.getLogger(__name__)


_OUTCOME_NOTIFICATIONS = {
    SessionStatus.NO_SHOW: NotificationKind.SESSION_NO_SHOW,
    SessionStatus.COACH_NO_SHOW: NotificationKind.COACH_NO_SHOW,
    SessionStatus.PARTIAL: NotificationKind.SESSION_PARTIAL,
    SessionStatus.BOT_ERROR: NotificationKind.BOT_ERROR,
}


@dataclass(frozen=True)
class SideEffectResult:
    """Outcome of one best-effort side effect."""

    name: str
    ok: bool
    detail: str | None = None


@dataclass
class PersistResult:
    """What the persister wrote for one session."""

    applied: bool
    status: SessionStatus
    analysis: Optional[SessionAnalysis] = None
    side_effects: list[SideEffectResult] = field(default_factory=list)


def _minutes(recording: Optional[Recording]) -> Optional[int]:
    if recording is None or recording.duration_seconds is None:
        return None
    return round(recording.duration_seconds / 60)


class SessionPersister:
    """Writes classified sessions and fans out their side effects."""

    def __init__(
        self,
        store: SessionStore,
        notifier: Notifier,
        analyzer: Optional[SessionAnalyzer] = None,
        embedder: Optional[Embedder] = None,
        archiver: Optional[Archiver] = None,
        analyzer_timeout_seconds: float = 90.0,
        embedding_timeout_seconds: float = 20.0,
        archive_timeout_seconds: float = 120.0,
        notify_timeout_seconds: float = 5.0,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.analyzer = analyzer
        self.embedder = embedder
        self.archiver = archiver
        self.analyzer_timeout_seconds = analyzer_timeout_seconds
        self.embedding_timeout_seconds = embedding_timeout_seconds
        self.archive_timeout_seconds = archive_timeout_seconds
        self.notify_timeout_seconds = notify_timeout_seconds

    # -------------------------------------------------------------------------
    # Side-effect plumbing
    # -------------------------------------------------------------------------

    async def _run_side_effect(
        self,
        name: str,
        action: Awaitable[Optional[str]],
        timeout_seconds: float,
        session_id: str,
    ) -> SideEffectResult:
        try:
            detail = await asyncio.wait_for(action, timeout=timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Side effect %s for session %s timed out after %.0fs", name, session_id, timeout_seconds)
            return SideEffectResult(name=name, ok=False, detail=f"timed out after {timeout_seconds:g}s")
        except Exception as exc:  # noqa: BLE001 - side effects are best effort
            logger.warning("Side effect %s for session %s failed: %s", name, session_id, exc)
            return SideEffectResult(name=name, ok=False, detail=str(exc))
        return SideEffectResult(name=name, ok=True, detail=detail)

    async def _send_notification(
        self,
        kind: NotificationKind,
        session: ScheduledSession,
        details: dict[str, Any],
    ) -> str:
        results = await self.notifier.notify(
            kind, session.id, session.child_id, session.coach_id, details
        )
        failed = [result for result in results if not result.ok]
        if failed:
            raise RuntimeError(
                "; ".join(f"{result.route_id}: {result.detail}" for result in failed)
            )
        return f"{kind.value} sent to {len(results)} route(s)"

    async def _notify(
        self,
        kind: NotificationKind,
        session: ScheduledSession,
        details: dict[str, Any],
    ) -> SideEffectResult:
        return await self._run_side_effect(
            f"notify:{kind.value}",
            self._send_notification(kind, session, details),
            self.notify_timeout_seconds,
            session.id,
        )

    # -------------------------------------------------------------------------
    # Non-completed outcomes
    # -------------------------------------------------------------------------

    async def persist_terminal(
        self,
        session: ScheduledSession,
        outcome: SessionOutcome,
        *,
        bot_id: Optional[str] = None,
        attendance: Optional[AttendanceInfo] = None,
        recording: Optional[Recording] = None,
    ) -> PersistResult:
        """
        Persist a terminal, non-completed outcome and notify about it.

        Bot errors are flagged for attention. Nothing is sent when the
        session was already terminal.
        """
        if outcome.status == SessionStatus.COMPLETED:
            raise ValueError("Completed sessions must go through persist_completed")

        flag_reason = outcome.reason if outcome.status == SessionStatus.BOT_ERROR else None
        applied = await self.store.advance_session_status(
            session.id,
            outcome.status,
            reason=outcome.reason,
            flag_reason=flag_reason,
            attendance=attendance.model_dump() if attendance else None,
            recording_url=recording.url if recording else None,
            duration_minutes=_minutes(recording),
        )
        result = PersistResult(applied=applied, status=outcome.status)
        if not applied:
            return result

        kind = _OUTCOME_NOTIFICATIONS.get(outcome.status)
        if kind is not None:
            details: dict[str, Any] = {"reason": outcome.reason, "bot_id": bot_id}
            if attendance is not None:
                details["attendance"] = attendance.model_dump()
            result.side_effects.append(await self._notify(kind, session, details))
        return result

    # -------------------------------------------------------------------------
    # Completed outcomes
    # -------------------------------------------------------------------------

    async def _analyze(self, session: ScheduledSession, transcript_text: str) -> SessionAnalysis:
        context = await self.store.get_child_context(session.child_id, session.child_name)
        child_name = context.name

        if self.analyzer is None:
            logger.warning("No analyzer configured; using default analysis for session %s", session.id)
            return default_analysis(child_name)

        try:
            return await asyncio.wait_for(
                self.analyzer.analyze(transcript_text, context),
                timeout=self.analyzer_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Analyzer timed out after %.0fs for session %s; using default analysis",
                self.analyzer_timeout_seconds,
                session.id,
            )
        except Exception as exc:  # noqa: BLE001 - analysis failure falls back to the default
            logger.error("Analyzer failed for session %s: %s; using default analysis", session.id, exc)
        return default_analysis(child_name)

    async def _record_learning_event(
        self,
        session: ScheduledSession,
        analysis: SessionAnalysis,
        attendance: AttendanceInfo,
        duration_seconds: Optional[float],
    ) -> str:
        child_name = analysis.child_name or session.child_name or "Child"
        content = build_session_searchable_content(child_name, analysis)

        embedding: Optional[list[float]] = None
        embedding_note = "no embedder configured"
        if self.embedder is not None:
            try:
                embedding = await asyncio.wait_for(
                    self.embedder.embed(content), timeout=self.embedding_timeout_seconds
                )
                embedding_note = f"{len(embedding)}-dim embedding"
            except asyncio.TimeoutError:
                embedding_note = "embedding timed out"
                logger.warning("Embedding timed out for session %s", session.id)
            except Exception as exc:  # noqa: BLE001 - event is recorded without an embedding
                embedding_note = f"embedding failed: {exc}"
                logger.warning("Embedding failed for session %s: %s", session.id, exc)

        event_data = {
            "session_type": analysis.session_type,
            "focus_area": analysis.focus_area,
            "skills_worked_on": analysis.skills_worked_on,
            "progress_rating": analysis.progress_rating,
            "engagement_level": analysis.engagement_level,
            "confidence_level": analysis.confidence_level,
            "key_observations": analysis.key_observations,
            "duration_seconds": duration_seconds,
            "coach_talk_ratio": analysis.coach_talk_ratio,
            "child_reading_samples": analysis.child_reading_samples,
            "breakthrough_moment": analysis.breakthrough_moment,
            "concerns_noted": analysis.concerns_noted,
            "homework_assigned": analysis.homework_assigned,
            "homework_description": analysis.homework_description,
            "next_session_focus": analysis.next_session_focus,
            "summary": analysis.summary,
            "attendance": attendance.model_dump(),
        }
        inserted = await self.store.record_learning_event(
            session.id,
            session.child_id,
            session.coach_id,
            session.scheduled_date,
            event_data,
            content,
            embedding,
        )
        if not inserted:
            return "learning event already recorded"
        return f"learning event recorded with {embedding_note}"

    async def _archive_audio(self, archiver: Archiver, session: ScheduledSession, bot_id: str) -> str:
        archived = await archiver.archive(
            bot_id, session.id, session.child_id, session.scheduled_date
        )
        await self.store.update_session_audio(session.id, archived.storage_path, archived.public_url)
        return archived.storage_path

    async def persist_completed(
        self,
        session: ScheduledSession,
        outcome: SessionOutcome,
        *,
        bot_id: str,
        attendance: AttendanceInfo,
        transcript: DiarizedTranscript,
        recording: Optional[Recording] = None,
    ) -> PersistResult:
        """
        Analyze, persist and fan out a completed session.

        The analyzer runs exactly once. If the session turned terminal while
        it ran, nothing is written and no side effect fires.
        """
        transcript_text = transcript.text
        analysis = await self._analyze(session, transcript_text)

        applied = await self.store.complete_session(
            session,
            analysis,
            reason=outcome.reason,
            attendance=attendance.model_dump(),
            transcript=transcript_text,
            recording_url=recording.url if recording else None,
            duration_minutes=_minutes(recording),
        )
        result = PersistResult(applied=applied, status=SessionStatus.COMPLETED, analysis=analysis)
        if not applied:
            return result

        duration_seconds = recording.duration_seconds if recording else None
        tasks: list[Awaitable[SideEffectResult]] = [
            self._run_side_effect(
                "learning_event",
                self._record_learning_event(session, analysis, attendance, duration_seconds),
                self.embedding_timeout_seconds * 2,
                session.id,
            ),
        ]
        if self.archiver is not None and recording is not None and recording.url:
            tasks.append(
                self._run_side_effect(
                    "archive_audio",
                    self._archive_audio(self.archiver, session, bot_id),
                    self.archive_timeout_seconds,
                    session.id,
                )
            )
        else:
            result.side_effects.append(
                SideEffectResult(name="archive_audio", ok=True, detail="skipped")
            )
        tasks.append(
            self._notify(
                NotificationKind.PARENT_SUMMARY,
                session,
                {
                    "child_name": analysis.child_name or session.child_name,
                    "parent_summary": analysis.parent_summary,
                    "focus_area": analysis.focus_area,
                    "session_date": session.scheduled_date,
                },
            )
        )

        gathered = await asyncio.gather(*tasks, return_exceptions=True)
        for item in gathered:
            if isinstance(item, BaseException):
                logger.warning("Side effect for session %s raised: %s", session.id, item)
                result.side_effects.append(
                    SideEffectResult(name="unknown", ok=False, detail=str(item))
                )
            else:
                result.side_effects.append(item)

        logger.info(
            "Session %s completed: flagged=%s side_effects=%s",
            session.id,
            analysis.flagged_for_attention,
            ", ".join(f"{effect.name}={'ok' if effect.ok else 'failed'}" for effect in result.side_effects),
        )
        return result
