"""
Durable session store backed by SQLite.

Holds the bot audit rows, the scheduled sessions the pipeline mutates, the
child records it reads for analyzer context, stored analyses and learning
events.

Concurrency:
    SQLite serializes writers. Every status write runs inside
    ``BEGIN IMMEDIATE``, re-reads the current status and applies
    :func:`session_intel.lifecycle.transition` before writing, so two
    concurrent deliveries can never both move a session into (different)
    terminal states.

Last Grunted: 10/15/2026
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Optional

import aiosqlite

from .lifecycle import SessionStatus, TERMINAL_STATUSES, transition
from .models import (
    BotSession,
    ChildContext,
    Recording,
    ScheduledSession,
    SessionAnalysis,
    StatusChange,
)


__all__ = ["SessionStore", "StoreError", "TRANSCRIPT_STORE_LIMIT"]


logger = logging.getLogger(__name__)


TRANSCRIPT_STORE_LIMIT = 10_000
RECENT_SESSION_LIMIT = 3

CREATE_BOT_SESSIONS = """
CREATE TABLE IF NOT EXISTS bot_sessions (
    bot_id TEXT PRIMARY KEY,
    session_id TEXT,
    child_id TEXT,
    coach_id TEXT,
    meeting_url TEXT,
    status TEXT,
    status_history TEXT NOT NULL DEFAULT '[]',
    recording_url TEXT,
    duration_seconds REAL,
    processing_started_at TEXT,
    processing_completed_at TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_SCHEDULED_SESSIONS = """
CREATE TABLE IF NOT EXISTS scheduled_sessions (
    id TEXT PRIMARY KEY,
    child_id TEXT,
    coach_id TEXT,
    coach_name TEXT,
    child_name TEXT,
    scheduled_date TEXT,
    meeting_title TEXT,
    status TEXT NOT NULL DEFAULT 'scheduled',
    started_at TEXT,
    completed_at TEXT,
    attendance TEXT,
    status_reason TEXT,
    flagged_for_attention INTEGER NOT NULL DEFAULT 0,
    flag_reason TEXT,
    recording_url TEXT,
    duration_minutes INTEGER,
    transcript TEXT,
    audio_storage_path TEXT,
    audio_url TEXT
)
"""

CREATE_CHILDREN = """
CREATE TABLE IF NOT EXISTS children (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    age INTEGER,
    latest_assessment_score REAL,
    sessions_completed INTEGER NOT NULL DEFAULT 0,
    last_session_summary TEXT,
    last_session_date TEXT,
    last_session_focus TEXT
)
"""

CREATE_SESSION_ANALYSES = """
CREATE TABLE IF NOT EXISTS session_analyses (
    session_id TEXT PRIMARY KEY,
    analysis_json TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (session_id) REFERENCES scheduled_sessions(id)
)
"""

CREATE_LEARNING_EVENTS = """
CREATE TABLE IF NOT EXISTS learning_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL UNIQUE,
    child_id TEXT,
    coach_id TEXT,
    event_type TEXT NOT NULL DEFAULT 'session',
    event_date TEXT,
    event_data TEXT NOT NULL DEFAULT '{}',
    content_for_embedding TEXT,
    embedding TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_SESSION_DATE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_scheduled_sessions_date
ON scheduled_sessions (scheduled_date)
"""

_DDL = [
    CREATE_BOT_SESSIONS,
    CREATE_SCHEDULED_SESSIONS,
    CREATE_CHILDREN,
    CREATE_SESSION_ANALYSES,
    CREATE_LEARNING_EVENTS,
    CREATE_SESSION_DATE_INDEX,
]

# Columns a scheduler re-sync may rewrite on an existing session.
SCHEDULER_OWNED_COLUMNS = (
    "child_id",
    "coach_id",
    "coach_name",
    "child_name",
    "scheduled_date",
    "meeting_title",
)


class StoreError(Exception):
    """Raised when the durable store is unreachable or corrupt."""

    def __init__(self, operation: str, cause: Exception) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Session store failed during {operation}: {cause}")


def _utc_now() -> str:
    """Return current UTC timestamp as ISO 8601 string with 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def merge_status_history(
    existing: Iterable[StatusChange],
    incoming: Iterable[StatusChange],
) -> list[StatusChange]:
    """
    Merge redelivered history into the stored history.

    Entries are de-duplicated by ``(code, created_at)`` and kept in
    ``created_at`` order, so reprocessing the same event yields the same list.
    """
    merged: dict[tuple[str, str], StatusChange] = {}
    for change in list(existing) + list(incoming):
        merged.setdefault(change.key, change)
    return sorted(merged.values(), key=lambda change: change.created_at or "")


def _bot_from_row(row: aiosqlite.Row) -> BotSession:
    data = dict(row)
    data["status_history"] = [
        StatusChange.model_validate(item) for item in json.loads(data["status_history"] or "[]")
    ]
    return BotSession.model_validate(data)


def _session_from_row(row: aiosqlite.Row) -> ScheduledSession:
    data = dict(row)
    data["attendance"] = json.loads(data["attendance"]) if data["attendance"] else None
    data["flagged_for_attention"] = bool(data["flagged_for_attention"])
    return ScheduledSession.model_validate(data)


def _history_json(history: Iterable[StatusChange]) -> str:
    return json.dumps([change.model_dump() for change in history])


class SessionStore:
    """
    Async SQLite persistence for the session intelligence pipeline.

    Every public method opens its own connection; the store itself holds no
    connection state and is safe to share between concurrent requests.

    Example:
        >>> store = SessionStore(Path("./output/session_intel.db"))
        >>> await store.init()
        >>> bot = await store.upsert_bot_session("bot_123", status="joining_call")
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    # -------------------------------------------------------------------------
    # Connection handling
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _connect(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
                await db.execute("PRAGMA busy_timeout = 5000")
                db.row_factory = aiosqlite.Row
                yield db
        except sqlite3.Error as exc:
            logger.error("Session store error during %s: %s", operation, exc)
            raise StoreError(operation, exc) from exc

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        async with self._connect(operation) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")

    async def init(self) -> None:
        """Create all tables. Called once at server startup via FastAPI lifespan."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError("init", exc) from exc

        async with self._connect("init") as db:
            for stmt in _DDL:
                await db.execute(stmt)
        logger.info("Session store ready: %s", self.db_path)

    # -------------------------------------------------------------------------
    # Bot sessions
    # -------------------------------------------------------------------------

    async def _fetch_bot(self, db: aiosqlite.Connection, bot_id: str) -> Optional[BotSession]:
        async with db.execute("SELECT * FROM bot_sessions WHERE bot_id = ?", (bot_id,)) as cursor:
            row = await cursor.fetchone()
        return _bot_from_row(row) if row else None

    async def upsert_bot_session(
        self,
        bot_id: str,
        status: Optional[str] = None,
        status_changes: Iterable[StatusChange] = (),
        recording: Optional[Recording] = None,
    ) -> BotSession:
        """
        Create or update the audit row of a bot.

        The stored history is merged with ``status_changes``; the last known
        status is the newest history code (falling back to ``status``).
        Recording fields only ever fill in, never blank out.
        """
        async with self._transaction("upsert_bot_session") as db:
            existing = await self._fetch_bot(db, bot_id)
            history = merge_status_history(
                existing.status_history if existing else (),
                status_changes,
            )
            last_status = history[-1].code if history else None
            if last_status is None:
                last_status = status or (existing.status if existing else None)

            await db.execute(
                """
                INSERT INTO bot_sessions (bot_id, status, status_history, recording_url, duration_seconds)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(bot_id) DO UPDATE SET
                    status = excluded.status,
                    status_history = excluded.status_history,
                    recording_url = COALESCE(excluded.recording_url, bot_sessions.recording_url),
                    duration_seconds = COALESCE(excluded.duration_seconds, bot_sessions.duration_seconds)
                """,
                (
                    bot_id,
                    last_status,
                    _history_json(history),
                    recording.url if recording else None,
                    recording.duration_seconds if recording else None,
                ),
            )
            bot = await self._fetch_bot(db, bot_id)

        if bot is None:
            raise StoreError("upsert_bot_session", LookupError(f"bot {bot_id} missing after write"))
        return bot

    async def register_bot(
        self,
        bot_id: str,
        session_id: str,
        child_id: Optional[str] = None,
        coach_id: Optional[str] = None,
        meeting_url: Optional[str] = None,
    ) -> BotSession:
        """Record the bot-to-session mapping created by the scheduler."""
        async with self._transaction("register_bot") as db:
            await db.execute(
                """
                INSERT INTO bot_sessions (bot_id, session_id, child_id, coach_id, meeting_url)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(bot_id) DO UPDATE SET
                    session_id = excluded.session_id,
                    child_id = COALESCE(excluded.child_id, bot_sessions.child_id),
                    coach_id = COALESCE(excluded.coach_id, bot_sessions.coach_id),
                    meeting_url = COALESCE(excluded.meeting_url, bot_sessions.meeting_url)
                """,
                (bot_id, session_id, child_id, coach_id, meeting_url),
            )
            bot = await self._fetch_bot(db, bot_id)

        if bot is None:
            raise StoreError("register_bot", LookupError(f"bot {bot_id} missing after write"))
        return bot

    async def get_bot_session(self, bot_id: str) -> Optional[BotSession]:
        async with self._connect("get_bot_session") as db:
            return await self._fetch_bot(db, bot_id)

    async def attach_session(self, bot_id: str, session: ScheduledSession) -> None:
        """Link a bot row to a session resolved after the fact."""
        async with self._transaction("attach_session") as db:
            await db.execute(
                """
                UPDATE bot_sessions
                SET session_id = ?,
                    child_id = COALESCE(child_id, ?),
                    coach_id = COALESCE(coach_id, ?)
                WHERE bot_id = ?
                """,
                (session.id, session.child_id, session.coach_id, bot_id),
            )

    async def claim_bot_processing(self, bot_id: str) -> bool:
        """
        Atomically claim the bot-done processing slot.

        Returns False when another delivery already claimed it.
        """
        async with self._transaction("claim_bot_processing") as db:
            cursor = await db.execute(
                """
                UPDATE bot_sessions
                SET processing_started_at = ?
                WHERE bot_id = ? AND processing_started_at IS NULL
                """,
                (_utc_now(), bot_id),
            )
            claimed = cursor.rowcount == 1
        return claimed

    async def release_bot_claim(self, bot_id: str) -> None:
        """Drop an unfinished claim so a provider retry can process the bot."""
        async with self._transaction("release_bot_claim") as db:
            await db.execute(
                """
                UPDATE bot_sessions
                SET processing_started_at = NULL
                WHERE bot_id = ? AND processing_completed_at IS NULL
                """,
                (bot_id,),
            )

    async def mark_bot_processed(self, bot_id: str) -> None:
        async with self._transaction("mark_bot_processed") as db:
            await db.execute(
                "UPDATE bot_sessions SET processing_completed_at = ? WHERE bot_id = ?",
                (_utc_now(), bot_id),
            )

    # -------------------------------------------------------------------------
    # Scheduled sessions and children
    # -------------------------------------------------------------------------

    async def put_scheduled_session(self, session: ScheduledSession) -> ScheduledSession:
        """
        Insert or update a session as published by the scheduling system.

        A new session is stored as given. For a known session only the
        scheduler-owned columns are rewritten; the published status goes
        through ``transition`` so a terminal outcome and the fields the
        pipeline recorded with it survive a re-sync.
        """
        async with self._transaction("put_scheduled_session") as db:
            current = await self._current_status(db, session.id)
            if current is None:
                data = session.model_dump(mode="json")
                data["attendance"] = json.dumps(data["attendance"]) if data["attendance"] else None
                data["flagged_for_attention"] = int(data["flagged_for_attention"])
                columns = list(data)
                placeholders = ", ".join("?" for _ in columns)
                await db.execute(
                    f"INSERT INTO scheduled_sessions ({', '.join(columns)}) VALUES ({placeholders})",
                    [data[col] for col in columns],
                )
            else:
                assignments = ", ".join(f"{col} = ?" for col in SCHEDULER_OWNED_COLUMNS)
                await db.execute(
                    f"UPDATE scheduled_sessions SET {assignments} WHERE id = ?",
                    [getattr(session, col) for col in SCHEDULER_OWNED_COLUMNS] + [session.id],
                )

                new_status = transition(current, session.status)
                if new_status is None:
                    if session.status != current:
                        logger.info(
                            "Session %s re-synced as %s; keeping %s",
                            session.id, session.status.value, current.value,
                        )
                else:
                    completed_at = _utc_now() if new_status in TERMINAL_STATUSES else None
                    await db.execute(
                        """
                        UPDATE scheduled_sessions SET
                            status = ?,
                            completed_at = COALESCE(?, completed_at)
                        WHERE id = ?
                        """,
                        (new_status.value, completed_at, session.id),
                    )
                    logger.info(
                        "Session %s: %s -> %s (scheduler)", session.id, current.value, new_status.value
                    )

            async with db.execute(
                "SELECT * FROM scheduled_sessions WHERE id = ?", (session.id,)
            ) as cursor:
                row = await cursor.fetchone()

        return _session_from_row(row)

    async def put_child(
        self,
        child_id: str,
        name: str,
        age: Optional[int] = None,
        latest_assessment_score: Optional[float] = None,
        sessions_completed: int = 0,
    ) -> None:
        async with self._transaction("put_child") as db:
            await db.execute(
                """
                INSERT INTO children (id, name, age, latest_assessment_score, sessions_completed)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    age = excluded.age,
                    latest_assessment_score = excluded.latest_assessment_score
                """,
                (child_id, name, age, latest_assessment_score, sessions_completed),
            )

    async def get_child(self, child_id: str) -> Optional[dict[str, Any]]:
        async with self._connect("get_child") as db:
            async with db.execute("SELECT * FROM children WHERE id = ?", (child_id,)) as cursor:
                row = await cursor.fetchone()
        return dict(row) if row else None

    async def get_session(self, session_id: str) -> Optional[ScheduledSession]:
        async with self._connect("get_session") as db:
            async with db.execute(
                "SELECT * FROM scheduled_sessions WHERE id = ?", (session_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return _session_from_row(row) if row else None

    async def find_sessions_on_date(self, scheduled_date: str) -> list[ScheduledSession]:
        """Sessions on ``scheduled_date`` still open or already completed."""
        statuses = [
            status.value
            for status in SessionStatus
            if status not in TERMINAL_STATUSES or status == SessionStatus.COMPLETED
        ]
        placeholders = ", ".join("?" for _ in statuses)
        async with self._connect("find_sessions_on_date") as db:
            async with db.execute(
                f"""
                SELECT * FROM scheduled_sessions
                WHERE scheduled_date = ? AND status IN ({placeholders})
                ORDER BY id
                """,
                [scheduled_date, *statuses],
            ) as cursor:
                rows = await cursor.fetchall()
        return [_session_from_row(row) for row in rows]

    async def _current_status(
        self, db: aiosqlite.Connection, session_id: str
    ) -> Optional[SessionStatus]:
        async with db.execute(
            "SELECT status FROM scheduled_sessions WHERE id = ?", (session_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return SessionStatus(row["status"]) if row else None

    async def advance_session_status(
        self,
        session_id: str,
        proposed: SessionStatus,
        *,
        reason: Optional[str] = None,
        flag_reason: Optional[str] = None,
        attendance: Optional[dict[str, Any]] = None,
        started_at: Optional[str] = None,
        recording_url: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> bool:
        """
        Move a session to ``proposed`` if the lifecycle allows it.

        Returns True when the status was written, False when the transition
        is a no-op (unknown session, terminal status already set or a
        backwards move). ``flag_reason`` flags the session for attention.
        Terminal statuses stamp ``completed_at``.
        """
        async with self._transaction("advance_session_status") as db:
            current = await self._current_status(db, session_id)
            if current is None:
                logger.warning("Cannot advance unknown session %s", session_id)
                return False

            new_status = transition(current, proposed)
            if new_status is None:
                logger.debug(
                    "Ignoring %s -> %s for session %s", current.value, proposed.value, session_id
                )
                return False

            completed_at = _utc_now() if new_status in TERMINAL_STATUSES else None
            await db.execute(
                """
                UPDATE scheduled_sessions SET
                    status = ?,
                    status_reason = COALESCE(?, status_reason),
                    flagged_for_attention = CASE WHEN ? THEN 1 ELSE flagged_for_attention END,
                    flag_reason = COALESCE(?, flag_reason),
                    attendance = COALESCE(?, attendance),
                    started_at = COALESCE(started_at, ?),
                    completed_at = COALESCE(?, completed_at),
                    recording_url = COALESCE(?, recording_url),
                    duration_minutes = COALESCE(?, duration_minutes)
                WHERE id = ?
                """,
                (
                    new_status.value,
                    reason,
                    1 if flag_reason else 0,
                    flag_reason,
                    json.dumps(attendance) if attendance is not None else None,
                    started_at,
                    completed_at,
                    recording_url,
                    duration_minutes,
                    session_id,
                ),
            )

        logger.info("Session %s: %s -> %s", session_id, current.value, new_status.value)
        return True

    async def update_session_recording(
        self,
        session_id: str,
        recording_url: Optional[str],
        duration_minutes: Optional[int],
    ) -> None:
        """Store recording details without touching the status."""
        async with self._transaction("update_session_recording") as db:
            await db.execute(
                """
                UPDATE scheduled_sessions SET
                    recording_url = COALESCE(?, recording_url),
                    duration_minutes = COALESCE(?, duration_minutes)
                WHERE id = ?
                """,
                (recording_url, duration_minutes, session_id),
            )

    async def complete_session(
        self,
        session: ScheduledSession,
        analysis: SessionAnalysis,
        *,
        reason: str,
        attendance: dict[str, Any],
        transcript: str,
        recording_url: Optional[str],
        duration_minutes: Optional[int],
    ) -> bool:
        """
        Persist a completed session and its analysis in one transaction.

        Writes the session status and analysis-derived fields, the analysis
        row, the child's cached last-session summary and the completed-session
        counter. Returns False (writing nothing) when the session already
        reached a terminal status.
        """
        async with self._transaction("complete_session") as db:
            current = await self._current_status(db, session.id)
            if current is None:
                logger.warning("Cannot complete unknown session %s", session.id)
                return False
            if transition(current, SessionStatus.COMPLETED) is None:
                logger.info(
                    "Session %s already %s; not recording completion", session.id, current.value
                )
                return False

            now = _utc_now()
            await db.execute(
                """
                UPDATE scheduled_sessions SET
                    status = ?,
                    status_reason = ?,
                    completed_at = ?,
                    attendance = ?,
                    transcript = ?,
                    recording_url = COALESCE(?, recording_url),
                    duration_minutes = COALESCE(?, duration_minutes),
                    flagged_for_attention = ?,
                    flag_reason = ?
                WHERE id = ?
                """,
                (
                    SessionStatus.COMPLETED.value,
                    reason,
                    now,
                    json.dumps(attendance),
                    transcript[:TRANSCRIPT_STORE_LIMIT],
                    recording_url,
                    duration_minutes,
                    1 if analysis.flagged_for_attention else 0,
                    analysis.flag_reason,
                    session.id,
                ),
            )
            await db.execute(
                """
                INSERT INTO session_analyses (session_id, analysis_json)
                VALUES (?, ?)
                ON CONFLICT(session_id) DO NOTHING
                """,
                (session.id, analysis.model_dump_json()),
            )
            if session.child_id:
                await db.execute(
                    """
                    UPDATE children SET
                        sessions_completed = sessions_completed + 1,
                        last_session_summary = ?,
                        last_session_date = ?,
                        last_session_focus = ?
                    WHERE id = ?
                    """,
                    (
                        analysis.parent_summary,
                        session.scheduled_date or now[:10],
                        analysis.focus_area,
                        session.child_id,
                    ),
                )

        logger.info("Session %s: %s -> completed", session.id, current.value)
        return True

    async def update_session_audio(
        self,
        session_id: str,
        storage_path: str,
        public_url: Optional[str],
    ) -> None:
        async with self._transaction("update_session_audio") as db:
            await db.execute(
                "UPDATE scheduled_sessions SET audio_storage_path = ?, audio_url = ? WHERE id = ?",
                (storage_path, public_url, session_id),
            )

    # -------------------------------------------------------------------------
    # Analyses, learning events and child context
    # -------------------------------------------------------------------------

    async def get_analysis(self, session_id: str) -> Optional[SessionAnalysis]:
        async with self._connect("get_analysis") as db:
            async with db.execute(
                "SELECT analysis_json FROM session_analyses WHERE session_id = ?", (session_id,)
            ) as cursor:
                row = await cursor.fetchone()
        return SessionAnalysis.model_validate_json(row["analysis_json"]) if row else None

    async def record_learning_event(
        self,
        session_id: str,
        child_id: Optional[str],
        coach_id: Optional[str],
        event_date: Optional[str],
        event_data: dict[str, Any],
        content_for_embedding: str,
        embedding: Optional[list[float]] = None,
    ) -> bool:
        """Insert the learning event of a completed session (once per session)."""
        async with self._transaction("record_learning_event") as db:
            cursor = await db.execute(
                """
                INSERT INTO learning_events (
                    session_id, child_id, coach_id, event_date, event_data,
                    content_for_embedding, embedding
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO NOTHING
                """,
                (
                    session_id,
                    child_id,
                    coach_id,
                    event_date,
                    json.dumps(event_data),
                    content_for_embedding,
                    json.dumps(embedding) if embedding is not None else None,
                ),
            )
            inserted = cursor.rowcount == 1
        return inserted

    async def get_learning_event(self, session_id: str) -> Optional[dict[str, Any]]:
        async with self._connect("get_learning_event") as db:
            async with db.execute(
                "SELECT * FROM learning_events WHERE session_id = ?", (session_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if not row:
            return None
        data = dict(row)
        data["event_data"] = json.loads(data["event_data"] or "{}")
        data["embedding"] = json.loads(data["embedding"]) if data["embedding"] else None
        return data

    async def get_child_context(
        self,
        child_id: Optional[str],
        fallback_name: Optional[str] = None,
    ) -> ChildContext:
        """
        Build the analyzer context for a child.

        Includes the child's profile and the last three completed sessions
        that have a stored analysis. Unknown children get a name-only context.
        """
        if not child_id:
            return ChildContext(name=fallback_name or "Child")

        async with self._connect("get_child_context") as db:
            async with db.execute("SELECT * FROM children WHERE id = ?", (child_id,)) as cursor:
                child = await cursor.fetchone()
            async with db.execute(
                """
                SELECT s.scheduled_date, a.analysis_json
                FROM scheduled_sessions s
                JOIN session_analyses a ON a.session_id = s.id
                WHERE s.child_id = ? AND s.status = ?
                ORDER BY s.scheduled_date DESC, s.completed_at DESC
                LIMIT ?
                """,
                (child_id, SessionStatus.COMPLETED.value, RECENT_SESSION_LIMIT),
            ) as cursor:
                recent_rows = await cursor.fetchall()

        recent: list[str] = []
        for index, row in enumerate(recent_rows, 1):
            past = SessionAnalysis.model_validate_json(row["analysis_json"])
            recent.append(
                f"- Session {index} ({row['scheduled_date'] or 'unknown date'}): "
                f"Focus: {past.focus_area or 'n/a'}, Progress: {past.progress_rating or 'n/a'}"
            )
            if past.summary:
                recent.append(f"  Summary: {past.summary[:200]}")

        if child is None:
            return ChildContext(name=fallback_name or "Child", recent_sessions=recent)

        return ChildContext(
            name=child["name"],
            age=child["age"],
            score=child["latest_assessment_score"],
            sessions_completed=child["sessions_completed"],
            recent_sessions=recent,
        )
