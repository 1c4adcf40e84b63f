"""
Tests for the SQLite session store.

Each test gets a fresh database under pytest's tmp_path.

Last Grunted: 10/15/2026
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

import pytest
import pytest_asyncio

from session_intel.lifecycle import SessionStatus
from session_intel.models import Recording, StatusChange
from session_intel.store import (
    TRANSCRIPT_STORE_LIMIT,
    SessionStore,
    StoreError,
    merge_status_history,
)

from tests.mock_data import (
    create_store,
    generate_scheduled_session,
    generate_session_analysis,
    generate_status_change,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def store(tmp_path: Path) -> AsyncIterator[SessionStore]:
    store = await create_store(tmp_path)
    await store.put_child("child_001", "Aarav Sharma", age=6, latest_assessment_score=4.5)
    await store.put_scheduled_session(generate_scheduled_session())
    yield store


def _changes(*entries: tuple[str, float]) -> list[StatusChange]:
    return [StatusChange.model_validate(generate_status_change(code, offset_seconds=t)) for code, t in entries]


# =============================================================================
# History Merge Tests
# =============================================================================


class TestMergeStatusHistory:
    """Tests for merge_status_history()."""

    def test_deduplicates_and_orders(self) -> None:
        existing = _changes(("joining_call", 0), ("in_call_recording", 60))
        incoming = _changes(("in_call_recording", 60), ("in_waiting_room", 30), ("done", 900))

        merged = merge_status_history(existing, incoming)

        assert [c.code for c in merged] == ["joining_call", "in_waiting_room", "in_call_recording", "done"]

    def test_idempotent(self) -> None:
        history = _changes(("joining_call", 0), ("done", 900))
        assert merge_status_history(history, history) == merge_status_history(history, ())


# =============================================================================
# Bot Session Tests
# =============================================================================


class TestBotSessions:
    """Tests for bot audit rows."""

    @pytest.mark.asyncio
    async def test_upsert_creates_and_merges(self, store: SessionStore) -> None:
        await store.upsert_bot_session("bot_1", status_changes=_changes(("joining_call", 0)))
        bot = await store.upsert_bot_session(
            "bot_1",
            status_changes=_changes(("joining_call", 0), ("in_call_recording", 60)),
        )

        assert bot.status == "in_call_recording"
        assert [c.code for c in bot.status_history] == ["joining_call", "in_call_recording"]

    @pytest.mark.asyncio
    async def test_redelivery_leaves_row_unchanged(self, store: SessionStore) -> None:
        changes = _changes(("joining_call", 0), ("in_call_recording", 60))
        first = await store.upsert_bot_session("bot_1", status_changes=changes)
        second = await store.upsert_bot_session("bot_1", status_changes=changes)
        assert first == second

    @pytest.mark.asyncio
    async def test_status_without_history(self, store: SessionStore) -> None:
        bot = await store.upsert_bot_session("bot_1", status="joining_call")
        assert bot.status == "joining_call"
        assert bot.status_history == []

    @pytest.mark.asyncio
    async def test_recording_fields_only_fill_in(self, store: SessionStore) -> None:
        await store.upsert_bot_session(
            "bot_1", recording=Recording(url="https://r.example.com/a.mp4", duration_seconds=1200)
        )
        bot = await store.upsert_bot_session("bot_1", recording=None)

        assert bot.recording_url == "https://r.example.com/a.mp4"
        assert bot.duration_seconds == 1200

    @pytest.mark.asyncio
    async def test_register_keeps_history(self, store: SessionStore) -> None:
        await store.upsert_bot_session("bot_1", status_changes=_changes(("joining_call", 0)))
        bot = await store.register_bot("bot_1", "sess_001", child_id="child_001", coach_id="coach_001")

        assert bot.session_id == "sess_001"
        assert bot.child_id == "child_001"
        assert [c.code for c in bot.status_history] == ["joining_call"]

    @pytest.mark.asyncio
    async def test_claim_is_at_most_once(self, store: SessionStore) -> None:
        await store.upsert_bot_session("bot_1")

        assert await store.claim_bot_processing("bot_1") is True
        assert await store.claim_bot_processing("bot_1") is False

        await store.release_bot_claim("bot_1")
        assert await store.claim_bot_processing("bot_1") is True

        await store.mark_bot_processed("bot_1")
        await store.release_bot_claim("bot_1")
        assert await store.claim_bot_processing("bot_1") is False

    @pytest.mark.asyncio
    async def test_claim_unknown_bot(self, store: SessionStore) -> None:
        assert await store.claim_bot_processing("ghost") is False

    @pytest.mark.asyncio
    async def test_get_unknown_bot(self, store: SessionStore) -> None:
        assert await store.get_bot_session("ghost") is None


# =============================================================================
# Scheduled Session Tests
# =============================================================================


class TestSessionStatus:
    """Tests for lifecycle-guarded session writes."""

    @pytest.mark.asyncio
    async def test_forward_transitions(self, store: SessionStore) -> None:
        assert await store.advance_session_status("sess_001", SessionStatus.BOT_JOINING)
        assert await store.advance_session_status(
            "sess_001", SessionStatus.IN_PROGRESS, started_at="2026-10-15T10:01:00Z"
        )

        session = await store.get_session("sess_001")
        assert session.status == SessionStatus.IN_PROGRESS
        assert session.started_at == "2026-10-15T10:01:00Z"
        assert session.completed_at is None

    @pytest.mark.asyncio
    async def test_backward_transition_is_noop(self, store: SessionStore) -> None:
        await store.advance_session_status("sess_001", SessionStatus.IN_PROGRESS)
        assert not await store.advance_session_status("sess_001", SessionStatus.BOT_JOINING)
        assert (await store.get_session("sess_001")).status == SessionStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_terminal_is_final(self, store: SessionStore) -> None:
        assert await store.advance_session_status(
            "sess_001", SessionStatus.NO_SHOW, reason="Child/parent did not join"
        )
        assert not await store.advance_session_status("sess_001", SessionStatus.PARTIAL, reason="late")
        assert not await store.complete_session(
            await store.get_session("sess_001"),
            generate_session_analysis(),
            reason="Session completed",
            attendance={},
            transcript="COACH: hi",
            recording_url=None,
            duration_minutes=None,
        )

        session = await store.get_session("sess_001")
        assert session.status == SessionStatus.NO_SHOW
        assert session.status_reason == "Child/parent did not join"
        assert session.completed_at is not None
        assert await store.get_analysis("sess_001") is None

    @pytest.mark.asyncio
    async def test_flag_reason_flags_session(self, store: SessionStore) -> None:
        await store.advance_session_status(
            "sess_001",
            SessionStatus.BOT_ERROR,
            reason="Bot kicked",
            flag_reason="Bot kicked",
            attendance={"total_participants": 0},
        )
        session = await store.get_session("sess_001")
        assert session.flagged_for_attention
        assert session.flag_reason == "Bot kicked"
        assert session.attendance == {"total_participants": 0}

    @pytest.mark.asyncio
    async def test_unknown_session(self, store: SessionStore) -> None:
        assert not await store.advance_session_status("ghost", SessionStatus.IN_PROGRESS)

    @pytest.mark.asyncio
    async def test_recording_update_keeps_status(self, store: SessionStore) -> None:
        await store.update_session_recording("sess_001", "https://r.example.com/a.mp4", 25)
        session = await store.get_session("sess_001")
        assert session.recording_url == "https://r.example.com/a.mp4"
        assert session.duration_minutes == 25
        assert session.status == SessionStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_find_sessions_on_date(self, store: SessionStore) -> None:
        await store.put_scheduled_session(generate_scheduled_session("sess_002", child_id="child_002"))
        await store.put_scheduled_session(generate_scheduled_session("sess_003", child_id="child_003"))
        await store.put_scheduled_session(
            generate_scheduled_session("sess_004", scheduled_date="2026-10-16")
        )
        await store.advance_session_status("sess_002", SessionStatus.NO_SHOW, reason="x")
        await store.advance_session_status("sess_003", SessionStatus.IN_PROGRESS)

        found = await store.find_sessions_on_date("2026-10-15")

        assert [s.id for s in found] == ["sess_001", "sess_003"]


class TestScheduledSessionSync:
    """Tests for put_scheduled_session() on an existing session."""

    @pytest.mark.asyncio
    async def test_resync_keeps_terminal_outcome(self, store: SessionStore) -> None:
        await store.advance_session_status(
            "sess_001",
            SessionStatus.NO_SHOW,
            reason="Child/parent did not join",
            flag_reason="Needs follow-up",
            attendance={"total_participants": 1},
        )

        stored = await store.put_scheduled_session(generate_scheduled_session(coach_name="Priya M."))

        assert stored.status == SessionStatus.NO_SHOW
        assert stored.status_reason == "Child/parent did not join"
        assert stored.flagged_for_attention
        assert stored.flag_reason == "Needs follow-up"
        assert stored.attendance == {"total_participants": 1}
        assert stored.completed_at is not None
        assert stored.coach_name == "Priya M."
        assert await store.get_session("sess_001") == stored

    @pytest.mark.asyncio
    async def test_resync_keeps_completed_transcript(self, store: SessionStore) -> None:
        await store.complete_session(
            await store.get_session("sess_001"),
            generate_session_analysis(),
            reason="Session completed",
            attendance={"total_participants": 2},
            transcript="COACH: Let's read.",
            recording_url="https://r.example.com/a.mp4",
            duration_minutes=30,
        )

        stored = await store.put_scheduled_session(generate_scheduled_session())

        assert stored.status == SessionStatus.COMPLETED
        assert stored.transcript == "COACH: Let's read."
        assert stored.recording_url == "https://r.example.com/a.mp4"
        assert stored.duration_minutes == 30

    @pytest.mark.asyncio
    async def test_resync_never_moves_backwards(self, store: SessionStore) -> None:
        await store.advance_session_status("sess_001", SessionStatus.IN_PROGRESS)

        stored = await store.put_scheduled_session(generate_scheduled_session())

        assert stored.status == SessionStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_scheduler_cancellation_applies(self, store: SessionStore) -> None:
        stored = await store.put_scheduled_session(
            generate_scheduled_session(status=SessionStatus.CANCELLED)
        )

        assert stored.status == SessionStatus.CANCELLED
        assert stored.completed_at is not None

    @pytest.mark.asyncio
    async def test_resync_updates_scheduler_fields(self, store: SessionStore) -> None:
        stored = await store.put_scheduled_session(
            generate_scheduled_session(child_name="Aarav S.", scheduled_date="2026-10-16")
        )

        assert stored.child_name == "Aarav S."
        assert stored.scheduled_date == "2026-10-16"
        assert stored.meeting_title == "Yestoryd - Aarav S. - Coaching"
        assert stored.status == SessionStatus.SCHEDULED


class TestCompleteSession:
    """Tests for complete_session()."""

    @pytest.mark.asyncio
    async def test_writes_session_analysis_and_child(self, store: SessionStore) -> None:
        session = await store.get_session("sess_001")
        analysis = generate_session_analysis(flagged=True)
        analysis.flag_reason = "Child seemed upset"

        applied = await store.complete_session(
            session,
            analysis,
            reason="Session completed",
            attendance={"total_participants": 2},
            transcript="x" * (TRANSCRIPT_STORE_LIMIT + 500),
            recording_url="https://r.example.com/a.mp4",
            duration_minutes=30,
        )

        assert applied
        stored = await store.get_session("sess_001")
        assert stored.status == SessionStatus.COMPLETED
        assert stored.flagged_for_attention
        assert stored.flag_reason == "Child seemed upset"
        assert len(stored.transcript) == TRANSCRIPT_STORE_LIMIT
        assert stored.duration_minutes == 30

        assert (await store.get_analysis("sess_001")).focus_area == "phonics"

        child = await store.get_child("child_001")
        assert child["sessions_completed"] == 1
        assert child["last_session_summary"] == analysis.parent_summary
        assert child["last_session_date"] == "2026-10-15"
        assert child["last_session_focus"] == "phonics"

    @pytest.mark.asyncio
    async def test_second_completion_is_refused(self, store: SessionStore) -> None:
        session = await store.get_session("sess_001")
        kwargs = dict(
            reason="Session completed",
            attendance={},
            transcript="COACH: hello",
            recording_url=None,
            duration_minutes=None,
        )
        assert await store.complete_session(session, generate_session_analysis(), **kwargs)
        assert not await store.complete_session(session, generate_session_analysis(), **kwargs)
        assert (await store.get_child("child_001"))["sessions_completed"] == 1


class TestLearningEventsAndContext:
    """Tests for learning events and analyzer context."""

    @pytest.mark.asyncio
    async def test_learning_event_once_per_session(self, store: SessionStore) -> None:
        args = ("sess_001", "child_001", "coach_001", "2026-10-15", {"focus_area": "phonics"}, "content")

        assert await store.record_learning_event(*args, embedding=[0.5, 0.25])
        assert not await store.record_learning_event(*args, embedding=None)

        event = await store.get_learning_event("sess_001")
        assert event["event_data"] == {"focus_area": "phonics"}
        assert event["embedding"] == [0.5, 0.25]
        assert event["event_type"] == "session"

    @pytest.mark.asyncio
    async def test_child_context_with_history(self, store: SessionStore) -> None:
        for index, date in enumerate(["2026-10-01", "2026-10-08", "2026-10-12", "2026-10-14"]):
            past = generate_scheduled_session(f"past_{index}", scheduled_date=date)
            await store.put_scheduled_session(past)
            await store.complete_session(
                past,
                generate_session_analysis(focus_area=f"focus_{index}"),
                reason="Session completed",
                attendance={},
                transcript="",
                recording_url=None,
                duration_minutes=None,
            )

        context = await store.get_child_context("child_001")

        assert context.name == "Aarav Sharma"
        assert context.age == 6
        assert context.score == 4.5
        assert context.sessions_completed == 4
        session_lines = [line for line in context.recent_sessions if line.startswith("- Session")]
        assert len(session_lines) == 3
        assert session_lines[0] == "- Session 1 (2026-10-14): Focus: focus_3, Progress: improved"
        assert "Sessions Completed: 4" in context.to_prompt()

    @pytest.mark.asyncio
    async def test_child_context_for_unknown_child(self, store: SessionStore) -> None:
        context = await store.get_child_context("child_404", "Meera")
        assert context.name == "Meera"
        assert context.sessions_completed == 0
        assert context.recent_sessions == []

        assert (await store.get_child_context(None)).name == "Child"


class TestStoreErrors:
    """Tests for store failure surfacing."""

    @pytest.mark.asyncio
    async def test_unreachable_database_raises_store_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        store = SessionStore(blocker / "session_intel.db")

        with pytest.raises(StoreError):
            await store.init()
