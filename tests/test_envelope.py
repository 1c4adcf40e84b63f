"""
Tests for webhook envelope parsing.

Last Grunted: 10/15/2026
"""

from __future__ import annotations

import json

import pytest

from session_intel.envelope import (
    BotDoneData,
    EnvelopeError,
    EventKind,
    RecordingReadyData,
    StatusChangeData,
    normalize_kind,
    parse_envelope,
)

from tests.mock_data import (
    generate_bot_done_payload,
    generate_conversation_words,
    generate_participants,
    generate_recording_ready_payload,
    generate_status_change,
    generate_status_change_payload,
)


class TestNormalizeKind:
    """Tests for event-kind aliases."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("bot.status_change", EventKind.STATUS_CHANGE),
            ("status_change", EventKind.STATUS_CHANGE),
            ("bot.status-change", EventKind.STATUS_CHANGE),
            ("BOT.DONE", EventKind.BOT_DONE),
            ("done", EventKind.BOT_DONE),
            ("recording_ready", EventKind.RECORDING_READY),
            ("bot.transcription", EventKind.TRANSCRIPTION),
        ],
    )
    def test_aliases(self, raw: str, expected: EventKind) -> None:
        assert normalize_kind(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", 42, "bot.exploded", "calendar.update"])
    def test_unknown_kinds(self, raw: object) -> None:
        with pytest.raises(EnvelopeError):
            normalize_kind(raw)


class TestParseEnvelope:
    """Tests for parse_envelope()."""

    def test_status_change(self) -> None:
        payload = generate_status_change_payload(
            "bot_1",
            "in_call_recording",
            history=[generate_status_change("joining_call", offset_seconds=-60)],
        )

        envelope = parse_envelope(json.dumps(payload).encode())

        assert envelope.kind == EventKind.STATUS_CHANGE
        assert envelope.bot_id == "bot_1"
        assert isinstance(envelope.data, StatusChangeData)
        assert envelope.data.status == "in_call_recording"
        assert [c.code for c in envelope.data.status_changes] == ["joining_call", "in_call_recording"]
        assert envelope.data.latest_change.code == "in_call_recording"

    def test_status_change_without_status_uses_latest_history(self) -> None:
        payload = generate_status_change_payload("bot_1", "noone_joined_timeout")
        del payload["data"]["status"]

        envelope = parse_envelope(payload)

        assert envelope.data.effective_status == "noone_joined_timeout"

    def test_type_key_is_accepted(self) -> None:
        envelope = parse_envelope({"type": "transcription", "data": {"bot_id": "bot_9", "words": []}})
        assert envelope.kind == EventKind.TRANSCRIPTION

    def test_recording_ready(self) -> None:
        envelope = parse_envelope(generate_recording_ready_payload("bot_2", duration_seconds=1500))
        assert isinstance(envelope.data, RecordingReadyData)
        assert envelope.data.recording.duration_seconds == 1500

    def test_bot_done(self) -> None:
        payload = generate_bot_done_payload(
            "bot_3",
            participants=generate_participants("Coach Priya", "Aarav", host="Coach Priya"),
            words=generate_conversation_words(min_chars=200),
        )

        envelope = parse_envelope(json.dumps(payload))

        assert isinstance(envelope.data, BotDoneData)
        assert len(envelope.data.meeting_participants) == 2
        assert envelope.data.meeting_participants[0].is_host
        assert envelope.data.transcript.words[0].speaker_id == 0
        assert envelope.data.meeting_metadata.title == "Yestoryd - Aarav Sharma - Coaching"

    def test_bot_done_tolerates_null_roster(self) -> None:
        payload = generate_bot_done_payload("bot_4")
        payload["data"]["meeting_participants"] = None
        payload["data"]["transcript"] = None
        envelope = parse_envelope(payload)
        assert envelope.data.meeting_participants == []
        assert envelope.data.transcript is None

    def test_participant_without_name(self) -> None:
        payload = generate_bot_done_payload("bot_5")
        payload["data"]["meeting_participants"] = [{"id": 1, "name": None, "is_host": None}]
        participant = parse_envelope(payload).data.meeting_participants[0]
        assert participant.name == ""
        assert participant.is_host is False

    @pytest.mark.parametrize(
        "body",
        [
            b"not json",
            b"[1, 2, 3]",
            b'{"event": "bot.done"}',
            b'{"event": "bot.done", "data": []}',
            b'{"event": "bot.done", "data": {}}',
            b'{"event": "bot.status_change", "data": {"bot_id": ""}}',
            b'{"data": {"bot_id": "bot_1"}}',
            b"\xff\xfe",
        ],
    )
    def test_malformed_bodies(self, body: bytes) -> None:
        with pytest.raises(EnvelopeError):
            parse_envelope(body)

    def test_invalid_recording_duration(self) -> None:
        payload = generate_recording_ready_payload("bot_6", duration_seconds=-5)
        with pytest.raises(EnvelopeError):
            parse_envelope(payload)
