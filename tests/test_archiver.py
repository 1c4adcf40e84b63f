"""
Tests for audio archival against a mocked provider API.

Last Grunted: 10/15/2026
"""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from session_intel.archiver import ArchiveError, RecallAudioArchiver, extract_media_url


API_URL = "https://provider.example.com/api/v1"
AUDIO_URL = "https://media.example.com/rec/abc.mp3?sig=1"


def _bot_payload(audio: str | None = AUDIO_URL, video: str | None = None) -> dict:
    shortcuts = {}
    if audio:
        shortcuts["audio_mixed"] = {"data": {"download_url": audio}}
    if video:
        shortcuts["video_mixed"] = {"data": {"download_url": video}}
    return {"id": "bot_1", "recordings": [{"media_shortcuts": shortcuts}]}


def _provider(bot_payload: dict, audio_bytes: bytes = b"ID3audio", status_code: int = 200):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.startswith("/api/v1/bot/"):
            return httpx.Response(status_code, json=bot_payload)
        return httpx.Response(200, content=audio_bytes)

    return httpx.MockTransport(handler), seen


class TestExtractMediaUrl:
    """Tests for extract_media_url()."""

    def test_prefers_audio(self) -> None:
        assert extract_media_url(_bot_payload(video="https://media.example.com/v.mp4")) == AUDIO_URL

    def test_falls_back_to_video(self) -> None:
        payload = _bot_payload(audio=None, video="https://media.example.com/v.mp4")
        assert extract_media_url(payload) == "https://media.example.com/v.mp4"

    def test_legacy_video_url(self) -> None:
        assert extract_media_url({"video_url": "https://media.example.com/old.mp4"}) == "https://media.example.com/old.mp4"
        assert extract_media_url({}) is None


class TestRecallAudioArchiver:
    """Tests for RecallAudioArchiver.archive()."""

    @pytest.mark.asyncio
    async def test_archives_to_child_folder(self, tmp_path: Path) -> None:
        transport, seen = _provider(_bot_payload())
        archiver = RecallAudioArchiver(
            API_URL,
            "secret-key",
            tmp_path,
            public_base_url="https://cdn.example.com/audio/",
            transport=transport,
        )

        result = await archiver.archive("bot_1", "sess_001", "child_001", "2026-10-15")

        assert result.storage_path == "child_001/2026-10-15_sess_001.mp3"
        assert result.public_url == "https://cdn.example.com/audio/child_001/2026-10-15_sess_001.mp3"
        assert (tmp_path / result.storage_path).read_bytes() == b"ID3audio"
        assert seen[0].headers["Authorization"] == "Token secret-key"
        assert str(seen[0].url) == f"{API_URL}/bot/bot_1/"

    @pytest.mark.asyncio
    async def test_unassigned_and_undated(self, tmp_path: Path) -> None:
        transport, _ = _provider(_bot_payload(audio="https://media.example.com/download"))
        archiver = RecallAudioArchiver(API_URL, "k", tmp_path, transport=transport)

        result = await archiver.archive("bot_1", "sess_001", None, None)

        assert result.storage_path == "unassigned/undated_sess_001.mp4"
        assert result.public_url is None

    @pytest.mark.asyncio
    async def test_lookup_failure(self, tmp_path: Path) -> None:
        transport, _ = _provider({}, status_code=404)
        archiver = RecallAudioArchiver(API_URL, "k", tmp_path, transport=transport)

        with pytest.raises(ArchiveError):
            await archiver.archive("bot_1", "sess_001", "child_001", "2026-10-15")

    @pytest.mark.asyncio
    async def test_missing_media(self, tmp_path: Path) -> None:
        transport, _ = _provider({"recordings": []})
        archiver = RecallAudioArchiver(API_URL, "k", tmp_path, transport=transport)

        with pytest.raises(ArchiveError, match="No downloadable recording"):
            await archiver.archive("bot_1", "sess_001", "child_001", "2026-10-15")

    @pytest.mark.asyncio
    async def test_empty_download(self, tmp_path: Path) -> None:
        transport, _ = _provider(_bot_payload(), audio_bytes=b"")
        archiver = RecallAudioArchiver(API_URL, "k", tmp_path, transport=transport)

        with pytest.raises(ArchiveError, match="empty"):
            await archiver.archive("bot_1", "sess_001", "child_001", "2026-10-15")
