"""
Audio archival for completed sessions.

Looks up the bot's media download URL from the recording provider's REST
API and streams the file to local storage, laid out as
``<archive_dir>/<child_id>/<session_date>_<session_id>.<ext>``.

Provider recording URLs expire; the archive is the long-lived copy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Optional, Protocol
from urllib.parse import urlparse

import aiofiles
import httpx


__all__ = ["ArchiveError", "ArchiveResult", "Archiver", "RecallAudioArchiver", "extract_media_url"]


logger = logging.getLogger(__name__)


_MEDIA_PREFERENCE = ("audio_mixed", "video_mixed")
_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ArchiveResult:
    """Where an archived recording ended up."""

    storage_path: str
    public_url: Optional[str]


class ArchiveError(Exception):
    """Raised when a recording cannot be located or downloaded."""


class Archiver(Protocol):
    """Interface of the audio archival collaborator."""

    async def archive(
        self,
        bot_id: str,
        session_id: str,
        child_id: Optional[str],
        session_date: Optional[str],
    ) -> ArchiveResult:
        """Archive the bot's recording. Raises on failure."""


def extract_media_url(bot_payload: dict[str, Any]) -> Optional[str]:
    """Pick the best download URL from a provider bot resource (audio first)."""
    for recording in bot_payload.get("recordings") or []:
        shortcuts = recording.get("media_shortcuts") or {}
        for kind in _MEDIA_PREFERENCE:
            data = (shortcuts.get(kind) or {}).get("data") or {}
            if data.get("download_url"):
                return data["download_url"]
    return bot_payload.get("video_url")


def _extension(url: str) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix.lstrip(".").lower()
    return suffix if suffix and len(suffix) <= 4 else "mp4"


class RecallAudioArchiver:
    """Download recordings from the provider API into the local archive."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        archive_dir: Path,
        public_base_url: Optional[str] = None,
        timeout_seconds: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.archive_dir = Path(archive_dir)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    async def _lookup_media_url(self, client: httpx.AsyncClient, bot_id: str) -> str:
        response = await client.get(
            f"{self.api_url}/bot/{bot_id}/",
            headers={"Authorization": f"Token {self.api_key}"},
        )
        if response.status_code >= 400:
            raise ArchiveError(
                f"Bot lookup failed for {bot_id}: HTTP {response.status_code}: {response.text[:160]}"
            )
        media_url = extract_media_url(response.json())
        if not media_url:
            raise ArchiveError(f"No downloadable recording for bot {bot_id}")
        return media_url

    async def archive(
        self,
        bot_id: str,
        session_id: str,
        child_id: Optional[str],
        session_date: Optional[str],
    ) -> ArchiveResult:
        async with self._client() as client:
            media_url = await self._lookup_media_url(client, bot_id)

            relative = PurePosixPath(child_id or "unassigned") / (
                f"{session_date or 'undated'}_{session_id}.{_extension(media_url)}"
            )
            target = self.archive_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)

            size = 0
            async with client.stream("GET", media_url) as response:
                if response.status_code >= 400:
                    raise ArchiveError(
                        f"Recording download failed for {bot_id}: HTTP {response.status_code}"
                    )
                async with aiofiles.open(target, "wb") as f:
                    async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                        size += len(chunk)
                        await f.write(chunk)

        if size == 0:
            raise ArchiveError(f"Recording download for {bot_id} was empty")

        public_url = f"{self.public_base_url}/{relative}" if self.public_base_url else None
        logger.info("Archived %d bytes for session %s to %s", size, session_id, target)
        return ArchiveResult(storage_path=str(relative), public_url=public_url)
