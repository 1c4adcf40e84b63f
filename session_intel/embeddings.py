"""Embedding generation for learning-event search."""

from __future__ import annotations

import logging
import os
from typing import Optional, Protocol

from openai import AsyncOpenAI

from .models import SessionAnalysis


__all__ = ["Embedder", "OpenAIEmbedder", "build_session_searchable_content"]


logger = logging.getLogger(__name__)


DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


class Embedder(Protocol):
    """Interface of the embedding collaborator."""

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector of ``text``. Raises on failure."""


def build_session_searchable_content(child_name: str, analysis: SessionAnalysis) -> str:
    """Flatten an analysis into the text indexed for semantic search."""
    parts = [
        f"{child_name} coaching session",
        f"Focus: {analysis.focus_area or 'general reading'}",
    ]
    if analysis.skills_worked_on:
        parts.append(f"Skills: {', '.join(analysis.skills_worked_on)}")
    if analysis.progress_rating:
        parts.append(f"Progress: {analysis.progress_rating}")
    if analysis.engagement_level:
        parts.append(f"Engagement: {analysis.engagement_level}")
    if analysis.coach_talk_ratio:
        parts.append(f"Coach talk ratio: {analysis.coach_talk_ratio:g}%")
    if analysis.breakthrough_moment:
        parts.append(f"Breakthrough: {analysis.breakthrough_moment}")
    if analysis.concerns_noted:
        parts.append(f"Concerns: {analysis.concerns_noted}")
    if analysis.homework_assigned and analysis.homework_description:
        parts.append(f"Homework: {analysis.homework_description}")
    if analysis.next_session_focus:
        parts.append(f"Next session: {analysis.next_session_focus}")
    if analysis.child_reading_samples:
        parts.append(f"Reading samples: {', '.join(analysis.child_reading_samples)}")
    if analysis.key_observations:
        parts.append(f"Observations: {', '.join(analysis.key_observations)}")
    if analysis.summary:
        parts.append(analysis.summary)
    return " ".join(parts).strip()


class OpenAIEmbedder:
    """
    OpenAI embeddings client.

    The client is created on first use so the service can start without
    credentials; embedding is best-effort and simply fails later.
    """

    def __init__(self, model: Optional[str] = None, client: Optional[AsyncOpenAI] = None) -> None:
        self.model = model or os.environ.get("OPENAI_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL)
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    async def embed(self, text: str) -> list[float]:
        if not text.strip():
            raise ValueError("Cannot embed empty text")
        response = await self._get_client().embeddings.create(model=self.model, input=text)
        vector = list(response.data[0].embedding)
        logger.debug("Generated %d-dim embedding with %s", len(vector), self.model)
        return vector
