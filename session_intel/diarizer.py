"""
Transcript diarizer.

Rebuilds a speaker-labelled transcript from the provider's flat word stream.
The provider only hands out anonymous integer speaker ids, so the coach and
child roles are inferred from talk share and instructional phrasing.

Best-effort by contract: role inference problems degrade to generic
``SPEAKER_<id>`` labels instead of failing the pipeline.

Last Grunted: 10/15/2026
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Sequence

from session_intel.models import (
    DiarizedTranscript,
    MeetingParticipant,
    TranscriptLine,
    TranscriptWord,
)


__all__ = ["diarize", "identify_speakers", "instructional_score"]


logger = logging.getLogger(__name__)


COACH_LABEL = "COACH"
CHILD_LABEL = "CHILD"
SAMPLE_WORDS = 20

# Greetings and classroom imperatives typical of the coach's opening turns.
INSTRUCTIONAL_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\b(hello|hi|hey|good (morning|afternoon|evening)|welcome)\b",
        r"\blet'?s\b",
        r"\b(start|open|try|read|repeat|look|say|listen|point)\b",
        r"\bcan you\b",
        r"\b(very good|well done|great job)\b",
    )
)


def _speaker(word: TranscriptWord) -> int:
    return word.speaker_id if word.speaker_id is not None else 0


def instructional_score(sample: str) -> int:
    """Count instructional phrase hits in a speaker's signature sample."""
    return sum(len(pattern.findall(sample)) for pattern in INSTRUCTIONAL_PATTERNS)


def identify_speakers(
    words: Sequence[TranscriptWord],
) -> tuple[int | None, int | None, dict[int, int]]:
    """
    Decide which speaker id is the coach and which is the child.

    Returns ``(coach_id, child_id, word_counts)``. The most talkative speaker
    starts as the coach and the runner-up as the child; the two swap when the
    child candidate's opening words sound more like instruction than the
    coach candidate's.
    """
    counts: Counter[int] = Counter()
    samples: dict[int, list[str]] = {}
    first_seen: dict[int, int] = {}

    for index, word in enumerate(words):
        speaker = _speaker(word)
        counts[speaker] += 1
        first_seen.setdefault(speaker, index)
        sample = samples.setdefault(speaker, [])
        if len(sample) < SAMPLE_WORDS:
            sample.append(word.text)

    if not counts:
        return None, None, {}

    ranked = sorted(counts, key=lambda speaker: (-counts[speaker], first_seen[speaker]))
    if len(ranked) == 1:
        return ranked[0], None, dict(counts)

    coach_id, child_id = ranked[0], ranked[1]
    coach_score = instructional_score(" ".join(samples[coach_id]))
    child_score = instructional_score(" ".join(samples[child_id]))
    if child_score > coach_score:
        logger.debug(
            "Swapping speaker roles: speaker %s sounds instructional (%d > %d)",
            child_id,
            child_score,
            coach_score,
        )
        coach_id, child_id = child_id, coach_id

    return coach_id, child_id, dict(counts)


def diarize(
    words: Sequence[TranscriptWord],
    participants: Sequence[MeetingParticipant] = (),
) -> DiarizedTranscript:
    """
    Build the labelled transcript handed to the pedagogical analyzer.

    ``participants`` is context only; roster ids do not reliably map onto
    transcript speaker ids.
    """
    if not words:
        return DiarizedTranscript()

    try:
        coach_id, child_id, counts = identify_speakers(words)
    except Exception as exc:  # noqa: BLE001 - diarization must never block the pipeline
        logger.warning("Speaker identification failed, using generic labels: %s", exc)
        coach_id, child_id, counts = None, None, {}

    def label_for(speaker: int) -> str:
        if coach_id is not None and speaker == coach_id:
            return COACH_LABEL
        if child_id is not None and speaker == child_id:
            return CHILD_LABEL
        return f"SPEAKER_{speaker}"

    lines: list[TranscriptLine] = []
    current_speaker: int | None = None
    buffer: list[str] = []

    for word in words:
        speaker = _speaker(word)
        if speaker != current_speaker:
            if buffer and current_speaker is not None:
                lines.append(TranscriptLine(speaker=label_for(current_speaker), text=" ".join(buffer)))
            current_speaker = speaker
            buffer = []
        text = word.text.strip()
        if text:
            buffer.append(text)

    if buffer and current_speaker is not None:
        lines.append(TranscriptLine(speaker=label_for(current_speaker), text=" ".join(buffer)))

    logger.debug(
        "Diarized %d words into %d lines (coach=%s child=%s, %d participants on roster)",
        len(words),
        len(lines),
        coach_id,
        child_id,
        len(participants),
    )
    return DiarizedTranscript(
        lines=lines,
        coach_speaker_id=coach_id,
        child_speaker_id=child_id,
        word_counts=counts,
    )
