"""
Bot-to-session registry.

Resolves which scheduled session a provider bot belongs to: first through
the explicit mapping stored on the bot row, then, for bots the scheduler
never registered, through meeting heuristics (title, date and roster).

Last Grunted: 10/15/2026
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Optional, Sequence

from .models import BotSession, MeetingMetadata, ScheduledSession
from .store import SessionStore


__all__ = ["BotSessionRegistry", "child_name_from_title", "meeting_date"]


logger = logging.getLogger(__name__)


def child_name_from_title(title: Optional[str], org_name: str) -> Optional[str]:
    """Extract the child name from a ``<Org> - <Child Name> - ...`` title."""
    if not title:
        return None
    pattern = re.compile(
        rf"{re.escape(org_name)}\s*[-–]\s*([^-–]+?)\s*(?:[-–]|$)",
        re.IGNORECASE,
    )
    match = pattern.search(title)
    if not match:
        return None
    name = match.group(1).strip()
    return name or None


def meeting_date(start_time: Optional[str]) -> Optional[str]:
    """Return the ``YYYY-MM-DD`` date of an ISO 8601 meeting start time."""
    if not start_time:
        return None
    try:
        return datetime.fromisoformat(start_time.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        logger.warning("Unparseable meeting start time: %s", start_time)
        return None


class BotSessionRegistry:
    """Durable bot id -> session mapping with a heuristic fallback."""

    def __init__(self, store: SessionStore, org_name: str = "Yestoryd") -> None:
        self.store = store
        self.org_name = org_name

    async def resolve(self, bot: BotSession) -> Optional[ScheduledSession]:
        """Return the session explicitly mapped to ``bot``, if any."""
        if not bot.session_id:
            return None
        session = await self.store.get_session(bot.session_id)
        if session is None:
            logger.warning(
                "Bot %s is mapped to unknown session %s", bot.bot_id, bot.session_id
            )
        return session

    async def find_session_by_meeting(
        self,
        title: Optional[str],
        start_time: Optional[str],
        participant_names: Sequence[str] = (),
    ) -> Optional[ScheduledSession]:
        """
        Guess the session a meeting belongs to.

        Candidates are the sessions scheduled on the meeting's date that are
        still open or already completed. Matching prefers the child name from
        the meeting title, then a roster name that contains (or is contained
        in) the child's name. With no match, a lone candidate is accepted;
        several candidates stay unresolved.
        """
        date = meeting_date(start_time)
        if date is None:
            return None

        candidates = await self.store.find_sessions_on_date(date)
        if not candidates:
            return None

        title_name = child_name_from_title(title, self.org_name)
        if title_name:
            needle = title_name.lower()
            for session in candidates:
                if session.child_name and needle in session.child_name.lower():
                    logger.info("Matched session %s by meeting title", session.id)
                    return session

        names = [name.strip().lower() for name in participant_names if name and name.strip()]
        for session in candidates:
            child = (session.child_name or "").strip().lower()
            if child and any(child in name or name in child for name in names):
                logger.info("Matched session %s by participant name", session.id)
                return session

        if len(candidates) == 1:
            logger.info("Matched session %s as the only session on %s", candidates[0].id, date)
            return candidates[0]

        logger.warning(
            "Meeting '%s' on %s matches %d sessions ambiguously", title, date, len(candidates)
        )
        return None

    async def resolve_or_match(
        self,
        bot: BotSession,
        metadata: Optional[MeetingMetadata],
        participant_names: Sequence[str] = (),
    ) -> Optional[ScheduledSession]:
        """Resolve ``bot`` and persist a heuristic match onto its row."""
        session = await self.resolve(bot)
        if session is not None or metadata is None:
            return session

        session = await self.find_session_by_meeting(
            metadata.title, metadata.start_time, participant_names
        )
        if session is not None:
            await self.store.attach_session(bot.bot_id, session)
        return session
