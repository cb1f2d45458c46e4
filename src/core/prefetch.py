"""
SmallTalker — Guide prefetch.

After the session's data has loaded, generates guides in the background for
meetings between now and the end of tomorrow that have none yet, so they are
ready before the user opens them. Runs once per session, one meeting at a
time, through the non-streaming path.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from src.core import timeutil
from src.core.guide_gate import GuideGate
from src.core.session import SessionState
from src.data.models import Meeting
from src.ports.generation_port import GenerationError, GuideGenerator, InvalidInputError

logger = logging.getLogger(__name__)


class PrefetchScheduler:
    """One-shot background guide generation for upcoming meetings."""

    def __init__(
        self,
        state: SessionState,
        gate: GuideGate,
        generator: GuideGenerator,
        clock: Callable[[], datetime] | None = None,
        horizon_days: int | None = None,
    ) -> None:
        if horizon_days is None:
            from src.config import settings
            horizon_days = settings.PREFETCH_HORIZON_DAYS

        self._state = state
        self._gate = gate
        self._generator = generator
        self._clock = clock or timeutil.now
        self._horizon_days = horizon_days
        self._task: asyncio.Task | None = None

    def due_meetings(self) -> list[Meeting]:
        """Meetings in [now, end of horizon day] without a guide, by date."""
        current = self._clock()
        horizon_end = timeutil.end_of_day(current, days_ahead=self._horizon_days)

        due: list[tuple[datetime, Meeting]] = []
        for meeting in self._state.meetings.values():
            if meeting.ai_guide is not None:
                continue
            try:
                when = timeutil.parse_meeting_date(meeting.date)
            except ValueError:
                continue
            if current <= when <= horizon_end:
                due.append((when, meeting))
        due.sort(key=lambda pair: pair[0])
        return [m for _, m in due]

    async def run_once(self) -> list[str]:
        """Prefetch guides for due meetings. Later calls in the session do nothing.

        Returns the ids of meetings that received a guide.
        """
        if self._state.prefetched:
            logger.debug("Prefetch already ran this session")
            return []
        self._state.prefetched = True

        if not self._state.contacts:
            logger.info("Prefetch skipped: no contacts loaded")
            return []

        queue = self.due_meetings()
        logger.info("Prefetching guides for %d meeting(s)", len(queue))

        done: list[str] = []
        for meeting in queue:
            if not self._gate.wants_prefetch(meeting.id):
                logger.debug("Prefetch skipping meeting %s (already handled)", meeting.id)
                continue
            try:
                request = self._gate.build_request(self._state.current(meeting), stream=False)
                guide = await self._generator.generate_guide(request)
            except (InvalidInputError, GenerationError) as exc:
                logger.error("Prefetch failed for meeting %s: %s", meeting.id, exc)
                continue
            if await self._gate.apply_prefetched_guide(meeting.id, guide):
                done.append(meeting.id)

        logger.info("Prefetch finished: %d of %d guide(s) ready", len(done), len(queue))
        return done

    def start(self) -> asyncio.Task:
        """Schedule `run_once()` in the background and return its task."""
        if self._task is None:
            self._task = asyncio.create_task(self.run_once())
        return self._task
