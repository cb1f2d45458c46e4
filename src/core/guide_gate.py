"""
SmallTalker — Guide cache and persistence gate.

The only writer of guides in SessionState. Decides whether a meeting needs a
guide at all, serves cached guides without network calls, runs the streaming
generation for the interactive path, discards results nobody is waiting for
any more, and persists each accepted guide once.

In-flight registry: every interactive attempt registers a fresh token under
its meeting id. A later attempt, a regeneration, an invalidation or
`abandon()` replaces or removes the token; when an attempt finishes with a
token that is no longer registered, its partials and result are dropped.
Network calls are never aborted, only ignored.

Race policy with prefetch: the interactive path wins. A prefetched guide is
accepted only when the meeting still has no guide, no interactive attempt is
in flight and no regeneration is pending.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable

from src.core import timeutil
from src.core.guide_request import GuideRequest, build_guide_request
from src.core.history import aggregate_history
from src.core.session import GuideStatus, SessionState
from src.data.models import Meeting, PartialGuide, SmallTalkGuide
from src.ports.generation_port import (
    GenerationError,
    GuideCompleted,
    GuideGenerator,
    InvalidInputError,
    MalformedResponseError,
)
from src.ports.record_store_port import PersistenceError, RecordStorePort

logger = logging.getLogger(__name__)

PartialCallback = Callable[[PartialGuide], Awaitable[None] | None]

_FAILED_MESSAGE = "가이드를 생성하는 중 예기치 못한 오류가 발생했습니다."


class OutcomeKind(Enum):
    CACHED = "cached"
    GENERATED = "generated"
    SKIPPED = "skipped"
    STALE = "stale"
    FAILED = "failed"


@dataclass
class GuideOutcome:
    kind: OutcomeKind
    guide: SmallTalkGuide | None = None
    error_message: str = ""
    persisted: bool = True   # False → guide shown but not yet stored


async def _notify(callback: PartialCallback, partial: PartialGuide, meeting_id: str) -> None:
    """Hand a partial guide to the observer. Observer errors never stop generation."""
    try:
        result = callback(partial)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        logger.warning("Partial guide observer failed for meeting %s: %s", meeting_id, exc)


class GuideGate:
    """Per-session guide cache with write-through persistence."""

    def __init__(
        self,
        state: SessionState,
        generator: GuideGenerator,
        store: RecordStorePort,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._state = state
        self._generator = generator
        self._store = store
        self._clock = clock or timeutil.now

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_eligible(self, meeting: Meeting) -> bool:
        """Guides exist only for meetings today or later (local calendar day)."""
        try:
            when = timeutil.parse_meeting_date(meeting.date)
        except ValueError:
            logger.warning("Meeting %s has unparseable date %r", meeting.id, meeting.date)
            return False
        return not timeutil.is_past_day(when, self._clock())

    def is_in_flight(self, meeting_id: str) -> bool:
        return meeting_id in self._state.in_flight

    def build_request(self, meeting: Meeting, stream: bool) -> GuideRequest:
        """Assemble the generation request from the session's records."""
        contacts = self._state.meeting_contacts(meeting)
        history = aggregate_history(meeting, self._state.meetings.values())
        return build_guide_request(
            self._state.user,
            contacts[0] if contacts else None,
            meeting,
            history,
            additional_contacts=contacts[1:],
            stream=stream,
        )

    def _is_current(self, meeting_id: str, token: object) -> bool:
        return self._state.in_flight.get(meeting_id) is token

    # ------------------------------------------------------------------
    # Interactive path
    # ------------------------------------------------------------------

    async def ensure_guide(
        self, meeting: Meeting, on_partial: PartialCallback | None = None,
    ) -> GuideOutcome:
        """Return a usable guide for `meeting`, generating it if needed.

        Never raises except on cancellation: failures come back as a FAILED
        outcome and nothing is persisted, so the next call starts over. An
        `on_partial` observer that raises is logged and ignored.
        """
        meeting = self._state.current(meeting)

        if not self.is_eligible(meeting):
            logger.debug("Meeting %s is in the past, no guide", meeting.id)
            return GuideOutcome(kind=OutcomeKind.SKIPPED)

        if meeting.ai_guide is not None and meeting.id not in self._state.regenerate_requested:
            return GuideOutcome(kind=OutcomeKind.CACHED, guide=meeting.ai_guide)

        token = object()
        self._state.in_flight[meeting.id] = token
        self._state.guide_status[meeting.id] = GuideStatus.LOADING
        self._state.guide_errors.pop(meeting.id, None)
        logger.info("Generating guide for meeting %s", meeting.id)

        guide: SmallTalkGuide | None = None
        try:
            request = self.build_request(meeting, stream=True)
            async for event in self._generator.stream_guide(request):
                if isinstance(event, GuideCompleted):
                    guide = event.guide
                elif on_partial is not None and self._is_current(meeting.id, token):
                    await _notify(on_partial, event.partial, meeting.id)
            if guide is None:
                raise MalformedResponseError("Guide stream ended without a result")
        except (InvalidInputError, GenerationError) as exc:
            message = getattr(exc, "message", "") or str(exc) or _FAILED_MESSAGE
            return self._fail(meeting.id, token, message)
        except Exception as exc:
            logger.error("Unexpected error generating guide for meeting %s: %r", meeting.id, exc)
            return self._fail(meeting.id, token, _FAILED_MESSAGE)
        except BaseException:
            # Cancelled; release the in-flight slot
            self._release(meeting.id, token)
            raise

        if not self._is_current(meeting.id, token):
            logger.info("Discarding stale guide for meeting %s", meeting.id)
            return GuideOutcome(kind=OutcomeKind.STALE, guide=guide)

        del self._state.in_flight[meeting.id]
        self._state.regenerate_requested.discard(meeting.id)
        return await self._accept(meeting, guide)

    def _fail(self, meeting_id: str, token: object, message: str) -> GuideOutcome:
        if not self._is_current(meeting_id, token):
            logger.info("Discarding failed stale attempt for meeting %s", meeting_id)
            return GuideOutcome(kind=OutcomeKind.STALE)
        del self._state.in_flight[meeting_id]
        self._state.guide_status[meeting_id] = GuideStatus.FAILED
        self._state.guide_errors[meeting_id] = message
        logger.error("Guide generation failed for meeting %s: %s", meeting_id, message)
        return GuideOutcome(kind=OutcomeKind.FAILED, error_message=message)

    def _release(self, meeting_id: str, token: object) -> None:
        if not self._is_current(meeting_id, token):
            return
        del self._state.in_flight[meeting_id]
        if self._state.status_of(meeting_id) is GuideStatus.LOADING:
            self._state.guide_status[meeting_id] = GuideStatus.IDLE

    def abandon(self, meeting_id: str) -> None:
        """Stop caring about the in-flight attempt for a meeting."""
        if self._state.in_flight.pop(meeting_id, None) is None:
            return
        if self._state.status_of(meeting_id) is GuideStatus.LOADING:
            self._state.guide_status[meeting_id] = GuideStatus.IDLE
        logger.debug("Abandoned in-flight guide for meeting %s", meeting_id)

    async def regenerate(
        self, meeting: Meeting, on_partial: PartialCallback | None = None,
    ) -> GuideOutcome:
        """Throw away the current guide and generate a new one."""
        meeting = self._state.current(meeting)
        self._state.regenerate_requested.add(meeting.id)
        self._state.in_flight.pop(meeting.id, None)
        self._state.unsynced_guides.discard(meeting.id)
        self._state.guide_errors.pop(meeting.id, None)
        self._state.guide_status[meeting.id] = GuideStatus.IDLE

        meeting = replace(meeting, ai_guide=None)
        if meeting.id in self._state.meetings:
            self._state.meetings[meeting.id] = meeting

        await self._clear_stored(meeting.id)

        logger.info("Regenerating guide for meeting %s", meeting.id)
        return await self.ensure_guide(meeting, on_partial=on_partial)

    async def invalidate(self, meeting_ids: list[str]) -> list[str]:
        """Clear guides whose inputs changed. Returns the ids actually cleared."""
        cleared: list[str] = []
        for meeting_id in meeting_ids:
            meeting = self._state.meetings.get(meeting_id)
            if meeting is None:
                continue
            if self._state.in_flight.pop(meeting_id, None) is not None:
                self._state.guide_status[meeting_id] = GuideStatus.IDLE
            if meeting.ai_guide is None:
                continue
            self._state.meetings[meeting_id] = replace(meeting, ai_guide=None)
            self._state.guide_status[meeting_id] = GuideStatus.IDLE
            self._state.unsynced_guides.discard(meeting_id)
            cleared.append(meeting_id)
            await self._clear_stored(meeting_id)
        if cleared:
            logger.info("Invalidated guides of %d meeting(s)", len(cleared))
        return cleared

    # ------------------------------------------------------------------
    # Prefetch path
    # ------------------------------------------------------------------

    def wants_prefetch(self, meeting_id: str) -> bool:
        """True when a background guide for this meeting would be accepted."""
        meeting = self._state.meetings.get(meeting_id)
        return (
            meeting is not None
            and meeting.ai_guide is None
            and meeting_id not in self._state.in_flight
            and meeting_id not in self._state.regenerate_requested
        )

    async def apply_prefetched_guide(self, meeting_id: str, guide: SmallTalkGuide) -> bool:
        """Store a background-generated guide unless the interactive path owns it."""
        if not self.wants_prefetch(meeting_id):
            logger.info("Dropping prefetched guide for meeting %s (interactive path wins)", meeting_id)
            return False
        await self._accept(self._state.meetings[meeting_id], guide)
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _accept(self, meeting: Meeting, guide: SmallTalkGuide) -> GuideOutcome:
        self._state.meetings[meeting.id] = replace(meeting, ai_guide=guide)
        self._state.guide_status[meeting.id] = GuideStatus.READY
        self._state.guide_errors.pop(meeting.id, None)
        persisted = await self._persist(meeting.id, guide)
        return GuideOutcome(kind=OutcomeKind.GENERATED, guide=guide, persisted=persisted)

    async def _persist(self, meeting_id: str, guide: SmallTalkGuide) -> bool:
        try:
            await self._store.save_guide(meeting_id, guide)
        except PersistenceError as exc:
            self._state.unsynced_guides.add(meeting_id)
            logger.error("Guide for meeting %s kept in memory only: %s", meeting_id, exc)
            return False
        self._state.unsynced_guides.discard(meeting_id)
        # The new guide overwrites whatever stale one the store still held
        self._state.pending_clears.discard(meeting_id)
        logger.info("Guide persisted for meeting %s", meeting_id)
        return True

    async def _clear_stored(self, meeting_id: str) -> bool:
        try:
            await self._store.clear_guide(meeting_id)
        except PersistenceError as exc:
            self._state.pending_clears.add(meeting_id)
            logger.error("Stored guide of meeting %s is stale until cleared: %s", meeting_id, exc)
            return False
        self._state.pending_clears.discard(meeting_id)
        return True

    async def retry_unsynced(self) -> int:
        """Retry guide writes and clears that failed earlier.

        Returns how many meetings are still out of step with the store.
        """
        for meeting_id in sorted(self._state.pending_clears):
            meeting = self._state.meetings.get(meeting_id)
            if meeting is None:
                self._state.pending_clears.discard(meeting_id)
            elif meeting.ai_guide is not None:
                # A newer guide exists; saving it replaces the stale one
                self._state.pending_clears.discard(meeting_id)
                self._state.unsynced_guides.add(meeting_id)
            else:
                await self._clear_stored(meeting_id)

        for meeting_id in sorted(self._state.unsynced_guides):
            meeting = self._state.meetings.get(meeting_id)
            if meeting is None or meeting.ai_guide is None:
                self._state.unsynced_guides.discard(meeting_id)
                continue
            await self._persist(meeting_id, meeting.ai_guide)
        return len(self._state.unsynced_guides | self._state.pending_clears)
