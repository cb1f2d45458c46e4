"""
SmallTalker — UI-Agnostic Assistant Service.

The in-process entry point for the presentation layer: load a session,
open meetings (which serves or generates their guide), regenerate guides,
record notes and edit contacts and meetings. Guide work is delegated to
GuideGate and PrefetchScheduler; this class keeps the records in
SessionState and the record store in step.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable

from src.core import timeutil
from src.core.guide_gate import GuideGate, GuideOutcome, OutcomeKind, PartialCallback
from src.core.guide_request import build_assistant_chat_request
from src.core.note_analysis import merge_interests, merge_note_analysis
from src.core.prefetch import PrefetchScheduler
from src.core.session import SessionState
from src.data.models import Contact, Meeting, RelatedArticle, UserProfile
from src.ports.generation_port import GenerationError, GuideGenerator, InvalidInputError
from src.ports.record_store_port import PersistenceError, RecordStorePort

logger = logging.getLogger(__name__)

DEFAULT_USER_NAME = "New User"


class AssistantService:
    """Session-scoped service that orchestrates the guide pipeline.

    Returns outcome objects for guide work; record store failures on
    explicit user edits propagate as PersistenceError.
    """

    def __init__(
        self,
        store: RecordStorePort,
        generator: GuideGenerator,
        clock: Callable[[], datetime] | None = None,
        state: SessionState | None = None,
    ) -> None:
        self._store = store
        self._generator = generator
        self._clock = clock or timeutil.now
        self._bind(state or SessionState())

    def _bind(self, state: SessionState) -> None:
        self._state = state
        self._gate = GuideGate(state, self._generator, self._store, clock=self._clock)
        self._prefetch = PrefetchScheduler(state, self._gate, self._generator, clock=self._clock)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def gate(self) -> GuideGate:
        return self._gate

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def load_session(self) -> SessionState:
        """Read the user's records into a fresh session.

        A user without a stored profile gets a default one.
        """
        user = await self._store.load_user_profile()
        if user is None:
            user = UserProfile(name=DEFAULT_USER_NAME)
            try:
                await self._store.save_user_profile(user)
            except PersistenceError as exc:
                logger.error("Could not create default user profile: %s", exc)

        contacts = await self._store.list_contacts()
        meetings = await self._store.list_meetings()
        self._bind(SessionState.from_records(user, contacts, meetings))
        logger.info(
            "Session loaded: %d contact(s), %d meeting(s)", len(contacts), len(meetings),
        )
        return self._state

    def start_prefetch(self) -> asyncio.Task:
        """Kick off background guide generation for upcoming meetings."""
        return self._prefetch.start()

    async def prefetch_now(self) -> list[str]:
        """Run the prefetch pass inline (one-shot per session)."""
        return await self._prefetch.run_once()

    # ------------------------------------------------------------------
    # Guides
    # ------------------------------------------------------------------

    async def open_meeting(
        self, meeting_id: str, on_partial: PartialCallback | None = None,
    ) -> GuideOutcome:
        """Serve the meeting's guide, generating it when missing."""
        meeting = self._state.meetings.get(meeting_id)
        if meeting is None:
            return GuideOutcome(kind=OutcomeKind.FAILED, error_message=f"Unknown meeting {meeting_id}")
        return await self._gate.ensure_guide(meeting, on_partial=on_partial)

    def close_meeting(self, meeting_id: str) -> None:
        """The meeting view went away; ignore its pending guide updates."""
        self._gate.abandon(meeting_id)

    async def regenerate_guide(
        self, meeting_id: str, on_partial: PartialCallback | None = None,
    ) -> GuideOutcome:
        meeting = self._state.meetings.get(meeting_id)
        if meeting is None:
            return GuideOutcome(kind=OutcomeKind.FAILED, error_message=f"Unknown meeting {meeting_id}")
        return await self._gate.regenerate(meeting, on_partial=on_partial)

    async def search_related(self, tip_content: str, tip_type: str) -> list[RelatedArticle]:
        return await self._generator.search_related(tip_content, tip_type)

    async def ask_assistant(self, query: str) -> str | None:
        """Answer a free-form question about the schedule and contacts.

        Returns None when the question is blank or the proxy fails.
        """
        try:
            request = build_assistant_chat_request(
                query,
                self._state.user,
                self._state.meetings.values(),
                self._state.contacts.values(),
                self._clock(),
            )
            return await self._generator.assistant_chat(request)
        except (InvalidInputError, GenerationError) as exc:
            logger.warning("Assistant chat failed: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def save_meeting_note(self, meeting_id: str, note: str) -> Meeting:
        """Store the edited note text of a meeting.

        Guides of later meetings with a shared participant are invalidated,
        and the note is analyzed to enrich the primary contact.
        """
        meeting = self._require_meeting(meeting_id)
        await self._store.save_user_note(meeting_id, note)
        # Re-read after the await so a concurrent edit of other fields survives
        current = self._state.meetings.get(meeting_id, meeting)
        self._state.meetings[meeting_id] = replace(current, user_note=note)
        logger.info("Note saved for meeting %s", meeting_id)

        await self._gate.invalidate(self._later_shared_meetings(meeting))

        contacts = self._state.meeting_contacts(meeting)
        if contacts and note.strip():
            await self._enrich_contact(contacts[0].id, note)
        return self._state.meetings[meeting_id]

    async def append_meeting_note(self, meeting_id: str, text: str) -> Meeting:
        """Add a paragraph to the meeting note without touching earlier text."""
        meeting = self._require_meeting(meeting_id)
        existing = meeting.user_note or ""
        note = f"{existing.rstrip()}\n\n{text}" if existing.strip() else text
        return await self.save_meeting_note(meeting_id, note)

    def _later_shared_meetings(self, meeting: Meeting) -> list[str]:
        try:
            pivot = timeutil.parse_meeting_date(meeting.date)
        except ValueError:
            return []
        return self._shared_after(set(meeting.contact_ids), pivot, meeting.id)

    def _shared_after(self, participants: set[str], pivot: datetime, exclude_id: str) -> list[str]:
        """Meetings other than `exclude_id` with a shared participant dated after `pivot`."""
        ids = []
        for m in self._state.meetings.values():
            if m.id == exclude_id or participants.isdisjoint(m.contact_ids):
                continue
            try:
                if timeutil.parse_meeting_date(m.date) > pivot:
                    ids.append(m.id)
            except ValueError:
                continue
        return ids

    async def _enrich_contact(self, contact_id: str, note: str) -> None:
        """Merge note analysis into a contact. Failures keep the prior contact."""
        try:
            analysis = await self._generator.analyze_note(note)
        except (InvalidInputError, GenerationError) as exc:
            logger.warning("Note analysis failed for contact %s: %s", contact_id, exc)
            return

        # Re-read after the await so concurrent edits are merged, not clobbered
        contact = self._state.contacts.get(contact_id)
        if contact is None:
            return
        merged = merge_note_analysis(contact, analysis)
        if merged == contact:
            return
        self._state.contacts[contact_id] = merged
        try:
            await self._store.update_contact_profile(contact_id, merged.interests, merged.personality)
        except PersistenceError as exc:
            logger.warning("Could not store enriched profile of contact %s: %s", contact_id, exc)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def update_contact(self, contact: Contact) -> Contact:
        """Apply a manual edit to a contact.

        Scalar fields are replaced; interests are merged into the session's
        copy so entries added by note analysis meanwhile survive. Guides of
        the contact's upcoming meetings are invalidated since they were
        written from the old profile.
        """
        current_contact = self._state.contacts.get(contact.id)
        if current_contact is not None:
            contact = replace(
                contact,
                interests=merge_interests(
                    current_contact.interests,
                    contact.interests.business,
                    contact.interests.lifestyle,
                ),
            )
        await self._store.update_contact(contact)
        self._state.contacts[contact.id] = contact

        current = self._clock()
        stale = []
        for m in self._state.meetings.values():
            if contact.id not in m.contact_ids:
                continue
            try:
                if timeutil.parse_meeting_date(m.date) >= current:
                    stale.append(m.id)
            except ValueError:
                continue
        await self._gate.invalidate(stale)
        return contact

    async def add_contact(self, contact: Contact) -> Contact:
        await self._store.insert_contact(contact)
        self._state.contacts[contact.id] = contact
        return contact

    async def add_meeting(self, meeting: Meeting, new_contact: Contact | None = None) -> Meeting:
        """Schedule a meeting, optionally creating its contact first."""
        if new_contact is not None:
            await self.add_contact(new_contact)
        await self._store.insert_meeting(meeting)
        self._state.meetings[meeting.id] = meeting
        return meeting

    async def update_meeting(self, meeting: Meeting, new_contact: Contact | None = None) -> Meeting:
        """Edit a meeting's participants, title, date and location.

        The note and guide are kept. A changed schedule invalidates the
        meeting's own guide, and when the meeting carries a note the guides
        of later meetings that share a participant (before or after the
        edit) are invalidated too, since their history changed.
        """
        old = self._require_meeting(meeting.id)
        if new_contact is not None:
            await self.add_contact(new_contact)

        await self._store.update_meeting(meeting)
        current = self._state.meetings.get(meeting.id, old)
        updated = replace(
            current,
            contact_ids=list(meeting.contact_ids),
            title=meeting.title,
            date=meeting.date,
            location=meeting.location,
        )
        self._state.meetings[meeting.id] = updated
        logger.info("Meeting %s updated", meeting.id)

        stale = []
        if (old.contact_ids, old.title, old.date, old.location) != (
            updated.contact_ids, updated.title, updated.date, updated.location,
        ):
            stale.append(meeting.id)
        if (old.user_note or "").strip():
            stale.extend(self._history_dependents(old, updated))
        await self._gate.invalidate(stale)
        return updated

    def _history_dependents(self, old: Meeting, updated: Meeting) -> list[str]:
        """Later meetings whose history included the edited meeting before or after the edit."""
        dates = []
        for m in (old, updated):
            try:
                dates.append(timeutil.parse_meeting_date(m.date))
            except ValueError:
                continue
        if not dates:
            return []
        participants = set(old.contact_ids) | set(updated.contact_ids)
        return self._shared_after(participants, min(dates), updated.id)

    async def update_user(self, profile: UserProfile) -> UserProfile:
        await self._store.save_user_profile(profile)
        self._state.user = profile
        return profile

    def _require_meeting(self, meeting_id: str) -> Meeting:
        meeting = self._state.meetings.get(meeting_id)
        if meeting is None:
            raise KeyError(f"Unknown meeting {meeting_id}")
        return meeting
