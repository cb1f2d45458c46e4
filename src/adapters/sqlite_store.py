"""SQLite record store adapter — implements RecordStorePort.

Wraps the synchronous DB classes with asyncio.to_thread so every store call
is a suspension point and never blocks the event loop. sqlite errors and
writes that hit no row surface as PersistenceError.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Callable, TypeVar

from src.data.db import ContactDB, MeetingDB, UserProfileDB
from src.data.models import Contact, Interests, Meeting, SmallTalkGuide, UserProfile
from src.ports.record_store_port import PersistenceError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


class SQLiteRecordStore:
    """SQLite implementation of RecordStorePort, scoped to one user."""

    def __init__(self, user_id: str, db_path: str | None = None) -> None:
        self._user_id = user_id
        self._contacts = ContactDB(db_path=db_path)
        self._meetings = MeetingDB(db_path=db_path)
        self._profiles = UserProfileDB(db_path=db_path)

    async def _run(self, what: str, fn: Callable[..., _T], *args) -> _T:
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as exc:
            logger.error("Record store failed to %s: %s", what, exc)
            raise PersistenceError(f"Failed to {what}: {exc}") from exc

    @staticmethod
    def _require_row(updated: bool, kind: str, record_id: str) -> None:
        if not updated:
            raise PersistenceError(f"{kind} {record_id} not found")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_user_profile(self) -> UserProfile | None:
        return await self._run("load user profile", self._profiles.get_profile, self._user_id)

    async def list_contacts(self) -> list[Contact]:
        return await self._run("list contacts", self._contacts.list_all, self._user_id)

    async def list_meetings(self) -> list[Meeting]:
        return await self._run("list meetings", self._meetings.list_all, self._user_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save_user_profile(self, profile: UserProfile) -> None:
        await self._run("save user profile", self._profiles.save_profile, self._user_id, profile)

    async def insert_contact(self, contact: Contact) -> None:
        await self._run("insert contact", self._contacts.add_contact, contact, self._user_id)

    async def insert_meeting(self, meeting: Meeting) -> None:
        await self._run("insert meeting", self._meetings.add_meeting, meeting, self._user_id)

    async def update_contact(self, contact: Contact) -> None:
        updated = await self._run("update contact", self._contacts.update_contact, contact)
        self._require_row(updated, "Contact", contact.id)

    async def update_contact_profile(
        self, contact_id: str, interests: Interests, personality: str,
    ) -> None:
        updated = await self._run(
            "update contact profile", self._contacts.update_profile,
            contact_id, interests, personality,
        )
        self._require_row(updated, "Contact", contact_id)

    async def update_meeting(self, meeting: Meeting) -> None:
        updated = await self._run("update meeting", self._meetings.update_meeting, meeting)
        self._require_row(updated, "Meeting", meeting.id)

    async def save_user_note(self, meeting_id: str, note: str) -> None:
        updated = await self._run("save note", self._meetings.set_user_note, meeting_id, note)
        self._require_row(updated, "Meeting", meeting_id)

    async def save_guide(self, meeting_id: str, guide: SmallTalkGuide) -> None:
        updated = await self._run("save guide", self._meetings.set_guide, meeting_id, guide)
        self._require_row(updated, "Meeting", meeting_id)

    async def clear_guide(self, meeting_id: str) -> None:
        updated = await self._run("clear guide", self._meetings.set_guide, meeting_id, None)
        self._require_row(updated, "Meeting", meeting_id)
