"""Record store port — abstract interface to persisted contacts and meetings.

Core modules depend on this protocol, never on a specific storage engine.
Every call targets a single record; there are no multi-row transactions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from src.data.models import Contact, Interests, Meeting, SmallTalkGuide, UserProfile


class PersistenceError(Exception):
    """Raised when a record store read or write fails."""


class RecordStorePort(Protocol):
    """Abstract record store used by core modules."""

    async def load_user_profile(self) -> UserProfile | None: ...

    async def save_user_profile(self, profile: UserProfile) -> None: ...

    async def list_contacts(self) -> list[Contact]: ...

    async def list_meetings(self) -> list[Meeting]: ...

    async def insert_contact(self, contact: Contact) -> None: ...

    async def insert_meeting(self, meeting: Meeting) -> None: ...

    async def update_contact(self, contact: Contact) -> None: ...

    async def update_contact_profile(
        self, contact_id: str, interests: Interests, personality: str
    ) -> None: ...

    async def update_meeting(self, meeting: Meeting) -> None: ...

    async def save_user_note(self, meeting_id: str, note: str) -> None: ...

    async def save_guide(self, meeting_id: str, guide: SmallTalkGuide) -> None: ...

    async def clear_guide(self, meeting_id: str) -> None: ...
