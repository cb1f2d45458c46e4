"""
SmallTalker — Session state.

Everything that lives for one signed-in session: the loaded records, the
guide cache bookkeeping and the one-shot prefetch flag. A new session gets a
new SessionState; nothing here is module-global.

Only GuideGate writes guides and guide bookkeeping; other components read
records from here and hand back new values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from src.data.models import Contact, Meeting, UserProfile


class GuideStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class SessionState:
    user: UserProfile | None = None
    contacts: dict[str, Contact] = field(default_factory=dict)
    meetings: dict[str, Meeting] = field(default_factory=dict)

    # Prefetch runs once per session
    prefetched: bool = False

    # Guide bookkeeping (GuideGate only)
    in_flight: dict[str, object] = field(default_factory=dict)
    regenerate_requested: set[str] = field(default_factory=set)
    guide_status: dict[str, GuideStatus] = field(default_factory=dict)
    guide_errors: dict[str, str] = field(default_factory=dict)
    unsynced_guides: set[str] = field(default_factory=set)
    pending_clears: set[str] = field(default_factory=set)   # store may still hold a cleared guide

    @classmethod
    def from_records(
        cls,
        user: UserProfile | None,
        contacts: Iterable[Contact],
        meetings: Iterable[Meeting],
    ) -> SessionState:
        state = cls(user=user)
        for c in contacts:
            state.contacts[c.id] = c
        for m in meetings:
            state.meetings[m.id] = m
            if m.ai_guide is not None:
                state.guide_status[m.id] = GuideStatus.READY
        return state

    def meeting_contacts(self, meeting: Meeting) -> list[Contact]:
        """Known contacts of a meeting, in participant order."""
        return [self.contacts[cid] for cid in meeting.contact_ids if cid in self.contacts]

    def current(self, meeting: Meeting) -> Meeting:
        """The session's copy of `meeting`, or `meeting` itself if untracked."""
        return self.meetings.get(meeting.id, meeting)

    def status_of(self, meeting_id: str) -> GuideStatus:
        return self.guide_status.get(meeting_id, GuideStatus.IDLE)
