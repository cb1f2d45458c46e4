"""
SmallTalker — Guide request builder.

Pure data assembly: turns domain records into the JSON bodies the guide
proxy expects. Nothing here touches the network.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from src.core.timeutil import format_local_date, parse_meeting_date
from src.data.models import Contact, Interests, Meeting, UserProfile
from src.ports.generation_port import InvalidInputError

logger = logging.getLogger(__name__)

GENERATE_GUIDE = "generateGuide"
ANALYZE_NOTE = "analyzeNote"
SEARCH_RELATED = "searchRelated"
ASSISTANT_CHAT = "assistantChat"

TIP_TYPES = ("business", "lifestyle")


@dataclass
class GuideRequest:
    """An opaque request for the guide proxy.

    `body` is posted as JSON; `stream` selects the transport path.
    """

    action: str
    payload: dict = field(default_factory=dict)
    stream: bool = False
    meeting_id: str | None = None

    @property
    def body(self) -> dict:
        payload = dict(self.payload)
        if self.action == GENERATE_GUIDE:
            payload["stream"] = self.stream
        return {"action": self.action, "payload": payload}


# ---------------------------------------------------------------------------
# Record → payload mapping (camelCase, as the proxy reads it)
# ---------------------------------------------------------------------------


def _interests_payload(interests: Interests) -> dict:
    return {"business": list(interests.business), "lifestyle": list(interests.lifestyle)}


def _user_payload(user: UserProfile) -> dict:
    return {
        "name": user.name,
        "role": user.role,
        "company": user.company,
        "industry": user.industry,
        "phoneNumber": user.phone_number,
        "email": user.email,
        "interests": _interests_payload(user.interests),
        "memo": user.memo,
    }


def _contact_payload(contact: Contact) -> dict:
    return {
        "id": contact.id,
        "name": contact.name,
        "company": contact.company,
        "role": contact.role,
        "tags": list(contact.tags),
        "interests": _interests_payload(contact.interests),
        "personality": contact.personality,
        "relationshipType": contact.relationship_type,
        "meetingFrequency": contact.meeting_frequency,
    }


def _meeting_payload(meeting: Meeting) -> dict:
    when = parse_meeting_date(meeting.date)
    return {
        "id": meeting.id,
        "contactIds": list(meeting.contact_ids),
        "title": meeting.title,
        "date": meeting.date,
        "dateLabel": format_local_date(when),
        "location": meeting.location,
    }


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_guide_request(
    user: UserProfile | None,
    contact: Contact | None,
    meeting: Meeting | None,
    history_notes: str,
    additional_contacts: list[Contact] | None = None,
    stream: bool = False,
) -> GuideRequest:
    """Assemble a generateGuide request.

    `hasHistory` is always sent so the proxy can frame a meeting without
    prior notes as a probable first meeting instead of inventing familiarity.

    Raises InvalidInputError for a missing user, contact or meeting, or a
    meeting without id or a parseable date.
    """
    if user is None:
        raise InvalidInputError("User profile is required to build a guide request")
    if contact is None:
        raise InvalidInputError("Meeting has no known contact")
    if meeting is None or not meeting.id:
        raise InvalidInputError("Meeting record is missing or has no id")

    try:
        meeting_payload = _meeting_payload(meeting)
    except ValueError as exc:
        raise InvalidInputError(f"Meeting {meeting.id} has an invalid date: {meeting.date!r}") from exc

    all_contacts = [contact]
    for extra in additional_contacts or []:
        if extra.id != contact.id and extra.id not in {c.id for c in all_contacts}:
            all_contacts.append(extra)

    history = history_notes or ""
    payload = {
        "user": _user_payload(user),
        "contact": _contact_payload(contact),
        "contacts": [_contact_payload(c) for c in all_contacts],
        "meeting": meeting_payload,
        "historyNotes": history,
        "hasHistory": bool(history.strip()),
    }
    return GuideRequest(
        action=GENERATE_GUIDE, payload=payload, stream=stream, meeting_id=meeting.id,
    )


def build_note_analysis_request(note: str) -> GuideRequest:
    """Assemble an analyzeNote request. Blank notes are rejected."""
    if not note or not note.strip():
        raise InvalidInputError("Note is empty")
    return GuideRequest(action=ANALYZE_NOTE, payload={"note": note})


def build_related_search_request(tip_content: str, tip_type: str) -> GuideRequest:
    """Assemble a searchRelated request for a business or lifestyle tip."""
    if not tip_content or not tip_content.strip():
        raise InvalidInputError("Tip content is empty")
    if tip_type not in TIP_TYPES:
        raise InvalidInputError(f"Unknown tip type: {tip_type!r}")
    return GuideRequest(
        action=SEARCH_RELATED,
        payload={"tipContent": tip_content, "tipType": tip_type},
    )


def build_assistant_chat_request(
    query: str,
    user: UserProfile | None,
    meetings: Iterable[Meeting],
    contacts: Iterable[Contact],
    now: datetime,
) -> GuideRequest:
    """Assemble an assistantChat request.

    The proxy builds today's agenda, the next upcoming meetings and a contact
    summary from these records. `now` pins "today" to the session clock.
    Meetings with an unparseable date are left out.
    """
    if not query or not query.strip():
        raise InvalidInputError("Question is empty")

    dated = []
    for m in meetings:
        try:
            dated.append((parse_meeting_date(m.date), _meeting_payload(m)))
        except ValueError:
            logger.warning("Leaving meeting %s with unparseable date out of chat context", m.id)
    dated.sort(key=lambda pair: pair[0])

    payload = {
        "query": query.strip(),
        "user": _user_payload(user) if user is not None else None,
        "meetings": [p for _, p in dated],
        "contacts": [_contact_payload(c) for c in contacts],
        "now": now.isoformat(),
        "today": format_local_date(now),
    }
    return GuideRequest(action=ASSISTANT_CHAT, payload=payload)
