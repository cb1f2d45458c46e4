"""
SmallTalker — Data Models.

Domain records (user, contacts, meetings) are plain dataclasses produced by
the record store's row mappers. The guide and note-analysis shapes exchanged
with the guide proxy are pydantic models so the camelCase wire JSON validates
once at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------


@dataclass
class Interests:
    """Ordered interest lists; duplicates are suppressed on merge."""

    business: list[str] = field(default_factory=list)
    lifestyle: list[str] = field(default_factory=list)


@dataclass
class UserProfile:
    """The operator's own identity. One per session, replaced on edit."""

    name: str
    role: str = ""
    company: str = ""
    industry: str = ""
    phone_number: str = ""
    email: str = ""
    interests: Interests = field(default_factory=Interests)
    memo: str = ""
    avatar_url: str = ""


@dataclass
class Contact:
    """A tracked relationship.

    `interests` is written by manual edits and by note analysis; both paths
    merge instead of replacing (see src.core.note_analysis.merge_interests).
    """

    id: str
    name: str
    company: str = ""
    role: str = ""
    phone_number: str = ""
    email: str = ""
    tags: list[str] = field(default_factory=list)
    interests: Interests = field(default_factory=Interests)
    personality: str = ""
    contact_frequency: str = ""
    relationship_type: str = ""
    meeting_frequency: str = ""
    avatar_url: str = ""


@dataclass
class PastContext:
    """Legacy summary of the last encounter. Informational only."""

    last_met_date: str = ""
    last_met_location: str = ""
    keywords: list[str] = field(default_factory=list)
    summary: str = ""


@dataclass
class Meeting:
    """A scheduled or past encounter with one or more contacts."""

    id: str
    contact_ids: list[str]
    title: str
    date: str                                  # ISO-8601 with offset
    location: str = ""
    user_note: str | None = None
    ai_guide: SmallTalkGuide | None = None
    past_context: PastContext = field(default_factory=PastContext)


# ---------------------------------------------------------------------------
# Guide proxy contracts
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    """Accepts both snake_case and the proxy's camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class BusinessTip(_WireModel):
    content: str
    source: str | None = None


class PersonGuide(_WireModel):
    """Per-attendee tips for multi-party meetings."""

    name: str
    business_tip: BusinessTip = Field(alias="businessTip")
    life_tip: str = Field(alias="lifeTip")


class SmallTalkGuide(_WireModel):
    """Generated conversation tips for one meeting.

    JSON example:
    {
        "pastReview": "Met twice; last time they mentioned a vegan line launch.",
        "businessTip": {"content": "Ask how the vegan line launch went", "source": "Note 2026-02-10"},
        "lifeTip": "Plays tennis on weekends"
    }
    """

    past_review: str = Field(alias="pastReview")
    business_tip: BusinessTip = Field(alias="businessTip")
    life_tip: str = Field(alias="lifeTip")
    attendees: list[PersonGuide] | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.past_review and self.business_tip.content and self.life_tip)


class PartialGuide(_WireModel):
    """Best-known guide while the stream is still arriving.

    Fields are revealed in the order pastReview → businessTip → lifeTip.
    """

    past_review: str | None = Field(default=None, alias="pastReview")
    business_tip: BusinessTip | None = Field(default=None, alias="businessTip")
    life_tip: str | None = Field(default=None, alias="lifeTip")
    attendees: list[PersonGuide] | None = None


class NoteAnalysis(_WireModel):
    """Interests and personality inferred from a meeting note."""

    business_interests: list[str] = Field(default_factory=list, alias="businessInterests")
    lifestyle_interests: list[str] = Field(default_factory=list, alias="lifestyleInterests")
    personality: str = ""


class RelatedArticle(_WireModel):
    """A news search suggestion for a guide tip."""

    title: str
    query: str
    url: str
