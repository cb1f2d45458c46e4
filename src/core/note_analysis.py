"""
SmallTalker — Contact enrichment from meeting notes.

Interests inferred from a note are merged into the contact with ordered
set-union semantics; existing entries are never dropped or reordered.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from src.data.models import Contact, Interests, NoteAnalysis


def merge_unique(existing: Iterable[str], additions: Iterable[str]) -> list[str]:
    """Existing items first, then new ones, without duplicates."""
    merged: list[str] = []
    seen: set[str] = set()
    for item in [*existing, *additions]:
        if not item or item in seen:
            continue
        seen.add(item)
        merged.append(item)
    return merged


def merge_interests(current: Interests, business: Iterable[str], lifestyle: Iterable[str]) -> Interests:
    return Interests(
        business=merge_unique(current.business, business),
        lifestyle=merge_unique(current.lifestyle, lifestyle),
    )


def merge_note_analysis(contact: Contact, analysis: NoteAnalysis) -> Contact:
    """Return a copy of `contact` enriched with `analysis`.

    Personality is only replaced by a non-blank analysis value.
    """
    personality = analysis.personality.strip() if analysis.personality else ""
    return replace(
        contact,
        interests=merge_interests(
            contact.interests,
            analysis.business_interests,
            analysis.lifestyle_interests,
        ),
        personality=personality or contact.personality,
    )
