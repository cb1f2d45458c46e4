"""
SmallTalker — Meeting history aggregation.

Collects the notes of every earlier meeting that shares a participant with
the target meeting into one chronological text block. The block is prompt
context for the guide proxy, never parsed back.
"""

from __future__ import annotations

import logging
from typing import Iterable

from src.core.timeutil import format_local_date, parse_meeting_date
from src.data.models import Meeting

logger = logging.getLogger(__name__)

HISTORY_SEPARATOR = "\n---\n"


def aggregate_history(target: Meeting, meetings: Iterable[Meeting]) -> str:
    """Return `[date] note` entries for prior shared-participant meetings.

    Qualifying meetings share at least one contact id with `target`, are dated
    strictly before it and carry a non-blank note. Entries are sorted
    ascending by date. No qualifying meeting → "".
    """
    participants = set(target.contact_ids)
    if not participants:
        return ""

    target_date = parse_meeting_date(target.date)

    entries = []
    for m in meetings:
        if m.id == target.id:
            continue
        if not m.user_note or not m.user_note.strip():
            continue
        if participants.isdisjoint(m.contact_ids):
            continue
        try:
            when = parse_meeting_date(m.date)
        except ValueError:
            logger.warning("Skipping meeting %s with unparseable date %r", m.id, m.date)
            continue
        if when >= target_date:
            continue
        entries.append((when, m.user_note))

    entries.sort(key=lambda e: e[0])
    logger.debug("History for meeting %s: %d entries", target.id, len(entries))
    return HISTORY_SEPARATOR.join(
        f"[{format_local_date(when)}] {note}" for when, note in entries
    )
