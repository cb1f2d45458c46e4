"""
SmallTalker — Time helpers.

All date decisions (scope gate, prefetch horizon, history cut-off) and all
dates rendered into prompts go through this module, so the history block and
the request payload agree on one localization.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

from src.config import settings


def _zone() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def parse_meeting_date(value: str) -> datetime:
    """Parse an ISO-8601 meeting timestamp into an aware datetime.

    Naive values are taken to be in the configured timezone. A trailing "Z"
    is accepted.
    """
    if not value or not value.strip():
        raise ValueError("Empty meeting date")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_zone())
    return parsed


def now() -> datetime:
    """Current time in the configured zone, honoring SIMULATED_NOW."""
    if settings.SIMULATED_NOW:
        return parse_meeting_date(settings.SIMULATED_NOW).astimezone(_zone())
    return datetime.now(_zone())


def local_day(moment: datetime):
    """Calendar date of `moment` in the configured zone."""
    return moment.astimezone(_zone()).date()


def format_local_date(moment: datetime) -> str:
    """Korean short date, e.g. 2026. 2. 27."""
    d = local_day(moment)
    return f"{d.year}. {d.month}. {d.day}."


def is_today(moment: datetime, current: datetime) -> bool:
    return local_day(moment) == local_day(current)


def is_past_day(moment: datetime, current: datetime) -> bool:
    """True when `moment` falls on a calendar day before today."""
    return local_day(moment) < local_day(current)


def end_of_day(moment: datetime, days_ahead: int = 0) -> datetime:
    """Last instant of the local day `days_ahead` days after `moment`."""
    day = local_day(moment) + timedelta(days=days_ahead)
    return datetime.combine(day, time.max, tzinfo=_zone())
