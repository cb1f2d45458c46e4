"""
SmallTalker — Guide text parsing.

Turns the text produced by the guide proxy into guide structures:

- `parse_partial_guide()` reads a still-growing JSON document and reports only
  the fields whose values are already complete. It never raises.
- `parse_final_guide()` parses the finished text, filling a safe default for
  any missing field instead of failing the whole guide.
"""

from __future__ import annotations

import json
import logging
import re

from src.data.models import BusinessTip, PartialGuide, PersonGuide, SmallTalkGuide
from src.ports.generation_port import MalformedResponseError

logger = logging.getLogger(__name__)

DEFAULT_PAST_REVIEW = "만남의 기록이 분석되었습니다."
DEFAULT_BUSINESS_TIP = "상대방의 최근 성과나 업계 이슈로 대화를 시작해보세요."
DEFAULT_LIFE_TIP = "상대방의 개인적인 관심사나 가벼운 주제가 분위기를 풀어줄 것입니다."

_DECODER = json.JSONDecoder()
_WHITESPACE = re.compile(r"[ \t\n\r]*")
_OPENING_FENCE = re.compile(r"^```[a-zA-Z]*[ \t]*\n?")


# ---------------------------------------------------------------------------
# Response cleaning
# ---------------------------------------------------------------------------


def clean_llm_response(raw_text: str) -> str:
    """Remove markdown code block delimiters from the model's raw response."""
    cleaned_text = raw_text.strip()
    if cleaned_text.startswith("```"):
        cleaned_text = _OPENING_FENCE.sub("", cleaned_text, count=1)
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text.removesuffix("```")
    return cleaned_text.strip()


def _strip_leading_fence(text: str) -> str:
    """Drop an opening fence from a partial document.

    While the fence line itself is still arriving there is no JSON yet.
    """
    stripped = text.lstrip()
    if not stripped.startswith("```"):
        return stripped
    newline = stripped.find("\n")
    if newline == -1:
        return ""
    return stripped[newline + 1:].lstrip()


# ---------------------------------------------------------------------------
# Field coercion (shared by the partial and final parsers)
# ---------------------------------------------------------------------------


def _as_text(value) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _as_business_tip(value) -> BusinessTip | None:
    if isinstance(value, str) and value.strip():
        return BusinessTip(content=value)
    if not isinstance(value, dict):
        return None
    content = _as_text(value.get("content"))
    if content is None:
        return None
    source = value.get("source")
    return BusinessTip(content=content, source=source if isinstance(source, str) and source else None)


def _as_person_guide(value) -> PersonGuide | None:
    if not isinstance(value, dict):
        return None
    return PersonGuide(
        name=value.get("name") if isinstance(value.get("name"), str) else "",
        business_tip=_as_business_tip(value.get("businessTip")) or BusinessTip(content=DEFAULT_BUSINESS_TIP),
        life_tip=_as_text(value.get("lifeTip")) or DEFAULT_LIFE_TIP,
    )


def _as_attendees(value) -> list[PersonGuide] | None:
    if not isinstance(value, list):
        return None
    people = [p for p in (_as_person_guide(v) for v in value) if p is not None]
    return people or None


# ---------------------------------------------------------------------------
# Partial parsing
# ---------------------------------------------------------------------------


def _complete_fields(body: str) -> dict:
    """Collect top-level key/value pairs whose JSON values are complete."""
    fields: dict = {}
    if not body.startswith("{"):
        return fields

    pos = 1
    end = len(body)
    try:
        while pos < end:
            pos = _WHITESPACE.match(body, pos).end()
            if pos >= end or body[pos] == "}":
                break
            if body[pos] == ",":
                pos += 1
                continue
            key, pos = _DECODER.raw_decode(body, pos)
            if not isinstance(key, str):
                break
            pos = _WHITESPACE.match(body, pos).end()
            if pos >= end or body[pos] != ":":
                break
            pos = _WHITESPACE.match(body, pos + 1).end()
            if pos >= end:
                break
            value, pos = _DECODER.raw_decode(body, pos)
            fields[key] = value
    except ValueError:
        # The value currently being streamed is incomplete
        pass
    return fields


def parse_partial_guide(text: str) -> PartialGuide | None:
    """Best-effort parse of a growing guide document.

    Returns None when no field is complete yet (e.g. `{"pastReview": "abc`).
    """
    fields = _complete_fields(_strip_leading_fence(text))
    if not fields:
        return None

    partial = PartialGuide(
        past_review=_as_text(fields.get("pastReview")),
        business_tip=_as_business_tip(fields.get("businessTip")),
        life_tip=_as_text(fields.get("lifeTip")),
        attendees=_as_attendees(fields.get("attendees")),
    )
    if partial == PartialGuide():
        return None
    return partial


# ---------------------------------------------------------------------------
# Final parsing
# ---------------------------------------------------------------------------


def guide_from_dict(data: dict) -> SmallTalkGuide:
    """Build a complete guide from a decoded object, defaulting missing fields."""
    return SmallTalkGuide(
        past_review=_as_text(data.get("pastReview")) or DEFAULT_PAST_REVIEW,
        business_tip=_as_business_tip(data.get("businessTip")) or BusinessTip(content=DEFAULT_BUSINESS_TIP),
        life_tip=_as_text(data.get("lifeTip")) or DEFAULT_LIFE_TIP,
        attendees=_as_attendees(data.get("attendees")),
    )


def parse_final_guide(raw_text: str) -> SmallTalkGuide:
    """Parse the finished guide text.

    Raises MalformedResponseError when the cleaned text is not a JSON object.
    """
    cleaned = clean_llm_response(raw_text or "")
    if not cleaned:
        raise MalformedResponseError("Guide response was empty")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse guide response as JSON: %s — raw: '%s'", exc, cleaned[:200])
        raise MalformedResponseError(f"Guide response is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        logger.error("Guide response has unexpected type: %s", type(data).__name__)
        raise MalformedResponseError(f"Guide response must be an object, got {type(data).__name__}")

    return guide_from_dict(data)
