"""Tests for src.core.guide_parser — partial and final guide parsing."""

import pytest

from src.core.guide_parser import (
    DEFAULT_BUSINESS_TIP,
    DEFAULT_LIFE_TIP,
    DEFAULT_PAST_REVIEW,
    clean_llm_response,
    parse_final_guide,
    parse_partial_guide,
)
from src.ports.generation_port import MalformedResponseError

FULL_GUIDE = (
    '{"pastReview": "Met in Feb", '
    '"businessTip": {"content": "Ask about the launch", "source": "note"}, '
    '"lifeTip": "Tennis"}'
)


class TestCleanLLMResponse:
    def test_json_fence(self):
        assert clean_llm_response('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert clean_llm_response('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        assert clean_llm_response('  {"a": 1} ') == '{"a": 1}'


class TestParsePartialGuide:
    def test_incomplete_string_yields_nothing(self):
        assert parse_partial_guide('{"pastReview": "abc') is None

    def test_empty_text(self):
        assert parse_partial_guide("") is None

    def test_fence_line_still_arriving(self):
        assert parse_partial_guide("```js") is None

    def test_first_field_complete(self):
        partial = parse_partial_guide('{"pastReview": "Met in Feb", "busi')
        assert partial is not None
        assert partial.past_review == "Met in Feb"
        assert partial.business_tip is None
        assert partial.life_tip is None

    def test_nested_object_must_be_closed(self):
        text = '{"pastReview": "Met", "businessTip": {"content": "Ask'
        partial = parse_partial_guide(text)
        assert partial.past_review == "Met"
        assert partial.business_tip is None

    def test_progressive_fields(self):
        text = '```json\n{"pastReview": "Met", "businessTip": {"content": "Ask"}, "lifeTip": "Ten'
        partial = parse_partial_guide(text)
        assert partial.business_tip.content == "Ask"
        assert partial.life_tip is None

    def test_plain_string_business_tip(self):
        partial = parse_partial_guide('{"businessTip": "Ask about exports",')
        assert partial.business_tip.content == "Ask about exports"
        assert partial.business_tip.source is None

    def test_non_object_is_ignored(self):
        assert parse_partial_guide("[1, 2") is None


class TestParseFinalGuide:
    def test_full_guide(self):
        guide = parse_final_guide(FULL_GUIDE)
        assert guide.past_review == "Met in Feb"
        assert guide.business_tip.content == "Ask about the launch"
        assert guide.business_tip.source == "note"
        assert guide.life_tip == "Tennis"
        assert guide.is_complete

    def test_fenced_guide(self):
        guide = parse_final_guide(f"```json\n{FULL_GUIDE}\n```")
        assert guide.life_tip == "Tennis"

    def test_missing_fields_get_defaults(self):
        guide = parse_final_guide('{"pastReview": "x"}')
        assert guide.past_review == "x"
        assert guide.business_tip.content == DEFAULT_BUSINESS_TIP
        assert guide.life_tip == DEFAULT_LIFE_TIP
        assert guide.is_complete

    def test_empty_object_gets_all_defaults(self):
        guide = parse_final_guide("{}")
        assert guide.past_review == DEFAULT_PAST_REVIEW

    def test_attendees(self):
        text = (
            '{"pastReview": "p", "businessTip": {"content": "b"}, "lifeTip": "l", '
            '"attendees": [{"name": "Kim", "businessTip": {"content": "kb"}, "lifeTip": "kl"}, '
            '{"name": "Park"}]}'
        )
        guide = parse_final_guide(text)
        assert [a.name for a in guide.attendees] == ["Kim", "Park"]
        assert guide.attendees[1].life_tip == DEFAULT_LIFE_TIP

    def test_not_json(self):
        with pytest.raises(MalformedResponseError):
            parse_final_guide("Sorry, I cannot help with that.")

    def test_truncated_json(self):
        with pytest.raises(MalformedResponseError):
            parse_final_guide('{"pastReview": "abc')

    def test_array_rejected(self):
        with pytest.raises(MalformedResponseError):
            parse_final_guide("[]")

    def test_empty_rejected(self):
        with pytest.raises(MalformedResponseError):
            parse_final_guide("   ")
