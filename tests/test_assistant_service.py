"""Tests for src.core.assistant_service — session orchestration.

Runs against a real SQLiteRecordStore in a temp file and a fake generator.
"""

from unittest.mock import AsyncMock, patch

import pytest

from src.core.assistant_service import DEFAULT_USER_NAME, AssistantService
from src.core.guide_gate import OutcomeKind
from src.data.models import (
    BusinessTip,
    Contact,
    Interests,
    Meeting,
    NoteAnalysis,
    RelatedArticle,
    SmallTalkGuide,
    UserProfile,
)
from src.ports.generation_port import TransportError
from src.ports.record_store_port import PersistenceError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _old_guide() -> SmallTalkGuide:
    return SmallTalkGuide(
        past_review="Old review", business_tip=BusinessTip(content="Old tip"), life_tip="Old life",
    )


async def _seed(store, meetings=None):
    await store.save_user_profile(UserProfile(name="Jiwoo"))
    await store.insert_contact(
        Contact(id="c1", name="Kim", interests=Interests(business=["skincare"]), personality="Quiet")
    )
    await store.insert_contact(Contact(id="c2", name="Park"))
    for meeting in meetings or []:
        await store.insert_meeting(meeting)


YESTERDAY = Meeting(
    id="m0", contact_ids=["c1"], title="Coffee",
    date="2026-02-27T10:00:00+09:00", user_note="Interested in vegan skincare",
)
TODAY = Meeting(id="m1", contact_ids=["c1"], title="Lunch", date="2026-02-28T14:00:00+09:00")


async def _make_service(store, generator, clock, meetings=None):
    await _seed(store, meetings)
    service = AssistantService(store, generator, clock=clock)
    await service.load_session()
    return service


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestLoadSession:
    @pytest.mark.asyncio
    async def test_creates_default_user(self, store, generator, clock):
        service = AssistantService(store, generator, clock=clock)

        state = await service.load_session()

        assert state.user.name == DEFAULT_USER_NAME
        assert (await store.load_user_profile()).name == DEFAULT_USER_NAME

    @pytest.mark.asyncio
    async def test_loads_records(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY, TODAY])

        assert service.state.user.name == "Jiwoo"
        assert set(service.state.contacts) == {"c1", "c2"}
        assert set(service.state.meetings) == {"m0", "m1"}
        assert service.state.prefetched is False

    @pytest.mark.asyncio
    async def test_reload_starts_a_fresh_session(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[TODAY])
        await service.prefetch_now()

        await service.load_session()

        assert service.state.prefetched is False
        assert service.state.meetings["m1"].ai_guide == generator.guide


class TestOpenMeeting:
    @pytest.mark.asyncio
    async def test_first_open_generates_then_caches(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY, TODAY])

        first = await service.open_meeting("m1")
        second = await service.open_meeting("m1")

        assert first.kind is OutcomeKind.GENERATED
        assert second.kind is OutcomeKind.CACHED
        assert len(generator.stream_requests) == 1
        payload = generator.stream_requests[0].payload
        assert payload["historyNotes"] == "[2026. 2. 27.] Interested in vegan skincare"

        stored = {m.id: m for m in await store.list_meetings()}
        assert stored["m1"].ai_guide == generator.guide

    @pytest.mark.asyncio
    async def test_past_meeting_has_no_guide(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY])
        outcome = await service.open_meeting("m0")
        assert outcome.kind is OutcomeKind.SKIPPED
        assert generator.stream_requests == []

    @pytest.mark.asyncio
    async def test_unknown_meeting(self, store, generator, clock):
        service = await _make_service(store, generator, clock)
        outcome = await service.open_meeting("ghost")
        assert outcome.kind is OutcomeKind.FAILED

    @pytest.mark.asyncio
    async def test_close_meeting_without_attempt(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[TODAY])
        service.close_meeting("m1")
        assert not service.gate.is_in_flight("m1")

    @pytest.mark.asyncio
    async def test_regenerate(self, store, generator, clock):
        cached = Meeting(
            id="m1", contact_ids=["c1"], title="Lunch",
            date="2026-02-28T14:00:00+09:00", ai_guide=_old_guide(),
        )
        service = await _make_service(store, generator, clock, meetings=[cached])

        outcome = await service.regenerate_guide("m1")

        assert outcome.kind is OutcomeKind.GENERATED
        assert outcome.guide == generator.guide
        stored = (await store.list_meetings())[0]
        assert stored.ai_guide == generator.guide

    @pytest.mark.asyncio
    async def test_search_related_delegates(self, store, generator, clock):
        service = await _make_service(store, generator, clock)
        generator.related = [RelatedArticle(title="t", query="q", url="u")]
        assert await service.search_related("tip", "business") == generator.related


class TestPrefetch:
    @pytest.mark.asyncio
    async def test_background_prefetch_then_open_is_cached(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY, TODAY])

        assert await service.start_prefetch() == ["m1"]
        outcome = await service.open_meeting("m1")

        assert outcome.kind is OutcomeKind.CACHED
        assert generator.stream_requests == []
        assert generator.generate_requests[0].payload["hasHistory"] is True


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class TestSaveMeetingNote:
    @pytest.mark.asyncio
    async def test_saves_and_invalidates_later_guides(self, store, generator, clock):
        later = Meeting(
            id="m1", contact_ids=["c1", "c2"], title="Lunch",
            date="2026-02-28T14:00:00+09:00", ai_guide=_old_guide(),
        )
        unrelated = Meeting(
            id="m2", contact_ids=["c9"], title="Other",
            date="2026-02-28T15:00:00+09:00", ai_guide=_old_guide(),
        )
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY, later, unrelated])

        await service.save_meeting_note("m0", "Loves golf")

        assert service.state.meetings["m0"].user_note == "Loves golf"
        assert service.state.meetings["m1"].ai_guide is None
        assert service.state.meetings["m2"].ai_guide == _old_guide()
        stored = {m.id: m for m in await store.list_meetings()}
        assert stored["m0"].user_note == "Loves golf"
        assert stored["m1"].ai_guide is None

    @pytest.mark.asyncio
    async def test_regenerated_guide_uses_new_note(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY, TODAY])
        await service.open_meeting("m1")

        await service.save_meeting_note("m0", "Moved to a new team")
        await service.open_meeting("m1")

        assert len(generator.stream_requests) == 2
        assert generator.stream_requests[1].payload["historyNotes"] == "[2026. 2. 27.] Moved to a new team"

    @pytest.mark.asyncio
    async def test_enriches_primary_contact(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY])
        generator.analysis = NoteAnalysis(
            business_interests=["exports", "skincare"],
            lifestyle_interests=["golf"],
            personality="Outgoing",
        )

        await service.save_meeting_note("m0", "Loves golf, expanding exports")

        contact = service.state.contacts["c1"]
        assert contact.interests.business == ["skincare", "exports"]
        assert contact.interests.lifestyle == ["golf"]
        assert contact.personality == "Outgoing"
        stored = {c.id: c for c in await store.list_contacts()}
        assert stored["c1"].interests.lifestyle == ["golf"]

    @pytest.mark.asyncio
    async def test_analysis_failure_keeps_contact(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY])
        generator.analysis_error = TransportError("offline")

        meeting = await service.save_meeting_note("m0", "Loves golf")

        assert meeting.user_note == "Loves golf"
        assert service.state.contacts["c1"].interests.lifestyle == []
        assert service.state.contacts["c1"].personality == "Quiet"

    @pytest.mark.asyncio
    async def test_blank_note_skips_analysis(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY])
        await service.save_meeting_note("m0", "   ")
        assert generator.analyzed_notes == []

    @pytest.mark.asyncio
    async def test_append_note(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY])

        meeting = await service.append_meeting_note("m0", "Also plays tennis")

        assert meeting.user_note == "Interested in vegan skincare\n\nAlso plays tennis"

    @pytest.mark.asyncio
    async def test_unknown_meeting_raises(self, store, generator, clock):
        service = await _make_service(store, generator, clock)
        with pytest.raises(KeyError):
            await service.save_meeting_note("ghost", "x")

    @pytest.mark.asyncio
    async def test_store_failure_keeps_previous_note(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY, TODAY])
        failing = AsyncMock(side_effect=PersistenceError("database is locked"))

        with patch.object(store, "save_user_note", failing):
            with pytest.raises(PersistenceError):
                await service.save_meeting_note("m0", "Loves golf")

        assert service.state.meetings["m0"].user_note == "Interested in vegan skincare"
        assert generator.analyzed_notes == []


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class TestUpdateContact:
    @pytest.mark.asyncio
    async def test_invalidates_upcoming_guides_only(self, store, generator, clock):
        past = Meeting(
            id="past", contact_ids=["c1"], title="Old",
            date="2026-02-20T10:00:00+09:00", ai_guide=_old_guide(),
        )
        upcoming = Meeting(
            id="next", contact_ids=["c1"], title="Next",
            date="2026-03-01T10:00:00+09:00", ai_guide=_old_guide(),
        )
        other = Meeting(
            id="other", contact_ids=["c2"], title="Other",
            date="2026-03-01T11:00:00+09:00", ai_guide=_old_guide(),
        )
        service = await _make_service(store, generator, clock, meetings=[past, upcoming, other])

        await service.update_contact(Contact(id="c1", name="Kim Minji", company="Glow"))

        assert service.state.contacts["c1"].name == "Kim Minji"
        assert service.state.contacts["c1"].interests.business == ["skincare"]
        assert service.state.meetings["past"].ai_guide == _old_guide()
        assert service.state.meetings["next"].ai_guide is None
        assert service.state.meetings["other"].ai_guide == _old_guide()
        stored = {c.id: c for c in await store.list_contacts()}
        assert stored["c1"].company == "Glow"

    @pytest.mark.asyncio
    async def test_unknown_contact_not_added_to_session(self, store, generator, clock):
        service = await _make_service(store, generator, clock)

        with pytest.raises(PersistenceError):
            await service.update_contact(Contact(id="ghost", name="Nobody"))

        assert "ghost" not in service.state.contacts


class TestUpdateMeeting:
    @pytest.mark.asyncio
    async def test_moved_meeting_loses_its_guide(self, store, generator, clock):
        booked = Meeting(
            id="m1", contact_ids=["c1"], title="Lunch",
            date="2026-02-28T14:00:00+09:00", ai_guide=_old_guide(),
        )
        service = await _make_service(store, generator, clock, meetings=[booked])

        updated = await service.update_meeting(
            Meeting(id="m1", contact_ids=["c1"], title="Lunch", date="2026-03-02T12:00:00+09:00")
        )

        assert updated.date == "2026-03-02T12:00:00+09:00"
        assert service.state.meetings["m1"].ai_guide is None
        stored = (await store.list_meetings())[0]
        assert stored.date == "2026-03-02T12:00:00+09:00"
        assert stored.ai_guide is None

    @pytest.mark.asyncio
    async def test_unchanged_schedule_keeps_guide(self, store, generator, clock):
        booked = Meeting(
            id="m1", contact_ids=["c1"], title="Lunch",
            date="2026-02-28T14:00:00+09:00", ai_guide=_old_guide(),
        )
        service = await _make_service(store, generator, clock, meetings=[booked])

        await service.update_meeting(
            Meeting(id="m1", contact_ids=["c1"], title="Lunch", date="2026-02-28T14:00:00+09:00")
        )

        assert service.state.meetings["m1"].ai_guide == _old_guide()

    @pytest.mark.asyncio
    async def test_noted_meeting_edit_invalidates_later_history(self, store, generator, clock):
        kim_today = Meeting(
            id="m1", contact_ids=["c1"], title="Lunch",
            date="2026-02-28T14:00:00+09:00", ai_guide=_old_guide(),
        )
        park_soon = Meeting(
            id="m2", contact_ids=["c2"], title="Dinner",
            date="2026-03-01T19:00:00+09:00", ai_guide=_old_guide(),
        )
        stranger = Meeting(
            id="m3", contact_ids=["c9"], title="Other",
            date="2026-03-01T10:00:00+09:00", ai_guide=_old_guide(),
        )
        service = await _make_service(
            store, generator, clock, meetings=[YESTERDAY, kim_today, park_soon, stranger],
        )

        # Yesterday's coffee was actually with Park, not Kim
        updated = await service.update_meeting(
            Meeting(id="m0", contact_ids=["c2"], title="Coffee", date=YESTERDAY.date)
        )

        assert updated.user_note == "Interested in vegan skincare"
        assert service.state.meetings["m1"].ai_guide is None
        assert service.state.meetings["m2"].ai_guide is None
        assert service.state.meetings["m3"].ai_guide == _old_guide()

        await service.open_meeting("m1")
        assert generator.stream_requests[0].payload["hasHistory"] is False

    @pytest.mark.asyncio
    async def test_with_new_contact(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[TODAY])

        await service.update_meeting(
            Meeting(id="m1", contact_ids=["c1", "c9"], title="Lunch", date=TODAY.date),
            new_contact=Contact(id="c9", name="Choi"),
        )

        assert "c9" in service.state.contacts
        assert service.state.meetings["m1"].contact_ids == ["c1", "c9"]
        stored = (await store.list_meetings())[0]
        assert stored.contact_ids == ["c1", "c9"]

    @pytest.mark.asyncio
    async def test_unknown_meeting_raises(self, store, generator, clock):
        service = await _make_service(store, generator, clock)
        with pytest.raises(KeyError):
            await service.update_meeting(TODAY)


class TestAddRecords:
    @pytest.mark.asyncio
    async def test_add_meeting_with_new_contact(self, store, generator, clock):
        service = await _make_service(store, generator, clock)
        meeting = Meeting(id="m9", contact_ids=["c9"], title="Intro", date="2026-03-01T10:00:00+09:00")

        await service.add_meeting(meeting, new_contact=Contact(id="c9", name="Choi"))

        assert "c9" in service.state.contacts
        assert [m.id for m in await store.list_meetings()] == ["m9"]
        outcome = await service.open_meeting("m9")
        assert outcome.kind is OutcomeKind.GENERATED
        assert generator.stream_requests[0].payload["hasHistory"] is False

    @pytest.mark.asyncio
    async def test_update_user(self, store, generator, clock):
        service = await _make_service(store, generator, clock)
        await service.update_user(UserProfile(name="Jiwoo Lee", company="Glow Labs"))
        assert (await store.load_user_profile()).company == "Glow Labs"
        assert service.state.user.name == "Jiwoo Lee"


class TestAskAssistant:
    @pytest.mark.asyncio
    async def test_answers_from_session_records(self, store, generator, clock):
        service = await _make_service(store, generator, clock, meetings=[YESTERDAY, TODAY])

        answer = await service.ask_assistant("Who do I meet today?")

        assert answer == generator.answer
        payload = generator.chat_requests[0].payload
        assert payload["query"] == "Who do I meet today?"
        assert payload["user"]["name"] == "Jiwoo"
        assert [m["id"] for m in payload["meetings"]] == ["m0", "m1"]
        assert {c["id"] for c in payload["contacts"]} == {"c1", "c2"}
        assert payload["today"] == "2026. 2. 28."

    @pytest.mark.asyncio
    async def test_failure_returns_none(self, store, generator, clock):
        service = await _make_service(store, generator, clock)
        generator.chat_error = TransportError("offline")
        assert await service.ask_assistant("Any plans?") is None

    @pytest.mark.asyncio
    async def test_blank_question_makes_no_call(self, store, generator, clock):
        service = await _make_service(store, generator, clock)
        assert await service.ask_assistant("   ") is None
        assert generator.chat_requests == []
