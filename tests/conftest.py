"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp DB and a pinned clock.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("GUIDE_ENDPOINT_URL", "https://proxy.test/functions/v1/guide")
os.environ.setdefault("GUIDE_API_KEY", "fake-guide-key-for-tests")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "Asia/Seoul")
os.environ.setdefault("SIMULATED_NOW", "")

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

SEOUL = ZoneInfo("Asia/Seoul")

# 2026-02-28 09:00 in Seoul
NOW = datetime(2026, 2, 28, 9, 0, tzinfo=SEOUL)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    """A clock pinned to NOW."""
    return lambda: NOW


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_smalltalker.db")


@pytest.fixture
def contact_db(tmp_db_path):
    from src.data.db import ContactDB
    return ContactDB(db_path=tmp_db_path)


@pytest.fixture
def meeting_db(tmp_db_path):
    from src.data.db import MeetingDB
    return MeetingDB(db_path=tmp_db_path)


@pytest.fixture
def profile_db(tmp_db_path):
    from src.data.db import UserProfileDB
    return UserProfileDB(db_path=tmp_db_path)


@pytest.fixture
def store(tmp_db_path):
    """A SQLiteRecordStore for user 'u1' backed by a temp file."""
    from src.adapters.sqlite_store import SQLiteRecordStore
    return SQLiteRecordStore(user_id="u1", db_path=tmp_db_path)


class FakeGenerator:
    """In-memory GuideGenerator that records calls.

    Configure `guide`, `partials`, `stream_error`, `generate_errors`
    (meeting id → exception), `analysis` and `answer` per test.
    """

    def __init__(self):
        from src.data.models import BusinessTip, NoteAnalysis, SmallTalkGuide

        self.guide = SmallTalkGuide(
            past_review="Met before",
            business_tip=BusinessTip(content="Ask about the launch"),
            life_tip="Tennis",
        )
        self.partials = []
        self.stream_error = None
        self.release = None              # asyncio.Event the stream waits on
        self.generate_errors = {}
        self.on_generate = None          # hook(request) called mid-generation
        self.analysis = NoteAnalysis()
        self.analysis_error = None
        self.related = []
        self.answer = "You meet Kim at 14:00"
        self.chat_error = None
        self.chat_requests = []
        self.stream_requests = []
        self.generate_requests = []
        self.analyzed_notes = []
        self.active = 0
        self.max_active = 0

    async def stream_guide(self, request):
        from src.ports.generation_port import GuideCompleted, GuideProgress

        self.stream_requests.append(request)
        for partial in self.partials:
            yield GuideProgress(partial=partial)
        if self.release is not None:
            await self.release.wait()
        if self.stream_error is not None:
            raise self.stream_error
        yield GuideCompleted(guide=self.guide)

    async def generate_guide(self, request):
        import asyncio

        self.generate_requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            if self.on_generate is not None:
                self.on_generate(request)
            error = self.generate_errors.get(request.meeting_id)
            if error is not None:
                raise error
            return self.guide
        finally:
            self.active -= 1

    async def analyze_note(self, note):
        self.analyzed_notes.append(note)
        if self.analysis_error is not None:
            raise self.analysis_error
        return self.analysis

    async def search_related(self, tip_content, tip_type):
        return self.related

    async def assistant_chat(self, request):
        self.chat_requests.append(request)
        if self.chat_error is not None:
            raise self.chat_error
        return self.answer


@pytest.fixture
def generator():
    return FakeGenerator()
