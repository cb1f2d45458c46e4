"""
SmallTalker — SQLite record storage.

Contacts, meetings and the user profile persist in SQLite, scoped per user.
Structured fields (tags, interests, guides) are stored as JSON text and
mapped back into typed records exactly once, in the `_row_to_*` mappers,
which default every missing or malformed field.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from src.data.models import (
    Contact,
    Interests,
    Meeting,
    PastContext,
    SmallTalkGuide,
    UserProfile,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# JSON column helpers
# ---------------------------------------------------------------------------


def _load_json(raw: str | None, default):
    if raw is None or raw == "":
        return default
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Ignoring malformed JSON column value: %r", raw[:80])
        return default


def _str_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def _to_interests(value) -> Interests:
    if not isinstance(value, dict):
        return Interests()
    return Interests(
        business=_str_list(value.get("business")),
        lifestyle=_str_list(value.get("lifestyle")),
    )


def _interests_json(interests: Interests) -> str:
    return json.dumps(asdict(interests), ensure_ascii=False)


def _to_guide(value, meeting_id: str) -> SmallTalkGuide | None:
    if not isinstance(value, dict):
        return None
    try:
        return SmallTalkGuide.model_validate(value)
    except ValidationError as exc:
        logger.warning("Dropping stored guide of meeting %s with invalid shape: %s", meeting_id, exc)
        return None


def _to_past_context(value) -> PastContext:
    if not isinstance(value, dict):
        return PastContext()
    return PastContext(
        last_met_date=str(value.get("lastMetDate") or ""),
        last_met_location=str(value.get("lastMetLocation") or ""),
        keywords=_str_list(value.get("keywords")),
        summary=str(value.get("summary") or ""),
    )


def _past_context_json(ctx: PastContext) -> str:
    return json.dumps({
        "lastMetDate": ctx.last_met_date,
        "lastMetLocation": ctx.last_met_location,
        "keywords": ctx.keywords,
        "summary": ctx.summary,
    }, ensure_ascii=False)


class ContactDB:
    """SQLite-backed storage for tracked contacts."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS contacts (
                    id                TEXT PRIMARY KEY,
                    user_id           TEXT,
                    name              TEXT NOT NULL,
                    company           TEXT NOT NULL DEFAULT '',
                    role              TEXT NOT NULL DEFAULT '',
                    phone_number      TEXT NOT NULL DEFAULT '',
                    email             TEXT NOT NULL DEFAULT '',
                    tags              TEXT NOT NULL DEFAULT '[]',
                    interests         TEXT NOT NULL DEFAULT '{}',
                    personality       TEXT NOT NULL DEFAULT '',
                    contact_frequency TEXT NOT NULL DEFAULT '',
                    avatar_url        TEXT NOT NULL DEFAULT '',
                    created_at        TEXT NOT NULL
                )
            """)
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(contacts)").fetchall()
            }
            if "relationship_type" not in existing_cols:
                conn.execute(
                    "ALTER TABLE contacts ADD COLUMN relationship_type TEXT NOT NULL DEFAULT ''"
                )
            if "meeting_frequency" not in existing_cols:
                conn.execute(
                    "ALTER TABLE contacts ADD COLUMN meeting_frequency TEXT NOT NULL DEFAULT ''"
                )
        logger.debug("Contacts table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_contact(row: sqlite3.Row) -> Contact:
        return Contact(
            id=str(row["id"]),
            name=row["name"] or "",
            company=row["company"] or "",
            role=row["role"] or "",
            phone_number=row["phone_number"] or "",
            email=row["email"] or "",
            tags=_str_list(_load_json(row["tags"], [])),
            interests=_to_interests(_load_json(row["interests"], {})),
            personality=row["personality"] or "",
            contact_frequency=row["contact_frequency"] or "",
            relationship_type=row["relationship_type"] or "",
            meeting_frequency=row["meeting_frequency"] or "",
            avatar_url=row["avatar_url"] or "",
        )

    def add_contact(self, contact: Contact, user_id: str | None = None) -> Contact:
        """Insert a new contact under the given user."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO contacts
                    (id, user_id, name, company, role, phone_number, email, tags,
                     interests, personality, contact_frequency, avatar_url,
                     relationship_type, meeting_frequency, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    contact.id, user_id, contact.name, contact.company, contact.role,
                    contact.phone_number, contact.email,
                    json.dumps(contact.tags, ensure_ascii=False),
                    _interests_json(contact.interests), contact.personality,
                    contact.contact_frequency, contact.avatar_url,
                    contact.relationship_type, contact.meeting_frequency,
                    datetime.now().isoformat(),
                ),
            )
        logger.info("Contact added: %s '%s'", contact.id, contact.name)
        return contact

    def update_contact(self, contact: Contact) -> bool:
        """Replace the editable fields of a contact."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE contacts SET
                    name = ?, company = ?, role = ?, phone_number = ?, email = ?,
                    tags = ?, interests = ?, personality = ?,
                    relationship_type = ?, meeting_frequency = ?
                WHERE id = ?
                """,
                (
                    contact.name, contact.company, contact.role, contact.phone_number,
                    contact.email, json.dumps(contact.tags, ensure_ascii=False),
                    _interests_json(contact.interests), contact.personality,
                    contact.relationship_type, contact.meeting_frequency, contact.id,
                ),
            )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Contact %s updated", contact.id)
        return updated

    def update_profile(self, contact_id: str, interests: Interests, personality: str) -> bool:
        """Write merged interests and personality for a contact."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE contacts SET interests = ?, personality = ? WHERE id = ?",
                (_interests_json(interests), personality, contact_id),
            )
        return cursor.rowcount > 0

    def get_contact(self, contact_id: str) -> Contact | None:
        """Fetch a single contact by ID."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM contacts WHERE id = ?", (contact_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_contact(row)

    def list_all(self, user_id: str | None = None) -> list[Contact]:
        """Return all contacts, optionally scoped to a user."""
        query = "SELECT * FROM contacts"
        params: list = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY name"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_contact(r) for r in rows]


class MeetingDB:
    """SQLite-backed storage for meetings and their generated guides."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS meetings (
                    id            TEXT PRIMARY KEY,
                    user_id       TEXT,
                    contact_id    TEXT,
                    title         TEXT NOT NULL,
                    date          TEXT NOT NULL,
                    location      TEXT NOT NULL DEFAULT '',
                    user_note     TEXT,
                    ai_guide      TEXT,
                    past_context  TEXT
                )
            """)
            # Single-contact meetings predate contact_ids; contact_id is kept as fallback
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(meetings)").fetchall()
            }
            if "contact_ids" not in existing_cols:
                conn.execute("ALTER TABLE meetings ADD COLUMN contact_ids TEXT")
        logger.debug("Meetings table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_meeting(row: sqlite3.Row) -> Meeting:
        meeting_id = str(row["id"])
        contact_ids = _str_list(_load_json(row["contact_ids"], []))
        if not contact_ids and row["contact_id"]:
            contact_ids = [str(row["contact_id"])]
        return Meeting(
            id=meeting_id,
            contact_ids=contact_ids,
            title=row["title"] or "",
            date=row["date"],
            location=row["location"] or "",
            user_note=row["user_note"],
            ai_guide=_to_guide(_load_json(row["ai_guide"], None), meeting_id),
            past_context=_to_past_context(_load_json(row["past_context"], None)),
        )

    def add_meeting(self, meeting: Meeting, user_id: str | None = None) -> Meeting:
        """Insert a new meeting under the given user."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO meetings
                    (id, user_id, contact_ids, title, date, location,
                     user_note, ai_guide, past_context)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    meeting.id, user_id, json.dumps(meeting.contact_ids),
                    meeting.title, meeting.date, meeting.location, meeting.user_note,
                    json.dumps(meeting.ai_guide.to_wire(), ensure_ascii=False) if meeting.ai_guide else None,
                    _past_context_json(meeting.past_context),
                ),
            )
        logger.info("Meeting added: %s '%s' on %s", meeting.id, meeting.title, meeting.date)
        return meeting

    def get_meeting(self, meeting_id: str) -> Meeting | None:
        """Fetch a single meeting by ID."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM meetings WHERE id = ?", (meeting_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_meeting(row)

    def list_all(self, user_id: str | None = None) -> list[Meeting]:
        """Return all meetings ordered by date, optionally scoped to a user."""
        query = "SELECT * FROM meetings"
        params: list = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY date"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_meeting(r) for r in rows]

    def set_guide(self, meeting_id: str, guide: SmallTalkGuide | None) -> bool:
        """Replace (or clear, with None) the stored guide of a meeting."""
        payload = json.dumps(guide.to_wire(), ensure_ascii=False) if guide is not None else None
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE meetings SET ai_guide = ? WHERE id = ?",
                (payload, meeting_id),
            )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Meeting %s guide %s", meeting_id, "saved" if guide else "cleared")
        return updated

    def update_meeting(self, meeting: Meeting) -> bool:
        """Replace the schedule fields (participants, title, date, location)."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE meetings SET contact_ids = ?, title = ?, date = ?, location = ?
                WHERE id = ?
                """,
                (
                    json.dumps(meeting.contact_ids), meeting.title, meeting.date,
                    meeting.location, meeting.id,
                ),
            )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Meeting %s updated", meeting.id)
        return updated

    def set_user_note(self, meeting_id: str, note: str) -> bool:
        """Replace the note text of a meeting."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE meetings SET user_note = ? WHERE id = ?",
                (note, meeting_id),
            )
        return cursor.rowcount > 0


class UserProfileDB:
    """SQLite-backed storage for the operator's own profile."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_profiles (
                    id            TEXT PRIMARY KEY,
                    name          TEXT NOT NULL,
                    role          TEXT NOT NULL DEFAULT '',
                    company       TEXT NOT NULL DEFAULT '',
                    industry      TEXT NOT NULL DEFAULT '',
                    phone_number  TEXT NOT NULL DEFAULT '',
                    email         TEXT NOT NULL DEFAULT '',
                    interests     TEXT NOT NULL DEFAULT '{}',
                    memo          TEXT NOT NULL DEFAULT '',
                    avatar_url    TEXT NOT NULL DEFAULT ''
                )
            """)
        logger.debug("User profiles table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            name=row["name"] or "",
            role=row["role"] or "",
            company=row["company"] or "",
            industry=row["industry"] or "",
            phone_number=row["phone_number"] or "",
            email=row["email"] or "",
            interests=_to_interests(_load_json(row["interests"], {})),
            memo=row["memo"] or "",
            avatar_url=row["avatar_url"] or "",
        )

    def get_profile(self, user_id: str) -> UserProfile | None:
        """Fetch the profile of a user."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_profiles WHERE id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_profile(row)

    def save_profile(self, user_id: str, profile: UserProfile) -> None:
        """Insert or replace the profile of a user."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO user_profiles
                    (id, name, role, company, industry, phone_number, email,
                     interests, memo, avatar_url)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id, profile.name, profile.role, profile.company,
                    profile.industry, profile.phone_number, profile.email,
                    _interests_json(profile.interests), profile.memo, profile.avatar_url,
                ),
            )
        logger.info("User profile saved for %s", user_id)
