"""SQLite-backed store for profiles, chat sessions and chat messages."""

from __future__ import annotations

import json
import re
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class Organization:
    id: int
    name: str


@dataclass
class Profile:
    """A professional's card."""

    id: int
    full_name: str
    title: str
    slug: str = ""
    company: str | None = None
    department: str | None = None
    bio: str | None = None
    organization_id: int | None = None
    approved: bool = True
    specializations: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)
    case_studies: list[dict[str, Any]] = field(default_factory=list)
    honors: list[dict[str, Any]] = field(default_factory=list)
    avatar_url: str | None = None
    phone: str | None = None
    email: str | None = None
    location: str | None = None
    onboarding_step: str | None = None
    onboarding_completed: bool = False
    onboarding_data: dict[str, Any] = field(default_factory=dict)

    @property
    def needs_onboarding(self) -> bool:
        return not self.onboarding_completed

    def card_data(self) -> dict[str, Any]:
        """The fields a card preview shows."""
        return {
            "full_name": self.full_name,
            "title": self.title,
            "company": self.company,
            "phone": self.phone,
            "email": self.email,
            "location": self.location,
            "bio": self.bio,
            "specializations": list(self.specializations),
            "stats": dict(self.stats),
            "avatar_url": self.avatar_url,
        }


@dataclass
class ChatSession:
    id: int
    profile_id: int
    visitor_name: str
    visitor_email: str | None
    started_at: float
    ended_at: float | None = None

    @property
    def active(self) -> bool:
        return self.ended_at is None


@dataclass
class ChatMessage:
    """A persisted chat turn."""

    id: int
    chat_session_id: int
    role: str  # user, assistant
    content: str
    created_at: float

    @property
    def created_at_iso(self) -> str:
        return _iso(self.created_at)

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


MESSAGE_ROLES = ("assistant", "system", "user")
MAX_MESSAGE_LENGTH = 100_000

# Profile columns holding JSON documents
_JSON_FIELDS = ("specializations", "stats", "case_studies", "honors", "onboarding_data")

# Columns ``update_profile`` may write
EDITABLE_FIELDS = (
    "full_name", "title", "company", "department", "bio", "phone", "email",
    "location", "avatar_url", "specializations", "stats", "case_studies",
    "onboarding_step", "onboarding_completed", "onboarding_data",
)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^[0-9\-()+\s]+$")

_PROFILE_COLUMNS = (
    "id, full_name, title, slug, company, department, bio, organization_id, "
    "approved, specializations, stats, case_studies, honors, avatar_url, "
    "phone, email, location, onboarding_step, onboarding_completed, onboarding_data"
)


def validate_profile_fields(fields: dict[str, Any]) -> None:
    """Raise ``ValueError`` for unknown columns or malformed contact details."""
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
    for name in ("full_name", "title"):
        if name in fields and not (fields[name] and str(fields[name]).strip()):
            raise ValueError(f"{name} cannot be blank")
    email = fields.get("email")
    if email and not _EMAIL_RE.match(str(email)):
        raise ValueError(f"Invalid email: {email}")
    phone = fields.get("phone")
    if phone and not _PHONE_RE.match(str(phone)):
        raise ValueError(f"Invalid phone: {phone}")


class MessageStore:
    """SQLite-backed record store.

    Pass ``":memory:"`` for a throwaway database.
    """

    def __init__(self, db_path: str = "~/.cardlink/cardlink.db") -> None:
        if db_path != ":memory:":
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            db_path = str(path)
        self._conn = sqlite3.connect(db_path)
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS organizations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS profiles (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                full_name TEXT NOT NULL,
                title TEXT NOT NULL,
                slug TEXT DEFAULT '',
                company TEXT,
                department TEXT,
                bio TEXT,
                organization_id INTEGER REFERENCES organizations(id),
                approved INTEGER NOT NULL DEFAULT 1,
                specializations TEXT DEFAULT '[]',
                stats TEXT DEFAULT '{}',
                case_studies TEXT DEFAULT '[]',
                honors TEXT DEFAULT '[]',
                avatar_url TEXT,
                phone TEXT,
                email TEXT,
                location TEXT,
                onboarding_step TEXT,
                onboarding_completed INTEGER NOT NULL DEFAULT 0,
                onboarding_data TEXT DEFAULT '{}'
            );
            CREATE TABLE IF NOT EXISTS chat_sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                profile_id INTEGER NOT NULL REFERENCES profiles(id),
                visitor_name TEXT NOT NULL,
                visitor_email TEXT,
                started_at REAL NOT NULL,
                ended_at REAL
            );
            CREATE TABLE IF NOT EXISTS chat_messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                chat_session_id INTEGER NOT NULL REFERENCES chat_sessions(id),
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                created_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_msg_session ON chat_messages(chat_session_id);
            CREATE INDEX IF NOT EXISTS idx_profile_org ON profiles(organization_id);
        """)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Organizations & profiles
    # ------------------------------------------------------------------

    def add_organization(self, name: str) -> Organization:
        cur = self._conn.execute("INSERT INTO organizations (name) VALUES (?)", (name,))
        self._conn.commit()
        return Organization(id=cur.lastrowid, name=name)

    def get_organization(self, org_id: int) -> Organization | None:
        row = self._conn.execute(
            "SELECT id, name FROM organizations WHERE id = ?", (org_id,),
        ).fetchone()
        return Organization(*row) if row else None

    def add_profile(self, full_name: str, title: str, **fields: Any) -> Profile:
        """Create a profile; *fields* are any other ``Profile`` attributes."""
        profile = Profile(id=0, full_name=full_name, title=title, **fields)
        if not profile.slug:
            profile.slug = full_name.lower().replace(" ", "-")
        cur = self._conn.execute(
            "INSERT INTO profiles (full_name, title, slug, company, department, bio, "
            "organization_id, approved, specializations, stats, case_studies, honors, "
            "avatar_url, phone, email, location, onboarding_step, onboarding_completed, "
            "onboarding_data) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (profile.full_name, profile.title, profile.slug, profile.company,
             profile.department, profile.bio, profile.organization_id,
             int(profile.approved), json.dumps(profile.specializations, ensure_ascii=False),
             json.dumps(profile.stats), json.dumps(profile.case_studies, ensure_ascii=False),
             json.dumps(profile.honors, ensure_ascii=False), profile.avatar_url,
             profile.phone, profile.email, profile.location, profile.onboarding_step,
             int(profile.onboarding_completed),
             json.dumps(profile.onboarding_data, ensure_ascii=False)),
        )
        self._conn.commit()
        profile.id = cur.lastrowid
        return profile

    def get_profile(self, profile_id: int) -> Profile | None:
        row = self._conn.execute(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles WHERE id = ?", (profile_id,),
        ).fetchone()
        return self._row_to_profile(row) if row else None

    def update_profile(self, profile_id: int, **fields: Any) -> Profile:
        """Write *fields* to a profile and return the updated record.

        Raises ``ValueError`` for unknown fields or malformed contact details
        (nothing is written then), ``LookupError`` for an unknown profile.
        """
        validate_profile_fields(fields)
        if self.get_profile(profile_id) is None:
            raise LookupError(f"Profile {profile_id} not found")
        if fields:
            values = []
            for name, value in fields.items():
                if name in _JSON_FIELDS:
                    value = json.dumps(value, ensure_ascii=False)
                elif name == "onboarding_completed":
                    value = int(bool(value))
                values.append(value)
            assignments = ", ".join(f"{name} = ?" for name in fields)
            self._conn.execute(
                f"UPDATE profiles SET {assignments} WHERE id = ?", (*values, profile_id),
            )
            self._conn.commit()
        return self.get_profile(profile_id)

    def organization_members(
        self,
        org_id: int,
        exclude_profile_id: int | None = None,
    ) -> list[Profile]:
        """Approved profiles of an organization, in creation order."""
        rows = self._conn.execute(
            f"SELECT {_PROFILE_COLUMNS} FROM profiles "
            "WHERE organization_id = ? AND approved = 1 ORDER BY id",
            (org_id,),
        ).fetchall()
        members = [self._row_to_profile(r) for r in rows]
        if exclude_profile_id is not None:
            members = [m for m in members if m.id != exclude_profile_id]
        return members

    def update_specializations(self, profile_id: int, specializations: list[str]) -> None:
        self._conn.execute(
            "UPDATE profiles SET specializations = ? WHERE id = ?",
            (json.dumps(specializations, ensure_ascii=False), profile_id),
        )
        self._conn.commit()

    @staticmethod
    def _row_to_profile(row: tuple) -> Profile:
        (pid, full_name, title, slug, company, department, bio, org_id, approved,
         specs, stats, cases, honors, avatar_url, phone, email, location,
         onboarding_step, onboarding_completed, onboarding_data) = row
        return Profile(
            id=pid,
            full_name=full_name,
            title=title,
            slug=slug or "",
            company=company,
            department=department,
            bio=bio,
            organization_id=org_id,
            approved=bool(approved),
            specializations=json.loads(specs or "[]"),
            stats=json.loads(stats or "{}"),
            case_studies=json.loads(cases or "[]"),
            honors=json.loads(honors or "[]"),
            avatar_url=avatar_url,
            phone=phone,
            email=email,
            location=location,
            onboarding_step=onboarding_step,
            onboarding_completed=bool(onboarding_completed),
            onboarding_data=json.loads(onboarding_data or "{}"),
        )

    # ------------------------------------------------------------------
    # Chat sessions
    # ------------------------------------------------------------------

    def create_session(
        self,
        profile_id: int,
        visitor_name: str,
        visitor_email: str | None = None,
    ) -> ChatSession:
        now = time.time()
        cur = self._conn.execute(
            "INSERT INTO chat_sessions (profile_id, visitor_name, visitor_email, started_at) "
            "VALUES (?, ?, ?, ?)",
            (profile_id, visitor_name, visitor_email, now),
        )
        self._conn.commit()
        return ChatSession(
            id=cur.lastrowid,
            profile_id=profile_id,
            visitor_name=visitor_name,
            visitor_email=visitor_email,
            started_at=now,
        )

    def get_session(self, session_id: int) -> ChatSession | None:
        row = self._conn.execute(
            "SELECT id, profile_id, visitor_name, visitor_email, started_at, ended_at "
            "FROM chat_sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
        return ChatSession(*row) if row else None

    def find_active_session(self, profile_id: int, visitor_name: str) -> ChatSession | None:
        """Most recently started open session of a visitor on a profile."""
        row = self._conn.execute(
            "SELECT id, profile_id, visitor_name, visitor_email, started_at, ended_at "
            "FROM chat_sessions WHERE profile_id = ? AND visitor_name = ? "
            "AND ended_at IS NULL ORDER BY started_at DESC, id DESC LIMIT 1",
            (profile_id, visitor_name),
        ).fetchone()
        return ChatSession(*row) if row else None

    def end_session(self, session_id: int) -> None:
        self._conn.execute(
            "UPDATE chat_sessions SET ended_at = ? WHERE id = ? AND ended_at IS NULL",
            (time.time(), session_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Chat messages
    # ------------------------------------------------------------------

    def add_message(self, session_id: int, role: str, content: str) -> ChatMessage:
        """Persist one chat turn.

        Assistant messages may be blank (a streamed answer can finish with no
        text); user messages may not.
        """
        if role not in MESSAGE_ROLES:
            raise ValueError(f"{role} is not a valid role")
        if role == "user" and not content.strip():
            raise ValueError("message content cannot be blank")
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValueError(f"message content longer than {MAX_MESSAGE_LENGTH} chars")
        now = time.time()
        cur = self._conn.execute(
            "INSERT INTO chat_messages (chat_session_id, role, content, created_at) "
            "VALUES (?, ?, ?, ?)",
            (session_id, role, content, now),
        )
        self._conn.commit()
        return ChatMessage(
            id=cur.lastrowid,
            chat_session_id=session_id,
            role=role,
            content=content,
            created_at=now,
        )

    def recent_messages(self, session_id: int, limit: int = 10) -> list[ChatMessage]:
        """The newest *limit* messages of a session, oldest first."""
        rows = self._conn.execute(
            "SELECT id, chat_session_id, role, content, created_at FROM chat_messages "
            "WHERE chat_session_id = ? ORDER BY id DESC LIMIT ?",
            (session_id, limit),
        ).fetchall()
        return [ChatMessage(*r) for r in reversed(rows)]

    def close(self) -> None:
        self._conn.close()
