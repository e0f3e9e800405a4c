"""Persisted conversations, one row per session in a SQLite file."""

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from helmsman.config import get_config
from helmsman.exceptions import SessionError
from helmsman.llm import Message, Role
from helmsman.logging import get_logger

log = get_logger(__name__)

TITLE_MAX_CHARS = 50
RECENT_SELECT_LIMIT = 20

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        path TEXT NOT NULL DEFAULT '',
        messages TEXT NOT NULL,
        metadata TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_path ON sessions(path, updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_recent ON sessions(updated_at)",
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class Session:
    """A stored conversation.

    ``messages`` are wire-format dicts plus a ``timestamp`` key.
    ``metadata`` holds ``title``, ``provider``, ``model`` and ``path``.
    """

    id: str
    name: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return str(self.metadata.get("title") or "")

    @property
    def path(self) -> str:
        return str(self.metadata.get("path") or "")

    def has_user_message(self) -> bool:
        return any(item.get("role") == Role.USER for item in self.messages)

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "Session":
        return cls(
            id=row["id"],
            name=row["name"],
            messages=json.loads(row["messages"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            metadata=json.loads(row["metadata"]),
        )


def convert_from_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Agent messages to stored session messages."""
    stamp = _now()
    stored = []
    for message in messages:
        item = message.to_wire()
        if message.content is None:
            del item["content"]
        item["timestamp"] = stamp
        stored.append(item)
    return stored


def convert_to_messages(stored: list[dict[str, Any]]) -> list[Message]:
    """Stored session messages back to agent messages."""
    return [Message.from_wire(item) for item in stored]


def generate_title(session: Session) -> str:
    """First line of the first user message, or a date-based fallback."""
    first = next(
        (item["content"] for item in session.messages if item.get("role") == Role.USER and item.get("content")),
        None,
    )
    if first is not None:
        line = str(first).split("\n", 1)[0]
        if len(line) > TITLE_MAX_CHARS:
            return line[:TITLE_MAX_CHARS - 3] + "..."
        return line
    try:
        created = datetime.fromisoformat(session.created_at)
    except ValueError:
        return "Session"
    return created.strftime("Session %b %d %H:%M")


class SessionManager:
    """Reads and writes sessions; the connection opens on first use."""

    def __init__(self, db_path: Path | str | None = None):
        path = db_path if db_path is not None else get_config().session.path
        self.db_path = Path(path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db: aiosqlite.Connection | None = None

    async def _connection(self) -> aiosqlite.Connection:
        if self._db is not None:
            return self._db
        try:
            db = await aiosqlite.connect(self.db_path)
            db.row_factory = aiosqlite.Row
            for statement in _SCHEMA:
                await db.execute(statement)
            await db.commit()
        except aiosqlite.Error as e:
            raise SessionError(f"cannot open session store {self.db_path}: {e}") from e
        self._db = db
        return db

    async def _query(self, sql: str, params: tuple[Any, ...]) -> list[Session]:
        db = await self._connection()
        async with db.execute(sql, params) as cursor:
            return [Session.from_row(row) for row in await cursor.fetchall()]

    async def _latest(self, column: str, value: str) -> Session | None:
        found = await self._query(
            f"SELECT * FROM sessions WHERE {column} = ? ORDER BY updated_at DESC LIMIT 1",
            (value,),
        )
        return found[0] if found else None

    async def create_session(self, name: str = "default", metadata: dict[str, Any] | None = None) -> Session:
        session = Session(id=str(uuid.uuid4()), name=name, metadata=dict(metadata or {}))
        await self.save_session(session)
        log.info("Session created", session_id=session.id, name=name)
        return session

    async def start_session(self, path: str, provider: str, model: str) -> Session:
        """New session for the working directory ``path``."""
        return await self.create_session(
            name=Path(path).name or "default",
            metadata={"path": path, "provider": provider, "model": model, "title": ""},
        )

    async def load_session(self, session_id: str) -> Session | None:
        return await self._latest("id", session_id)

    async def load_session_by_name(self, name: str) -> Session | None:
        return await self._latest("name", name)

    async def get_last_session_for_path(self, path: str) -> Session | None:
        """Most recently updated session started in ``path``."""
        return await self._latest("path", path)

    async def select_session(self, selector: str) -> Session | None:
        """Resolve ``selector`` as an id, then a name, then ``#n``/``n`` in the recent list."""
        key = selector.strip()
        if not key:
            return None
        for lookup in (self.load_session, self.load_session_by_name):
            session = await lookup(key)
            if session is not None:
                return session

        digits = key.removeprefix("#")
        if not digits.isdigit() or int(digits) < 1:
            return None
        position = int(digits)
        recent = await self.list_sessions(limit=max(RECENT_SELECT_LIMIT, position))
        return recent[position - 1] if position <= len(recent) else None

    async def save_session(self, session: Session) -> None:
        """Upsert ``session``; the title is filled in once a user message exists."""
        if not session.title and session.has_user_message():
            session.metadata["title"] = generate_title(session)
        session.updated_at = _now()

        db = await self._connection()
        try:
            await db.execute(
                "INSERT OR REPLACE INTO sessions "
                "(id, name, path, messages, metadata, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    session.id,
                    session.name,
                    session.path,
                    json.dumps(session.messages, ensure_ascii=False),
                    json.dumps(session.metadata, ensure_ascii=False),
                    session.created_at,
                    session.updated_at,
                ),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise SessionError(f"cannot save session {session.id}: {e}") from e
        log.debug("Session saved", session_id=session.id, messages=len(session.messages))

    async def list_sessions(self, limit: int = 10, path: str | None = None) -> list[Session]:
        """Recent sessions first, optionally only those started in ``path``."""
        if path is None:
            return await self._query("SELECT * FROM sessions ORDER BY updated_at DESC LIMIT ?", (limit,))
        return await self._query(
            "SELECT * FROM sessions WHERE path = ? ORDER BY updated_at DESC LIMIT ?",
            (path, limit),
        )

    async def delete_session(self, session_id: str) -> bool:
        """Returns False when no such session existed."""
        db = await self._connection()
        cursor = await db.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        await db.commit()
        return cursor.rowcount > 0

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
