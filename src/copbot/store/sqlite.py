"""SQLite session store.

Provides persistent session storage using a SQLite database file.
Uses aiosqlite for async access. Messages are kept as a JSON array column
and appended with a single UPDATE statement, so concurrent appends through
the store cannot overwrite each other.

Writes made through other connections to the same file (a second CLI, a
second store instance) are picked up by polling PRAGMA data_version while
anyone is subscribed.
"""

import asyncio
import contextlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

try:
    import aiosqlite
    AIOSQLITE_AVAILABLE = True
except ImportError:
    AIOSQLITE_AVAILABLE = False
    aiosqlite = None

from ..config import DEFAULT_DB_PATH, SENTINEL_TITLE, SQLITE_POLL_INTERVAL
from ..errors import SessionNotFound
from .base import ErrorCallback, SessionsCallback, SessionStore, Subscription
from .models import ChatSession, Message, utcnow

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {"title"}

# Fixed-width UTC format so timestamps compare correctly as text
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


class SQLiteSessionStore(SessionStore):
    """SQLite-backed session store.

    Stores chat sessions in a SQLite database file. Live queries are
    pushed to subscribers after each commit through this instance, and
    within poll_interval seconds of a commit through any other connection.
    """

    def __init__(
        self,
        path: str | Path = DEFAULT_DB_PATH,
        poll_interval: float = SQLITE_POLL_INTERVAL
    ):
        if not AIOSQLITE_AVAILABLE:
            raise ImportError(
                "SQLite store requires aiosqlite. "
                "Install with: pip install aiosqlite"
            )

        super().__init__()
        self._db_path = Path(path)
        self._connection: aiosqlite.Connection | None = None
        self._poll_interval = poll_interval
        self._watcher: asyncio.Task | None = None

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._db_path)
        await self._create_schema()
        logger.debug("Opened session store at %s", self._db_path)

    async def _create_schema(self) -> None:
        """Create database tables."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS chat_sessions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                messages TEXT NOT NULL DEFAULT '[]',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_chat_sessions_user
            ON chat_sessions(user_id, updated_at)
        """)

        await self._connection.commit()

    async def disconnect(self) -> None:
        """Close database connection and cancel live queries."""
        self._hub.cancel_all()
        if self._watcher is not None:
            self._watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watcher
            self._watcher = None
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _row_to_session(self, row: Any) -> ChatSession:
        session_id, user_id, title, messages_json, created_at, updated_at = row
        return ChatSession(
            id=session_id,
            user_id=user_id,
            title=title,
            messages=json.loads(messages_json),
            created_at=datetime.fromisoformat(created_at),
            updated_at=datetime.fromisoformat(updated_at),
        )

    async def _owner_of(self, session_id: str) -> str | None:
        async with self._connection.execute(
            "SELECT user_id FROM chat_sessions WHERE id = ?",
            (session_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def create_session(self, user_id: str, title: str = SENTINEL_TITLE) -> str:
        session_id = uuid4().hex
        now = _ts(utcnow())
        await self._connection.execute("""
            INSERT INTO chat_sessions (id, user_id, title, messages, created_at, updated_at)
            VALUES (?, ?, ?, '[]', ?, ?)
        """, (session_id, user_id, title, now, now))
        await self._connection.commit()

        await self._publish(user_id)
        return session_id

    async def get_session(self, session_id: str) -> ChatSession | None:
        async with self._connection.execute(
            """
            SELECT id, user_id, title, messages, created_at, updated_at
            FROM chat_sessions
            WHERE id = ?
            """,
            (session_id,)
        ) as cursor:
            row = await cursor.fetchone()

        return self._row_to_session(row) if row else None

    async def update_session(self, session_id: str, **fields: Any) -> None:
        if not fields:
            raise ValueError("No session fields to update")
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported session fields: {sorted(unknown)}")

        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = [*fields.values(), _ts(utcnow()), session_id]
        cursor = await self._connection.execute(
            f"UPDATE chat_sessions SET {assignments}, updated_at = MAX(updated_at, ?) WHERE id = ?",
            params
        )
        await self._connection.commit()
        if cursor.rowcount == 0:
            raise SessionNotFound(session_id)

        user_id = await self._owner_of(session_id)
        if user_id is not None:
            await self._publish(user_id)

    async def delete_session(self, session_id: str) -> None:
        user_id = await self._owner_of(session_id)
        if user_id is None:
            return

        await self._connection.execute(
            "DELETE FROM chat_sessions WHERE id = ?",
            (session_id,)
        )
        await self._connection.commit()
        await self._publish(user_id)

    async def append_message(self, session_id: str, message: Message) -> None:
        # Single statement: the JSON array append and the duplicate check
        # happen inside one write, with no read-modify-write window.
        cursor = await self._connection.execute("""
            UPDATE chat_sessions
            SET messages = json_insert(messages, '$[#]', json(?)),
                updated_at = MAX(updated_at, ?)
            WHERE id = ?
              AND NOT EXISTS (
                  SELECT 1 FROM json_each(chat_sessions.messages)
                  WHERE json_extract(json_each.value, '$.id') = ?
              )
        """, (message.model_dump_json(), _ts(utcnow()), session_id, message.id))
        await self._connection.commit()

        if cursor.rowcount == 0:
            user_id = await self._owner_of(session_id)
            if user_id is None:
                raise SessionNotFound(session_id)
            raise ValueError(f"Duplicate message id {message.id} in session {session_id}")

        user_id = await self._owner_of(session_id)
        if user_id is not None:
            await self._publish(user_id)

    async def list_sessions(self, user_id: str) -> list[ChatSession]:
        async with self._connection.execute(
            """
            SELECT id, user_id, title, messages, created_at, updated_at
            FROM chat_sessions
            WHERE user_id = ?
            ORDER BY updated_at DESC, id ASC
            """,
            (user_id,)
        ) as cursor:
            rows = await cursor.fetchall()

        return [self._row_to_session(row) for row in rows]

    async def watch_sessions(
        self,
        user_id: str,
        callback: SessionsCallback,
        on_error: ErrorCallback | None = None
    ) -> Subscription:
        subscription = await super().watch_sessions(user_id, callback, on_error)
        if self._watcher is None or self._watcher.done():
            version = await self._data_version()
            self._watcher = asyncio.get_running_loop().create_task(
                self._watch_other_connections(version)
            )
        return subscription

    async def _data_version(self) -> int:
        async with self._connection.execute("PRAGMA data_version") as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def _watch_other_connections(self, version: int) -> None:
        """Republish every watched user's sessions after a foreign commit.

        data_version only changes for commits made by other connections;
        this store's own writes already publish directly. Runs until no
        subscription is left.
        """
        while self._hub.user_ids() and self._connection is not None:
            await asyncio.sleep(self._poll_interval)
            if self._connection is None:
                return
            try:
                current = await self._data_version()
            except aiosqlite.Error as e:
                logger.error("Could not poll %s for changes: %s", self._db_path, e)
                for user_id in self._hub.user_ids():
                    self._hub.publish_error(user_id, e)
                continue

            if current != version:
                version = current
                logger.debug("External write to %s, refreshing live queries", self._db_path)
                for user_id in self._hub.user_ids():
                    await self._publish(user_id)

    @property
    def backend_type(self) -> str:
        return "sqlite"

    @property
    def db_path(self) -> Path:
        return self._db_path
