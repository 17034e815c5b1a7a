"""In-memory session store.

Simple dict-based storage for a single process.
Data is lost when the application exits.
"""

from typing import Any
from uuid import uuid4

from ..config import SENTINEL_TITLE
from ..errors import SessionNotFound
from .base import SessionStore
from .models import ChatSession, Message, order_sessions

_UPDATABLE_FIELDS = {"title"}


class InMemorySessionStore(SessionStore):
    """In-memory session store (process-only).

    Records are copied on the way in and out, so callers never share
    mutable state with the store, the same as with a remote document store.
    Suitable for single-process use or testing.
    """

    def __init__(self) -> None:
        super().__init__()
        self._sessions: dict[str, ChatSession] = {}

    async def connect(self) -> None:
        """Initialize store (no-op for in-memory)."""
        pass

    async def disconnect(self) -> None:
        """Close store and cancel live queries."""
        self._hub.cancel_all()

    async def create_session(self, user_id: str, title: str = SENTINEL_TITLE) -> str:
        session = ChatSession(id=uuid4().hex, user_id=user_id, title=title)
        self._sessions[session.id] = session
        await self._publish(user_id)
        return session.id

    async def get_session(self, session_id: str) -> ChatSession | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def update_session(self, session_id: str, **fields: Any) -> None:
        if not fields:
            raise ValueError("No session fields to update")
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported session fields: {sorted(unknown)}")

        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        for name, value in fields.items():
            setattr(session, name, value)
        session.touch()
        await self._publish(session.user_id)

    async def delete_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            await self._publish(session.user_id)

    async def append_message(self, session_id: str, message: Message) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        session.append(message.model_copy(deep=True))
        await self._publish(session.user_id)

    async def list_sessions(self, user_id: str) -> list[ChatSession]:
        owned = [
            s.model_copy(deep=True)
            for s in self._sessions.values()
            if s.user_id == user_id
        ]
        return order_sessions(owned)

    @property
    def backend_type(self) -> str:
        return "memory"
