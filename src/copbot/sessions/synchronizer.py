"""Reconciles the live session feed with the locally selected session."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ..config import SENTINEL_TITLE
from ..errors import LastSessionProtected, NotSignedIn, SessionCreationFailed
from ..store.base import SessionStore, Subscription
from ..store.models import ChatSession

logger = logging.getLogger(__name__)

ChangeListener = Callable[[list[ChatSession], str | None], None]
FeedErrorListener = Callable[[Exception], None]


class SessionSynchronizer:
    """Keeps one user's session list and active-session pointer consistent.

    Reconciliation runs on every feed delivery:
    - the selected session is kept while the feed still contains it
    - otherwise the most recently updated session is selected
    - an empty feed clears the selection ("new chat" mode)

    A session created through create_session() is pending until the feed
    first delivers it; it stays selected in the meantime so the view does
    not flicker to another session while the store catches up.
    """

    def __init__(
        self,
        store: SessionStore,
        user_id: str | None,
        on_change: ChangeListener | None = None,
        on_error: FeedErrorListener | None = None
    ):
        if not user_id:
            raise NotSignedIn("A signed-in user is required to sync sessions")

        self._store = store
        self._user_id = user_id
        self._listeners: list[ChangeListener] = [on_change] if on_change else []
        self._on_error = on_error
        self._sessions: list[ChatSession] = []
        self._active_id: str | None = None
        self._pending_id: str | None = None
        self._subscription: Subscription | None = None
        self._delivered = False
        self._ready = asyncio.Event()

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def sessions(self) -> list[ChatSession]:
        """Latest delivered session list, most recently updated first."""
        return list(self._sessions)

    @property
    def active_session_id(self) -> str | None:
        return self._active_id

    @property
    def active_session(self) -> ChatSession | None:
        return self.get_session(self._active_id) if self._active_id else None

    @property
    def pending_session_id(self) -> str | None:
        return self._pending_id

    @property
    def has_delivered(self) -> bool:
        """Whether the feed has delivered at least once."""
        return self._delivered

    @property
    def running(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def get_session(self, session_id: str) -> ChatSession | None:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    async def start(self) -> None:
        """Subscribe to the live feed. Calling it while running is a no-op."""
        if self.running:
            return
        self._subscription = await self._store.watch_sessions(
            self._user_id,
            self._handle_delivery,
            self._handle_feed_error
        )
        logger.debug("Watching sessions for user %s", self._user_id)

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """Wait for the first feed delivery.

        Raises:
            asyncio.TimeoutError: If nothing was delivered within timeout
        """
        await asyncio.wait_for(self._ready.wait(), timeout=timeout)

    def stop(self) -> None:
        """Cancel the live feed. Idempotent; no deliveries arrive afterwards."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    async def __aenter__(self) -> "SessionSynchronizer":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()

    def select(self, session_id: str) -> None:
        """Make a known session the active one.

        Raises:
            KeyError: If the session is not in the current list
        """
        if self.get_session(session_id) is None and session_id != self._pending_id:
            raise KeyError(session_id)
        self._active_id = session_id
        self._notify()

    async def create_session(self, title: str | None = None) -> str:
        """Create a session for the user and select it.

        Args:
            title: Initial title (default: the sentinel "New Chat")

        Returns:
            The id assigned by the store

        Raises:
            SessionCreationFailed: If the store does not confirm the write
        """
        try:
            session_id = await self._store.create_session(self._user_id, title or SENTINEL_TITLE)
        except Exception as e:
            logger.error("Error creating chat session: %s", e)
            raise SessionCreationFailed("Failed to create chat session.") from e

        logger.debug("Chat session created: %s", session_id)
        if self.get_session(session_id) is None:
            self._pending_id = session_id
        self._active_id = session_id
        self._notify()
        return session_id

    async def delete_session(self, session_id: str) -> None:
        """Delete a session.

        Selection falls back through normal reconciliation on the next
        delivery.

        Raises:
            LastSessionProtected: If the user has at most one known session;
                no remote call is made
        """
        known = {s.id for s in self._sessions}
        if self._pending_id:
            known.add(self._pending_id)
        if len(known) <= 1:
            raise LastSessionProtected(session_id)

        await self._store.delete_session(session_id)
        logger.debug("Chat session deleted: %s", session_id)

    def _handle_delivery(self, sessions: list[ChatSession]) -> None:
        self._sessions = list(sessions)
        self._delivered = True
        self._ready.set()
        ids = {s.id for s in sessions}

        if self._pending_id in ids:
            self._pending_id = None

        keep = self._active_id is not None and (
            self._active_id in ids or self._active_id == self._pending_id
        )
        if not keep:
            previous = self._active_id
            self._active_id = sessions[0].id if sessions else None
            if previous != self._active_id:
                logger.debug("Active session %s -> %s", previous, self._active_id)

        self._notify()

    def _handle_feed_error(self, error: Exception) -> None:
        logger.error("Session subscription error: %s", error)
        if self._on_error is not None:
            self._on_error(error)

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback run after every reconciliation or selection."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        sessions = self.sessions
        for listener in list(self._listeners):
            try:
                listener(sessions, self._active_id)
            except Exception:
                logger.exception("Session change listener failed")
