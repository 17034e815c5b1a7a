"""Abstract base class for session stores.

This module defines the interface for the persistence collaborator.
The abstraction hides:
- Storage format (documents, SQLite rows)
- Persistence mechanism (in-memory, database file)
- How live queries are pushed to subscribers
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from ..config import SENTINEL_TITLE
from .models import ChatSession, Message

logger = logging.getLogger(__name__)

SessionsCallback = Callable[[list[ChatSession]], None]
ErrorCallback = Callable[[Exception], None]


class Subscription:
    """Handle for a live query on one user's sessions.

    Deliveries are scheduled on the event loop and checked against the
    handle's state when they run, so nothing reaches the callback once
    cancel() has returned.
    """

    def __init__(
        self,
        hub: "LiveQueryHub",
        user_id: str,
        callback: SessionsCallback,
        on_error: ErrorCallback | None = None
    ):
        self._hub = hub
        self._user_id = user_id
        self._callback = callback
        self._on_error = on_error
        self._active = True
        self._scheduled = 0

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Stop deliveries. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._hub.remove(self)

    def _schedule(self, sessions: list[ChatSession]) -> None:
        self._scheduled += 1
        asyncio.get_running_loop().call_soon(self._deliver, sessions)

    def _schedule_error(self, error: Exception) -> None:
        asyncio.get_running_loop().call_soon(self._deliver_error, error)

    def _deliver(self, sessions: list[ChatSession]) -> None:
        if not self._active:
            return
        try:
            self._callback(sessions)
        except Exception:
            logger.exception("Session feed callback failed for user %s", self._user_id)

    def _deliver_error(self, error: Exception) -> None:
        if not self._active:
            return
        if self._on_error is None:
            logger.error("Session feed error for user %s: %s", self._user_id, error)
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("Session feed error handler failed for user %s", self._user_id)


class LiveQueryHub:
    """Fan-out of session lists to the subscribers of each user."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}

    def add(self, subscription: Subscription) -> None:
        self._subscriptions.setdefault(subscription.user_id, []).append(subscription)

    def remove(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.user_id, [])
        if subscription in subs:
            subs.remove(subscription)
        if not subs:
            self._subscriptions.pop(subscription.user_id, None)

    def has_subscribers(self, user_id: str) -> bool:
        return bool(self._subscriptions.get(user_id))

    def user_ids(self) -> list[str]:
        """Users with at least one live subscription."""
        return list(self._subscriptions)

    def publish(self, user_id: str, sessions: list[ChatSession]) -> None:
        """Schedule delivery of a full result set to every subscriber."""
        for subscription in list(self._subscriptions.get(user_id, [])):
            subscription._schedule([s.model_copy(deep=True) for s in sessions])

    def publish_error(self, user_id: str, error: Exception) -> None:
        for subscription in list(self._subscriptions.get(user_id, [])):
            subscription._schedule_error(error)

    def cancel_all(self) -> None:
        for subs in list(self._subscriptions.values()):
            for subscription in list(subs):
                subscription.cancel()


class SessionStore(ABC):
    """Abstract session store.

    Provides a unified interface for storing chat sessions and pushing
    live result sets across different storage backends. Session ids are
    assigned by the store, never by the client.
    """

    def __init__(self) -> None:
        self._hub = LiveQueryHub()

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the store."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the store gracefully."""

    @abstractmethod
    async def create_session(self, user_id: str, title: str = SENTINEL_TITLE) -> str:
        """Create an empty session and return its id."""

    @abstractmethod
    async def get_session(self, session_id: str) -> ChatSession | None:
        """Retrieve a session, or None if it does not exist."""

    @abstractmethod
    async def update_session(self, session_id: str, **fields: Any) -> None:
        """Update top-level fields of a session (currently only title).

        Raises:
            SessionNotFound: If the session does not exist
            ValueError: If an unsupported field is given
        """

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Delete a session. Deleting a missing session is a no-op."""

    @abstractmethod
    async def append_message(self, session_id: str, message: Message) -> None:
        """Append a message to a session's history atomically.

        Raises:
            SessionNotFound: If the session does not exist
            ValueError: If the message id is already used in the session
        """

    @abstractmethod
    async def list_sessions(self, user_id: str) -> list[ChatSession]:
        """All sessions owned by a user, most recently updated first."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""

    async def watch_sessions(
        self,
        user_id: str,
        callback: SessionsCallback,
        on_error: ErrorCallback | None = None
    ) -> Subscription:
        """Subscribe to a user's sessions.

        The callback receives the full ordered list once right away and again
        after every committed change to any of the user's sessions.
        """
        subscription = Subscription(self._hub, user_id, callback, on_error)
        self._hub.add(subscription)
        try:
            sessions = await self.list_sessions(user_id)
        except Exception as e:
            subscription._schedule_error(e)
            return subscription

        # A write that landed while we were reading has already scheduled a
        # newer result set; the initial snapshot would be stale.
        if subscription._scheduled == 0:
            subscription._schedule(sessions)
        return subscription

    async def _publish(self, user_id: str) -> None:
        """Push the current result set for a user to its subscribers."""
        if not self._hub.has_subscribers(user_id):
            return
        try:
            sessions = await self.list_sessions(user_id)
        except Exception as e:
            logger.error("Live query refresh failed for user %s: %s", user_id, e)
            self._hub.publish_error(user_id, e)
            return
        self._hub.publish(user_id, sessions)

    async def __aenter__(self) -> "SessionStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()
