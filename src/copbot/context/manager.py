"""Per-user, per-session conversation context.

The context is the transcript replayed to the stateless completion endpoint
on every turn. It lives in process memory only; the persisted chat history is
the store's concern.
"""

import logging

from ..llm.models import ChatMessage
from ..prompts import get_system_prompt

logger = logging.getLogger(__name__)


class ConversationContextManager:
    """Bounded, ordered transcripts keyed by (user_id, session_id).

    Every context starts with exactly one system entry. User and assistant
    entries only ever enter as a pair through commit_turn, so a context is
    always valid input for the next completion call.

    Callers must serialize turns per session: two overlapping commits for the
    same session interleave their pairs in completion order.
    """

    def __init__(self, system_prompt: str | None = None, max_entries: int | None = None):
        """Initialize the manager.

        Args:
            system_prompt: Operating instructions seeded into every context
                (default: the packaged system prompt)
            max_entries: Optional cap on user/assistant entries per context.
                When exceeded, the oldest pairs are evicted. None keeps
                everything.

        Raises:
            ValueError: If max_entries is not a positive even number
        """
        if max_entries is not None and (max_entries < 2 or max_entries % 2):
            raise ValueError("max_entries must be a positive even number")

        self._system_prompt = system_prompt if system_prompt is not None else get_system_prompt()
        self._max_entries = max_entries
        self._contexts: dict[str, dict[str, list[ChatMessage]]] = {}

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @property
    def max_entries(self) -> int | None:
        return self._max_entries

    def _seed(self) -> list[ChatMessage]:
        return [ChatMessage(role="system", content=self._system_prompt)]

    def _entries(self, user_id: str, session_id: str) -> list[ChatMessage]:
        sessions = self._contexts.setdefault(user_id, {})
        if session_id not in sessions:
            sessions[session_id] = self._seed()
        return sessions[session_id]

    def get(self, user_id: str, session_id: str) -> list[ChatMessage]:
        """Return the ordered entries for a session, seeding it if unseen.

        The returned list is a copy; mutating it does not touch the context.
        """
        return list(self._entries(user_id, session_id))

    def has_context(self, user_id: str, session_id: str) -> bool:
        return session_id in self._contexts.get(user_id, {})

    def commit_turn(
        self,
        user_id: str,
        session_id: str,
        user_entry: ChatMessage,
        assistant_entry: ChatMessage
    ) -> None:
        """Append one completed turn, user entry first.

        Raises:
            ValueError: If the entries do not carry the user/assistant roles
        """
        if user_entry.role != "user":
            raise ValueError(f"Expected a user entry, got role '{user_entry.role}'")
        if assistant_entry.role != "assistant":
            raise ValueError(f"Expected an assistant entry, got role '{assistant_entry.role}'")

        entries = self._entries(user_id, session_id)
        entries.append(user_entry)
        entries.append(assistant_entry)

        if self._max_entries is not None:
            evicted = 0
            while len(entries) - 1 > self._max_entries:
                # Oldest pair sits right after the system entry
                del entries[1:3]
                evicted += 2
            if evicted:
                logger.debug("Evicted %d entries from context %s/%s", evicted, user_id, session_id)

    def clear(self, user_id: str, session_id: str) -> None:
        """Reset a session's context to just the system entry."""
        self._contexts.setdefault(user_id, {})[session_id] = self._seed()

    def purge_user(self, user_id: str) -> None:
        """Drop every context belonging to a user (e.g. on logout)."""
        removed = self._contexts.pop(user_id, None)
        if removed:
            logger.debug("Purged %d contexts for user %s", len(removed), user_id)
