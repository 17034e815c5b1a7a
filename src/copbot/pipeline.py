"""One user turn in, one assistant turn out.

MessagePipeline is the single entry point for sending a message. It makes
sure a session exists, shows the user's message right away, persists both
sides of the exchange, keeps the conversation context valid, and names new
sessions in the background.

Callers must serialize send() per session, e.g. by disabling input while a
send is outstanding. Nothing here locks against two overlapping sends on the
same session.
"""

import asyncio
import logging
from collections.abc import Callable

from .config import (
    COMPLETION_FAILURE_TEMPLATE,
    COMPLETION_TIMEOUT,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    DEFAULT_TOP_P,
    SENTINEL_TITLE,
    TITLE_MAX_LENGTH,
    TITLE_MAX_TOKENS,
    TITLE_SEED_MAX_LENGTH,
)
from .context import ConversationContextManager
from .errors import (
    CompletionFailureKind,
    CompletionRequestFailed,
    MessagePersistenceFailed,
    TitleInferenceFailed,
)
from .llm import ChatMessage, LLMProvider
from .prompts import get_title_prompt
from .sessions import SessionSynchronizer
from .store import ChatSession, Message, Sender, SessionStore

logger = logging.getLogger(__name__)

NotifyCallback = Callable[[str, str], None]
MessageCallback = Callable[[Message], None]


def clean_title(raw: str) -> str:
    """Normalize a model-suggested title: no quotes, bounded length."""
    title = raw.strip().replace('"', "").replace("'", "").strip()
    return title[:TITLE_MAX_LENGTH].strip()


def merge_visible(shown: list[Message], canonical: list[Message]) -> list[Message]:
    """Merge the store's messages into what is on screen.

    Canonical messages keep their stored order. A message the store has not
    confirmed stays right after the confirmed message it followed on screen,
    so a failed write never moves it behind later replies.
    """
    confirmed = {m.id for m in canonical}
    unconfirmed_after: dict[str | None, list[Message]] = {}
    previous: str | None = None
    for message in shown:
        if message.id in confirmed:
            previous = message.id
        else:
            unconfirmed_after.setdefault(previous, []).append(message)

    merged = list(unconfirmed_after.get(None, []))
    for message in canonical:
        merged.append(message)
        merged.extend(unconfirmed_after.get(message.id, []))
    return merged


class MessagePipeline:
    """Orchestrates a full user-turn to assistant-turn exchange.

    Attributes exposed for views:
        visible_messages: what the active session should display, including
            optimistic messages the store has not confirmed yet
    """

    def __init__(
        self,
        store: SessionStore,
        synchronizer: SessionSynchronizer,
        context: ConversationContextManager,
        llm: LLMProvider,
        model: str | None = None,
        timeout: float = COMPLETION_TIMEOUT,
        notify: NotifyCallback | None = None,
        on_message: MessageCallback | None = None
    ):
        """Initialize the pipeline.

        Args:
            store: Persistence collaborator
            synchronizer: Session feed and active-session pointer for the user
            context: Conversation contexts replayed to the completion call
            llm: Completion collaborator
            model: Model override (None uses the provider default)
            timeout: Seconds before a completion call is abandoned
            notify: Receives (level, text) user-facing notifications
            on_message: Receives each message as it becomes visible
        """
        self._store = store
        self._sync = synchronizer
        self._context = context
        self._llm = llm
        self._model = model
        self._timeout = timeout
        self._notify_cb = notify
        self._on_message = on_message

        self._visible: list[Message] = []
        self._visible_session_id: str | None = None
        self._background: set[asyncio.Task] = set()

        self._sync.add_listener(self._on_sessions_changed)
        self._on_sessions_changed(self._sync.sessions, self._sync.active_session_id)

    @property
    def visible_messages(self) -> list[Message]:
        return list(self._visible)

    @property
    def visible_session_id(self) -> str | None:
        return self._visible_session_id

    @property
    def user_id(self) -> str:
        return self._sync.user_id

    async def send(self, content: str, is_voice: bool = False) -> Message:
        """Send one message and return the assistant message shown for it.

        A failed completion still returns an assistant message, one that
        explains the failure. The conversation context is only extended
        when the completion succeeds.

        Args:
            content: Message text; surrounding whitespace is trimmed
            is_voice: Whether the text came from voice capture

        Returns:
            The assistant Message appended to the conversation

        Raises:
            ValueError: If content is empty after trimming
            SessionCreationFailed: If a new session was needed and could not
                be created; nothing is shown or stored in that case
        """
        text = content.strip()
        if not text:
            raise ValueError("Message content must not be empty")

        user_id = self._sync.user_id
        session_id = self._sync.active_session_id
        created_here = False

        if session_id is None:
            session_id = await self._sync.create_session(text[:TITLE_SEED_MAX_LENGTH])
            created_here = True

        needs_title = created_here or await self._is_unnamed_and_empty(session_id)

        user_message = Message(content=text, sender=Sender.USER, is_voice=is_voice)
        self._display(session_id, user_message)
        await self._persist(session_id, user_message)

        if needs_title:
            self._spawn(self._name_session(session_id, text))

        assistant_message = await self._complete(user_id, session_id, text)
        self._display(session_id, assistant_message)
        await self._persist(session_id, assistant_message)
        return assistant_message

    async def infer_title(self, first_message: str) -> str:
        """Ask the completion collaborator for a short session title.

        Raises:
            TitleInferenceFailed: If no usable title came back
        """
        request = [
            ChatMessage(role="system", content=self._context.system_prompt),
            ChatMessage(role="user", content=get_title_prompt(first_message)),
        ]
        try:
            response = await asyncio.wait_for(
                self._llm.chat_completion(
                    request,
                    model=self._model,
                    temperature=DEFAULT_TEMPERATURE,
                    max_tokens=TITLE_MAX_TOKENS
                ),
                timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise TitleInferenceFailed("Title request timed out") from e
        except CompletionRequestFailed as e:
            raise TitleInferenceFailed(str(e)) from e

        title = clean_title(response.content)
        if not title or title == SENTINEL_TITLE:
            raise TitleInferenceFailed(f"Unusable title: {response.content!r}")
        return title

    async def wait_for_background(self) -> None:
        """Wait for outstanding title inference tasks."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background work and detach from the synchronizer."""
        self._sync.remove_listener(self._on_sessions_changed)
        for task in list(self._background):
            task.cancel()
        await self.wait_for_background()

    async def _is_unnamed_and_empty(self, session_id: str) -> bool:
        session: ChatSession | None = self._sync.get_session(session_id)
        if session is None:
            try:
                session = await self._store.get_session(session_id)
            except Exception as e:
                logger.warning("Could not load session %s: %s", session_id, e)
                return False
        if session is None:
            return False

        shown = self._visible if self._visible_session_id == session_id else []
        return session.has_sentinel_title and not session.messages and not shown

    async def _complete(self, user_id: str, session_id: str, text: str) -> Message:
        user_entry = ChatMessage(role="user", content=text)
        request = [*self._context.get(user_id, session_id), user_entry]

        try:
            response = await asyncio.wait_for(
                self._llm.chat_completion(
                    request,
                    model=self._model,
                    temperature=DEFAULT_TEMPERATURE,
                    max_tokens=DEFAULT_MAX_TOKENS,
                    top_p=DEFAULT_TOP_P
                ),
                timeout=self._timeout
            )
        except asyncio.TimeoutError:
            failure = CompletionRequestFailed(CompletionFailureKind.TIMEOUT)
        except CompletionRequestFailed as e:
            failure = e
        else:
            assistant_entry = ChatMessage(role="assistant", content=response.content)
            self._context.commit_turn(user_id, session_id, user_entry, assistant_entry)
            logger.debug("Assistant reply for session %s (%d chars)", session_id, len(response.content))
            return Message(content=response.content, sender=Sender.ASSISTANT)

        logger.error("Completion failed for session %s: %s", session_id, failure)
        self._notify("error", f"Error: {failure}")
        return Message(
            content=COMPLETION_FAILURE_TEMPLATE.format(reason=failure),
            sender=Sender.ASSISTANT
        )

    async def _persist(self, session_id: str, message: Message) -> bool:
        try:
            await self._store.append_message(session_id, message)
        except Exception as e:
            failure = MessagePersistenceFailed(session_id, message.id, str(e))
            logger.error("%s", failure)
            self._notify("error", str(failure))
            return False
        return True

    async def _name_session(self, session_id: str, first_message: str) -> None:
        try:
            title = await self.infer_title(first_message)
            await self._store.update_session(session_id, title=title)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Failed to update chat title for %s: %s", session_id, e)
            return
        logger.debug("Chat title for %s set to %r", session_id, title)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _display(self, session_id: str, message: Message) -> None:
        # A send that outlives its session's selection still completes,
        # it just no longer shows up in the view.
        if session_id != self._visible_session_id:
            return
        if any(m.id == message.id for m in self._visible):
            return
        self._visible.append(message)
        if self._on_message is not None:
            try:
                self._on_message(message)
            except Exception:
                logger.exception("Message listener failed")

    def _on_sessions_changed(self, sessions: list[ChatSession], active_id: str | None) -> None:
        session = self._sync.get_session(active_id) if active_id else None

        if active_id != self._visible_session_id:
            self._visible_session_id = active_id
            self._visible = list(session.messages) if session else []
            return

        if session is None:
            return
        self._visible = merge_visible(self._visible, session.messages)

    def _notify(self, level: str, text: str) -> None:
        if self._notify_cb is None:
            return
        try:
            self._notify_cb(level, text)
        except Exception:
            logger.exception("Notification listener failed")
