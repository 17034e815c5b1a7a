"""Pytest configuration and shared fixtures."""
import asyncio
import os
from typing import Any

import pytest

from copbot.config import TITLE_MAX_TOKENS
from copbot.context import ConversationContextManager
from copbot.llm import ChatMessage, LLMProvider, LLMResponse
from copbot.pipeline import MessagePipeline
from copbot.sessions import SessionSynchronizer
from copbot.store import InMemorySessionStore
from copbot.voice import RecognitionEvent, SpeechRecognizer

SYSTEM_PROMPT = "You are CopBot, a test assistant."

# Reply that never completes; used to exercise the completion timeout
HANG = object()


class ScriptedProvider(LLMProvider):
    """Completion collaborator that answers from a script.

    Chat replies are consumed in order; each is a string, an exception to
    raise, HANG, or a future resolving to the reply. Title requests
    (recognized by their max_tokens) get title_reply.
    """

    def __init__(self, replies: list[Any] | None = None, title_reply: Any = "Police Complaint Filing"):
        self.replies = list(replies or [])
        self.title_reply = title_reply
        self.calls: list[list[ChatMessage]] = []
        self.title_calls: list[list[ChatMessage]] = []
        self.closed = False

    @property
    def model(self) -> str:
        return "scripted"

    async def chat_completion(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any
    ) -> LLMResponse:
        if max_tokens == TITLE_MAX_TOKENS:
            self.title_calls.append(list(messages))
            reply = self.title_reply
        else:
            self.calls.append(list(messages))
            reply = self.replies.pop(0) if self.replies else "Default reply."

        if reply is HANG:
            await asyncio.Event().wait()
        if isinstance(reply, asyncio.Future):
            reply = await reply
        if isinstance(reply, BaseException):
            raise reply
        return LLMResponse(content=reply, model=self.model)

    async def close(self) -> None:
        self.closed = True


class FakeRecognizer(SpeechRecognizer):
    """Speech recognizer driven by the test through emit()."""

    def __init__(self, fail_on_start: bool = False):
        self.fail_on_start = fail_on_start
        self.started = False
        self.stopped = False
        self.aborted = False
        self._emit = None

    def start(self, emit) -> None:
        if self.fail_on_start:
            raise OSError("microphone busy")
        self.started = True
        self._emit = emit

    def stop(self) -> None:
        self.stopped = True

    def abort(self) -> None:
        self.aborted = True

    def emit(self, event: RecognitionEvent) -> None:
        self._emit(event)


async def drain(rounds: int = 10) -> None:
    """Let scheduled feed deliveries run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture(scope="session")
def api_keys():
    """Return API keys from environment."""
    return {
        "groq": os.getenv("GROQ_API_KEY"),
        "openai": os.getenv("OPENAI_API_KEY"),
    }


@pytest.fixture
def context():
    """Context manager with a fixed system prompt."""
    return ConversationContextManager(system_prompt=SYSTEM_PROMPT)


@pytest.fixture
def llm():
    """Scripted completion provider."""
    return ScriptedProvider()


@pytest.fixture
async def store():
    """Connected in-memory session store."""
    s = InMemorySessionStore()
    await s.connect()
    yield s
    await s.disconnect()


@pytest.fixture
async def sync(store):
    """Running synchronizer for user 'alice' that has seen the first delivery."""
    s = SessionSynchronizer(store, "alice")
    await s.start()
    await s.wait_until_ready(timeout=1)
    yield s
    s.stop()


@pytest.fixture
def notifications():
    """Collected (level, text) notifications."""
    return []


@pytest.fixture
async def pipeline(store, sync, context, llm, notifications):
    """Message pipeline wired to the in-memory collaborators."""
    p = MessagePipeline(
        store,
        sync,
        context,
        llm,
        notify=lambda level, text: notifications.append((level, text))
    )
    yield p
    await p.aclose()
