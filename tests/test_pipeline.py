"""Tests for MessagePipeline: one user turn in, one assistant turn out."""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from hypothesis import given
from hypothesis import strategies as st

from copbot.config import TITLE_MAX_LENGTH
from copbot.errors import (
    CompletionFailureKind,
    CompletionRequestFailed,
    SessionCreationFailed,
    TitleInferenceFailed,
)
from copbot.pipeline import MessagePipeline, clean_title, merge_visible
from copbot.store import Message, Sender

from conftest import HANG, SYSTEM_PROMPT, drain

QUESTION = "How to file a police complaint?"


async def settle(pipeline: MessagePipeline) -> None:
    await pipeline.wait_for_background()
    await drain()


class TestFirstMessage:
    """A signed-in user with no sessions sends their first message."""

    async def test_creates_session_and_exchanges_messages(self, store, sync, pipeline, llm):
        """One session appears with the user message then the assistant reply."""
        llm.replies = ["Visit your nearest police station or use the online portal."]

        reply = await pipeline.send(QUESTION)
        await settle(pipeline)

        sessions = await store.list_sessions("alice")
        assert len(sessions) == 1
        messages = sessions[0].messages
        assert [m.sender for m in messages] == [Sender.USER, Sender.ASSISTANT]
        assert messages[0].content == QUESTION
        assert messages[0].is_voice is False
        assert messages[1].id == reply.id
        assert reply.content.startswith("Visit your nearest")

    async def test_session_is_named(self, store, sync, pipeline, llm):
        """The new session gets a short inferred title."""
        await pipeline.send(QUESTION)
        await settle(pipeline)

        session = (await store.list_sessions("alice"))[0]
        assert session.title == "Police Complaint Filing"
        assert len(llm.title_calls) == 1
        assert QUESTION in llm.title_calls[0][-1].content

    async def test_session_selected(self, sync, pipeline):
        """The created session becomes the active one."""
        await pipeline.send(QUESTION)
        await settle(pipeline)

        assert sync.active_session_id is not None
        assert pipeline.visible_session_id == sync.active_session_id

    async def test_completion_sees_system_then_user(self, sync, pipeline, llm):
        """The first completion request is the system entry plus the question."""
        await pipeline.send(QUESTION)

        request = llm.calls[0]
        assert [m.role for m in request] == ["system", "user"]
        assert request[0].content == SYSTEM_PROMPT
        assert request[1].content == QUESTION

    async def test_context_extended(self, sync, pipeline, context):
        """A successful completion adds exactly one user/assistant pair."""
        await pipeline.send(QUESTION)

        entries = context.get("alice", sync.active_session_id)
        assert [e.role for e in entries] == ["system", "user", "assistant"]


class TestConversation:
    """Follow-up turns in an existing session."""

    async def test_second_turn_replays_context(self, sync, pipeline, llm):
        """The second request carries the first turn."""
        llm.replies = ["first answer", "second answer"]

        await pipeline.send("first question")
        await pipeline.send("second question")

        request = llm.calls[1]
        assert [m.content for m in request] == [
            SYSTEM_PROMPT, "first question", "first answer", "second question"
        ]

    async def test_title_inferred_once(self, sync, pipeline, llm):
        """Only the first message of a session triggers naming."""
        await pipeline.send("first question")
        await settle(pipeline)
        await pipeline.send("second question")
        await settle(pipeline)

        assert len(llm.title_calls) == 1

    async def test_empty_sentinel_session_named(self, store, sync, pipeline):
        """An explicitly created, still empty 'New Chat' is named on first send."""
        session_id = await sync.create_session()
        await drain()

        await pipeline.send(QUESTION)
        await settle(pipeline)

        assert (await store.get_session(session_id)).title == "Police Complaint Filing"

    async def test_named_session_not_renamed(self, store, sync, pipeline, llm):
        """A session with a real title keeps it."""
        session_id = await sync.create_session("Traffic fines")
        await drain()

        await pipeline.send(QUESTION)
        await settle(pipeline)

        assert (await store.get_session(session_id)).title == "Traffic fines"
        assert llm.title_calls == []

    async def test_voice_flag_persisted(self, store, sync, pipeline):
        """Messages sent from voice capture are marked as such."""
        await pipeline.send("how to file a complaint", is_voice=True)
        await settle(pipeline)

        user_message = (await store.list_sessions("alice"))[0].messages[0]
        assert user_message.is_voice is True

    async def test_content_trimmed(self, store, sync, pipeline, llm):
        """Surrounding whitespace is dropped before sending and storing."""
        await pipeline.send("   padded question \n")
        await settle(pipeline)

        assert llm.calls[0][-1].content == "padded question"
        assert (await store.list_sessions("alice"))[0].messages[0].content == "padded question"

    async def test_visible_messages_match_store(self, store, sync, pipeline):
        """Once the feed catches up the view shows each message exactly once."""
        await pipeline.send("one")
        await pipeline.send("two")
        await settle(pipeline)

        stored = (await store.list_sessions("alice"))[0].messages
        assert [m.id for m in pipeline.visible_messages] == [m.id for m in stored]

    async def test_on_message_sees_user_first(self, store, sync, context, llm):
        """The view is told about the user message before the reply."""
        shown = []
        pipeline = MessagePipeline(store, sync, context, llm, on_message=shown.append)

        await pipeline.send(QUESTION)
        await pipeline.aclose()

        assert [m.sender for m in shown] == [Sender.USER, Sender.ASSISTANT]


class TestCompletionFailures:
    """Completion errors become a visible assistant message."""

    async def test_timeout(self, store, sync, context, llm, notifications):
        """A hung completion yields a persisted failure message and no context change."""
        llm.replies = [HANG]
        pipeline = MessagePipeline(
            store, sync, context, llm,
            timeout=0.05,
            notify=lambda level, text: notifications.append((level, text))
        )

        reply = await pipeline.send(QUESTION)
        await pipeline.aclose()
        await drain()

        assert reply.content == (
            "Sorry, I encountered an error: "
            "Request timed out. The server is taking too long to respond."
        )
        assert reply.sender is Sender.ASSISTANT

        session = (await store.list_sessions("alice"))[0]
        assert [m.sender for m in session.messages] == [Sender.USER, Sender.ASSISTANT]
        assert session.messages[1].content == reply.content

        assert [e.role for e in context.get("alice", session.id)] == ["system"]
        assert any(level == "error" for level, _ in notifications)

    async def test_http_error(self, sync, pipeline, llm, context):
        """A failed status is reported in the assistant message."""
        llm.replies = [CompletionRequestFailed(CompletionFailureKind.HTTP_ERROR, status=500)]

        reply = await pipeline.send(QUESTION)

        assert reply.content == "Sorry, I encountered an error: API request failed with status 500."
        assert len(context.get("alice", sync.active_session_id)) == 1

    async def test_empty_response(self, sync, pipeline, llm):
        """A reply without content is reported as such."""
        llm.replies = [CompletionRequestFailed(CompletionFailureKind.EMPTY_RESPONSE)]

        reply = await pipeline.send(QUESTION)

        assert reply.content.endswith("The AI model did not provide a valid response.")

    async def test_recovers_on_next_turn(self, sync, pipeline, llm, context):
        """After a failure the next successful turn still has valid context."""
        llm.replies = [CompletionRequestFailed(CompletionFailureKind.TRANSPORT), "ok"]

        await pipeline.send("first")
        await pipeline.send("second")

        assert [m.content for m in llm.calls[1]] == [SYSTEM_PROMPT, "second"]
        entries = context.get("alice", sync.active_session_id)
        assert [e.role for e in entries] == ["system", "user", "assistant"]


class TestSideFailures:
    """Failures outside the completion call."""

    async def test_empty_content_rejected(self, store, sync, pipeline, llm):
        """Nothing happens for blank input."""
        with pytest.raises(ValueError):
            await pipeline.send("   ")

        assert await store.list_sessions("alice") == []
        assert llm.calls == []

    async def test_session_creation_failure(self, store, sync, pipeline, llm):
        """If no session can be created nothing is shown, stored or sent."""
        with patch.object(store, "create_session", AsyncMock(side_effect=RuntimeError("denied"))):
            with pytest.raises(SessionCreationFailed):
                await pipeline.send(QUESTION)

        assert pipeline.visible_messages == []
        assert llm.calls == []

    async def test_persistence_failure_keeps_optimistic_messages(
        self, store, sync, pipeline, llm, notifications
    ):
        """A failed write is reported, but the exchange still completes on screen."""
        await sync.create_session("Existing")
        await drain()

        with patch.object(store, "append_message", AsyncMock(side_effect=RuntimeError("offline"))):
            reply = await pipeline.send(QUESTION)

        visible = pipeline.visible_messages
        assert [m.sender for m in visible] == [Sender.USER, Sender.ASSISTANT]
        assert visible[1].id == reply.id
        errors = [text for level, text in notifications if level == "error"]
        assert len(errors) == 2
        assert "offline" in errors[0]

    async def test_reply_stays_below_unsaved_question(
        self, store, sync, pipeline, llm, notifications
    ):
        """Only the user write fails; the saved reply still shows after the question."""
        await sync.create_session("Existing")
        await drain()
        original = store.append_message
        attempts = []

        async def flaky_append(session_id, message):
            attempts.append(message.sender)
            if len(attempts) == 1:
                raise RuntimeError("offline")
            await original(session_id, message)

        with patch.object(store, "append_message", flaky_append):
            reply = await pipeline.send(QUESTION)
            await drain()

        visible = pipeline.visible_messages
        assert attempts == [Sender.USER, Sender.ASSISTANT]
        assert [m.sender for m in visible] == [Sender.USER, Sender.ASSISTANT]
        assert visible[0].content == QUESTION
        assert visible[1].id == reply.id
        errors = [text for level, text in notifications if level == "error"]
        assert len(errors) == 1

    async def test_title_failure_is_silent(self, store, sync, pipeline, llm, notifications):
        """A failed naming request leaves the seed title and bothers no one."""
        llm.title_reply = CompletionRequestFailed(CompletionFailureKind.TRANSPORT)

        reply = await pipeline.send(QUESTION)
        await settle(pipeline)

        session = (await store.list_sessions("alice"))[0]
        assert session.title == QUESTION
        assert reply.content == "Default reply."
        assert notifications == []

    async def test_session_deleted_elsewhere_mid_send(self, store, sync, pipeline, llm, notifications):
        """Deleting the session from another view while a reply is pending."""
        other = await store.create_session("alice")
        await drain()
        active = await sync.create_session("Doomed")
        await drain()

        gate = asyncio.get_running_loop().create_future()
        llm.replies = [gate]
        sending = asyncio.create_task(pipeline.send(QUESTION))
        await drain()

        await store.delete_session(active)
        await drain()
        assert sync.active_session_id == other
        assert pipeline.visible_session_id == other

        gate.set_result("too late")
        reply = await sending
        await drain()

        assert reply.content == "too late"
        assert all(m.id != reply.id for m in pipeline.visible_messages)
        assert await store.get_session(active) is None
        assert (await store.get_session(other)).messages == []
        assert any("Chat session not found" in text for level, text in notifications if level == "error")


class TestInferTitle:
    """Tests for infer_title and clean_title."""

    async def test_quotes_stripped(self, sync, pipeline, llm):
        """Quotes around the suggested title are removed."""
        llm.title_reply = '"Lost Passport Report"'

        assert await pipeline.infer_title("I lost my passport") == "Lost Passport Report"

    @pytest.mark.parametrize("reply", ["", "   ", '""', "New Chat"])
    async def test_unusable_title(self, sync, pipeline, llm, reply):
        """Blank or sentinel suggestions are rejected."""
        llm.title_reply = reply

        with pytest.raises(TitleInferenceFailed):
            await pipeline.infer_title(QUESTION)

    async def test_completion_failure(self, sync, pipeline, llm):
        """Completion errors surface as TitleInferenceFailed."""
        llm.title_reply = CompletionRequestFailed(CompletionFailureKind.TIMEOUT)

        with pytest.raises(TitleInferenceFailed):
            await pipeline.infer_title(QUESTION)

    def test_clean_title_truncates(self):
        """Titles are cut to the maximum length."""
        assert len(clean_title("x" * 200)) == TITLE_MAX_LENGTH

    @given(st.text())
    def test_clean_title_property(self, raw: str):
        """Property test: cleaned titles are bounded, trimmed and unquoted."""
        title = clean_title(raw)

        assert len(title) <= TITLE_MAX_LENGTH
        assert '"' not in title
        assert "'" not in title
        assert title == title.strip()


class TestMergeVisible:
    """Folding store deliveries into the on-screen list."""

    def msg(self, text: str, sender: Sender = Sender.USER) -> Message:
        return Message(content=text, sender=sender)

    def test_unsaved_message_keeps_its_slot(self):
        question = self.msg("q1")
        answer = self.msg("a1", Sender.ASSISTANT)
        earlier = self.msg("q0")

        merged = merge_visible([earlier, question, answer], [earlier, answer])

        assert [m.content for m in merged] == ["q0", "q1", "a1"]

    def test_unsaved_at_start_stays_first(self):
        question = self.msg("q1")
        answer = self.msg("a1", Sender.ASSISTANT)

        assert merge_visible([question, answer], [answer]) == [question, answer]

    def test_store_only_messages_appear(self):
        mine = self.msg("typed here")
        remote = self.msg("typed elsewhere")

        merged = merge_visible([mine], [remote, mine])

        assert merged == [remote, mine]
