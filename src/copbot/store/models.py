"""Data models for the session store.

These models define the structure of chat sessions and their messages,
independent of the storage backend used.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_serializer, field_validator

from ..config import MESSAGE_ID_PREFIX, MESSAGE_ID_SUFFIX_LENGTH, SENTINEL_TITLE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    """Generate a message id from the current time plus a random suffix."""
    millis = int(time.time() * 1000)
    suffix = uuid4().hex[:MESSAGE_ID_SUFFIX_LENGTH]
    return f"{MESSAGE_ID_PREFIX}_{millis}_{suffix}"


class Sender(str, Enum):
    """Who authored a message."""

    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """A single message inside a chat session."""

    id: str = Field(default_factory=new_message_id)
    content: str = Field(min_length=1, description="Message text, trimmed")
    sender: Sender
    timestamp: datetime = Field(default_factory=utcnow)
    is_voice: bool = Field(default=False, description="Produced by voice capture")

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, v: str) -> str:
        """Trim leading and trailing whitespace before storage."""
        return v.strip() if isinstance(v, str) else v

    @field_serializer("timestamp")
    def serialize_datetime(self, value: datetime) -> str:
        """Serialize datetime to ISO format."""
        return value.isoformat()


class ChatSession(BaseModel):
    """A named conversation owned by one user.

    Messages are kept in append order. Individual messages are never
    reordered or removed.
    """

    id: str
    user_id: str
    title: str = SENTINEL_TITLE
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_sentinel_title(self) -> bool:
        return self.title == SENTINEL_TITLE

    def touch(self) -> None:
        """Advance updated_at, never moving it backwards."""
        self.updated_at = max(self.updated_at, utcnow())

    def append(self, message: Message) -> None:
        """Append a message.

        Raises:
            ValueError: If a message with the same id is already present
        """
        if any(existing.id == message.id for existing in self.messages):
            raise ValueError(f"Duplicate message id {message.id} in session {self.id}")
        self.messages.append(message)
        self.touch()

    @field_serializer("created_at", "updated_at")
    def serialize_datetime(self, value: datetime) -> str:
        """Serialize datetime to ISO format."""
        return value.isoformat()


def order_sessions(sessions: list[ChatSession]) -> list[ChatSession]:
    """Sort most recently updated first, ties broken by id."""
    by_id = sorted(sessions, key=lambda s: s.id)
    return sorted(by_id, key=lambda s: s.updated_at, reverse=True)
