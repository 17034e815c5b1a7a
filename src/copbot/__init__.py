"""
CopBot: a conversational assistant client with live chat sessions,
per-session conversation context, and voice input.

Each module hides one design decision: where sessions are stored, which
completion provider answers, and how speech is captured.
"""

__version__ = "0.1.0"

from .context import ConversationContextManager
from .errors import (
    CompletionFailureKind,
    CompletionRequestFailed,
    CopbotError,
    LastSessionProtected,
    MessagePersistenceFailed,
    NotSignedIn,
    RecognitionError,
    RecognitionStartFailed,
    SessionCreationFailed,
    SessionNotFound,
    TitleInferenceFailed,
    UnsupportedPlatform,
)
from .pipeline import MessagePipeline
from .sessions import SessionSynchronizer
from .store import ChatSession, Message, Sender, SessionStore, create_session_store
from .voice import VoiceCaptureStateMachine, VoiceState

__all__ = [
    "ChatSession",
    "CompletionFailureKind",
    "CompletionRequestFailed",
    "ConversationContextManager",
    "CopbotError",
    "LastSessionProtected",
    "Message",
    "MessagePersistenceFailed",
    "MessagePipeline",
    "NotSignedIn",
    "RecognitionError",
    "RecognitionStartFailed",
    "Sender",
    "SessionCreationFailed",
    "SessionNotFound",
    "SessionStore",
    "SessionSynchronizer",
    "TitleInferenceFailed",
    "UnsupportedPlatform",
    "VoiceCaptureStateMachine",
    "VoiceState",
    "create_session_store",
]
