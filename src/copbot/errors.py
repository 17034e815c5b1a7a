"""Exception taxonomy for copbot.

Every failure raised by the session, pipeline and voice layers derives from
CopbotError so callers can catch the whole family at one seam. None of these
are fatal: each is recovered by retrying the user action.
"""

from enum import Enum


class CopbotError(Exception):
    """Base class for all copbot errors."""


class NotSignedIn(CopbotError):
    """Raised when an operation needs a user identity and none is available."""


class SessionNotFound(CopbotError):
    """The store has no session with the given id."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("Chat session not found")


class SessionCreationFailed(CopbotError):
    """The persistence collaborator did not confirm a new session."""


class MessagePersistenceFailed(CopbotError):
    """A message could not be stored.

    Non-fatal: the message stays visible locally.
    """

    def __init__(self, session_id: str, message_id: str, reason: str):
        self.session_id = session_id
        self.message_id = message_id
        super().__init__(f"Could not save message {message_id} to session {session_id}: {reason}")


class LastSessionProtected(CopbotError):
    """Deleting the user's last remaining session is refused."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__("You can't delete the last chat.")


class CompletionFailureKind(str, Enum):
    """Why a completion request failed."""

    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    EMPTY_RESPONSE = "empty_response"
    HTTP_ERROR = "http_error"


_DEFAULT_MESSAGES = {
    CompletionFailureKind.TIMEOUT: "Request timed out. The server is taking too long to respond.",
    CompletionFailureKind.TRANSPORT: "Could not reach the completion service.",
    CompletionFailureKind.EMPTY_RESPONSE: "The AI model did not provide a valid response.",
    CompletionFailureKind.HTTP_ERROR: "API request failed.",
}


class CompletionRequestFailed(CopbotError):
    """The completion collaborator did not return usable content."""

    def __init__(
        self,
        kind: CompletionFailureKind,
        message: str | None = None,
        status: int | None = None
    ):
        self.kind = kind
        self.status = status
        if message is None:
            message = _DEFAULT_MESSAGES[kind]
            if status is not None:
                message = f"API request failed with status {status}."
        super().__init__(message)


class TitleInferenceFailed(CopbotError):
    """Title inference produced nothing usable. Always swallowed."""


class UnsupportedPlatform(CopbotError):
    """No speech-recognition capability exists in this environment."""

    def __init__(self, message: str = "Speech recognition is not supported on this platform."):
        super().__init__(message)


class RecognitionStartFailed(CopbotError):
    """The recognizer refused to start."""


class RecognitionError(CopbotError):
    """The recognizer reported an error while capturing."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Speech recognition error: {code}")


__all__ = [
    "CompletionFailureKind",
    "CompletionRequestFailed",
    "CopbotError",
    "LastSessionProtected",
    "MessagePersistenceFailed",
    "NotSignedIn",
    "RecognitionError",
    "RecognitionStartFailed",
    "SessionCreationFailed",
    "SessionNotFound",
    "TitleInferenceFailed",
    "UnsupportedPlatform",
]
