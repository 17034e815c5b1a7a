"""State and event types for voice capture."""

from dataclasses import dataclass
from enum import Enum


class VoiceState(str, Enum):
    """States of a voice capture."""

    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    ERROR = "error"


class RecognitionEventType(str, Enum):
    """Events a speech recognizer emits."""

    START = "start"
    RESULT = "result"
    ERROR = "error"
    END = "end"


@dataclass(frozen=True)
class RecognitionEvent:
    """One event from a speech recognizer.

    RESULT events carry the recognizer's latest full reconstruction of the
    utterance, not a delta. ERROR events carry the platform error code.
    """

    type: RecognitionEventType
    transcript: str = ""
    error: str | None = None

    @classmethod
    def started(cls) -> "RecognitionEvent":
        return cls(RecognitionEventType.START)

    @classmethod
    def result(cls, transcript: str) -> "RecognitionEvent":
        return cls(RecognitionEventType.RESULT, transcript=transcript)

    @classmethod
    def failed(cls, code: str) -> "RecognitionEvent":
        return cls(RecognitionEventType.ERROR, error=code)

    @classmethod
    def ended(cls) -> "RecognitionEvent":
        return cls(RecognitionEventType.END)


@dataclass
class VoiceCaptureSession:
    """Transient state of one capture; discarded when it finishes."""

    state: VoiceState = VoiceState.IDLE
    transcript: str = ""
    # Never incremented: no retry policy is defined for recognition errors.
    retry_count: int = 0
