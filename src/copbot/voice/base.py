"""Abstract speech recognition capability.

The abstraction hides the platform device: microphone access, the speech
to text engine, and the thread or callback model they use. Implementations
report progress only through RecognitionEvents passed to the emit callback.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable

from ..config import DEFAULT_RECOGNITION_LANGUAGE
from .models import RecognitionEvent

EmitCallback = Callable[[RecognitionEvent], None]


class SpeechRecognizer(ABC):
    """A single-use speech recognition handle.

    Configure the attributes before start(). Expected event order is
    START, any number of RESULT, optionally ERROR, then END.
    """

    continuous: bool = False
    interim_results: bool = False
    lang: str = DEFAULT_RECOGNITION_LANGUAGE

    @abstractmethod
    def start(self, emit: EmitCallback) -> None:
        """Begin capturing. Events are delivered to emit on the event loop."""

    @abstractmethod
    def stop(self) -> None:
        """Ask the recognizer to finish; it still emits its final events."""

    @abstractmethod
    def abort(self) -> None:
        """Stop immediately and emit nothing further."""


RecognizerFactory = Callable[[], SpeechRecognizer]
