"""Microphone-backed speech recognizer.

Uses the SpeechRecognition package: audio is captured from the default
microphone (PyAudio) and transcribed with the Google Web Speech API. The
blocking capture and recognition calls run in worker threads; events are
posted back on the event loop.
"""

import asyncio
import logging

try:
    import speech_recognition as sr
    SPEECH_RECOGNITION_AVAILABLE = True
except ImportError:
    SPEECH_RECOGNITION_AVAILABLE = False
    sr = None

from ..config import MICROPHONE_LISTEN_TIMEOUT, MICROPHONE_PHRASE_TIME_LIMIT
from ..errors import RecognitionStartFailed, UnsupportedPlatform
from .base import EmitCallback, RecognizerFactory, SpeechRecognizer
from .models import RecognitionEvent

logger = logging.getLogger(__name__)


class MicrophoneRecognizer(SpeechRecognizer):
    """Single-shot recognizer over the system microphone.

    One phrase is captured per start(). stop() and abort() take effect
    between the ambient-noise calibration and the capture. A phrase already
    being captured ends on its own at silence or the phrase time limit, and
    until then the worker thread keeps the microphone open, even after
    abort(). Another capture started in that window may report an
    "audio-capture" error.
    """

    def __init__(
        self,
        listen_timeout: float = MICROPHONE_LISTEN_TIMEOUT,
        phrase_time_limit: float = MICROPHONE_PHRASE_TIME_LIMIT,
        device_index: int | None = None
    ):
        if not SPEECH_RECOGNITION_AVAILABLE:
            raise UnsupportedPlatform(
                "Voice input requires SpeechRecognition. "
                "Install with: pip install 'copbot[voice]'"
            )

        self._listen_timeout = listen_timeout
        self._phrase_time_limit = phrase_time_limit
        self._device_index = device_index
        self._recognizer = sr.Recognizer()
        self._emit: EmitCallback | None = None
        self._task: asyncio.Task | None = None
        self._stop_requested = False
        self._aborted = False

    def start(self, emit: EmitCallback) -> None:
        if self._task is not None:
            raise RuntimeError("MicrophoneRecognizer is single-use")

        try:
            microphone = sr.Microphone(device_index=self._device_index)
        except (AttributeError, OSError) as e:
            # SpeechRecognition raises AttributeError when PyAudio is missing
            raise RecognitionStartFailed(f"Microphone unavailable: {e}") from e

        self._emit = emit
        self._task = asyncio.get_running_loop().create_task(self._run(microphone))

    def stop(self) -> None:
        self._stop_requested = True

    def abort(self) -> None:
        self._aborted = True
        self._emit = None
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self, microphone) -> None:
        self._post(RecognitionEvent.started())
        try:
            audio = await asyncio.to_thread(self._listen, microphone)
            if audio is not None and not self._aborted:
                transcript = await asyncio.to_thread(
                    self._recognizer.recognize_google, audio, language=self.lang
                )
                self._post(RecognitionEvent.result(transcript))
        except sr.WaitTimeoutError:
            self._post(RecognitionEvent.failed("no-speech"))
        except sr.UnknownValueError:
            logger.debug("No speech could be matched")
        except sr.RequestError as e:
            logger.warning("Speech service request failed: %s", e)
            self._post(RecognitionEvent.failed("network"))
        except OSError as e:
            logger.warning("Audio capture failed: %s", e)
            self._post(RecognitionEvent.failed("audio-capture"))
        finally:
            self._post(RecognitionEvent.ended())

    def _listen(self, microphone):
        with microphone as source:
            self._recognizer.adjust_for_ambient_noise(source, duration=0.5)
            if self._stop_requested or self._aborted:
                return None
            return self._recognizer.listen(
                source,
                timeout=self._listen_timeout,
                phrase_time_limit=self._phrase_time_limit
            )

    def _post(self, event: RecognitionEvent) -> None:
        if self._aborted or self._emit is None:
            return
        self._emit(event)


def microphone_factory() -> RecognizerFactory | None:
    """Recognizer factory for this platform, or None if unsupported."""
    if not SPEECH_RECOGNITION_AVAILABLE:
        return None
    return MicrophoneRecognizer
