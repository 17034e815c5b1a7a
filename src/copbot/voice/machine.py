"""Voice capture as an explicit finite-state machine.

    idle --start()--> recording --START--> processing --END--> idle
                          |                    |
                        ERROR                ERROR
                          v                    v
                        error ------------> idle

The transition table covers every (state, event) pair. Events that make no
sense in a state are ignored, and events from a recognizer handle that has
already been released never reach the table.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from functools import partial
from typing import Any

from ..config import DEFAULT_RECOGNITION_LANGUAGE
from ..errors import (
    CopbotError,
    RecognitionError,
    RecognitionStartFailed,
    UnsupportedPlatform,
)
from .base import RecognizerFactory, SpeechRecognizer
from .models import RecognitionEvent, RecognitionEventType, VoiceCaptureSession, VoiceState

logger = logging.getLogger(__name__)

TranscriptCallback = Callable[[str, bool], Any]
VoiceErrorCallback = Callable[[CopbotError], None]
StateCallback = Callable[[VoiceState], None]


class VoiceCaptureStateMachine:
    """Turns one utterance into a finalized transcript or a typed failure.

    The recognizer handle is acquired by start() and released on every exit
    path: natural end, recognition error, failed start, or cancel(). Only
    one capture may be active at a time.
    """

    def __init__(
        self,
        recognizer_factory: RecognizerFactory | None,
        on_transcript: TranscriptCallback,
        on_error: VoiceErrorCallback | None = None,
        on_state_change: StateCallback | None = None,
        lang: str = DEFAULT_RECOGNITION_LANGUAGE
    ):
        """Initialize the state machine.

        Args:
            recognizer_factory: Creates a fresh recognizer per capture, or
                None when the platform has no speech recognition
            on_transcript: Receives (transcript, is_voice=True) once per
                successful capture. May return an awaitable, which is
                scheduled as a task.
            on_error: Receives RecognitionError for errors reported during
                a capture
            on_state_change: Receives each new state
            lang: Recognition language
        """
        self._factory = recognizer_factory
        self._on_transcript = on_transcript
        self._on_error = on_error
        self._on_state_change = on_state_change
        self._lang = lang

        self._session = VoiceCaptureSession()
        self._recognizer: SpeechRecognizer | None = None
        self._token: object | None = None
        self._last_error: CopbotError | None = None
        self._tasks: set[asyncio.Task] = set()

        self._transitions: dict[tuple[VoiceState, RecognitionEventType], Callable[[RecognitionEvent], None]] = {}
        for state in VoiceState:
            for event_type in RecognitionEventType:
                self._transitions[(state, event_type)] = self._ignore
        for state in (VoiceState.RECORDING, VoiceState.PROCESSING):
            self._transitions[(state, RecognitionEventType.RESULT)] = self._on_result
            self._transitions[(state, RecognitionEventType.ERROR)] = self._on_recognition_error
            self._transitions[(state, RecognitionEventType.END)] = self._on_end
        self._transitions[(VoiceState.RECORDING, RecognitionEventType.START)] = self._on_started

    @property
    def state(self) -> VoiceState:
        return self._session.state

    @property
    def transcript(self) -> str:
        """Transcript accumulated so far in the active capture."""
        return self._session.transcript

    @property
    def retry_count(self) -> int:
        return self._session.retry_count

    @property
    def last_error(self) -> CopbotError | None:
        return self._last_error

    @property
    def active(self) -> bool:
        return self._session.state in (VoiceState.RECORDING, VoiceState.PROCESSING)

    @property
    def supported(self) -> bool:
        return self._factory is not None

    def start(self) -> None:
        """Begin a single-shot capture.

        Raises:
            UnsupportedPlatform: If no speech recognition is available
            RecognitionStartFailed: If the recognizer could not be started
            RuntimeError: If a capture is already active
        """
        if self.active:
            raise RuntimeError("A voice capture is already active")

        self._session = VoiceCaptureSession()
        self._last_error = None

        if self._factory is None:
            self._last_error = UnsupportedPlatform()
            raise self._last_error

        try:
            recognizer = self._factory()
        except UnsupportedPlatform as e:
            self._last_error = e
            raise
        except Exception as e:
            logger.error("Error creating speech recognizer: %s", e)
            self._last_error = RecognitionStartFailed("Could not start speech recognition.")
            raise self._last_error from e

        recognizer.continuous = False
        recognizer.interim_results = False
        recognizer.lang = self._lang

        token = object()
        self._recognizer = recognizer
        self._token = token
        self._set_state(VoiceState.RECORDING)

        try:
            recognizer.start(partial(self._dispatch, token))
        except Exception as e:
            logger.error("Error starting speech recognition: %s", e)
            self._release(abort=True)
            self._session.transcript = ""
            self._set_state(VoiceState.IDLE)
            self._last_error = RecognitionStartFailed("Could not start speech recognition.")
            raise self._last_error from e

    def stop(self) -> None:
        """Ask the recognizer to finish.

        Does not emit anything itself; the transcript is delivered when the
        recognizer reports its natural end.
        """
        if self.active and self._recognizer is not None:
            self._recognizer.stop()

    def cancel(self) -> None:
        """Abort an active capture without emitting a transcript."""
        if not self.active:
            return
        self._release(abort=True)
        self._session.transcript = ""
        self._set_state(VoiceState.IDLE)

    def handle(self, event: RecognitionEvent) -> None:
        """Apply an event from the current recognizer to the machine."""
        self._transitions[(self._session.state, event.type)](event)

    async def wait_for_handoff(self) -> None:
        """Wait for scheduled transcript hand-offs to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def __aenter__(self) -> "VoiceCaptureStateMachine":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.cancel()

    def _dispatch(self, token: object, event: RecognitionEvent) -> None:
        if token is not self._token:
            logger.debug("Dropping %s event from released recognizer", event.type.value)
            return
        self.handle(event)

    def _ignore(self, event: RecognitionEvent) -> None:
        logger.debug("Ignoring %s event in state %s", event.type.value, self._session.state.value)

    def _on_started(self, event: RecognitionEvent) -> None:
        self._set_state(VoiceState.PROCESSING)

    def _on_result(self, event: RecognitionEvent) -> None:
        # Each result is a full reconstruction; overwrite, never append
        self._session.transcript = event.transcript

    def _on_recognition_error(self, event: RecognitionEvent) -> None:
        code = event.error or "unknown"
        error = RecognitionError(code)
        self._last_error = error
        self._set_state(VoiceState.ERROR)
        self._release(abort=True)
        self._session.transcript = ""
        self._set_state(VoiceState.IDLE)

        logger.warning("Speech recognition error: %s", code)
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception:
                logger.exception("Voice error handler failed")

    def _on_end(self, event: RecognitionEvent) -> None:
        transcript = self._session.transcript.strip()
        self._release(abort=False)
        self._session.transcript = ""
        self._set_state(VoiceState.IDLE)

        if transcript:
            self._hand_off(transcript)

    def _hand_off(self, transcript: str) -> None:
        try:
            result = self._on_transcript(transcript, True)
        except Exception:
            logger.exception("Transcript handler failed")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Transcript hand-off failed: %s", task.exception())

    def _release(self, abort: bool) -> None:
        recognizer = self._recognizer
        self._recognizer = None
        self._token = None
        if abort and recognizer is not None:
            try:
                recognizer.abort()
            except Exception as e:
                logger.warning("Error aborting speech recognizer: %s", e)

    def _set_state(self, state: VoiceState) -> None:
        if self._session.state is state:
            return
        self._session.state = state
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("Voice state listener failed")
