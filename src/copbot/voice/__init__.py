"""Voice capture module for copbot.

Wraps a platform speech recognizer in an explicit state machine that hands
finalized transcripts to the message pipeline.
"""

from .base import RecognizerFactory, SpeechRecognizer
from .machine import VoiceCaptureStateMachine
from .microphone import MicrophoneRecognizer, microphone_factory
from .models import RecognitionEvent, RecognitionEventType, VoiceCaptureSession, VoiceState

__all__ = [
    "MicrophoneRecognizer",
    "RecognitionEvent",
    "RecognitionEventType",
    "RecognizerFactory",
    "SpeechRecognizer",
    "VoiceCaptureSession",
    "VoiceCaptureStateMachine",
    "VoiceState",
    "microphone_factory",
]
