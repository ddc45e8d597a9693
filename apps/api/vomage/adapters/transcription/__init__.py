"""Transcription engine adapters."""

from .base import RemoteJobState, RemoteTranscription, TranscriptionEngine
from .http_transcribe import HttpTranscriptionEngine
from .mock_transcribe import MockTranscriptionEngine

__all__ = [
    "HttpTranscriptionEngine",
    "MockTranscriptionEngine",
    "RemoteJobState",
    "RemoteTranscription",
    "TranscriptionEngine",
]
