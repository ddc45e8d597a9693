"""Transcription engine interfaces."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class RemoteJobState(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class RemoteTranscription:
    """One poll observation of a remote transcription job."""

    state: RemoteJobState
    progress: float | None = None
    text: str | None = None
    confidence: float | None = None
    language: str | None = None
    failure_reason: str | None = None


class TranscriptionEngine(ABC):
    """Provider-neutral asynchronous speech-to-text job API."""

    @abstractmethod
    async def start(self, *, audio_ref: str, language: str, media_format: str) -> str:
        """Start a remote job and return its identifier."""

    @abstractmethod
    async def poll(self, remote_job_id: str) -> RemoteTranscription:
        """Return the current state of a remote job."""

    async def aclose(self) -> None:
        return None


__all__ = ["RemoteJobState", "RemoteTranscription", "TranscriptionEngine"]
