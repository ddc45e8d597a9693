"""Scripted transcription engine for local development and tests."""

from __future__ import annotations

from vomage.adapters.transcription.base import RemoteJobState, RemoteTranscription, TranscriptionEngine
from vomage.errors import PipelineError


class MockTranscriptionEngine(TranscriptionEngine):
    """Completes after ``polls_to_complete`` polls with a fixed transcript.

    ``start_error`` is raised from ``start``; ``final_state=FAILED`` makes the
    remote job fail; ``polls_to_complete=None`` keeps it in progress forever.
    """

    def __init__(
        self,
        *,
        text: str = "今天天气很好，心情不错",
        confidence: float = 0.92,
        polls_to_complete: int | None = 1,
        final_state: RemoteJobState = RemoteJobState.COMPLETED,
        start_error: PipelineError | None = None,
    ) -> None:
        self.text = text
        self.confidence = confidence
        self.polls_to_complete = polls_to_complete
        self.final_state = final_state
        self.start_error = start_error
        self.start_calls: list[dict[str, str]] = []
        self.poll_calls = 0
        self._polls_by_job: dict[str, int] = {}

    async def start(self, *, audio_ref: str, language: str, media_format: str) -> str:
        self.start_calls.append({"audio_ref": audio_ref, "language": language, "media_format": media_format})
        if self.start_error is not None:
            raise self.start_error
        remote_job_id = f"mock-transcription-{len(self.start_calls)}"
        self._polls_by_job[remote_job_id] = 0
        return remote_job_id

    async def poll(self, remote_job_id: str) -> RemoteTranscription:
        self.poll_calls += 1
        polls = self._polls_by_job.get(remote_job_id, 0) + 1
        self._polls_by_job[remote_job_id] = polls

        if self.polls_to_complete is None or polls < self.polls_to_complete:
            target = self.polls_to_complete or polls + 1
            return RemoteTranscription(state=RemoteJobState.IN_PROGRESS, progress=polls / target)
        if self.final_state is RemoteJobState.FAILED:
            return RemoteTranscription(state=RemoteJobState.FAILED, failure_reason="mock engine failure")
        return RemoteTranscription(
            state=RemoteJobState.COMPLETED,
            progress=1.0,
            text=self.text,
            confidence=self.confidence,
        )


__all__ = ["MockTranscriptionEngine"]
