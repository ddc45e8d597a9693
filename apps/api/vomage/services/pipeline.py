"""Pipeline orchestrator: stage state machine, status ownership, single-flight."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
import logging
from typing import TypeVar

from vomage.adapters.notify.base import Notifier
from vomage.core.logging_safety import describe_exception, safe_log_identifier
from vomage.domain.context import AnalyzedContext, analyze_context
from vomage.domain.job_fsm import ensure_transition, is_terminal
from vomage.domain.progress import STAGE_BANDS, band_for, clamp_progress
from vomage.errors import PipelineError, UpstreamTimeout, ValidationError
from vomage.schemas.job import ProcessingStage, ProcessingStatus, StatusError, VoiceProcessingJob
from vomage.schemas.result import CachedResult, CompletionEvent
from vomage.services.caches import ResultCache
from vomage.services.completion import CompletionPublisher
from vomage.services.stages import (
    AnalysisStage,
    ImageGenerationStage,
    TranscriptionStage,
    select_canonical_image,
)
from vomage.services.status_store import StatusStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CACHE_HIT_MESSAGE = "Result served from cache"
_STAGE_MESSAGES: dict[ProcessingStage, str] = {
    ProcessingStage.UPLOADED: "Audio received, waiting to start",
    ProcessingStage.TRANSCRIBING: "Transcribing audio",
    ProcessingStage.ANALYZING: "Analyzing sentiment",
    ProcessingStage.GENERATING: "Generating images",
    ProcessingStage.COMPLETE: "Processing complete",
}


@dataclass(slots=True)
class _Flight:
    """One execution for a fingerprint, shared by every job attached to it."""

    fingerprint: str
    leader: VoiceProcessingJob
    participants: list[VoiceProcessingJob]
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    stage: ProcessingStage | None = None
    progress: int = 0
    current: ProcessingStatus | None = None
    closed: bool = False


class PipelineOrchestrator:
    """Drives a job from UPLOADED to COMPLETE or ERROR.

    Every collaborator is injected. Status writes for one flight are
    serialized by its lock, and each write is saved before it is pushed.
    """

    def __init__(
        self,
        *,
        result_cache: ResultCache,
        status_store: StatusStore,
        notifier: Notifier,
        publisher: CompletionPublisher,
        transcription: TranscriptionStage,
        analysis: AnalysisStage,
        generation: ImageGenerationStage,
        default_language: str = "zh-CN",
        transcription_timeout_s: float = 305.0,
        analysis_timeout_s: float = 60.0,
        generation_timeout_s: float = 120.0,
    ) -> None:
        self._result_cache = result_cache
        self._status_store = status_store
        self._notifier = notifier
        self._publisher = publisher
        self._transcription = transcription
        self._analysis = analysis
        self._generation = generation
        self._default_language = default_language
        self._transcription_timeout_s = transcription_timeout_s
        self._analysis_timeout_s = analysis_timeout_s
        self._generation_timeout_s = generation_timeout_s
        self._flights: dict[str, _Flight] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._flights)

    async def submit(self, job: VoiceProcessingJob) -> str:
        """Accept a job and return its id without waiting for processing."""
        safe_job_id = safe_log_identifier(job.job_id, prefix="jid")
        logger.info(
            "pipeline.submitted job_id=%s owner_id=%s fingerprint=%s",
            safe_job_id,
            safe_log_identifier(job.owner_id, prefix="pid"),
            safe_log_identifier(job.content_fingerprint, prefix="fp"),
        )

        problem = _validate_job(job)
        if problem is not None:
            await self._reject(job, problem)
            return job.job_id

        if job.subscriber_handle:
            await self._status_store.save_subscriber(job.job_id, job.subscriber_handle)

        # Loops only when the flight finished while this job waited to attach.
        while True:
            cached = await self._result_cache.get(job.content_fingerprint)
            if cached is not None:
                logger.info("pipeline.cache_hit job_id=%s", safe_job_id)
                ensure_transition(ProcessingStage.UPLOADED, ProcessingStage.COMPLETE)
                status = ProcessingStatus(
                    job_id=job.job_id,
                    stage=ProcessingStage.COMPLETE,
                    progress=100,
                    message=_CACHE_HIT_MESSAGE,
                    result=cached,
                )
                await self._record(job.job_id, status)
                return job.job_id

            flight = self._flights.get(job.content_fingerprint)
            if flight is None:
                break
            if await self._attach(flight, job):
                return job.job_id

        flight = _Flight(fingerprint=job.content_fingerprint, leader=job, participants=[job])
        self._flights[job.content_fingerprint] = flight
        try:
            await self._transition(flight, ProcessingStage.UPLOADED, progress=0)
        except Exception:
            self._close(flight)
            raise
        task = asyncio.create_task(self._run(flight), name=f"pipeline-{job.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job.job_id

    async def get_status(self, job_id: str) -> ProcessingStatus | None:
        return await self._status_store.load(job_id)

    async def wait_idle(self) -> None:
        """Wait for every scheduled job task to reach a terminal state."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("pipeline.shutdown cancelled=%s", len(tasks))

    async def _attach(self, flight: _Flight, job: VoiceProcessingJob) -> bool:
        """Join a running flight; returns False once the flight has closed."""
        async with flight.lock:
            if flight.closed:
                return False
            if any(existing.job_id == job.job_id for existing in flight.participants):
                return True
            flight.participants.append(job)
            logger.info(
                "pipeline.single_flight_joined job_id=%s leader_job_id=%s stage=%s",
                safe_log_identifier(job.job_id, prefix="jid"),
                safe_log_identifier(flight.leader.job_id, prefix="jid"),
                flight.stage.value if flight.stage else None,
            )
            await self._record(
                job.job_id,
                ProcessingStatus(
                    job_id=job.job_id,
                    stage=ProcessingStage.UPLOADED,
                    progress=0,
                    message=_STAGE_MESSAGES[ProcessingStage.UPLOADED],
                    estimated_remaining_ms=band_for(ProcessingStage.UPLOADED).estimated_ms,
                ),
            )
            if flight.current is not None and flight.current.stage is not ProcessingStage.UPLOADED:
                await self._record(job.job_id, flight.current.model_copy(update={"job_id": job.job_id}))
            return True

    async def _run(self, flight: _Flight) -> None:
        leader = flight.leader
        safe_job_id = safe_log_identifier(leader.job_id, prefix="jid")
        try:
            result = await self._process(flight)
        except asyncio.CancelledError:
            logger.warning(
                "pipeline.cancelled job_id=%s stage=%s", safe_job_id, flight.stage.value if flight.stage else None
            )
            self._close(flight)
            raise
        except PipelineError as exc:
            logger.warning(
                "pipeline.failed job_id=%s stage=%s code=%s retryable=%s reason=%s",
                safe_job_id,
                flight.stage.value if flight.stage else None,
                exc.code,
                exc.retryable,
                describe_exception(exc),
            )
            await self._fail(flight, code=exc.code, message=exc.message, retryable=exc.retryable)
            return
        except Exception as exc:
            logger.exception("pipeline.unexpected_error job_id=%s reason=%s", safe_job_id, type(exc).__name__)
            await self._fail(flight, code=PipelineError.code, message="Processing failed", retryable=True)
            return

        for job in list(flight.participants):
            event = CompletionEvent(job_id=job.job_id, owner_id=job.owner_id, result=result)
            try:
                self._publisher.publish(event)
            except Exception as exc:
                logger.warning(
                    "pipeline.publish_failed job_id=%s reason=%s",
                    safe_log_identifier(job.job_id, prefix="jid"),
                    type(exc).__name__,
                )

    async def _process(self, flight: _Flight) -> CachedResult:
        job = flight.leader
        metadata = job.metadata
        language = metadata.language or self._default_language

        # Stage 1: transcription alongside context analysis, all must succeed.
        await self._transition(flight, ProcessingStage.TRANSCRIBING, progress=band_for(ProcessingStage.TRANSCRIBING).start)

        async def on_transcription_progress(fraction: float, remaining_ms: int | None) -> None:
            band = band_for(ProcessingStage.TRANSCRIBING)
            await self._transition(
                flight,
                ProcessingStage.TRANSCRIBING,
                progress=band.scale(fraction),
                estimated_remaining_ms=remaining_ms,
            )

        transcribe = asyncio.create_task(
            self._transcription.run(
                fingerprint=job.content_fingerprint,
                audio_ref=job.audio_ref,
                language=language,
                media_format=metadata.format,
                on_progress=on_transcription_progress,
            )
        )
        contextualize = asyncio.create_task(_analyze_context_async(job))
        try:
            transcript, context = await self._bounded(
                asyncio.gather(transcribe, contextualize),
                timeout_s=self._transcription_timeout_s,
                engine="transcription",
            )
        except BaseException:
            transcribe.cancel()
            contextualize.cancel()
            raise

        # Stage 2: single analyzer call on transcript + context.
        await self._transition(flight, ProcessingStage.ANALYZING, progress=band_for(ProcessingStage.ANALYZING).start)
        analysis = await self._bounded(
            self._analysis.run(transcript=transcript.text, context=context),
            timeout_s=self._analysis_timeout_s,
            engine="analyzer",
        )

        # Stage 3: image fan-out, any success is enough.
        await self._transition(flight, ProcessingStage.GENERATING, progress=band_for(ProcessingStage.GENERATING).start)

        async def on_image_progress(fraction: float, remaining_ms: int | None) -> None:
            await self._transition(
                flight,
                ProcessingStage.GENERATING,
                progress=band_for(ProcessingStage.GENERATING).scale(fraction),
                estimated_remaining_ms=remaining_ms,
            )

        images = await self._bounded(
            self._generation.run(job_id=job.job_id, prompt=analysis.image_prompt, on_progress=on_image_progress),
            timeout_s=self._generation_timeout_s,
            engine="image",
        )

        result = CachedResult(
            transcript=transcript.text,
            transcript_confidence=transcript.confidence,
            sentiment=analysis.sentiment,
            image_ref=select_canonical_image(images),
            images=images,
            image_prompt=analysis.image_prompt,
        )
        await self._result_cache.put(job.content_fingerprint, result)
        await self._transition(flight, ProcessingStage.COMPLETE, progress=100, result=result)
        return result

    async def _bounded(self, awaitable: Awaitable[T], *, timeout_s: float, engine: str) -> T:
        try:
            async with asyncio.timeout(timeout_s):
                return await awaitable
        except TimeoutError as exc:
            raise UpstreamTimeout(
                f"{engine} stage exceeded {timeout_s:g}s",
                engine=engine,
                details={"timeout_s": timeout_s},
            ) from exc

    async def _transition(
        self,
        flight: _Flight,
        stage: ProcessingStage,
        *,
        progress: int,
        message: str | None = None,
        estimated_remaining_ms: int | None = None,
        result: CachedResult | None = None,
        error: StatusError | None = None,
    ) -> None:
        async with flight.lock:
            ensure_transition(flight.stage, stage)
            if stage is ProcessingStage.COMPLETE:
                next_progress = 100
            elif stage is ProcessingStage.ERROR:
                next_progress = flight.progress
            else:
                next_progress = clamp_progress(stage=stage, proposed=progress, previous=flight.progress)
            band = STAGE_BANDS.get(stage)
            if estimated_remaining_ms is None and band is not None:
                estimated_remaining_ms = band.estimated_ms

            template = ProcessingStatus(
                job_id=flight.leader.job_id,
                stage=stage,
                progress=next_progress,
                message=message or _STAGE_MESSAGES.get(stage, "Processing failed"),
                estimated_remaining_ms=estimated_remaining_ms,
                result=result,
                error=error,
            )
            flight.stage = stage
            flight.progress = next_progress
            flight.current = template
            if is_terminal(stage):
                self._close(flight)

            for job in flight.participants:
                await self._record(job.job_id, template.model_copy(update={"job_id": job.job_id}))

    def _close(self, flight: _Flight) -> None:
        flight.closed = True
        if self._flights.get(flight.fingerprint) is flight:
            del self._flights[flight.fingerprint]

    async def _record(self, job_id: str, status: ProcessingStatus) -> None:
        await self._status_store.save(job_id, status)
        logger.info(
            "pipeline.transition job_id=%s stage=%s progress=%s",
            safe_log_identifier(job_id, prefix="jid"),
            status.stage.value,
            status.progress,
        )
        await self._notifier.push(job_id, status)

    async def _fail(self, flight: _Flight, *, code: str, message: str, retryable: bool) -> None:
        error = StatusError(code=code, message=message, retryable=retryable, failed_stage=flight.stage)
        try:
            await self._transition(flight, ProcessingStage.ERROR, progress=flight.progress, message=message, error=error)
        except Exception as exc:
            self._close(flight)
            logger.error(
                "pipeline.error_status_write_failed job_id=%s reason=%s",
                safe_log_identifier(flight.leader.job_id, prefix="jid"),
                type(exc).__name__,
            )

    async def _reject(self, job: VoiceProcessingJob, problem: ValidationError) -> None:
        logger.warning(
            "pipeline.rejected job_id=%s code=%s reason=%s",
            safe_log_identifier(job.job_id, prefix="jid"),
            problem.code,
            problem.message,
        )
        ensure_transition(ProcessingStage.UPLOADED, ProcessingStage.ERROR)
        status = ProcessingStatus(
            job_id=job.job_id,
            stage=ProcessingStage.ERROR,
            progress=0,
            message=problem.message,
            error=StatusError(
                code=problem.code,
                message=problem.message,
                retryable=problem.retryable,
                failed_stage=ProcessingStage.UPLOADED,
            ),
        )
        await self._record(job.job_id, status)


def _validate_job(job: VoiceProcessingJob) -> ValidationError | None:
    if not job.audio_ref.strip():
        return ValidationError("Audio reference is empty", details={"field": "audio_ref"})
    if not job.content_fingerprint.strip():
        return ValidationError("Content fingerprint is empty", details={"field": "content_fingerprint"})
    if job.metadata.size < 0 or job.metadata.duration < 0:
        return ValidationError("Audio metadata is negative", details={"field": "metadata"})
    return None


async def _analyze_context_async(job: VoiceProcessingJob) -> AnalyzedContext:
    return analyze_context(job.metadata)


__all__ = ["PipelineOrchestrator"]
