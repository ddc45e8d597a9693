"""Orchestrator behavior: caching, ordering, progress, fault tolerance, single-flight."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import json
import unittest

from vomage.adapters.analysis import ContentAnalyzer, MockContentAnalyzer
from vomage.adapters.imaging import MockImageSynthesisEngine
from vomage.adapters.notify import RecordingNotifier
from vomage.adapters.storage import InMemoryBlobStore
from vomage.adapters.transcription import MockTranscriptionEngine, RemoteJobState
from vomage.repositories.memory import InMemoryKeyValueStore
from vomage.schemas.job import JobMetadata, ProcessingStage, ProcessingStatus, VoiceProcessingJob
from vomage.schemas.result import AnalysisResult, CompletionEvent, GeneratedImage, TranscriptionResult
from vomage.services.caches import MemoCache, ResultCache
from vomage.services.completion import CompletionPublisher
from vomage.services.pipeline import PipelineOrchestrator
from vomage.services.stages import AnalysisStage, ImageGenerationStage, TranscriptionStage
from vomage.services.status_store import StatusStore

STYLES = ("photographic", "digital-art", "cinematic")
HAPPY_REPLY = '{"sentiment": {"mood": "happy", "confidence": 0.9}, "image_prompt": "sunny field"}'
SUCCESS_SEQUENCE = [
    ProcessingStage.UPLOADED,
    ProcessingStage.TRANSCRIBING,
    ProcessingStage.ANALYZING,
    ProcessingStage.GENERATING,
    ProcessingStage.COMPLETE,
]


class _HistoryStatusStore(StatusStore):
    """Status store that also keeps every saved status per job.

    ``reject_once`` makes the first matching save raise instead of writing.
    """

    def __init__(self, *args, reject_once: Callable[[ProcessingStatus], bool] | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.history: dict[str, list[ProcessingStatus]] = {}
        self.reject_once = reject_once

    async def save(self, job_id: str, status: ProcessingStatus, ttl_s: int | None = None) -> bool:
        if self.reject_once is not None and self.reject_once(status):
            self.reject_once = None
            raise RuntimeError("status write rejected")
        saved = await super().save(job_id, status, ttl_s)
        self.history.setdefault(job_id, []).append(status)
        return saved


class _Gate:
    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.released = asyncio.Event()

    async def pass_through(self) -> None:
        self.entered.set()
        await self.released.wait()


class _ScriptedKeyValueStore(InMemoryKeyValueStore):
    """In-memory store with scripted pauses and failures, matched by key."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.read_gates: dict[str, _Gate] = {}
        self.write_gates: dict[str, _Gate] = {}
        self.write_failures: list[Callable[[str, str], bool]] = []
        self.unavailable_prefixes: tuple[str, ...] = ()

    def gate_read(self, key: str) -> _Gate:
        gate = self.read_gates[key] = _Gate()
        return gate

    def gate_write(self, key: str) -> _Gate:
        gate = self.write_gates[key] = _Gate()
        return gate

    async def get(self, key: str) -> str | None:
        if key.startswith(self.unavailable_prefixes):
            raise RuntimeError("store unavailable")
        value = await super().get(key)
        gate = self.read_gates.pop(key, None)
        if gate is not None:
            # The caller resumes later with the value it read before pausing.
            await gate.pass_through()
        return value

    async def set(self, key: str, value: str, *, ttl_s: int | None = None, only_if_absent: bool = False) -> bool:
        if key.startswith(self.unavailable_prefixes):
            raise RuntimeError("store unavailable")
        for rule in list(self.write_failures):
            if rule(key, value):
                self.write_failures.remove(rule)
                raise RuntimeError("store unavailable")
        gate = self.write_gates.pop(key, None)
        if gate is not None:
            await gate.pass_through()
        return await super().set(key, value, ttl_s=ttl_s, only_if_absent=only_if_absent)


class _HangingAnalyzer(ContentAnalyzer):
    async def complete(self, prompt: str) -> str:
        await asyncio.Event().wait()
        return ""


class _ExplodingPublisher(CompletionPublisher):
    def publish(self, event: CompletionEvent) -> bool:
        raise RuntimeError("event bus unavailable")


@dataclass
class _Harness:
    store: InMemoryKeyValueStore
    status_store: _HistoryStatusStore
    notifier: RecordingNotifier
    publisher: CompletionPublisher
    result_cache: ResultCache
    transcription: MockTranscriptionEngine
    analyzer: ContentAnalyzer
    imaging: MockImageSynthesisEngine
    blobs: InMemoryBlobStore
    orchestrator: PipelineOrchestrator

    def engine_call_count(self) -> int:
        prompts = getattr(self.analyzer, "prompts", [])
        return len(self.transcription.start_calls) + len(prompts) + len(self.imaging.calls)

    def stages(self, job_id: str) -> list[ProcessingStage]:
        collapsed: list[ProcessingStage] = []
        for status in self.status_store.history.get(job_id, []):
            if not collapsed or collapsed[-1] is not status.stage:
                collapsed.append(status.stage)
        return collapsed

    def progress(self, job_id: str) -> list[int]:
        return [status.progress for status in self.status_store.history.get(job_id, [])]


def _harness(
    *,
    transcription: MockTranscriptionEngine | None = None,
    analyzer: ContentAnalyzer | None = None,
    imaging: MockImageSynthesisEngine | None = None,
    publisher: CompletionPublisher | None = None,
    max_attempts: int = 5,
    poll_interval_s: float = 0.0,
    analysis_timeout_s: float = 5.0,
    store: InMemoryKeyValueStore | None = None,
    reject_status_once: Callable[[ProcessingStatus], bool] | None = None,
) -> _Harness:
    store = store or InMemoryKeyValueStore()
    status_store = _HistoryStatusStore(store, ttl_s=3600, reject_once=reject_status_once)
    notifier = RecordingNotifier(status_store)
    publisher = publisher or CompletionPublisher(max_pending=100)
    result_cache = ResultCache(store, ttl_s=86400)
    transcription = transcription or MockTranscriptionEngine(text="hello world", polls_to_complete=3)
    analyzer = analyzer or MockContentAnalyzer(reply=HAPPY_REPLY)
    imaging = imaging or MockImageSynthesisEngine()
    blobs = InMemoryBlobStore()
    orchestrator = PipelineOrchestrator(
        result_cache=result_cache,
        status_store=status_store,
        notifier=notifier,
        publisher=publisher,
        transcription=TranscriptionStage(
            transcription,
            MemoCache(store, namespace="transcript", model=TranscriptionResult, ttl_s=86400),
            poll_interval_s=poll_interval_s,
            max_attempts=max_attempts,
        ),
        analysis=AnalysisStage(analyzer, MemoCache(store, namespace="analysis", model=AnalysisResult, ttl_s=86400)),
        generation=ImageGenerationStage(
            imaging,
            blobs,
            MemoCache(store, namespace="image", model=GeneratedImage, ttl_s=604800),
            styles=STYLES,
            width=256,
            height=256,
        ),
        default_language="en-US",
        transcription_timeout_s=5.0,
        analysis_timeout_s=analysis_timeout_s,
        generation_timeout_s=5.0,
    )
    return _Harness(
        store=store,
        status_store=status_store,
        notifier=notifier,
        publisher=publisher,
        result_cache=result_cache,
        transcription=transcription,
        analyzer=analyzer,
        imaging=imaging,
        blobs=blobs,
        orchestrator=orchestrator,
    )


def _job(job_id: str = "j1", fingerprint: str = "f1", **overrides) -> VoiceProcessingJob:
    payload = {
        "job_id": job_id,
        "owner_id": "owner-1",
        "audio_ref": "a.wav",
        "content_fingerprint": fingerprint,
        "metadata": JobMetadata(duration=2.0, format="wav", size=32000),
    }
    payload.update(overrides)
    return VoiceProcessingJob(**payload)


async def _run_to_end(harness: _Harness, job: VoiceProcessingJob) -> ProcessingStatus:
    await harness.orchestrator.submit(job)
    await harness.orchestrator.wait_idle()
    status = await harness.orchestrator.get_status(job.job_id)
    assert status is not None
    return status


class VoiceScenarioTests(unittest.IsolatedAsyncioTestCase):
    async def test_two_of_three_images_then_cached_resubmission(self) -> None:
        harness = _harness(imaging=MockImageSynthesisEngine(failing_styles={"digital-art"}))

        final = await _run_to_end(harness, _job("j1", "f1"))

        self.assertEqual(final.stage, ProcessingStage.COMPLETE)
        self.assertEqual(final.progress, 100)
        self.assertEqual(final.result.transcript, "hello world")
        self.assertEqual(final.result.sentiment.mood, "happy")
        self.assertEqual(final.result.sentiment.confidence, 0.9)
        self.assertEqual(final.result.image_prompt, "sunny field")
        self.assertEqual([image.style for image in final.result.images], ["photographic", "cinematic"])
        self.assertEqual(final.result.image_ref, final.result.images[0])

        calls_before = harness.engine_call_count()
        await harness.orchestrator.submit(_job("j2", "f1"))
        resubmitted = await harness.orchestrator.get_status("j2")

        self.assertEqual(resubmitted.stage, ProcessingStage.COMPLETE)
        self.assertEqual(resubmitted.progress, 100)
        self.assertEqual(resubmitted.message, "Result served from cache")
        self.assertEqual(resubmitted.result, final.result)
        self.assertEqual(harness.engine_call_count(), calls_before)
        self.assertEqual(harness.orchestrator.in_flight, 0)


class PipelinePropertyTests(unittest.IsolatedAsyncioTestCase):
    async def test_successful_job_visits_every_stage_in_order(self) -> None:
        harness = _harness()

        await _run_to_end(harness, _job())

        self.assertEqual(harness.stages("j1"), SUCCESS_SEQUENCE)

    async def test_progress_is_monotonic_and_bounded(self) -> None:
        harness = _harness()

        await _run_to_end(harness, _job())

        progress = harness.progress("j1")
        self.assertEqual(progress[0], 0)
        self.assertEqual(progress[-1], 100)
        self.assertEqual(progress, sorted(progress))
        self.assertTrue(all(0 <= value <= 100 for value in progress))
        transcribing = [s.progress for s in harness.status_store.history["j1"] if s.stage is ProcessingStage.TRANSCRIBING]
        self.assertGreater(len(transcribing), 1)
        self.assertTrue(all(10 <= value <= 40 for value in transcribing))
        generating = [s.progress for s in harness.status_store.history["j1"] if s.stage is ProcessingStage.GENERATING]
        self.assertEqual(generating[0], 70)
        self.assertEqual(generating[-1], 99)

    async def test_concurrent_duplicates_share_one_execution(self) -> None:
        harness = _harness()

        await harness.orchestrator.submit(_job("j1", "shared"))
        await harness.orchestrator.submit(_job("j2", "shared"))
        self.assertEqual(harness.orchestrator.in_flight, 1)
        await harness.orchestrator.wait_idle()

        first = await harness.orchestrator.get_status("j1")
        second = await harness.orchestrator.get_status("j2")
        self.assertEqual(first.stage, ProcessingStage.COMPLETE)
        self.assertEqual(second.stage, ProcessingStage.COMPLETE)
        self.assertEqual(first.result, second.result)
        self.assertEqual(len(harness.transcription.start_calls), 1)
        self.assertEqual(len(harness.analyzer.prompts), 1)
        self.assertEqual(len(harness.imaging.calls), len(STYLES))
        self.assertEqual(harness.stages("j2"), SUCCESS_SEQUENCE)
        self.assertEqual(harness.progress("j2"), sorted(harness.progress("j2")))

    async def test_single_image_success_becomes_canonical(self) -> None:
        harness = _harness(imaging=MockImageSynthesisEngine(failing_styles={"photographic", "digital-art"}))

        final = await _run_to_end(harness, _job())

        self.assertEqual(final.stage, ProcessingStage.COMPLETE)
        self.assertEqual(final.result.image_ref.style, "cinematic")
        self.assertEqual(final.result.images, [final.result.image_ref])

    async def test_total_generation_failure_is_retryable_error(self) -> None:
        harness = _harness(imaging=MockImageSynthesisEngine(failing_styles=set(STYLES)))

        final = await _run_to_end(harness, _job())

        self.assertEqual(final.stage, ProcessingStage.ERROR)
        self.assertIsNone(final.result)
        self.assertEqual(final.error.code, "TOTAL_GENERATION_FAILURE")
        self.assertTrue(final.error.retryable)
        self.assertEqual(final.error.failed_stage, ProcessingStage.GENERATING)
        self.assertEqual(final.progress, 99)
        self.assertIsNone(await harness.result_cache.get("f1"))
        self.assertEqual(harness.publisher.pending, 0)

    async def test_transcription_failure_never_reaches_later_engines(self) -> None:
        harness = _harness(transcription=MockTranscriptionEngine(final_state=RemoteJobState.FAILED))

        final = await _run_to_end(harness, _job())

        self.assertEqual(final.stage, ProcessingStage.ERROR)
        self.assertEqual(final.error.code, "UPSTREAM_FAILURE")
        self.assertTrue(final.error.retryable)
        self.assertEqual(final.error.failed_stage, ProcessingStage.TRANSCRIBING)
        self.assertEqual(harness.analyzer.prompts, [])
        self.assertEqual(harness.imaging.calls, [])
        self.assertEqual(harness.stages("j1"), [ProcessingStage.UPLOADED, ProcessingStage.TRANSCRIBING, ProcessingStage.ERROR])

    async def test_poll_exhaustion_is_upstream_timeout(self) -> None:
        harness = _harness(transcription=MockTranscriptionEngine(polls_to_complete=None), max_attempts=3)

        final = await _run_to_end(harness, _job())

        self.assertEqual(final.error.code, "UPSTREAM_TIMEOUT")
        self.assertTrue(final.error.retryable)
        self.assertEqual(harness.transcription.poll_calls, 3)

    async def test_stage_timeout_is_upstream_timeout(self) -> None:
        harness = _harness(analyzer=_HangingAnalyzer(), analysis_timeout_s=0.05)

        final = await _run_to_end(harness, _job())

        self.assertEqual(final.stage, ProcessingStage.ERROR)
        self.assertEqual(final.error.code, "UPSTREAM_TIMEOUT")
        self.assertEqual(final.error.failed_stage, ProcessingStage.ANALYZING)
        self.assertEqual(harness.imaging.calls, [])

    async def test_empty_transcript_is_not_retryable(self) -> None:
        harness = _harness(transcription=MockTranscriptionEngine(text=""))

        final = await _run_to_end(harness, _job())

        self.assertEqual(final.error.code, "VALIDATION_ERROR")
        self.assertFalse(final.error.retryable)

    async def test_invalid_input_is_rejected_without_engine_calls(self) -> None:
        harness = _harness()

        job_id = await harness.orchestrator.submit(_job(audio_ref="  "))
        status = await harness.orchestrator.get_status(job_id)

        self.assertEqual(job_id, "j1")
        self.assertEqual(status.stage, ProcessingStage.ERROR)
        self.assertEqual(status.error.code, "VALIDATION_ERROR")
        self.assertFalse(status.error.retryable)
        self.assertEqual(status.error.failed_stage, ProcessingStage.UPLOADED)
        self.assertEqual(harness.engine_call_count(), 0)
        self.assertEqual(harness.orchestrator.in_flight, 0)

    async def test_resubmission_after_failure_reuses_stage_memos(self) -> None:
        imaging = MockImageSynthesisEngine(failing_styles=set(STYLES))
        harness = _harness(imaging=imaging)

        failed = await _run_to_end(harness, _job())
        self.assertEqual(failed.stage, ProcessingStage.ERROR)

        imaging.failing_styles = set()
        retried = await _run_to_end(harness, _job())

        self.assertEqual(retried.stage, ProcessingStage.COMPLETE)
        self.assertEqual(len(harness.transcription.start_calls), 1)
        self.assertEqual(len(harness.analyzer.prompts), 1)
        self.assertEqual(len(imaging.calls), 2 * len(STYLES))

    async def test_malformed_analysis_still_completes_with_neutral_mood(self) -> None:
        harness = _harness(analyzer=MockContentAnalyzer(reply="sorry, no json today"))

        final = await _run_to_end(harness, _job())

        self.assertEqual(final.stage, ProcessingStage.COMPLETE)
        self.assertEqual(final.result.sentiment.mood, "neutral")
        self.assertEqual(final.result.image_prompt, "a warm, peaceful landscape painting")


class PipelineSideEffectTests(unittest.IsolatedAsyncioTestCase):
    async def test_subscriber_receives_every_saved_status(self) -> None:
        harness = _harness()

        await _run_to_end(harness, _job(subscriber_handle="sub-1"))

        delivered = harness.notifier.delivered["sub-1"]
        saved = harness.status_store.history["j1"]
        self.assertEqual(len(delivered), len(saved))
        self.assertEqual([message["data"]["stage"] for message in delivered], [status.stage.value for status in saved])
        self.assertEqual(delivered[-1]["data"]["progress"], 100)

    async def test_notifier_failure_does_not_affect_job(self) -> None:
        harness = _harness()
        harness.notifier.failing_handles = {"sub-broken"}

        final = await _run_to_end(harness, _job(subscriber_handle="sub-broken"))

        self.assertEqual(final.stage, ProcessingStage.COMPLETE)

    async def test_completion_event_is_published_after_complete(self) -> None:
        harness = _harness()
        received: list[CompletionEvent] = []

        async def sink(event: CompletionEvent) -> None:
            received.append(event)

        harness.publisher.subscribe(sink)
        harness.publisher.start()
        final = await _run_to_end(harness, _job())
        await harness.publisher.stop()

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].job_id, "j1")
        self.assertEqual(received[0].owner_id, "owner-1")
        self.assertEqual(received[0].result, final.result)

    async def test_publisher_failure_is_swallowed(self) -> None:
        harness = _harness(publisher=_ExplodingPublisher())

        final = await _run_to_end(harness, _job())

        self.assertEqual(final.stage, ProcessingStage.COMPLETE)
        self.assertIsNotNone(await harness.result_cache.get("f1"))

    async def test_shutdown_cancels_in_flight_jobs(self) -> None:
        harness = _harness(transcription=MockTranscriptionEngine(polls_to_complete=None), poll_interval_s=30.0)

        await harness.orchestrator.submit(_job())
        await asyncio.sleep(0)
        await harness.orchestrator.shutdown()

        self.assertEqual(harness.orchestrator.in_flight, 0)
        status = await harness.orchestrator.get_status("j1")
        self.assertFalse(status.is_terminal)

def _is_transcription_progress_write(key: str, value: str) -> bool:
    if not key.startswith("status:"):
        return False
    saved = json.loads(value)
    return saved["stage"] == "TRANSCRIBING" and saved["progress"] > 10


class StatusWriteFailureTests(unittest.IsolatedAsyncioTestCase):
    async def test_failed_image_progress_report_keeps_generated_image(self) -> None:
        harness = _harness(
            imaging=MockImageSynthesisEngine(failing_styles={"digital-art", "cinematic"}),
            reject_status_once=lambda status: status.stage is ProcessingStage.GENERATING and status.progress > 70,
        )

        with self.assertLogs("vomage.services.stages", level="WARNING") as logs:
            final = await _run_to_end(harness, _job())

        self.assertEqual(final.stage, ProcessingStage.COMPLETE)
        self.assertEqual([image.style for image in final.result.images], ["photographic"])
        self.assertEqual(final.result.image_ref.style, "photographic")
        self.assertTrue(any("stage.progress_report_failed" in line for line in logs.output))
        self.assertIsNotNone(await harness.result_cache.get("f1"))

    async def test_failed_transcription_progress_write_does_not_abort_job(self) -> None:
        store = _ScriptedKeyValueStore()
        store.write_failures.append(_is_transcription_progress_write)
        harness = _harness(store=store)

        with self.assertLogs("vomage.services.status_store", level="WARNING"):
            final = await _run_to_end(harness, _job())

        self.assertEqual(store.write_failures, [])
        self.assertEqual(final.stage, ProcessingStage.COMPLETE)
        self.assertEqual(final.result.transcript, "hello world")
        self.assertEqual(len(harness.transcription.start_calls), 1)

    async def test_status_store_outage_does_not_break_submission(self) -> None:
        store = _ScriptedKeyValueStore()
        store.unavailable_prefixes = ("status:", "connection:")
        harness = _harness(store=store)

        job_id = await harness.orchestrator.submit(_job(subscriber_handle="sub-1"))
        self.assertEqual(job_id, "j1")
        self.assertIsNone(await harness.orchestrator.get_status("j1"))
        await harness.orchestrator.wait_idle()

        self.assertIsNotNone(await harness.result_cache.get("f1"))
        self.assertEqual(harness.orchestrator.in_flight, 0)

        store.unavailable_prefixes = ()
        await harness.orchestrator.submit(_job("j2", "f1"))
        recovered = await harness.orchestrator.get_status("j2")
        self.assertEqual(recovered.stage, ProcessingStage.COMPLETE)
        self.assertEqual(recovered.message, "Result served from cache")


class SingleFlightCompletionTests(unittest.IsolatedAsyncioTestCase):
    async def test_job_reaching_a_finished_flight_reads_the_cached_result(self) -> None:
        store = _ScriptedKeyValueStore()
        harness = _harness(store=store)
        published: list[str] = []

        async def sink(event: CompletionEvent) -> None:
            published.append(event.job_id)

        harness.publisher.subscribe(sink)
        harness.publisher.start()
        orchestrator = harness.orchestrator

        result_write = store.gate_write("result:shared")
        await orchestrator.submit(_job("j1", "shared"))
        await result_write.entered.wait()

        # j2 reads a cache miss, then stalls before looking for the flight.
        stale_read = store.gate_read("result:shared")
        late = asyncio.create_task(orchestrator.submit(_job("j2", "shared")))
        await stale_read.entered.wait()

        # j3 joins the flight and holds its lock while its first status is written.
        follower_write = store.gate_write("status:j3")
        follower = asyncio.create_task(orchestrator.submit(_job("j3", "shared")))
        await follower_write.entered.wait()

        result_write.released.set()
        for _ in range(5):
            await asyncio.sleep(0)
        stale_read.released.set()
        for _ in range(5):
            await asyncio.sleep(0)
        follower_write.released.set()

        await asyncio.gather(late, follower)
        await orchestrator.wait_idle()
        await harness.publisher.stop()

        late_status = await orchestrator.get_status("j2")
        self.assertEqual(late_status.stage, ProcessingStage.COMPLETE)
        self.assertEqual(late_status.message, "Result served from cache")
        self.assertEqual(harness.stages("j2"), [ProcessingStage.COMPLETE])
        self.assertEqual((await orchestrator.get_status("j3")).stage, ProcessingStage.COMPLETE)
        self.assertEqual(sorted(published), ["j1", "j3"])
        self.assertEqual(len(harness.transcription.start_calls), 1)
        self.assertEqual(orchestrator.in_flight, 0)



if __name__ == "__main__":
    unittest.main()
