"""Builds the orchestrator and its collaborators from settings."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from vomage.adapters.analysis import ContentAnalyzer, HttpContentAnalyzer, MockContentAnalyzer
from vomage.adapters.imaging import HttpImageSynthesisEngine, ImageSynthesisEngine, MockImageSynthesisEngine
from vomage.adapters.notify import Notifier, WebSocketNotifier
from vomage.adapters.storage import BlobStore, FileBlobStore, InMemoryBlobStore
from vomage.adapters.transcription import HttpTranscriptionEngine, MockTranscriptionEngine, TranscriptionEngine
from vomage.core.config import Settings
from vomage.repositories.base import KeyValueStore
from vomage.repositories.memory import InMemoryKeyValueStore
from vomage.repositories.redis_store import RedisKeyValueStore
from vomage.schemas.result import AnalysisResult, GeneratedImage, TranscriptionResult
from vomage.services.caches import MemoCache, ResultCache
from vomage.services.completion import CompletionPublisher
from vomage.services.pipeline import PipelineOrchestrator
from vomage.services.stages import AnalysisStage, ImageGenerationStage, TranscriptionStage
from vomage.services.status_store import StatusStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Engines:
    transcription: TranscriptionEngine
    analyzer: ContentAnalyzer
    imaging: ImageSynthesisEngine
    blobs: BlobStore


@dataclass(slots=True)
class PipelineComponents:
    store: KeyValueStore
    status_store: StatusStore
    notifier: Notifier
    publisher: CompletionPublisher
    engines: Engines
    orchestrator: PipelineOrchestrator

    async def aclose(self) -> None:
        await self.orchestrator.shutdown()
        await self.publisher.stop()
        await self.engines.transcription.aclose()
        await self.engines.analyzer.aclose()
        await self.engines.imaging.aclose()
        await self.store.close()


def _require(value: str | None, name: str) -> str:
    if not value:
        raise ValueError(f"VOMAGE_{name.upper()} is required when VOMAGE_ENGINE_PROVIDER=http")
    return value


def build_store(settings: Settings) -> KeyValueStore:
    if settings.store_backend == "redis":
        return RedisKeyValueStore(settings.redis_url)
    return InMemoryKeyValueStore()


def build_engines(settings: Settings) -> Engines:
    """Resolve engine adapters from configuration."""
    if settings.engine_provider == "http":
        return Engines(
            transcription=HttpTranscriptionEngine(
                base_url=_require(settings.transcription_base_url, "transcription_base_url"),
                api_key=settings.engine_api_key,
                timeout_s=settings.http_timeout_s,
            ),
            analyzer=HttpContentAnalyzer(
                base_url=_require(settings.analyzer_base_url, "analyzer_base_url"),
                model=settings.analyzer_model,
                api_key=settings.engine_api_key,
                timeout_s=settings.http_timeout_s,
            ),
            imaging=HttpImageSynthesisEngine(
                base_url=_require(settings.image_base_url, "image_base_url"),
                api_key=settings.engine_api_key,
                timeout_s=settings.http_timeout_s,
            ),
            blobs=FileBlobStore(root=settings.blob_root, public_base_url=settings.blob_public_base_url),
        )
    return Engines(
        transcription=MockTranscriptionEngine(),
        analyzer=MockContentAnalyzer(),
        imaging=MockImageSynthesisEngine(),
        blobs=InMemoryBlobStore(),
    )


def build_pipeline(
    settings: Settings,
    *,
    store: KeyValueStore | None = None,
    engines: Engines | None = None,
    notifier: Notifier | None = None,
) -> PipelineComponents:
    store = store or build_store(settings)
    engines = engines or build_engines(settings)
    status_store = StatusStore(store, ttl_s=settings.status_ttl_s)
    notifier = notifier or WebSocketNotifier(status_store)
    publisher = CompletionPublisher(max_pending=settings.completion_queue_size)

    orchestrator = PipelineOrchestrator(
        result_cache=ResultCache(store, ttl_s=settings.result_ttl_s),
        status_store=status_store,
        notifier=notifier,
        publisher=publisher,
        transcription=TranscriptionStage(
            engines.transcription,
            MemoCache(store, namespace="transcript", model=TranscriptionResult, ttl_s=settings.transcript_ttl_s),
            poll_interval_s=settings.transcription_poll_interval_s,
            max_attempts=settings.transcription_max_attempts,
        ),
        analysis=AnalysisStage(
            engines.analyzer,
            MemoCache(store, namespace="analysis", model=AnalysisResult, ttl_s=settings.analysis_ttl_s),
        ),
        generation=ImageGenerationStage(
            engines.imaging,
            engines.blobs,
            MemoCache(store, namespace="image", model=GeneratedImage, ttl_s=settings.image_ttl_s),
            styles=settings.image_styles,
            width=settings.image_width,
            height=settings.image_height,
        ),
        default_language=settings.default_language,
        transcription_timeout_s=settings.transcription_timeout_s,
        analysis_timeout_s=settings.analysis_timeout_s,
        generation_timeout_s=settings.generation_timeout_s,
    )
    logger.info(
        "pipeline.configured engine_provider=%s store_backend=%s styles=%s",
        settings.engine_provider,
        settings.store_backend,
        ",".join(settings.image_styles),
    )
    return PipelineComponents(
        store=store,
        status_store=status_store,
        notifier=notifier,
        publisher=publisher,
        engines=engines,
        orchestrator=orchestrator,
    )
