"""Stage runners wrapping the three external engines.

Each runner owns the engine call, its memo table, and the translation of
engine output into pipeline schemas. Timeouts for the whole stage are applied
by the orchestrator; the transcription poll loop carries its own attempt bound.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
import json
import logging
import re
from typing import Any

from vomage.adapters.analysis.base import ContentAnalyzer
from vomage.adapters.imaging.base import ImageSynthesisEngine
from vomage.adapters.storage.base import BlobStore
from vomage.adapters.transcription.base import RemoteJobState, TranscriptionEngine
from vomage.core.logging_safety import describe_exception, safe_log_identifier
from vomage.domain.context import AnalyzedContext
from vomage.errors import (
    PartialGenerationFailure,
    TotalGenerationFailure,
    UpstreamFailure,
    UpstreamTimeout,
    ValidationError,
)
from vomage.schemas.result import (
    MOODS,
    AnalysisResult,
    GeneratedImage,
    Sentiment,
    SentimentDetails,
    TranscriptionResult,
)
from vomage.services.caches import MemoCache, content_hash

logger = logging.getLogger(__name__)

# (fraction of stage complete, estimated remaining ms)
ProgressCallback = Callable[[float, int | None], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]

DEFAULT_IMAGE_PROMPT = "a warm, peaceful landscape painting"


async def _report_progress(
    on_progress: ProgressCallback | None,
    fraction: float,
    remaining_ms: int | None,
    *,
    stage: str,
) -> None:
    """Progress is advisory: a failed report never changes a stage outcome."""
    if on_progress is None:
        return
    try:
        await on_progress(fraction, remaining_ms)
    except Exception as exc:
        logger.warning("stage.progress_report_failed stage=%s reason=%s", stage, describe_exception(exc))


_JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
_POSITIVE_MOODS = frozenset({"happy", "excited", "calm"})
_NEGATIVE_MOODS = frozenset({"sad", "angry", "anxious"})


class TranscriptionStage:
    """Start a remote transcription job, then poll it on a fixed interval.

    The loop is bounded by ``max_attempts``; running out of attempts raises
    ``UpstreamTimeout``. ``asyncio.sleep`` keeps each wait cancellable.
    """

    def __init__(
        self,
        engine: TranscriptionEngine,
        memo: MemoCache[TranscriptionResult],
        *,
        poll_interval_s: float,
        max_attempts: int,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._engine = engine
        self._memo = memo
        self._poll_interval_s = poll_interval_s
        self._max_attempts = max_attempts
        self._sleep = sleep

    async def run(
        self,
        *,
        fingerprint: str,
        audio_ref: str,
        language: str,
        media_format: str,
        on_progress: ProgressCallback | None = None,
    ) -> TranscriptionResult:
        memo_key = content_hash(fingerprint, language)
        cached = await self._memo.get(memo_key)
        if cached is not None:
            logger.info("stage.transcription_memo_hit fingerprint=%s", safe_log_identifier(fingerprint, prefix="fp"))
            return cached

        remote_job_id = await self._engine.start(audio_ref=audio_ref, language=language, media_format=media_format)

        for attempt in range(1, self._max_attempts + 1):
            await self._sleep(self._poll_interval_s)
            observation = await self._engine.poll(remote_job_id)

            if observation.state is RemoteJobState.COMPLETED:
                text = (observation.text or "").strip()
                if not text:
                    raise ValidationError("No speech detected in audio", engine="transcription")
                result = TranscriptionResult(
                    text=text,
                    confidence=min(max(observation.confidence or 0.0, 0.0), 1.0),
                    language=observation.language or language,
                )
                await self._memo.put(memo_key, result)
                return result

            if observation.state is RemoteJobState.FAILED:
                raise UpstreamFailure(
                    f"Transcription failed: {observation.failure_reason or 'unknown reason'}",
                    engine="transcription",
                )

            fraction = observation.progress if observation.progress is not None else attempt / self._max_attempts
            remaining_ms = int((self._max_attempts - attempt) * self._poll_interval_s * 1000)
            await _report_progress(on_progress, fraction, remaining_ms, stage="transcription")

        raise UpstreamTimeout(
            f"Transcription did not complete within {self._max_attempts} polls",
            engine="transcription",
            details={"max_attempts": self._max_attempts, "poll_interval_s": self._poll_interval_s},
        )


def build_analysis_prompt(transcript: str, context: AnalyzedContext) -> str:
    return (
        "Analyze the mood of this voice note and write an image-generation prompt for it.\n\n"
        f"<transcript>{transcript}</transcript>\n\n"
        "Context:\n"
        f"- time: {context.time_of_day or 'unknown'} ({context.season or 'unknown season'})\n"
        f"- place: {context.location or 'unknown'}\n"
        f"- weather: {context.weather or 'unknown'}\n"
        f"- duration: {context.duration:g}s\n\n"
        "Reply with JSON only:\n"
        '{"sentiment": {"mood": one of ' + "/".join(MOODS) + ', "confidence": 0.0-1.0, '
        '"details": {"positive": 0.0-1.0, "negative": 0.0-1.0, "neutral": 0.0-1.0}, '
        '"keywords": ["..."]}, "image_prompt": "detailed image prompt"}'
    )


def neutral_analysis() -> AnalysisResult:
    return AnalysisResult(sentiment=Sentiment(), image_prompt=DEFAULT_IMAGE_PROMPT, degraded=True)


def parse_analysis_reply(reply: str) -> AnalysisResult:
    """Parse a model reply; anything malformed degrades to a neutral default."""
    match = _JSON_OBJECT_PATTERN.search(reply or "")
    if match is None:
        return neutral_analysis()
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError:
        return neutral_analysis()
    if not isinstance(payload, dict):
        return neutral_analysis()

    raw_sentiment = payload.get("sentiment")
    image_prompt = payload.get("image_prompt") or payload.get("imagePrompt")
    if not isinstance(raw_sentiment, dict) or not isinstance(image_prompt, str) or not image_prompt.strip():
        return neutral_analysis()

    mood = str(raw_sentiment.get("mood") or raw_sentiment.get("emotion") or "").strip().lower()
    degraded = mood not in MOODS
    if degraded:
        mood = "neutral"

    confidence = _unit_float(raw_sentiment.get("confidence", raw_sentiment.get("intensity")), default=0.5)
    keywords = [str(word) for word in raw_sentiment.get("keywords") or [] if isinstance(word, (str, int, float))]
    details = _parse_details(raw_sentiment.get("details"), mood=mood, confidence=confidence)

    return AnalysisResult(
        sentiment=Sentiment(mood=mood, confidence=confidence, details=details, keywords=keywords[:10]),
        image_prompt=image_prompt.strip(),
        degraded=degraded,
    )


def _unit_float(value: Any, *, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return min(max(float(value), 0.0), 1.0)


def _parse_details(raw: Any, *, mood: str, confidence: float) -> SentimentDetails:
    if isinstance(raw, dict) and any(key in raw for key in ("positive", "negative", "neutral")):
        return SentimentDetails(
            positive=_unit_float(raw.get("positive"), default=0.0),
            negative=_unit_float(raw.get("negative"), default=0.0),
            neutral=_unit_float(raw.get("neutral"), default=0.0),
        )
    if mood in _POSITIVE_MOODS:
        return SentimentDetails(positive=confidence, negative=0.0, neutral=round(1.0 - confidence, 4))
    if mood in _NEGATIVE_MOODS:
        return SentimentDetails(positive=0.0, negative=confidence, neutral=round(1.0 - confidence, 4))
    return SentimentDetails()


class AnalysisStage:
    """Sentiment classification and image prompt, memoized on transcript + context."""

    def __init__(self, analyzer: ContentAnalyzer, memo: MemoCache[AnalysisResult]) -> None:
        self._analyzer = analyzer
        self._memo = memo

    async def run(self, *, transcript: str, context: AnalyzedContext) -> AnalysisResult:
        memo_key = content_hash(transcript, context.canonical_json())
        cached = await self._memo.get(memo_key)
        if cached is not None:
            logger.info("stage.analysis_memo_hit key=%s", memo_key[:12])
            return cached

        reply = await self._analyzer.complete(build_analysis_prompt(transcript, context))
        result = parse_analysis_reply(reply)
        if result.degraded:
            logger.warning("stage.analysis_degraded reason=malformed_model_output")
        else:
            # Degraded defaults are not memoized so a resubmission can get a real answer.
            await self._memo.put(memo_key, result)
        return result


class ImageGenerationStage:
    """Concurrent image requests, one per style, with any-succeed semantics."""

    def __init__(
        self,
        engine: ImageSynthesisEngine,
        blob_store: BlobStore,
        memo: MemoCache[GeneratedImage],
        *,
        styles: Sequence[str],
        width: int,
        height: int,
    ) -> None:
        if not styles:
            raise ValueError("at least one image style is required")
        self._engine = engine
        self._blob_store = blob_store
        self._memo = memo
        self._styles = tuple(styles)
        self._width = width
        self._height = height

    async def run(
        self,
        *,
        job_id: str,
        prompt: str,
        on_progress: ProgressCallback | None = None,
    ) -> list[GeneratedImage]:
        """Return successful images in submission (style) order.

        Raises ``TotalGenerationFailure`` only when every request failed.
        """
        completed = 0
        total = len(self._styles)

        async def generate_tracked(style: str) -> GeneratedImage | Exception:
            nonlocal completed
            try:
                outcome: GeneratedImage | Exception = await self._generate_one(job_id=job_id, prompt=prompt, style=style)
            except Exception as exc:
                outcome = exc
            completed += 1
            await _report_progress(on_progress, completed / total, None, stage="image")
            return outcome

        outcomes = await asyncio.gather(
            *(generate_tracked(style) for style in self._styles),
            return_exceptions=True,
        )

        images: list[GeneratedImage] = []
        failures: list[BaseException] = []
        for style, outcome in zip(self._styles, outcomes):
            if isinstance(outcome, GeneratedImage):
                images.append(outcome)
            elif isinstance(outcome, Exception):
                failures.append(outcome)
                logger.warning(
                    "stage.image_failed job_id=%s style=%s reason=%s",
                    job_id,
                    style,
                    describe_exception(outcome),
                )
            else:
                raise outcome

        if not images:
            raise TotalGenerationFailure(f"All {total} image requests failed", failures=failures)
        if failures:
            partial = PartialGenerationFailure(
                f"{len(failures)} of {total} image requests failed",
                failures=failures,
            )
            logger.info("stage.image_partial job_id=%s code=%s detail=%s", job_id, partial.code, partial.message)
        return images

    async def _generate_one(self, *, job_id: str, prompt: str, style: str) -> GeneratedImage:
        memo_key = content_hash(prompt, style)
        cached = await self._memo.get(memo_key)
        if cached is not None:
            return cached

        seed = int(memo_key[:8], 16) % 1_000_000
        data = await self._engine.generate(
            prompt=prompt,
            style=style,
            seed=seed,
            width=self._width,
            height=self._height,
        )
        if not data:
            raise UpstreamFailure(f"Image engine returned no bytes for style {style}", engine="image")
        url = await self._blob_store.put(data, f"generated/{job_id}-{style}-{seed}.png", content_type="image/png")
        image = GeneratedImage(url=url, style=style, prompt=prompt, seed=seed)
        await self._memo.put(memo_key, image)
        return image


def select_canonical_image(images: Sequence[GeneratedImage]) -> GeneratedImage:
    """First successful image in submission order."""
    if not images:
        raise ValueError("no images to select from")
    return images[0]
