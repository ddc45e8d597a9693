"""Pipeline result schemas."""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Mood = Literal["happy", "sad", "angry", "excited", "calm", "anxious", "neutral"]

MOODS: tuple[str, ...] = ("happy", "sad", "angry", "excited", "calm", "anxious", "neutral")


class SentimentDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    positive: float = Field(default=0.0, ge=0.0, le=1.0)
    negative: float = Field(default=0.0, ge=0.0, le=1.0)
    neutral: float = Field(default=1.0, ge=0.0, le=1.0)


class Sentiment(BaseModel):
    model_config = ConfigDict(frozen=True)

    mood: Mood = "neutral"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    details: SentimentDetails = Field(default_factory=SentimentDetails)
    keywords: list[str] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Content analyzer output: a mood classification plus an image prompt."""

    model_config = ConfigDict(frozen=True)

    sentiment: Sentiment
    image_prompt: str
    degraded: bool = False


class TranscriptionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    language: str | None = None


class GeneratedImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    style: str
    prompt: str
    seed: int | None = None


class CachedResult(BaseModel):
    """Final, immutable pipeline output keyed by content fingerprint."""

    model_config = ConfigDict(frozen=True)

    transcript: str
    transcript_confidence: float = 0.0
    sentiment: Sentiment
    image_ref: GeneratedImage
    images: list[GeneratedImage] = Field(default_factory=list)
    image_prompt: str | None = None


class CompletionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str = "vomage.voice-processing"
    detail_type: str = "Processing Complete"
    job_id: str
    owner_id: str
    result: CachedResult
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
