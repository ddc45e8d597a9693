"""Voice-processing job and status schemas."""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from vomage.schemas.result import CachedResult


class ProcessingStage(str, Enum):
    UPLOADED = "UPLOADED"
    TRANSCRIBING = "TRANSCRIBING"
    ANALYZING = "ANALYZING"
    GENERATING = "GENERATING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class GeoLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    city: str | None = None
    country: str | None = None


class WeatherInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float | None = None
    condition: str | None = None
    humidity: float | None = None


class JobMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    duration: float = 0.0
    format: str = "mp3"
    size: int = 0
    location: GeoLocation | None = None
    weather: WeatherInfo | None = None
    timestamp: datetime | None = None
    language: str | None = None


class VoiceProcessingJob(BaseModel):
    """Immutable pipeline input. The orchestrator references it, never mutates it."""

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str
    audio_ref: str
    content_fingerprint: str
    metadata: JobMetadata = Field(default_factory=JobMetadata)
    subscriber_handle: str | None = None


class StatusError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    retryable: bool
    failed_stage: ProcessingStage | None = None


class ProcessingStatus(BaseModel):
    """Public, evolving state of one job."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    stage: ProcessingStage
    progress: int = Field(ge=0, le=100)
    message: str
    estimated_remaining_ms: int | None = None
    result: CachedResult | None = None
    error: StatusError | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _check_terminal_payload(self) -> "ProcessingStatus":
        if self.stage is ProcessingStage.COMPLETE:
            if self.result is None or self.error is not None:
                raise ValueError("COMPLETE status requires result and forbids error")
        elif self.stage is ProcessingStage.ERROR:
            if self.error is None or self.result is not None:
                raise ValueError("ERROR status requires error and forbids result")
        elif self.result is not None or self.error is not None:
            raise ValueError("Non-terminal status cannot carry result or error")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.stage in (ProcessingStage.COMPLETE, ProcessingStage.ERROR)


class SubmitJobRequest(BaseModel):
    job_id: str | None = None
    owner_id: str = Field(min_length=1)
    audio_ref: str
    content_fingerprint: str
    metadata: JobMetadata = Field(default_factory=JobMetadata)
    subscriber_handle: str | None = None

    def to_job(self) -> VoiceProcessingJob:
        payload = self.model_dump(exclude_none=True)
        return VoiceProcessingJob(**payload)


class SubmitJobResponse(BaseModel):
    job_id: str
    status: ProcessingStatus | None = None
