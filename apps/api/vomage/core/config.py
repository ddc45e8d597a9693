"""Application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    engine_provider: Literal["mock", "http"] = "mock"
    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"

    transcription_base_url: str | None = None
    analyzer_base_url: str | None = None
    analyzer_model: str = "claude-3-haiku"
    image_base_url: str | None = None
    engine_api_key: str | None = None
    http_timeout_s: float = 30.0

    blob_root: str = "var/blobs"
    blob_public_base_url: str = "http://localhost:8000/blobs"

    default_language: str = "zh-CN"
    transcription_poll_interval_s: float = 5.0
    transcription_max_attempts: int = 60
    analysis_timeout_s: float = 60.0
    generation_timeout_s: float = 120.0

    image_styles: list[str] = ["photographic", "digital-art", "cinematic"]
    image_width: int = 1024
    image_height: int = 1024

    status_ttl_s: int = 3600
    result_ttl_s: int = 86400
    transcript_ttl_s: int = 86400
    analysis_ttl_s: int = 86400
    image_ttl_s: int = 604800

    completion_queue_size: int = 1000

    model_config = SettingsConfigDict(env_prefix="VOMAGE_", extra="ignore")

    @property
    def transcription_timeout_s(self) -> float:
        """Upper bound of the transcription poll loop plus one interval of slack."""
        return self.transcription_poll_interval_s * (self.transcription_max_attempts + 1)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
