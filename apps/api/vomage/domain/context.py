"""Normalization of recording context (place, weather, time) for content analysis."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

from vomage.schemas.job import GeoLocation, JobMetadata, WeatherInfo

TimeOfDay = Literal["morning", "afternoon", "evening", "night"]

_DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class AnalyzedContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    location: str | None = None
    weather: str | None = None
    time_of_day: TimeOfDay | None = None
    hour: int | None = None
    day_of_week: str | None = None
    season: str | None = None
    duration: float = 0.0
    timestamp: str | None = None

    def canonical_json(self) -> str:
        """Stable serialization used as part of memoization keys."""
        return self.model_dump_json(exclude_none=True)


def time_of_day(hour: int) -> TimeOfDay:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def season(month: int) -> str:
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "autumn"
    return "winter"


def describe_location(location: GeoLocation | None) -> str | None:
    if location is None:
        return None
    named = [part for part in (location.city, location.country) if part]
    if named:
        return ", ".join(named)
    return f"{location.latitude:.2f}, {location.longitude:.2f}"


def describe_weather(weather: WeatherInfo | None) -> str | None:
    if weather is None:
        return None
    parts: list[str] = []
    if weather.condition:
        parts.append(weather.condition.strip().lower())
    if weather.temperature is not None:
        parts.append(f"{weather.temperature:.0f}°C")
    if weather.humidity is not None:
        parts.append(f"{weather.humidity:.0f}% humidity")
    return ", ".join(parts) or None


def analyze_context(metadata: JobMetadata, *, now: datetime | None = None) -> AnalyzedContext:
    """Derive a normalized description of where and when the clip was recorded.

    Independent of the transcript, so it runs alongside transcription.
    """
    moment: datetime | None = metadata.timestamp or now
    if moment is None:
        return AnalyzedContext(
            location=describe_location(metadata.location),
            weather=describe_weather(metadata.weather),
            duration=metadata.duration,
        )

    return AnalyzedContext(
        location=describe_location(metadata.location),
        weather=describe_weather(metadata.weather),
        time_of_day=time_of_day(moment.hour),
        hour=moment.hour,
        day_of_week=_DAY_NAMES[moment.weekday()],
        season=season(moment.month),
        duration=metadata.duration,
        timestamp=moment.isoformat(),
    )
