"""Content analyzer interfaces."""

from abc import ABC, abstractmethod


class ContentAnalyzer(ABC):
    """Language model that answers an analysis prompt with free-form text.

    Parsing the text into a mood and image prompt is the stage runner's job, so
    malformed model output can degrade to a neutral default in one place.
    """

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Return the raw model reply for ``prompt``."""

    async def aclose(self) -> None:
        return None


__all__ = ["ContentAnalyzer"]
