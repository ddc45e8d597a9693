"""Image synthesis engine interfaces."""

from abc import ABC, abstractmethod


class ImageSynthesisEngine(ABC):
    """Text-to-image provider returning encoded image bytes."""

    @abstractmethod
    async def generate(self, *, prompt: str, style: str, seed: int, width: int, height: int) -> bytes:
        """Render one image for ``prompt`` in ``style``."""

    async def aclose(self) -> None:
        return None


__all__ = ["ImageSynthesisEngine"]
