"""Deterministic image engine for local development and tests."""

from __future__ import annotations

import hashlib

from vomage.adapters.imaging.base import ImageSynthesisEngine
from vomage.errors import PipelineError, UpstreamFailure

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class MockImageSynthesisEngine(ImageSynthesisEngine):
    """Returns a small fake PNG payload; styles in ``failing_styles`` fail."""

    def __init__(self, *, failing_styles: set[str] | None = None, error: PipelineError | None = None) -> None:
        self.failing_styles = failing_styles or set()
        self.error = error
        self.calls: list[dict[str, object]] = []

    async def generate(self, *, prompt: str, style: str, seed: int, width: int, height: int) -> bytes:
        self.calls.append({"prompt": prompt, "style": style, "seed": seed, "width": width, "height": height})
        if self.error is not None:
            raise self.error
        if style in self.failing_styles:
            raise UpstreamFailure(f"mock quota exceeded for style {style}", engine="image")
        digest = hashlib.sha256(f"{prompt}|{style}|{seed}".encode("utf-8")).digest()
        return _PNG_SIGNATURE + digest


__all__ = ["MockImageSynthesisEngine"]
