"""Image synthesis adapters."""

from .base import ImageSynthesisEngine
from .http_canvas import HttpImageSynthesisEngine
from .mock_canvas import MockImageSynthesisEngine

__all__ = ["HttpImageSynthesisEngine", "ImageSynthesisEngine", "MockImageSynthesisEngine"]
