"""Content analyzer adapters."""

from .base import ContentAnalyzer
from .http_analyzer import HttpContentAnalyzer
from .mock_analyzer import MockContentAnalyzer

__all__ = ["ContentAnalyzer", "HttpContentAnalyzer", "MockContentAnalyzer"]
