"""Status notification adapters."""

from .base import Notifier, SubscriberNotFound, build_update_message
from .mock_notify import RecordingNotifier
from .websocket import WebSocketNotifier

__all__ = [
    "Notifier",
    "RecordingNotifier",
    "SubscriberNotFound",
    "WebSocketNotifier",
    "build_update_message",
]
