"""WebSocket notifier for clients connected to this API process."""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from fastapi import WebSocket

from vomage.adapters.notify.base import Notifier, SubscriberNotFound, log_safe_handle
from vomage.services.status_store import StatusStore

logger = logging.getLogger(__name__)


class WebSocketNotifier(Notifier):
    """Routes updates to live ``WebSocket`` connections keyed by an opaque handle."""

    def __init__(self, status_store: StatusStore) -> None:
        super().__init__(status_store)
        self._connections: dict[str, WebSocket] = {}

    def register(self, websocket: WebSocket) -> str:
        handle = f"ws-{uuid4()}"
        self._connections[handle] = websocket
        logger.info("notify.ws_registered subscriber=%s", log_safe_handle(handle))
        return handle

    def unregister(self, handle: str) -> None:
        if self._connections.pop(handle, None) is not None:
            logger.info("notify.ws_unregistered subscriber=%s", log_safe_handle(handle))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def _deliver(self, handle: str, message: dict[str, Any]) -> None:
        websocket = self._connections.get(handle)
        if websocket is None:
            raise SubscriberNotFound(handle)
        await websocket.send_json(message)


__all__ = ["WebSocketNotifier"]
