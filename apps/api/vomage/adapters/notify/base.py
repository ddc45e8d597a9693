"""Subscriber notification interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import Any

from vomage.core.logging_safety import safe_log_identifier
from vomage.schemas.job import ProcessingStatus
from vomage.services.status_store import StatusStore

logger = logging.getLogger(__name__)


class SubscriberNotFound(Exception):
    """Raised by transports when a handle no longer maps to a live client."""


class Notifier(ABC):
    """Best-effort push of status updates to the subscriber registered for a job.

    ``push`` never raises; StatusStore stays the source of truth.
    """

    def __init__(self, status_store: StatusStore) -> None:
        self._status_store = status_store

    async def push(self, job_id: str, status: ProcessingStatus) -> None:
        try:
            handle = await self._status_store.load_subscriber(job_id)
            if handle is None:
                return
            await self._deliver(handle, build_update_message(status))
        except SubscriberNotFound:
            logger.info("notify.subscriber_missing job_id=%s stage=%s", job_id, status.stage.value)
        except Exception as exc:
            logger.warning(
                "notify.failed job_id=%s stage=%s reason=%s",
                job_id,
                status.stage.value,
                type(exc).__name__,
            )

    @abstractmethod
    async def _deliver(self, handle: str, message: dict[str, Any]) -> None:
        """Send one message to the transport addressed by ``handle``."""


def build_update_message(status: ProcessingStatus) -> dict[str, Any]:
    return {"type": "processing_update", "data": status.model_dump(mode="json")}


def log_safe_handle(handle: str) -> str:
    return safe_log_identifier(handle, prefix="sub")


__all__ = ["Notifier", "SubscriberNotFound", "build_update_message", "log_safe_handle"]
