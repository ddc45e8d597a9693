"""Fire-and-forget hand-off of "processing complete" events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import contextlib
import logging

from vomage.core.logging_safety import safe_log_identifier
from vomage.schemas.result import CompletionEvent

logger = logging.getLogger(__name__)

CompletionSink = Callable[[CompletionEvent], Awaitable[None]]


class CompletionPublisher:
    """Bounded in-process channel between the orchestrator and downstream consumers.

    ``publish`` is a non-blocking send: when the channel is full or closed the
    event is dropped and logged, never raised to the job.
    """

    def __init__(self, *, max_pending: int = 1000) -> None:
        self._queue: asyncio.Queue[CompletionEvent] = asyncio.Queue(maxsize=max_pending)
        self._sinks: list[CompletionSink] = []
        self._consumer: asyncio.Task[None] | None = None
        self._closed = False
        self.dropped_count = 0
        self.delivered_count = 0

    def subscribe(self, sink: CompletionSink) -> None:
        self._sinks.append(sink)

    def publish(self, event: CompletionEvent) -> bool:
        safe_job_id = safe_log_identifier(event.job_id, prefix="jid")
        if self._closed:
            self.dropped_count += 1
            logger.warning("completion.dropped job_id=%s reason=publisher_closed", safe_job_id)
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped_count += 1
            logger.warning("completion.dropped job_id=%s reason=queue_full", safe_job_id)
            return False
        return True

    def start(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume(), name="completion-publisher")

    async def drain(self) -> None:
        """Wait until every queued event has been offered to all sinks."""
        await self._queue.join()

    async def stop(self) -> None:
        self._closed = True
        if self._consumer is None:
            return
        await self.drain()
        self._consumer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._consumer
        self._consumer = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: CompletionEvent) -> None:
        safe_job_id = safe_log_identifier(event.job_id, prefix="jid")
        for sink in self._sinks:
            try:
                await sink(event)
            except Exception as exc:
                logger.warning(
                    "completion.sink_failed job_id=%s sink=%s reason=%s",
                    safe_job_id,
                    getattr(sink, "__name__", type(sink).__name__),
                    type(exc).__name__,
                )
        self.delivered_count += 1
        logger.info(
            "completion.delivered job_id=%s owner_id=%s sinks=%s",
            safe_job_id,
            safe_log_identifier(event.owner_id, prefix="pid"),
            len(self._sinks),
        )
