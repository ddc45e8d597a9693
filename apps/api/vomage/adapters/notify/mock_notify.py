"""Recording notifier for local development and tests."""

from typing import Any

from vomage.adapters.notify.base import Notifier, SubscriberNotFound
from vomage.services.status_store import StatusStore


class RecordingNotifier(Notifier):
    """Keeps every delivered message in memory, grouped by subscriber handle.

    Handles listed in ``failing_handles`` raise a transport error on delivery;
    handles in ``known_handles`` (when set) are the only reachable subscribers.
    """

    def __init__(
        self,
        status_store: StatusStore,
        *,
        known_handles: set[str] | None = None,
        failing_handles: set[str] | None = None,
    ) -> None:
        super().__init__(status_store)
        self.known_handles = known_handles
        self.failing_handles = failing_handles or set()
        self.delivered: dict[str, list[dict[str, Any]]] = {}

    async def _deliver(self, handle: str, message: dict[str, Any]) -> None:
        if self.known_handles is not None and handle not in self.known_handles:
            raise SubscriberNotFound(handle)
        if handle in self.failing_handles:
            raise ConnectionError("Injected notifier transport failure")
        self.delivered.setdefault(handle, []).append(message)


__all__ = ["RecordingNotifier"]
