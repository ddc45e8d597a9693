"""In-memory key/value store used for local development and tests."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import time

from vomage.repositories.base import KeyValueStore


@dataclass(slots=True)
class _Entry:
    value: str
    expires_at: float | None


@dataclass(slots=True)
class InMemoryKeyValueStore(KeyValueStore):
    """Simple, deterministic store with TTL semantics matching the Redis backend.

    Operations never await, so each one is atomic with respect to other tasks on
    the same event loop.
    """

    clock: Callable[[], float] = time.monotonic
    entries: dict[str, _Entry] = field(default_factory=dict)

    async def get(self, key: str) -> str | None:
        entry = self._live_entry(key)
        return entry.value if entry is not None else None

    async def set(self, key: str, value: str, *, ttl_s: int | None = None, only_if_absent: bool = False) -> bool:
        if only_if_absent and self._live_entry(key) is not None:
            return False

        expires_at = self.clock() + ttl_s if ttl_s else None
        self.entries[key] = _Entry(value=value, expires_at=expires_at)
        return True

    async def delete(self, key: str) -> bool:
        return self.entries.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self.entries if key.startswith(prefix) and self._live_entry(key) is not None)

    def _live_entry(self, key: str) -> _Entry | None:
        entry = self.entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self.clock():
            # Expired keys are reclaimed lazily on access.
            del self.entries[key]
            return None
        return entry
