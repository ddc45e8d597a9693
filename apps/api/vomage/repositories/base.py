"""Key/value store interface shared by caches and the status store."""

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Atomic single-key string store with per-key TTL."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value or ``None`` when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, *, ttl_s: int | None = None, only_if_absent: bool = False) -> bool:
        """Store ``value``; return ``False`` when ``only_if_absent`` and the key already exists."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``; return whether it existed."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


__all__ = ["KeyValueStore"]
