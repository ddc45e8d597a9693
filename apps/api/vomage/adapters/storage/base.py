"""Blob store interfaces."""

from abc import ABC, abstractmethod


class BlobStore(ABC):
    """Durable bytes -> retrievable URL."""

    @abstractmethod
    async def put(self, data: bytes, key: str, *, content_type: str) -> str:
        """Persist ``data`` under ``key`` and return its public URL."""


__all__ = ["BlobStore"]
