"""Filesystem blob store served from a static URL prefix."""

from __future__ import annotations

import asyncio
from pathlib import Path, PurePosixPath

from vomage.adapters.storage.base import BlobStore
from vomage.errors import UpstreamFailure, ValidationError


class FileBlobStore(BlobStore):
    def __init__(self, *, root: str | Path, public_base_url: str) -> None:
        self._root = Path(root)
        self._public_base_url = public_base_url.rstrip("/")

    async def put(self, data: bytes, key: str, *, content_type: str) -> str:
        relative = PurePosixPath(key)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValidationError(f"Blob key escapes the store root: {key}", engine="blob")

        target = self._root.joinpath(*relative.parts)
        try:
            await asyncio.to_thread(_write_bytes, target, data)
        except OSError as exc:
            raise UpstreamFailure(f"Blob write failed: {type(exc).__name__}", engine="blob") from exc
        return f"{self._public_base_url}/{relative.as_posix()}"


def _write_bytes(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    partial = target.with_name(target.name + ".partial")
    partial.write_bytes(data)
    partial.replace(target)


__all__ = ["FileBlobStore"]
