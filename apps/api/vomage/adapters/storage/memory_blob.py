"""In-memory blob store for local development and tests."""

from vomage.adapters.storage.base import BlobStore
from vomage.errors import UpstreamFailure


class InMemoryBlobStore(BlobStore):
    def __init__(self, *, public_base_url: str = "memory://blobs", fail_writes: bool = False) -> None:
        self._public_base_url = public_base_url.rstrip("/")
        self.fail_writes = fail_writes
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def put(self, data: bytes, key: str, *, content_type: str) -> str:
        if self.fail_writes:
            raise UpstreamFailure("Injected blob write failure", engine="blob")
        self.objects[key] = (data, content_type)
        return f"{self._public_base_url}/{key}"


__all__ = ["InMemoryBlobStore"]
