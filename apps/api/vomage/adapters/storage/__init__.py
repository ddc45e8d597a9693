"""Blob store adapters."""

from .base import BlobStore
from .filesystem import FileBlobStore
from .memory_blob import InMemoryBlobStore

__all__ = ["BlobStore", "FileBlobStore", "InMemoryBlobStore"]
