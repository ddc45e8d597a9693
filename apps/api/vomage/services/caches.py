"""Content-addressed caches over the shared key/value store.

All cache access is best-effort: a store outage reads as a miss and a failed
write is logged, so the cache can only ever cost a recomputation.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Generic, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from vomage.core.logging_safety import safe_log_identifier
from vomage.repositories.base import KeyValueStore
from vomage.schemas.result import CachedResult

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_RESULT_KEY_PREFIX = "result:"


def content_hash(*parts: str) -> str:
    """Deterministic digest of concatenated parts, used for memoization keys."""
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
    return digest.hexdigest()


def fingerprint_audio(audio: bytes) -> str:
    """Content fingerprint for raw audio bytes."""
    return hashlib.sha256(audio).hexdigest()


class MemoCache(Generic[ModelT]):
    """Typed memo table for one pipeline stage (transcripts, analyses, images)."""

    def __init__(self, store: KeyValueStore, *, namespace: str, model: type[ModelT], ttl_s: int) -> None:
        self._store = store
        self._namespace = namespace
        self._model = model
        self._ttl_s = ttl_s

    def key_for(self, digest: str) -> str:
        return f"{self._namespace}:{digest}"

    async def get(self, digest: str) -> ModelT | None:
        try:
            raw = await self._store.get(self.key_for(digest))
        except Exception as exc:
            logger.warning("memo.read_failed namespace=%s reason=%s", self._namespace, type(exc).__name__)
            return None
        if raw is None:
            return None
        try:
            return self._model.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("memo.corrupt_entry namespace=%s key=%s", self._namespace, digest[:12])
            return None

    async def put(self, digest: str, value: ModelT) -> None:
        try:
            await self._store.set(self.key_for(digest), value.model_dump_json(), ttl_s=self._ttl_s)
        except Exception as exc:
            logger.warning("memo.write_failed namespace=%s reason=%s", self._namespace, type(exc).__name__)


class ResultCache:
    """Whole-job memoization: content fingerprint -> final ``CachedResult``."""

    def __init__(self, store: KeyValueStore, *, ttl_s: int) -> None:
        self._store = store
        self._ttl_s = ttl_s

    async def get(self, fingerprint: str) -> CachedResult | None:
        safe_fingerprint = safe_log_identifier(fingerprint, prefix="fp")
        try:
            raw = await self._store.get(_RESULT_KEY_PREFIX + fingerprint)
        except Exception as exc:
            logger.warning("result_cache.read_failed fingerprint=%s reason=%s", safe_fingerprint, type(exc).__name__)
            return None
        if raw is None:
            return None
        try:
            return CachedResult.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("result_cache.corrupt_entry fingerprint=%s", safe_fingerprint)
            return None

    async def put(self, fingerprint: str, result: CachedResult, ttl_s: int | None = None) -> bool:
        """Write once; a second writer for the same fingerprint is a no-op."""
        safe_fingerprint = safe_log_identifier(fingerprint, prefix="fp")
        try:
            written = await self._store.set(
                _RESULT_KEY_PREFIX + fingerprint,
                result.model_dump_json(),
                ttl_s=ttl_s or self._ttl_s,
                only_if_absent=True,
            )
        except Exception as exc:
            logger.warning("result_cache.write_failed fingerprint=%s reason=%s", safe_fingerprint, type(exc).__name__)
            return False
        if not written:
            logger.info("result_cache.put_skipped fingerprint=%s reason=already_present", safe_fingerprint)
        return written
