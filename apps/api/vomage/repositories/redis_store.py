"""Redis-backed key/value store."""

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from vomage.repositories.base import KeyValueStore

logger = logging.getLogger(__name__)


class RedisKeyValueStore(KeyValueStore):
    """Thin adapter over ``redis.asyncio`` using SET with EX/NX for atomic single-key writes."""

    def __init__(self, redis_url: str | None = None, *, client: Any | None = None, key_prefix: str = "vomage:") -> None:
        if client is None and redis_url is None:
            raise ValueError("redis_url or client is required")
        self._redis_url = redis_url
        self._client = client
        self._key_prefix = key_prefix

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
            )
            logger.info("store.redis_connected backend=redis")
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def get(self, key: str) -> str | None:
        value = await self._get_client().get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, *, ttl_s: int | None = None, only_if_absent: bool = False) -> bool:
        result = await self._get_client().set(
            self._key(key),
            value,
            ex=ttl_s or None,
            nx=only_if_absent,
        )
        return bool(result)

    async def delete(self, key: str) -> bool:
        removed = await self._get_client().delete(self._key(key))
        return bool(removed)

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except RedisError as exc:
            logger.warning("store.ping_failed backend=redis reason=%s", type(exc).__name__)
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
