"""Short-TTL job status and subscriber registry."""

from __future__ import annotations

import logging

from pydantic import ValidationError as PydanticValidationError

from vomage.core.logging_safety import describe_exception, safe_log_identifier
from vomage.repositories.base import KeyValueStore
from vomage.schemas.job import ProcessingStatus

logger = logging.getLogger(__name__)

_STATUS_KEY_PREFIX = "status:"
_SUBSCRIBER_KEY_PREFIX = "connection:"


class StatusStore:
    """Source of truth for a job's public state.

    Callers must not assume indefinite retention: a final status is reclaimed
    once its TTL lapses. Backend failures are logged; reads then return
    ``None`` and writes return ``False``.
    """

    def __init__(self, store: KeyValueStore, *, ttl_s: int) -> None:
        self._store = store
        self._ttl_s = ttl_s

    async def save(self, job_id: str, status: ProcessingStatus, ttl_s: int | None = None) -> bool:
        try:
            await self._store.set(_STATUS_KEY_PREFIX + job_id, status.model_dump_json(), ttl_s=ttl_s or self._ttl_s)
        except Exception as exc:
            logger.warning(
                "status_store.write_failed job_id=%s stage=%s reason=%s",
                safe_log_identifier(job_id, prefix="jid"),
                status.stage.value,
                describe_exception(exc),
            )
            return False
        return True

    async def load(self, job_id: str) -> ProcessingStatus | None:
        try:
            raw = await self._store.get(_STATUS_KEY_PREFIX + job_id)
        except Exception as exc:
            logger.warning(
                "status_store.read_failed job_id=%s reason=%s",
                safe_log_identifier(job_id, prefix="jid"),
                describe_exception(exc),
            )
            return None
        if raw is None:
            return None
        try:
            return ProcessingStatus.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("status_store.corrupt_entry job_id=%s", safe_log_identifier(job_id, prefix="jid"))
            return None

    async def save_subscriber(self, job_id: str, handle: str, ttl_s: int | None = None) -> bool:
        safe_job_id = safe_log_identifier(job_id, prefix="jid")
        try:
            await self._store.set(_SUBSCRIBER_KEY_PREFIX + job_id, handle, ttl_s=ttl_s or self._ttl_s)
        except Exception as exc:
            logger.warning("status_store.subscriber_write_failed job_id=%s reason=%s", safe_job_id, describe_exception(exc))
            return False
        logger.info(
            "status_store.subscriber_registered job_id=%s subscriber=%s",
            safe_job_id,
            safe_log_identifier(handle, prefix="sub"),
        )
        return True

    async def load_subscriber(self, job_id: str) -> str | None:
        try:
            return await self._store.get(_SUBSCRIBER_KEY_PREFIX + job_id)
        except Exception as exc:
            logger.warning(
                "status_store.subscriber_read_failed job_id=%s reason=%s",
                safe_log_identifier(job_id, prefix="jid"),
                describe_exception(exc),
            )
            return None
