"""Shared httpx plumbing for external engine adapters."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import logging
from typing import Any

import httpx

from vomage.errors import UpstreamFailure, UpstreamTimeout, ValidationError

logger = logging.getLogger(__name__)

_INPUT_REJECTED_CODES = frozenset({400, 413, 415, 422})
_TIMEOUT_CODES = frozenset({408, 504})


def build_client(
    *,
    base_url: str,
    api_key: str | None,
    timeout_s: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    headers = {"Accept": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=httpx.Timeout(timeout_s),
        transport=transport,
    )


def raise_for_engine_status(response: httpx.Response, *, engine: str) -> None:
    """Translate an engine HTTP status into the pipeline error taxonomy."""
    if response.is_success:
        return
    details = {"status_code": response.status_code}
    if response.status_code in _INPUT_REJECTED_CODES:
        raise ValidationError(f"{engine} rejected the input", engine=engine, details=details)
    if response.status_code in _TIMEOUT_CODES:
        raise UpstreamTimeout(f"{engine} timed out", engine=engine, details=details)
    if response.status_code == 429:
        details["retry_after"] = response.headers.get("Retry-After")
        raise UpstreamFailure(f"{engine} quota exceeded", engine=engine, details=details)
    raise UpstreamFailure(f"{engine} returned HTTP {response.status_code}", engine=engine, details=details)


async def call_engine(
    engine: str,
    send: Callable[[], Awaitable[httpx.Response]],
) -> httpx.Response:
    """Run one HTTP exchange, mapping transport errors and non-2xx statuses."""
    try:
        response = await send()
    except httpx.TimeoutException as exc:
        raise UpstreamTimeout(f"{engine} request timed out", engine=engine) from exc
    except httpx.HTTPError as exc:
        raise UpstreamFailure(f"{engine} transport error: {type(exc).__name__}", engine=engine) from exc
    raise_for_engine_status(response, engine=engine)
    return response


def json_body(response: httpx.Response, *, engine: str) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        raise UpstreamFailure(f"{engine} returned a non-JSON body", engine=engine) from exc
    if not isinstance(body, dict):
        raise UpstreamFailure(f"{engine} returned an unexpected body shape", engine=engine)
    return body


__all__ = ["build_client", "call_engine", "json_body", "raise_for_engine_status"]
