"""HTTP content analyzer adapter (messages-style LLM endpoint)."""

from __future__ import annotations

import httpx

from vomage.adapters.analysis.base import ContentAnalyzer
from vomage.adapters.http_support import build_client, call_engine, json_body
from vomage.errors import UpstreamFailure

_ENGINE = "analyzer"


class HttpContentAnalyzer(ContentAnalyzer):
    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str | None = None,
        timeout_s: float = 30.0,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = build_client(base_url=base_url, api_key=api_key, timeout_s=timeout_s, transport=transport)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def complete(self, prompt: str) -> str:
        response = await call_engine(
            _ENGINE,
            lambda: self._client.post(
                "/messages",
                json={
                    "model": self._model,
                    "max_tokens": self._max_tokens,
                    "temperature": self._temperature,
                    "messages": [{"role": "user", "content": prompt}],
                },
            ),
        )
        body = json_body(response, engine=_ENGINE)
        content = body.get("content")
        if isinstance(content, list):
            texts = [block.get("text", "") for block in content if isinstance(block, dict)]
            text = "".join(texts)
            if text:
                return text
        raise UpstreamFailure("analyzer reply carried no text content", engine=_ENGINE)

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["HttpContentAnalyzer"]
