"""HTTP transcription engine adapter."""

from __future__ import annotations

import httpx

from vomage.adapters.http_support import build_client, call_engine, json_body
from vomage.adapters.transcription.base import RemoteJobState, RemoteTranscription, TranscriptionEngine
from vomage.errors import UpstreamFailure

_ENGINE = "transcription"


class HttpTranscriptionEngine(TranscriptionEngine):
    """Talks to a start/poll style transcription service.

    ``POST /transcriptions`` returns ``{"id": ...}``; ``GET /transcriptions/{id}``
    returns ``status``, optional ``progress`` (0..1), and on completion
    ``transcript`` and ``confidence``.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = build_client(base_url=base_url, api_key=api_key, timeout_s=timeout_s, transport=transport)

    async def start(self, *, audio_ref: str, language: str, media_format: str) -> str:
        response = await call_engine(
            _ENGINE,
            lambda: self._client.post(
                "/transcriptions",
                json={"audio_ref": audio_ref, "language": language, "media_format": media_format},
            ),
        )
        body = json_body(response, engine=_ENGINE)
        remote_job_id = str(body.get("id") or "").strip()
        if not remote_job_id:
            raise UpstreamFailure("transcription start returned no job id", engine=_ENGINE)
        return remote_job_id

    async def poll(self, remote_job_id: str) -> RemoteTranscription:
        response = await call_engine(_ENGINE, lambda: self._client.get(f"/transcriptions/{remote_job_id}"))
        body = json_body(response, engine=_ENGINE)
        try:
            state = RemoteJobState(str(body.get("status", "")).upper())
        except ValueError as exc:
            raise UpstreamFailure(f"unknown transcription status {body.get('status')!r}", engine=_ENGINE) from exc

        progress = body.get("progress")
        confidence = body.get("confidence")
        return RemoteTranscription(
            state=state,
            progress=float(progress) if isinstance(progress, (int, float)) else None,
            text=body.get("transcript"),
            confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
            language=body.get("language"),
            failure_reason=body.get("failure_reason"),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["HttpTranscriptionEngine"]
