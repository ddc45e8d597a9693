"""HTTP image synthesis adapter."""

from __future__ import annotations

import base64
import binascii

import httpx

from vomage.adapters.http_support import build_client, call_engine, json_body
from vomage.adapters.imaging.base import ImageSynthesisEngine
from vomage.errors import UpstreamFailure

_ENGINE = "image"


class HttpImageSynthesisEngine(ImageSynthesisEngine):
    """Calls a text-to-image endpoint that replies with base64 encoded images."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_s: float = 60.0,
        quality: str = "premium",
        cfg_scale: float = 7.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = build_client(base_url=base_url, api_key=api_key, timeout_s=timeout_s, transport=transport)
        self._quality = quality
        self._cfg_scale = cfg_scale

    async def generate(self, *, prompt: str, style: str, seed: int, width: int, height: int) -> bytes:
        response = await call_engine(
            _ENGINE,
            lambda: self._client.post(
                "/images/generations",
                json={
                    "task_type": "TEXT_IMAGE",
                    "text": prompt,
                    "style": style,
                    "number_of_images": 1,
                    "quality": self._quality,
                    "width": width,
                    "height": height,
                    "cfg_scale": self._cfg_scale,
                    "seed": seed,
                },
            ),
        )
        body = json_body(response, engine=_ENGINE)
        images = body.get("images")
        if not isinstance(images, list) or not images or not isinstance(images[0], str):
            raise UpstreamFailure("image engine returned no images", engine=_ENGINE)
        try:
            return base64.b64decode(images[0], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise UpstreamFailure("image engine returned invalid base64", engine=_ENGINE) from exc

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["HttpImageSynthesisEngine"]
