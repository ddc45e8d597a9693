"""Service health schema."""

from typing import Literal

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    store_backend: str
    store_reachable: bool
    in_flight: int
