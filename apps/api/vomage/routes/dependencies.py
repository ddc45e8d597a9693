"""Dependency wiring for routes."""

from __future__ import annotations

from typing import Annotated
from uuid import uuid4

from fastapi import Depends, Request

from vomage.services.factory import PipelineComponents
from vomage.services.pipeline import PipelineOrchestrator


def _request_correlation_id(request: Request) -> str:
    existing = getattr(request.state, "correlation_id", None)
    if isinstance(existing, str) and existing:
        return existing

    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        request.state.correlation_id = correlation_id
        return correlation_id

    generated = f"req-{uuid4()}"
    request.state.correlation_id = generated
    return generated


def get_request_correlation_id(request: Request) -> str:
    return _request_correlation_id(request)


def get_components(request: Request) -> PipelineComponents:
    return request.app.state.pipeline


def get_orchestrator(components: Annotated[PipelineComponents, Depends(get_components)]) -> PipelineOrchestrator:
    return components.orchestrator
