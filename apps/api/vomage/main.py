"""FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from vomage.core.config import get_settings
from vomage.errors import ApiError
from vomage.routes import health_router, jobs_router
from vomage.schemas.error import SubmissionValidationError
from vomage.services.factory import PipelineComponents, build_pipeline

logger = logging.getLogger(__name__)

_SUBMISSION_VALIDATION_PATHS: set[tuple[str, str]] = {
    ("POST", "/api/v1/voice/jobs"),
}


def create_app(components: PipelineComponents | None = None) -> FastAPI:
    settings = get_settings()
    pipeline = components or build_pipeline(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        pipeline.publisher.start()
        logger.info("app.started engine_provider=%s store_backend=%s", settings.engine_provider, settings.store_backend)
        try:
            yield
        finally:
            await pipeline.aclose()
            logger.info("app.stopped")

    app = FastAPI(title="Vomage Voice Pipeline API", version="1.0.0", lifespan=lifespan)
    app.state.pipeline = pipeline

    @app.exception_handler(ApiError)
    async def handle_api_error(_, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.payload.model_dump(mode="json", exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        route = request.scope.get("route")
        route_path = getattr(route, "path", request.url.path)
        route_key = (request.method.upper(), route_path)
        if route_key in _SUBMISSION_VALIDATION_PATHS:
            fields = sorted({".".join(str(part) for part in error["loc"][1:]) for error in exc.errors()})
            payload = SubmissionValidationError(
                code="VALIDATION_ERROR",
                message="Invalid job submission payload",
                details={"fields": fields},
            )
            return JSONResponse(status_code=422, content=payload.model_dump())

        return await request_validation_exception_handler(request, exc)

    api_prefix = "/api/v1"
    app.include_router(jobs_router, prefix=api_prefix)
    app.include_router(health_router, prefix=api_prefix)

    return app


app = create_app()
