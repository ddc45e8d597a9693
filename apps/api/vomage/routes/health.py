"""Health route."""

from typing import Annotated

from fastapi import APIRouter, Depends

from vomage.core.config import Settings, get_settings
from vomage.routes.dependencies import get_components
from vomage.schemas.health import HealthResponse
from vomage.services.factory import PipelineComponents

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health(
    components: Annotated[PipelineComponents, Depends(get_components)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> HealthResponse:
    reachable = await components.store.ping()
    return HealthResponse(
        status="ok" if reachable else "degraded",
        store_backend=settings.store_backend,
        store_reachable=reachable,
        in_flight=components.orchestrator.in_flight,
    )
