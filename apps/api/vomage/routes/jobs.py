"""Voice-processing job routes."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path, WebSocket, WebSocketDisconnect, status

from vomage.adapters.notify import WebSocketNotifier, build_update_message
from vomage.core.logging_safety import safe_log_identifier
from vomage.errors import ApiError
from vomage.routes.dependencies import get_orchestrator, get_request_correlation_id
from vomage.schemas.error import NoLeakNotFoundError, SubmissionValidationError
from vomage.schemas.job import ProcessingStatus, SubmitJobRequest, SubmitJobResponse
from vomage.services.factory import PipelineComponents
from vomage.services.pipeline import PipelineOrchestrator

router = APIRouter(tags=["Voice Jobs"])
logger = logging.getLogger(__name__)


@router.post(
    "/voice/jobs",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={422: {"model": SubmissionValidationError}},
)
async def submit_job(
    payload: SubmitJobRequest,
    orchestrator: Annotated[PipelineOrchestrator, Depends(get_orchestrator)],
    correlation_id: Annotated[str, Depends(get_request_correlation_id)],
) -> SubmitJobResponse:
    job = payload.to_job()
    logger.info(
        "api.submit correlation_id=%s job_id=%s",
        safe_log_identifier(correlation_id, prefix="cid"),
        safe_log_identifier(job.job_id, prefix="jid"),
    )
    job_id = await orchestrator.submit(job)
    return SubmitJobResponse(job_id=job_id, status=await orchestrator.get_status(job_id))


@router.get(
    "/voice/jobs/{jobId}/status",
    response_model=ProcessingStatus,
    responses={404: {"model": NoLeakNotFoundError}},
)
async def get_job_status(
    job_id: Annotated[str, Path(alias="jobId")],
    orchestrator: Annotated[PipelineOrchestrator, Depends(get_orchestrator)],
) -> ProcessingStatus:
    current = await orchestrator.get_status(job_id)
    if current is None:
        raise ApiError(status_code=404, code="RESOURCE_NOT_FOUND", message="Resource not found")
    return current


@router.websocket("/voice/jobs/{jobId}/events")
async def job_events(websocket: WebSocket, job_id: Annotated[str, Path(alias="jobId")]) -> None:
    components: PipelineComponents = websocket.app.state.pipeline
    notifier = components.notifier
    if not isinstance(notifier, WebSocketNotifier):
        await websocket.close(code=1011, reason="Live updates are not available")
        return

    await websocket.accept()
    handle = notifier.register(websocket)
    try:
        await components.status_store.save_subscriber(job_id, handle)
        # A client that subscribes late still starts from the stored state.
        current = await components.orchestrator.get_status(job_id)
        if current is not None:
            await websocket.send_json(build_update_message(current))
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("api.events_disconnected job_id=%s", safe_log_identifier(job_id, prefix="jid"))
    finally:
        notifier.unregister(handle)
