"""
Content request endpoints used by the dashboard.

POST /api/v1/content                            — create a request, run the pipeline in background
GET  /api/v1/content/{request_id}               — full record
GET  /api/v1/content/{request_id}/status        — latest live status event
POST /api/v1/content/{request_id}/approval-email — generated → pending_approval + email
POST /api/v1/content/{request_id}/publish       — approved → publishing, publish in background
"""

# No "from __future__ import annotations" here: FastAPI must resolve the
# limiter-wrapped endpoint's annotations at runtime.
from fastapi import APIRouter, BackgroundTasks, Request, status

from contentforge.api.v1.deps import AppServices, AuthenticatedUser
from contentforge.core.config import get_settings
from contentforge.core.errors import ContentForgeError
from contentforge.core.logging import get_logger
from contentforge.core.security import limiter
from contentforge.models.models import RequestStatus
from contentforge.schemas.schemas import (
    AcceptedResponse,
    ContentEnvelope,
    CreateContentRequest,
    CreateContentResponse,
    PublishRequest,
    StatusEnvelope,
)
from contentforge.services.container import Services

router = APIRouter(prefix="/content", tags=["content"])
logger = get_logger(__name__)


async def execute_pipeline(services: Services, request_id: str) -> None:
    """Background task: run generation, record a final failure, then ask for approval."""
    try:
        record = await services.pipeline.run(request_id)
    except Exception as e:
        logger.error("pipeline_failed", request_id=request_id, error=str(e))
        await services.engine.fail(request_id, str(e))
        return

    if record.status is RequestStatus.GENERATED and services.settings.auto_request_approval:
        try:
            await services.approvals.request_notification(request_id)
        except ContentForgeError as e:
            logger.warning("auto_approval_request_skipped", request_id=request_id, reason=e.message)


async def execute_publish(services: Services, request_id: str) -> None:
    """Background task: publish; on failure the record stays in publishing."""
    try:
        await services.publisher.execute_publish(request_id)
    except Exception as e:
        logger.error("publish_failed", request_id=request_id, error=str(e))


@router.post("", response_model=CreateContentResponse, status_code=status.HTTP_202_ACCEPTED)
@limiter.limit(get_settings().create_rate_limit)
async def create_content(
    request: Request,
    body: CreateContentRequest,
    background_tasks: BackgroundTasks,
    services: AppServices,
    _api_key: AuthenticatedUser,
) -> CreateContentResponse:
    """Create a request and start the pipeline. Returns immediately with a request_id."""
    record = await services.engine.create(body.source_url, body.user_email)
    background_tasks.add_task(execute_pipeline, services, record.request_id)
    logger.info("content_requested", request_id=record.request_id, source_url=body.source_url)
    return CreateContentResponse(request_id=record.request_id)


@router.get("/{request_id}", response_model=ContentEnvelope)
async def get_content(
    request_id: str, services: AppServices, _api_key: AuthenticatedUser
) -> ContentEnvelope:
    return ContentEnvelope(data=await services.engine.get(request_id))


@router.get("/{request_id}/status", response_model=StatusEnvelope)
async def get_content_status(
    request_id: str, services: AppServices, _api_key: AuthenticatedUser
) -> StatusEnvelope:
    """Latest live progress event; advisory, may lag the record."""
    return StatusEnvelope(data=await services.notifier.latest(request_id))


@router.post(
    "/{request_id}/approval-email",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_approval_email(
    request_id: str, services: AppServices, _api_key: AuthenticatedUser
) -> AcceptedResponse:
    record = await services.approvals.request_notification(request_id)
    return AcceptedResponse(request_id=request_id, status=record.status)


@router.post(
    "/{request_id}/publish",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def publish_content(
    request_id: str,
    background_tasks: BackgroundTasks,
    services: AppServices,
    _api_key: AuthenticatedUser,
    body: PublishRequest | None = None,
) -> AcceptedResponse:
    handles = body.handles if body else None
    record = await services.publisher.trigger_publish(request_id, handles)
    background_tasks.add_task(execute_publish, services, request_id)
    logger.info("publish_triggered", request_id=request_id)
    return AcceptedResponse(request_id=request_id, status=record.status)
