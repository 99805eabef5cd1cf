"""
Webhook relay endpoint.

Main endpoint: POST /webhook/{secret_id}
"""

import uuid

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from ..core.classifier import GroupFilter
from ..core.exceptions import ClientError
from ..core.extractor import PayloadExtractor
from ..core.pipeline import WebhookPipeline
from ..models.webhook import IGNORED_GROUP_STATUS, ErrorResponse, IgnoredResponse

logger = structlog.get_logger(__name__)

router = APIRouter()


async def get_webhook_pipeline(request: Request) -> WebhookPipeline:
    """Dependency assembling the pipeline from components in app state."""
    state = request.app.state
    settings = state.settings

    converter = None
    if settings.conversion.enabled and settings.conversion.base_url:
        converter = getattr(state, "converter", None)

    return WebhookPipeline(
        resolver=state.resolver,
        extractor=PayloadExtractor(settings.extraction.max_multipart_bytes),
        group_filter=GroupFilter(),
        forwarder=state.forwarder,
        alerter=getattr(state, "alerter", None),
        converter=converter,
        rate_limiter=getattr(state, "rate_limiter", None),
        metrics=getattr(state, "metrics", None),
    )


@router.post(
    "/webhook/{secret_id}",
    responses={
        200: {"model": IgnoredResponse, "description": "Group/broadcast message ignored, or the destination's response"},
        400: {"model": ErrorResponse, "description": "Missing secret, body or jsonData"},
        404: {"model": ErrorResponse, "description": "Tenant not found"},
        429: {"model": ErrorResponse, "description": "Tenant rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Internal error"},
        502: {"model": ErrorResponse, "description": "Destination unavailable"},
    },
    summary="Relay a webhook",
    description="""
    Relay an inbound webhook to the tenant's destination.

    **Accepted bodies:** application/json (event or jsonData/body envelope),
    multipart/form-data and application/x-www-form-urlencoded (jsonData field).

    Group and broadcast messages are answered with
    `{"status": "ignored_group_message"}` and not relayed. Otherwise the
    original body is forwarded and the destination's status, Content-Type
    and body are returned unchanged.
    """,
)
async def relay_webhook(
    secret_id: str,
    request: Request,
    pipeline: WebhookPipeline = Depends(get_webhook_pipeline),
) -> Response:
    request_id = str(uuid.uuid4())
    content_type = request.headers.get("content-type", "")

    try:
        raw_body = await request.body()
    except Exception as e:
        logger.error("Failed to read body", request_id=request_id, error=str(e))
        error = ClientError("invalid body")
        pipeline.reject(error, secret_id.strip(), content_type, 0)
        raise error from e

    logger.debug(
        "Webhook received",
        request_id=request_id,
        secret_id=secret_id[:8] + "...",
        content_type=content_type,
        body_len=len(raw_body),
    )

    result = await pipeline.process(secret_id, raw_body, content_type)

    if result.ignored:
        return JSONResponse(status_code=200, content={"status": IGNORED_GROUP_STATUS})

    relay = result.relay
    headers = {"Content-Type": relay.content_type} if relay.content_type else None
    return Response(content=relay.body, status_code=relay.status_code, headers=headers)
