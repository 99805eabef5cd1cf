"""
Prometheus metrics endpoint.

Exposes metrics in Prometheus text format for scraping.
"""

import structlog
from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="""
    Prometheus metrics endpoint in standard text format.

    **Key Metrics:**
    - webhooks_received_total - Inbound webhooks
    - webhooks_forwarded_total{status_code} - Relayed webhooks
    - webhooks_ignored_total{reason} - Dropped group/broadcast messages
    - webhooks_rejected_total{error_code} - Failed webhooks
    - tenant_resolutions_total{source} - Resolution source (cache/env/store/miss)
    - legacy_id_conversions_total{outcome} - Identifier conversions
    """,
)
async def get_metrics(request: Request) -> Response:
    """
    Prometheus metrics endpoint.
    """
    metrics_collector = getattr(request.app.state, 'metrics', None)

    if not metrics_collector:
        logger.warning("Metrics collector not initialized")
        return Response(
            content="# Metrics collector not initialized\n",
            media_type=CONTENT_TYPE_LATEST,
        )

    metrics_data = generate_latest(metrics_collector.registry)

    logger.debug("Metrics scraped successfully", size_bytes=len(metrics_data))

    return Response(
        content=metrics_data,
        media_type=CONTENT_TYPE_LATEST,
    )
