"""
Health check endpoints.

- /healthz: Liveness probe (always 200 if service alive)
- /readyz: Readiness probe (200 only once the forwarder can relay)
"""

from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Request, Response, status

from .. import __version__

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/healthz",
    status_code=200,
    summary="Liveness probe",
)
async def liveness_check() -> Dict[str, Any]:
    """
    Liveness probe - always returns 200 if service is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "hookrelay",
        "version": __version__,
    }


@router.get(
    "/readyz",
    summary="Readiness probe",
)
async def readiness_check(request: Request, response: Response) -> Dict[str, Any]:
    """
    Readiness probe - 200 only when the forwarder session is open.
    """
    forwarder = getattr(request.app.state, "forwarder", None)

    if forwarder is None or not forwarder.is_healthy():
        logger.warning("Forwarder not ready")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {
            "status": "not_ready",
            "reason": "forwarder_not_started",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    cache = getattr(request.app.state, "cache", None)
    return {
        "status": "ready",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cached_routes": len(cache) if cache is not None else 0,
    }
