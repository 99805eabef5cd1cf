"""
Admin and lookup endpoints.

- POST /admin/cache/purge/{secret_id}: drop a cached route (x-admin-key)
- GET /api/clients/by-secret/{secret_id}: uncached resolution
"""

import structlog
from fastapi import APIRouter, Depends, Request, Response, status

from ..core.auth import require_admin_key
from ..core.exceptions import ClientError, TenantNotFoundError
from ..models.tenant import ResolveResponse
from ..models.webhook import ErrorResponse

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post(
    "/admin/cache/purge/{secret_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={
        400: {"model": ErrorResponse, "description": "Blank secret id"},
        401: {"model": ErrorResponse, "description": "Missing or wrong x-admin-key"},
    },
    summary="Purge a cached route",
    description="""
    Remove the cached destination for a secret so the next webhook
    re-runs the resolution chain. Use after an environment override or a
    tenant update that must take effect before the cache TTL expires.
    """,
)
async def purge_cached_route(
    secret_id: str,
    request: Request,
    admin_key: str = Depends(require_admin_key),
) -> Response:
    secret_id = secret_id.strip()
    if not secret_id:
        raise ClientError("secretId required")

    request.app.state.resolver.invalidate(secret_id)
    logger.info("Cached route purged", secret_id=secret_id[:8] + "...")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/api/clients/by-secret/{secret_id}",
    response_model=ResolveResponse,
    responses={404: {"model": ErrorResponse, "description": "Tenant not found"}},
    summary="Resolve a secret",
    description="Environment override first, then the tenant store. The cache is bypassed.",
)
async def resolve_by_secret(secret_id: str, request: Request) -> ResolveResponse:
    route = await request.app.state.resolver.resolve_uncached(secret_id.strip())
    if route is None:
        raise TenantNotFoundError("Tenant not found")

    return ResolveResponse(
        webhookUrl=route.destination_url,
        rateLimitPerMin=route.rate_per_minute,
        plan=route.plan,
    )
