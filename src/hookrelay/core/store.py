"""
Tenant store contract and the configuration-backed implementation.

Writes belong to the tenant administration surface; the relay only reads.
"""

from typing import Any, Dict, Mapping, Optional, Protocol

import structlog

from ..config import TenantSettings
from ..models.tenant import TenantRoute

logger = structlog.get_logger(__name__)


class TenantStore(Protocol):
    """Read side of the persistent tenant store."""

    async def get_by_secret_id(self, secret_id: str) -> Optional[TenantRoute]:
        ...


class InMemoryTenantStore:
    """Tenant store holding routes in a dict keyed by secret id."""

    def __init__(self, routes: Optional[Mapping[str, TenantRoute]] = None) -> None:
        self._routes: Dict[str, TenantRoute] = dict(routes or {})

    @classmethod
    def from_records(cls, records: Mapping[str, Dict[str, Any]]) -> "InMemoryTenantStore":
        routes = {}
        for secret_id, record in records.items():
            routes[secret_id] = TenantRoute.from_record(secret_id, record)
        logger.info("Tenant store loaded", tenants=len(routes))
        return cls(routes)

    @classmethod
    def from_settings(cls, settings: TenantSettings) -> "InMemoryTenantStore":
        return cls.from_records(settings.routes)

    def put(self, route: TenantRoute) -> None:
        self._routes[route.secret_id] = route

    async def get_by_secret_id(self, secret_id: str) -> Optional[TenantRoute]:
        return self._routes.get(secret_id)
