"""
Secret -> destination resolution.

The chain is an ordered list of strategies tried in sequence:
cache, environment override, tenant store. A hit from any strategy after
the cache is written back to the cache before it is returned.
"""

import asyncio
import os
from typing import List, Mapping, Optional, Protocol

import structlog

from ..models.tenant import Plan, TenantRoute, DEFAULT_RATE_PER_MINUTE
from .cache import ExpiringCache
from .store import TenantStore

logger = structlog.get_logger(__name__)


class ResolverStrategy(Protocol):
    """One step of the resolution chain."""

    name: str
    populates_cache: bool

    async def lookup(self, secret_id: str) -> Optional[TenantRoute]:
        ...


class CacheStrategy:
    """Serve routes memoized by earlier resolutions."""

    name = "cache"
    populates_cache = False

    def __init__(self, cache: ExpiringCache[str, TenantRoute]) -> None:
        self.cache = cache

    async def lookup(self, secret_id: str) -> Optional[TenantRoute]:
        route, found = self.cache.get(secret_id)
        return route if found else None


class EnvOverrideStrategy:
    """
    Environment-variable override, for rerouting without a store write.

    The variable name is the prefix plus the secret with '-' replaced by
    '_', tried in lowercase and then in uppercase.
    """

    name = "env"
    populates_cache = True

    def __init__(self, prefix: str = "CLIENT_", environ: Optional[Mapping[str, str]] = None) -> None:
        self.prefix = prefix
        self.environ = environ if environ is not None else os.environ

    def candidate_keys(self, secret_id: str) -> List[str]:
        underscored = secret_id.replace("-", "_")
        return [self.prefix + underscored.lower(), self.prefix + underscored.upper()]

    async def lookup(self, secret_id: str) -> Optional[TenantRoute]:
        for key in self.candidate_keys(secret_id):
            value = (self.environ.get(key) or "").strip()
            if value:
                return TenantRoute(
                    secret_id=secret_id,
                    destination_url=value,
                    rate_per_minute=DEFAULT_RATE_PER_MINUTE,
                    plan=Plan.FREE,
                    active=True,
                )
        return None


class StoreStrategy:
    """Persistent tenant store; errors and inactive tenants read as a miss."""

    name = "store"
    populates_cache = True

    def __init__(self, store: TenantStore, timeout_seconds: float = 5.0) -> None:
        self.store = store
        self.timeout_seconds = timeout_seconds

    async def lookup(self, secret_id: str) -> Optional[TenantRoute]:
        try:
            route = await asyncio.wait_for(
                self.store.get_by_secret_id(secret_id),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Tenant store lookup timed out", secret_id=secret_id[:8] + "...")
            return None
        except Exception as e:
            logger.warning(
                "Tenant store lookup failed",
                secret_id=secret_id[:8] + "...",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if route is None or not route.is_usable:
            return None
        return route


class TenantResolver:
    """Resolve a secret through an ordered list of strategies."""

    def __init__(
        self,
        cache: ExpiringCache[str, TenantRoute],
        strategies: List[ResolverStrategy],
        metrics=None,
    ) -> None:
        self.cache = cache
        self.strategies = strategies
        self.metrics = metrics

    @classmethod
    def build(
        cls,
        cache: ExpiringCache[str, TenantRoute],
        store: TenantStore,
        env_prefix: str = "CLIENT_",
        store_timeout_seconds: float = 5.0,
        environ: Optional[Mapping[str, str]] = None,
        metrics=None,
    ) -> "TenantResolver":
        """Standard chain: cache -> environment override -> tenant store."""
        return cls(
            cache=cache,
            strategies=[
                CacheStrategy(cache),
                EnvOverrideStrategy(env_prefix, environ),
                StoreStrategy(store, store_timeout_seconds),
            ],
            metrics=metrics,
        )

    async def resolve(self, secret_id: str) -> Optional[TenantRoute]:
        """Return the usable route for secret_id, or None."""
        for strategy in self.strategies:
            route = await strategy.lookup(secret_id)
            if route is None or not route.is_usable:
                continue

            if strategy.populates_cache:
                self.cache.set(secret_id, route)

            logger.debug(
                "Secret resolved",
                secret_id=secret_id[:8] + "...",
                source=strategy.name,
            )
            if self.metrics:
                self.metrics.record_resolution(strategy.name)
            return route

        if self.metrics:
            self.metrics.record_resolution("miss")
        return None

    async def resolve_uncached(self, secret_id: str) -> Optional[TenantRoute]:
        """Resolve without reading or writing the cache."""
        for strategy in self.strategies:
            if isinstance(strategy, CacheStrategy):
                continue
            route = await strategy.lookup(secret_id)
            if route is not None and route.is_usable:
                return route
        return None

    def invalidate(self, secret_id: str) -> None:
        self.cache.delete(secret_id)
