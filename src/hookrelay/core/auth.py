"""
Admin authentication and per-tenant rate limiting.
"""

import asyncio
import hmac
import time
from typing import Dict, Optional

import structlog
from fastapi import Header

from ..config import get_settings
from ..models.tenant import TenantRoute
from .exceptions import AuthenticationError, RateLimitError

logger = structlog.get_logger(__name__)


class TokenBucket:
    """
    Token bucket rate limiter implementation.

    Tokens are fractional so that slow refill rates (per-minute limits)
    accumulate correctly between calls.
    """

    def __init__(self, capacity: int, refill_rate: float) -> None:
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.tokens = float(capacity)
        self.last_refill = time.time()
        self.lock = asyncio.Lock()

    async def consume(self, tokens: int = 1) -> bool:
        """
        Try to consume tokens from bucket.

        Returns True if tokens available, False otherwise.
        """
        async with self.lock:
            now = time.time()
            time_passed = now - self.last_refill

            self.tokens = min(self.capacity, self.tokens + time_passed * self.refill_rate)
            self.last_refill = now

            if self.tokens >= tokens:
                self.tokens -= tokens
                return True

            return False

    def get_retry_after(self) -> int:
        """Get suggested retry-after time in seconds."""
        return max(1, int((1 - self.tokens) / self.refill_rate))


class TenantRateLimiter:
    """
    Per-secret rate limiter sized by each tenant's rate_per_minute.

    A bucket is rebuilt when the tenant's limit changes. Buckets idle for
    longer than idle_seconds have refilled completely and are dropped.
    """

    def __init__(self, idle_seconds: float = 60.0) -> None:
        self.buckets: Dict[str, TokenBucket] = {}
        self.idle_seconds = idle_seconds
        self.last_eviction = time.time()

    def evict_idle(self) -> int:
        """Drop buckets untouched for idle_seconds; returns how many were dropped."""
        now = time.time()
        self.last_eviction = now
        idle = [
            secret_id for secret_id, bucket in self.buckets.items()
            if now - bucket.last_refill >= self.idle_seconds
        ]
        for secret_id in idle:
            del self.buckets[secret_id]
        if idle:
            logger.debug("Evicted idle rate limit buckets", count=len(idle))
        return len(idle)

    async def check(self, route: TenantRoute) -> None:
        """
        Consume one webhook from the tenant's allowance.

        Raises RateLimitError if the allowance is exhausted.
        """
        if time.time() - self.last_eviction >= self.idle_seconds:
            self.evict_idle()

        bucket = self.buckets.get(route.secret_id)
        if bucket is None or bucket.capacity != route.rate_per_minute:
            logger.info(
                "Creating tenant rate limit bucket",
                secret_id=route.secret_id[:8] + "...",
                rate_per_minute=route.rate_per_minute,
            )
            bucket = TokenBucket(
                capacity=route.rate_per_minute,
                refill_rate=route.rate_per_minute / 60.0,
            )
            self.buckets[route.secret_id] = bucket

        if not await bucket.consume():
            retry_after = bucket.get_retry_after()
            logger.warning(
                "Tenant rate limit exceeded",
                secret_id=route.secret_id[:8] + "...",
                retry_after=retry_after,
                plan=route.plan,
            )
            raise RateLimitError(
                message="Rate limit exceeded for tenant",
                retry_after=retry_after,
            )


def verify_admin_key(provided: Optional[str], expected: str) -> None:
    """Raise AuthenticationError unless an admin token is configured and matches."""
    expected = expected.strip()
    if not expected or not provided:
        raise AuthenticationError()
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Admin authentication failed")
        raise AuthenticationError()


async def require_admin_key(x_admin_key: Optional[str] = Header(None, alias="x-admin-key")) -> str:
    """FastAPI dependency guarding admin endpoints."""
    settings = get_settings()
    verify_admin_key(x_admin_key, settings.security.admin_token)
    return x_admin_key or ""
