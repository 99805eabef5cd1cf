"""
Tenant routing models.

A TenantRoute is read-only from the relay's point of view: it is created by
the tenant administration surface and only looked up here.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Plan(str, Enum):
    """Tenant subscription plans."""

    FREE = "FREE"
    PRO = "PRO"
    SCALE = "SCALE"


DEFAULT_RATE_PER_MINUTE = 60


class TenantRoute(BaseModel):
    """Resolved routing information for one secret."""

    secret_id: str = Field(min_length=1, description="Opaque per-tenant secret")
    destination_url: str = Field(default="", description="Where events are relayed")
    rate_per_minute: int = Field(
        default=DEFAULT_RATE_PER_MINUTE,
        description="Allowed webhooks per minute"
    )
    plan: Plan = Field(default=Plan.FREE, description="Subscription plan")
    active: bool = Field(default=True, description="Whether the route may be used")
    api_token: Optional[str] = Field(
        default=None,
        description="Bearer token for the identifier normalization API"
    )

    @field_validator("rate_per_minute", mode="before")
    def default_non_positive_rate(cls, v: Any) -> int:
        """Non-positive or missing limits fall back to the default."""
        if v is None:
            return DEFAULT_RATE_PER_MINUTE
        v = int(v)
        return v if v > 0 else DEFAULT_RATE_PER_MINUTE

    @field_validator("plan", mode="before")
    def default_empty_plan(cls, v: Any) -> Any:
        if not v:
            return Plan.FREE
        return v.upper() if isinstance(v, str) else v

    @property
    def is_usable(self) -> bool:
        return self.active and bool(self.destination_url.strip())

    @classmethod
    def from_record(cls, secret_id: str, record: Dict[str, Any]) -> "TenantRoute":
        """Build a route from a tenant record as stored in configuration."""
        return cls(
            secret_id=secret_id,
            destination_url=record.get("webhook_url") or record.get("webhookUrl") or "",
            rate_per_minute=record.get("rate_limit_per_min", record.get("rateLimitPerMin")),
            plan=record.get("plan"),
            active=record.get("active", record.get("isActive", True)),
            api_token=record.get("api_token") or None,
        )

    model_config = ConfigDict(frozen=True)


class ResolveResponse(BaseModel):
    """Response of the uncached by-secret lookup."""

    webhookUrl: str = Field(description="Destination URL")
    rateLimitPerMin: int = Field(description="Allowed webhooks per minute")
    plan: Plan = Field(description="Subscription plan")
