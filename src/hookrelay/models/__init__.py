"""
Pydantic data models package.

Contains the tenant routing model and the API response schemas.
"""

from .tenant import Plan, ResolveResponse, TenantRoute
from .webhook import IGNORED_GROUP_STATUS, ErrorResponse, IgnoredResponse

__all__ = [
    # Tenant models
    "Plan",
    "TenantRoute",
    "ResolveResponse",

    # Webhook responses
    "IgnoredResponse",
    "ErrorResponse",
    "IGNORED_GROUP_STATUS",
]
