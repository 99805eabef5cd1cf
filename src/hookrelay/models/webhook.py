"""
Webhook API response models.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


IGNORED_GROUP_STATUS = "ignored_group_message"


class IgnoredResponse(BaseModel):
    """Returned when a group or broadcast message is intentionally dropped."""

    status: str = Field(default=IGNORED_GROUP_STATUS, description="Ignore marker")


class ErrorResponse(BaseModel):
    """
    Standard error response model.
    """

    error: str = Field(description="Error code")
    message: str = Field(description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details"
    )
