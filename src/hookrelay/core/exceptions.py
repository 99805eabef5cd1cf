"""
Custom exceptions for the relay service.

Provides structured error handling with appropriate HTTP status codes
and error details for API responses.
"""

from typing import Any, Dict, Optional


class RelayException(Exception):
    """Base exception for the relay service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ClientError(RelayException):
    """Raised for a missing secret, an unreadable body or an empty payload."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="client_error",
            details=details,
        )


class TenantNotFoundError(RelayException):
    """Raised when a secret resolves to no active destination."""

    def __init__(self, message: str = "Tenant not found") -> None:
        super().__init__(
            message=message,
            status_code=404,
            error_code="tenant_not_found",
        )


class UpstreamUnavailableError(RelayException):
    """Raised when the destination is unreachable or times out."""

    def __init__(self, message: str = "Destination unavailable", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=502,
            error_code="upstream_unavailable",
            details=details,
        )


class InternalRelayError(RelayException):
    """Raised when the outbound request cannot be constructed."""

    def __init__(self, message: str = "Internal error", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="internal_error",
            details=details,
        )


class ConversionError(RelayException):
    """Raised when a legacy identifier cannot be normalized.

    Recorded per field and logged; never rendered to a webhook caller.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=502,
            error_code="conversion_error",
            details=details,
        )


class AuthenticationError(RelayException):
    """Raised when an admin request carries no valid key."""

    def __init__(self, message: str = "unauthorized") -> None:
        super().__init__(
            message=message,
            status_code=401,
            error_code="authentication_error",
        )


class RateLimitError(RelayException):
    """Raised when a tenant exceeds its per-minute allowance."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
    ) -> None:
        details = {}
        if retry_after:
            details["retry_after"] = retry_after

        super().__init__(
            message=message,
            status_code=429,
            error_code="rate_limit_exceeded",
            details=details,
        )
