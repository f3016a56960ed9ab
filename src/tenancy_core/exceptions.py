"""Domain exceptions for tenant access control.

These map to consistent HTTP responses when rendered by TenantMiddleware.
Errors raised by tenant registries or vector stores are not wrapped and
propagate to the caller unchanged.
"""

import math
from typing import Any


class TenancyError(Exception):
    """Base exception for tenant access-control errors."""

    error_code = "INTERNAL_ERROR"
    recovery_suggestion = "Try again later or contact support if the issue persists"
    is_retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail or message

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a JSON-serializable response body."""
        return {
            "error": self.error_code,
            "detail": self.detail,
            "suggestion": self.recovery_suggestion,
        }


class UnauthorizedError(TenancyError):
    """Raised when no credential was supplied."""

    error_code = "UNAUTHORIZED"
    recovery_suggestion = "Provide valid authentication credentials"

    def __init__(self, reason: str = "Missing authorization header") -> None:
        self.reason = reason
        super().__init__(f"Unauthorized: {reason}", status_code=401)


class InvalidApiKeyError(TenancyError):
    """Raised when an API key is not known to the tenant registry."""

    error_code = "INVALID_API_KEY"
    recovery_suggestion = "Check that your API key is correct and has not been revoked"

    def __init__(self) -> None:
        super().__init__(
            "The provided API key is invalid or has been revoked",
            status_code=401,
        )


class InvalidTokenError(TenancyError):
    """Raised for malformed JWTs, bad signatures and missing claims."""

    error_code = "INVALID_JWT"
    recovery_suggestion = "Ensure the JWT token is properly formatted and signed"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid JWT token: {reason}", status_code=401)


class TokenExpiredError(TenancyError):
    """Raised when a JWT's exp claim is in the past."""

    error_code = "TOKEN_EXPIRED"
    recovery_suggestion = "Obtain a new authentication token"

    def __init__(self) -> None:
        super().__init__("The authentication token has expired", status_code=401)


class TenantNotFoundError(TenancyError):
    """Raised when a valid token names a tenant the registry does not know."""

    error_code = "TENANT_NOT_FOUND"
    recovery_suggestion = "Verify the tenant ID is correct"

    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"Tenant '{tenant_id}' not found", status_code=403)


class RateLimitedError(TenancyError):
    """Raised when a tenant's token bucket for an operation is empty."""

    error_code = "RATE_LIMITED"
    is_retryable = True

    def __init__(
        self,
        operation: Any,
        retry_after: float | None = None,
        tenant_id: str | None = None,
    ) -> None:
        self.operation = operation
        self.operation_name = getattr(operation, "value", str(operation))
        self.retry_after = retry_after
        self.tenant_id = tenant_id
        message = f"Rate limit exceeded for {self.operation_name}"
        if retry_after is not None:
            message += f". Retry after {format_duration(retry_after)}"
        super().__init__(message, status_code=429)

    @property
    def recovery_suggestion(self) -> str:  # type: ignore[override]
        if self.retry_after is not None:
            return "Wait for the specified duration before retrying"
        return "Wait before retrying or reduce request frequency"

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["operation"] = self.operation_name
        if self.retry_after is not None and math.isfinite(self.retry_after):
            body["retry_after"] = round(self.retry_after, 3)
        return body


class StorageError(TenancyError):
    """
    Raised by bundled registries and stores when the backend fails.

    Third-party backends may raise their own exceptions instead; those
    propagate untouched.
    """

    error_code = "STORAGE_ERROR"
    is_retryable = True

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message, status_code=503, detail=detail or "Storage backend unavailable")


def format_duration(seconds: float) -> str:
    """Format a retry duration for humans (e.g. "1 minute and 5 seconds")."""
    if not math.isfinite(seconds):
        return "an unbounded time"
    whole = int(seconds)
    if whole >= 60:
        minutes, remainder = divmod(whole, 60)
        text = f"{minutes} minute{'' if minutes == 1 else 's'}"
        if remainder:
            text += f" and {remainder} second{'' if remainder == 1 else 's'}"
        return text
    if whole > 0:
        return f"{whole} second{'' if whole == 1 else 's'}"
    millis = int(seconds * 1000)
    return f"{millis} millisecond{'' if millis == 1 else 's'}"
