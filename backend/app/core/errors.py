"""Error Hierarchy - typed, categorized exceptions for all PropertyChain failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - One concrete class per failure kind: ValidationFailed, PermissionDenied, NotFound,
      InvalidState, Conflict, RateLimited, Unavailable
    - Only Conflict and Unavailable are retryable by the caller
    - to_response() produces the REST envelope; no internal details leaked

Design Decisions:
    - Single hierarchy with PropertyChainError base: FastAPI global handler catches all
      (ADR: uniform error shape)
    - ErrorContext as dataclass: rich observability without coupling to logging framework
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    PERMISSION = "permission"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    RATE_LIMIT = "rate_limit"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    user_id: str | None = None
    property_id: str | None = None
    investment_id: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_ms: int | None = None


class PropertyChainError(Exception):
    """Base exception for all PropertyChain errors."""

    retryable = False

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "retryable": self.retryable,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "property_id": self.context.property_id,
                    "investment_id": self.context.investment_id,
                    "retry_after_ms": self.context.retry_after_ms,
                },
            }
        }


# ─── Domain Errors (400-level) ──────────────────────────────────

class ValidationFailedError(PropertyChainError):
    """Bad input shape or value."""
    def __init__(
        self, message: str, field: str | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            message, "VALIDATION_FAILED", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )
        self.field = field


class MalformedEventError(ValidationFailedError):
    """Inbound event transport message could not be parsed."""
    def __init__(self, message: str):
        super().__init__(f"Malformed event message: {message}")
        self.code = "MALFORMED_EVENT"


class AuthenticationRequiredError(PropertyChainError):
    """Missing or unknown credential."""
    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message, "UNAUTHENTICATED", ErrorCategory.PERMISSION,
            ErrorSeverity.WARNING, None, 401,
        )


class PermissionDeniedError(PropertyChainError):
    """KYC or role gate rejected the caller."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "PERMISSION_DENIED", ErrorCategory.PERMISSION,
            ErrorSeverity.WARNING, context, 403,
        )


class ResourceNotFoundError(PropertyChainError):
    """Requested resource does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidStateError(PropertyChainError):
    """Entity is not in a state that permits the operation."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "INVALID_STATE", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, context, 409,
        )


class ConflictError(PropertyChainError):
    """Insufficient tokens or concurrent-write collision. Safe to retry the request."""

    retryable = True

    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "CONFLICT", ErrorCategory.CONFLICT,
            ErrorSeverity.WARNING, context, 409,
        )


class RateLimitedError(PropertyChainError):
    """Admission control rejected the request."""
    def __init__(self, retry_after_ms: int, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.retry_after_ms = retry_after_ms
        super().__init__(
            "Too many requests", "RATE_LIMITED", ErrorCategory.RATE_LIMIT,
            ErrorSeverity.WARNING, ctx, 429,
        )


# ─── Infrastructure Errors (500-level) ──────────────────────────

class UnavailableError(PropertyChainError):
    """Record store or event transport failed. Transient."""

    retryable = True

    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"{operation} failed: {message}",
            "UNAVAILABLE", ErrorCategory.UNAVAILABLE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation
