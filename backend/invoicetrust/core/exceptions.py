"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No sensitive data leaks in error messages (sealed hashes, secrets, tokens)

IMPORTANT: NEVER use base Exception class. Always use custom exceptions.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        WHY: Context parameters allow including debugging information
        (tenant_id, invoice_id, etc.) without leaking sensitive data like
        secrets or sealed hashes.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        sensitive_fields = {
            "password",
            "token",
            "secret",
            "key",
            "api_key",
            "sealed_hash",
            "access_token",
        }
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when authentication fails.

    WHY: Separate exception for authentication failures (missing bearer,
    expired tokens, bad cron secret) allows consistent handling without
    disclosing which step failed.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class AuthorizationError(AppException):
    """
    Raised when the caller lacks permissions for an action.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class TokenExpiredError(AuthenticationError):
    """Raised when a tenant JWT has expired."""

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """Raised when a tenant JWT is malformed or has an invalid signature."""

    default_message = "Token is invalid"


class TenantAccessDenied(AuthorizationError):
    """
    Raised when a caller addresses resources owned by another tenant.

    WHY: Using 404 instead of 403 avoids confirming that the resource
    exists under a different tenant.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


# ============================================================================
# Validation & Input Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class ResourceAlreadyExistsError(AppException):
    """
    Raised when attempting to create a resource that already exists.

    WHY: A second active reminder for the same invoice slot is a conflict,
    not a validation problem.

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Resource already exists"


class TenantNotFoundError(ResourceNotFoundError):
    """Raised when a tenant doesn't exist."""

    default_message = "Tenant not found"


class InvoiceNotFoundError(ResourceNotFoundError):
    """Raised when an invoice doesn't exist."""

    default_message = "Invoice not found"


class ReminderNotFoundError(ResourceNotFoundError):
    """Raised when a payment reminder doesn't exist."""

    default_message = "Reminder not found"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a business rule is violated.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class InvalidStateTransitionError(BusinessRuleViolation):
    """
    Raised when an operation is not allowed in the entity's current state.

    WHY: Scheduling reminders for a paid invoice, or re-sealing an
    invoice that already carries a hash, must fail with a clear error
    instead of silently doing nothing.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid state transition"


class QuotaExceededError(AuthorizationError):
    """
    Raised by the API layer when a plan quota or feature flag rejects a request.

    WHY: QuotaGate itself answers with booleans and decisions; only the
    request surface turns a rejection into an error carrying the feature
    name and an upgrade prompt.

    HTTP Status: 403 Forbidden
    """

    default_message = "Plan limit reached. Upgrade your plan to continue."

    def __init__(self, feature: str, message: Optional[str] = None, **context: Any):
        self.feature = feature
        super().__init__(
            message
            or f"Your plan does not allow more '{feature}'. Upgrade your plan to continue.",
            feature=feature,
            upgrade_required=True,
            **context,
        )


# ============================================================================
# External Service Exceptions
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class DeliveryError(ExternalServiceError):
    """
    Raised when a delivery channel (email, WhatsApp, SMS) fails.

    WHY: Inside the dispatch batch this is recorded on the reminder as
    FAILED and never propagates; only synchronous sends surface it.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Message delivery failed"


# ============================================================================
# Rate Limiting Exceptions
# ============================================================================


class RateLimitExceeded(AppException):
    """
    Raised when rate limit is exceeded.

    HTTP Status: 429 Too Many Requests
    """

    status_code = 429
    default_message = "Rate limit exceeded"


# ============================================================================
# Configuration & Cryptography Exceptions
# ============================================================================


class ConfigurationError(AppException):
    """
    Raised when required configuration is missing.

    WHY: Running the verification engine in production without a
    server secret would produce forgeable seals, so startup must fail.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Server is misconfigured"


class EncryptionError(AppException):
    """
    Raised when encryption or decryption of integration credentials fails.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Encryption operation failed"


# ============================================================================
# Audit Log Exceptions
# ============================================================================


class AuditLogImmutableError(AppException):
    """
    Raised when attempting to update or delete an audit log.

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "Audit logs are immutable and cannot be modified"
