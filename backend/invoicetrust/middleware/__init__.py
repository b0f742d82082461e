"""
Middleware package.

WHY: Request context (client IP, request ID) and rate limiting apply
across routers, so they live outside the API modules.
"""

from invoicetrust.middleware.request_context import (
    RequestContextMiddleware,
    get_request_context,
    get_client_ip,
    get_user_agent,
    RequestContext,
)
from invoicetrust.middleware.rate_limiter import (
    RateLimiter,
    RateLimitConfig,
    RateLimitResult,
    check_rate_limit,
    get_rate_limiter,
    rate_limit_verify,
    rate_limit_issue,
    RATE_LIMITS,
)

__all__ = [
    # Request context
    "RequestContextMiddleware",
    "get_request_context",
    "get_client_ip",
    "get_user_agent",
    "RequestContext",
    # Rate limiting
    "RateLimiter",
    "RateLimitConfig",
    "RateLimitResult",
    "check_rate_limit",
    "get_rate_limiter",
    "rate_limit_verify",
    "rate_limit_issue",
    "RATE_LIMITS",
]
