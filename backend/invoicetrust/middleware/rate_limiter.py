"""
Rate limiting for public verification and invoice issuing.

WHAT: Fixed-window request counters in Redis, applied as FastAPI
dependencies.

WHY: The verification endpoint is public and anonymous, so it is the
obvious target for code enumeration. Invoice issuing is authenticated
but expensive (quota, sealing, reminder scheduling), so a runaway client
is capped per tenant. Counters live in Redis so every app instance
shares them.

HOW: Uses Redis INCR + EXPIRE in one pipeline:
1. Each request increments a counter for scope+identifier
2. Counter key expires after the window duration
3. If counter exceeds limit, raise RateLimitExceeded (429)

Design decisions:
- Fail-open: If Redis is unavailable, allow requests (prevents self-DOS)
- Verification is keyed by client IP, issuing by tenant ID
"""

from dataclasses import dataclass
from typing import Dict, Optional
import logging

import redis.asyncio as aioredis
from fastapi import Depends
from redis.exceptions import RedisError
from starlette.requests import Request

from invoicetrust.core.config import settings
from invoicetrust.core.deps import get_current_tenant
from invoicetrust.core.exceptions import RateLimitExceeded
from invoicetrust.middleware.request_context import get_client_ip
from invoicetrust.models.tenant import Tenant


logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================


@dataclass
class RateLimitConfig:
    """Rate limit parameters for one scope."""

    requests_per_window: int = 30
    """Maximum number of requests allowed in the window."""

    window_seconds: int = 60
    """Duration of the rate limit window in seconds."""

    key_prefix: str = "ratelimit"
    """Redis key prefix for rate limit counters."""


VERIFY_SCOPE = "verify"
ISSUE_SCOPE = "invoice_issue"

RATE_LIMITS: Dict[str, RateLimitConfig] = {
    VERIFY_SCOPE: RateLimitConfig(
        requests_per_window=settings.VERIFY_RATE_LIMIT_PER_MINUTE,
        window_seconds=60,
        key_prefix="ratelimit:verify",
    ),
    ISSUE_SCOPE: RateLimitConfig(
        requests_per_window=settings.ISSUE_RATE_LIMIT_PER_MINUTE,
        window_seconds=60,
        key_prefix="ratelimit:invoice-issue",
    ),
}


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    """Whether the request is allowed (under limit)."""

    remaining: int
    """Requests remaining in the current window (-1 when unknown)."""

    reset_after: int
    """Seconds until the rate limit window resets."""

    limit: int
    """Maximum requests allowed per window."""


# ============================================================================
# Rate Limiter Service
# ============================================================================


class RateLimiter:
    """
    Rate limiter service using Redis.

    HOW: INCR creates the key with value 1 when new; EXPIRE bounds its
    lifetime to the window. Both run in one pipeline.
    """

    def __init__(self, redis_client: aioredis.Redis):
        """
        Initialize rate limiter with Redis client.

        Args:
            redis_client: Async Redis client (a mock in tests)
        """
        self._redis = redis_client

    @staticmethod
    def _build_key(config: RateLimitConfig, identifier: str) -> str:
        return f"{config.key_prefix}:{identifier}"

    async def check_rate_limit(
        self,
        identifier: str,
        config: RateLimitConfig,
    ) -> RateLimitResult:
        """
        Count this request and compare against the limit.

        Args:
            identifier: Client IP or tenant ID
            config: Limit for the scope

        Returns:
            RateLimitResult with allowed status and metadata
        """
        key = self._build_key(config, identifier)

        try:
            pipe = self._redis.pipeline()
            pipe.incr(key)
            pipe.expire(key, config.window_seconds)

            results = await pipe.execute()
            current_count = results[0]

        except (RedisError, OSError) as e:
            # Fail-open: an unreachable Redis must not take the API down with it
            logger.error(
                f"Rate limit Redis error (allowing request): {e}",
                extra={"identifier": identifier, "scope": config.key_prefix},
            )
            return RateLimitResult(
                allowed=True,
                remaining=-1,
                reset_after=config.window_seconds,
                limit=config.requests_per_window,
            )

        return RateLimitResult(
            allowed=current_count <= config.requests_per_window,
            remaining=max(0, config.requests_per_window - current_count),
            reset_after=config.window_seconds,
            limit=config.requests_per_window,
        )


# ============================================================================
# Global Rate Limiter Instance
# ============================================================================


_rate_limiter: Optional[RateLimiter] = None


async def get_rate_limiter() -> RateLimiter:
    """
    Get or create global rate limiter instance.

    Returns:
        RateLimiter instance
    """
    global _rate_limiter

    if _rate_limiter is None:
        redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        _rate_limiter = RateLimiter(redis_client=redis_client)

    return _rate_limiter


async def check_rate_limit(identifier: str, scope: str) -> RateLimitResult:
    """
    Check a scope's rate limit and raise if exceeded.

    Args:
        identifier: Client IP or tenant ID
        scope: Key of RATE_LIMITS

    Returns:
        RateLimitResult if allowed

    Raises:
        RateLimitExceeded: If rate limit is exceeded (429)
    """
    limiter = await get_rate_limiter()
    result = await limiter.check_rate_limit(identifier, RATE_LIMITS[scope])

    if not result.allowed:
        logger.warning(
            f"Rate limit exceeded for {scope}",
            extra={"identifier": identifier, "scope": scope},
        )
        raise RateLimitExceeded(
            message=f"Rate limit exceeded. Try again in {result.reset_after} seconds.",
            retry_after=result.reset_after,
            limit=result.limit,
            remaining=result.remaining,
        )

    return result


# ============================================================================
# Dependencies for Endpoint Rate Limiting
# ============================================================================


async def rate_limit_verify(request: Request) -> None:
    """
    FastAPI dependency limiting public verification per client IP.

    Usage:
        @router.get("/{code}", dependencies=[Depends(rate_limit_verify)])

    Raises:
        RateLimitExceeded: If rate limit is exceeded
    """
    await check_rate_limit(identifier=get_client_ip(request), scope=VERIFY_SCOPE)


async def rate_limit_issue(tenant: Tenant = Depends(get_current_tenant)) -> None:
    """
    FastAPI dependency limiting invoice issuing per tenant.

    Raises:
        RateLimitExceeded: If rate limit is exceeded
    """
    await check_rate_limit(identifier=f"tenant:{tenant.id}", scope=ISSUE_SCOPE)
