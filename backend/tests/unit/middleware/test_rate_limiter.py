"""
Unit tests for rate limiting.

WHY: The public verification endpoint invites code enumeration, and
issuing is expensive enough that a runaway client must be capped.

Test scenarios:
- Requests under the limit are allowed
- Requests over the limit are blocked with 429
- Scopes and identifiers use separate counters
- An unavailable Redis lets requests through
- The dependencies key on client IP and tenant ID
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from redis.exceptions import ConnectionError as RedisConnectionError

from invoicetrust.core.exceptions import RateLimitExceeded
from invoicetrust.middleware.rate_limiter import (
    ISSUE_SCOPE,
    RATE_LIMITS,
    VERIFY_SCOPE,
    RateLimitConfig,
    RateLimiter,
    check_rate_limit,
    rate_limit_issue,
    rate_limit_verify,
)
from invoicetrust.models.tenant import Tenant


def redis_returning(count):
    """Mock Redis whose pipeline reports `count` after INCR."""
    pipeline = MagicMock()
    pipeline.execute = AsyncMock(return_value=[count, True])
    redis = MagicMock()
    redis.pipeline = MagicMock(return_value=pipeline)
    return redis, pipeline


CONFIG = RateLimitConfig(requests_per_window=5, window_seconds=60, key_prefix="ratelimit:test")


class TestRateLimitConfig:
    """Tests for the per-scope configuration."""

    def test_defaults(self):
        config = RateLimitConfig()

        assert config.requests_per_window == 30
        assert config.window_seconds == 60
        assert config.key_prefix == "ratelimit"

    def test_scopes_use_distinct_prefixes(self):
        assert RATE_LIMITS[VERIFY_SCOPE].key_prefix != RATE_LIMITS[ISSUE_SCOPE].key_prefix


class TestRateLimiter:
    """Tests for RateLimiter.check_rate_limit."""

    @pytest.mark.asyncio
    async def test_first_request_allowed(self):
        redis, pipeline = redis_returning(1)

        result = await RateLimiter(redis).check_rate_limit("192.0.2.1", CONFIG)

        assert result.allowed is True
        assert result.remaining == 4
        assert result.limit == 5
        pipeline.incr.assert_called_once_with("ratelimit:test:192.0.2.1")
        pipeline.expire.assert_called_once_with("ratelimit:test:192.0.2.1", 60)

    @pytest.mark.asyncio
    async def test_at_limit_allowed(self):
        redis, _ = redis_returning(5)

        result = await RateLimiter(redis).check_rate_limit("192.0.2.1", CONFIG)

        assert result.allowed is True
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_over_limit_denied(self):
        redis, _ = redis_returning(6)

        result = await RateLimiter(redis).check_rate_limit("192.0.2.1", CONFIG)

        assert result.allowed is False
        assert result.remaining == 0

    @pytest.mark.asyncio
    async def test_redis_error_fails_open(self):
        redis, pipeline = redis_returning(0)
        pipeline.execute = AsyncMock(side_effect=RedisConnectionError("down"))

        result = await RateLimiter(redis).check_rate_limit("192.0.2.1", CONFIG)

        assert result.allowed is True
        assert result.remaining == -1


class TestCheckRateLimitFunction:
    """Tests for check_rate_limit."""

    @pytest.mark.asyncio
    async def test_raises_when_exceeded(self):
        redis, _ = redis_returning(10_000)

        with patch(
            "invoicetrust.middleware.rate_limiter.get_rate_limiter",
            new=AsyncMock(return_value=RateLimiter(redis)),
        ):
            with pytest.raises(RateLimitExceeded) as exc_info:
                await check_rate_limit("192.0.2.1", VERIFY_SCOPE)

        assert exc_info.value.status_code == 429
        assert exc_info.value.context["retry_after"] == 60

    @pytest.mark.asyncio
    async def test_passes_when_allowed(self):
        redis, _ = redis_returning(1)

        with patch(
            "invoicetrust.middleware.rate_limiter.get_rate_limiter",
            new=AsyncMock(return_value=RateLimiter(redis)),
        ):
            result = await check_rate_limit("192.0.2.1", VERIFY_SCOPE)

        assert result.allowed is True


class TestDependencies:
    """Tests for the FastAPI dependencies."""

    @pytest.mark.asyncio
    async def test_verify_keyed_by_client_ip(self):
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}

        with patch(
            "invoicetrust.middleware.rate_limiter.check_rate_limit", new=AsyncMock()
        ) as mock_check:
            await rate_limit_verify(request)

        mock_check.assert_awaited_once_with(identifier="203.0.113.9", scope=VERIFY_SCOPE)

    @pytest.mark.asyncio
    async def test_issue_keyed_by_tenant(self):
        tenant = Tenant(id=17, business_name="Acme")

        with patch(
            "invoicetrust.middleware.rate_limiter.check_rate_limit", new=AsyncMock()
        ) as mock_check:
            await rate_limit_issue(tenant=tenant)

        mock_check.assert_awaited_once_with(identifier="tenant:17", scope=ISSUE_SCOPE)
