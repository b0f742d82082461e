"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import os

# Settings are read at import time, so the environment must be in place
# before any invoicetrust module is imported.
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-key-for-invoicetrust-tests")
os.environ.setdefault("ENCRYPTION_KEY", "q8Q2pW4wQx3r1s5t6u7v8w9x0y1z2A3B4C5D6E7F8G0=")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("VERIFICATION_SECRET", "test-verification-secret")
os.environ.setdefault("REMINDER_SCHEDULER_ENABLED", "false")
os.environ.setdefault("PUBLIC_APP_URL", "https://verify.example.com")

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from invoicetrust.main import app
from invoicetrust.models.base import Base
from invoicetrust.models.tenant import PlanTier
from invoicetrust.db.session import get_db
from invoicetrust.core.auth import create_access_token
from invoicetrust.middleware import rate_limiter as rate_limiter_module
from invoicetrust.services.delivery import MockChannel

from tests.factories import TenantFactory


# Test database URL
# WHY: Using SQLite for tests eliminates external database dependencies
# and makes tests faster.
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """
    Create a test database engine.

    WHY: Function scope ensures each test gets a fresh database state.
    StaticPool keeps the single in-memory database alive across sessions,
    so the dispatch worker's own sessions see the test's data.
    """
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite defers BEGIN until the first write, which breaks SAVEPOINT.
    # Emit BEGIN ourselves so nested transactions behave as on PostgreSQL.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    """Session factory bound to the test engine (for the dispatch worker)."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a test database session.

    Yields:
        AsyncSession: Database session for the test
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: AsyncClient allows testing FastAPI endpoints without running
    a real server. Requests share the test session, so data created by a
    test is visible to the API and vice versa.

    Yields:
        AsyncClient: HTTP client for making test requests
    """

    async def override_get_db():
        """Override database dependency with test session."""
        yield db_session
        await db_session.flush()

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_tenant(db_session: AsyncSession):
    """
    Tenant on a plan with payment reminders.

    WHY: Most tests exercise the full issue -> seal -> remind flow, which
    the free plan does not allow.
    """
    return await TenantFactory.create(db_session, plan=PlanTier.BASIC)


@pytest_asyncio.fixture
async def free_tenant(db_session: AsyncSession):
    """Tenant on the free plan (10 invoices, no reminders)."""
    return await TenantFactory.create(
        db_session,
        business_name="Free Tier Traders",
        email="free@example.com",
        plan=PlanTier.FREE,
    )


def auth_headers_for(tenant) -> dict:
    """Bearer header for a tenant."""
    token = create_access_token({"tenant_id": tenant.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_tenant) -> dict:
    return auth_headers_for(test_tenant)


@pytest.fixture
def free_auth_headers(free_tenant) -> dict:
    return auth_headers_for(free_tenant)


@pytest.fixture(autouse=True)
def disable_rate_limiting(monkeypatch):
    """
    Disable rate limiting for all tests.

    WHY: Rate limiting uses Redis, which is not available in unit tests.
    Rate limiting is tested separately with a mocked Redis client.

    Note: This mocks get_rate_limiter to return a limiter that always allows.
    """
    from unittest.mock import AsyncMock, MagicMock

    mock_result = MagicMock()
    mock_result.allowed = True
    mock_result.remaining = 100
    mock_result.reset_after = 60
    mock_result.limit = 100

    mock_limiter = MagicMock()
    mock_limiter.check_rate_limit = AsyncMock(return_value=mock_result)

    async def mock_get_rate_limiter():
        return mock_limiter

    monkeypatch.setattr(rate_limiter_module, "get_rate_limiter", mock_get_rate_limiter)
    rate_limiter_module._rate_limiter = None

    yield mock_limiter

    rate_limiter_module._rate_limiter = None


@pytest.fixture(autouse=True)
def use_mock_delivery(monkeypatch):
    """
    Route email through MockChannel for all tests.

    WHY: Tests must not send real email. With RESEND_API_KEY unset the
    delivery router falls back to MockChannel, which records messages.
    """
    from invoicetrust.core import config

    MockChannel.clear_sent_messages()
    monkeypatch.setattr(config.settings, "RESEND_API_KEY", None)

    yield

    MockChannel.clear_sent_messages()
