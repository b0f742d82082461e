"""
FastAPI dependencies for authentication and plan gating.

WHY: Dependencies provide reusable authentication and authorization logic
that can be injected into route handlers, so every tenant-facing route
resolves the tenant the same way and scopes its queries by it.
"""

import hmac
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.core.auth import verify_token
from invoicetrust.core.config import settings
from invoicetrust.core.exceptions import (
    AuthenticationError,
    QuotaExceededError,
    TokenExpiredError,
    TokenInvalidError,
)
from invoicetrust.dao.tenant import TenantDAO
from invoicetrust.db.session import get_db
from invoicetrust.models.tenant import Tenant
from invoicetrust.services.quota import QuotaFeature, QuotaGate


# HTTP Bearer token security scheme
# Format: "Authorization: Bearer <token>"
security = HTTPBearer()

# The cron trigger may be called without credentials when no secret is set
optional_security = HTTPBearer(auto_error=False)


async def get_current_tenant(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    """
    Get the tenant the request acts for, from its JWT.

    WHY: This dependency:
    1. Extracts token from Authorization header
    2. Verifies token signature and expiration
    3. Fetches the tenant from the database
    4. Ensures the tenant still exists and is active

    Usage:
        @router.get("/invoices/{invoice_id}")
        async def get_invoice(tenant: Tenant = Depends(get_current_tenant)):
            ...

    Returns:
        Authenticated Tenant instance

    Raises:
        AuthenticationError: If token is invalid, expired, or tenant not found
    """
    try:
        payload = verify_token(credentials.credentials)
    except (TokenExpiredError, TokenInvalidError) as e:
        raise AuthenticationError(
            message=str(e),
            status_code=e.status_code,
        )

    tenant_id: Optional[int] = payload.get("tenant_id")
    if not tenant_id:
        raise AuthenticationError(
            message="Invalid token: missing tenant_id",
        )

    # Token data might be stale; always fetch current data
    tenant = await TenantDAO(db).get_by_id(int(tenant_id))

    if not tenant:
        raise AuthenticationError(
            message="Tenant not found",
            tenant_id=tenant_id,
        )

    if not tenant.is_active:
        raise AuthenticationError(
            message="Tenant account is inactive",
            tenant_id=tenant_id,
        )

    return tenant


async def require_reminder_plan(
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    """
    Require a plan that includes payment reminders.

    Raises:
        QuotaExceededError: If the plan excludes reminders (upgrade prompt)
    """
    if not await QuotaGate(db).check_limit(tenant.id, QuotaFeature.PAYMENT_REMINDERS):
        raise QuotaExceededError(
            feature=QuotaFeature.PAYMENT_REMINDERS.value,
            message="Payment reminders are not available on your plan. Upgrade to enable them.",
            plan=tenant.plan.value,
        )
    return tenant


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> None:
    """
    Protect the cron trigger with CRON_SECRET.

    When CRON_SECRET is unset the trigger is open (local development).

    Raises:
        AuthenticationError: If the bearer token does not match
    """
    if not settings.CRON_SECRET:
        return

    provided = credentials.credentials if credentials else ""
    if not hmac.compare_digest(provided.encode(), settings.CRON_SECRET.encode()):
        raise AuthenticationError(message="Invalid cron secret")
