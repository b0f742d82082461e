"""
Quota API endpoints.

WHAT: Read-only view of the tenant's plan usage and feature access.

WHY: The dashboard shows remaining invoices for the window and hides or
upsells features the plan does not include.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.core.deps import get_current_tenant
from invoicetrust.core.exceptions import TenantNotFoundError
from invoicetrust.db.session import get_db
from invoicetrust.models.tenant import Tenant
from invoicetrust.schemas.quota import FeatureCheck, TemplateCheck, UsageSnapshot
from invoicetrust.services.quota import QuotaFeature, QuotaGate


router = APIRouter(prefix="/quota", tags=["quota"])


@router.get(
    "/usage",
    response_model=UsageSnapshot,
    status_code=status.HTTP_200_OK,
    summary="Usage snapshot",
)
async def get_usage(
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> UsageSnapshot:
    snapshot = await QuotaGate(db).get_usage(tenant.id)
    if snapshot is None:
        raise TenantNotFoundError(tenant_id=tenant.id)
    return snapshot


@router.get(
    "/check/{feature}",
    response_model=FeatureCheck,
    status_code=status.HTTP_200_OK,
    summary="Check feature access",
)
async def check_feature(
    feature: QuotaFeature,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> FeatureCheck:
    allowed = await QuotaGate(db).check_limit(tenant.id, feature)
    return FeatureCheck(feature=feature.value, allowed=allowed)


@router.get(
    "/templates/{template_id}",
    response_model=TemplateCheck,
    status_code=status.HTTP_200_OK,
    summary="Check template access",
)
async def check_template(
    template_id: str,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> TemplateCheck:
    allowed = await QuotaGate(db).can_use_template(tenant.id, template_id)
    return TemplateCheck(template_id=template_id, allowed=allowed)
