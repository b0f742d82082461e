"""
Tenant, quota counter and team member DAOs.

WHAT: Data access for plan lookups and rolling-window usage counters.

WHY: Quota enforcement must stay correct when several app instances
handle the same tenant at once. Both the lazy window reset and the
check-and-increment are therefore single conditional UPDATE statements
whose rowcount tells the caller whether it won.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.dao.base import BaseDAO
from invoicetrust.models.tenant import QuotaCounter, TeamMember, Tenant


# Counter columns that can be consumed, by quota feature name
COUNTER_COLUMNS = {
    "invoices": "invoices_count",
    "pdf_api": "pdf_api_usage",
    "ocr": "ocr_usage",
}


class TenantDAO(BaseDAO[Tenant]):
    """Data Access Object for Tenant model."""

    def __init__(self, session: AsyncSession):
        super().__init__(Tenant, session)


class TeamMemberDAO(BaseDAO[TeamMember]):
    """Data Access Object for TeamMember model."""

    def __init__(self, session: AsyncSession):
        super().__init__(TeamMember, session)

    async def count_for_tenant(self, tenant_id: int) -> int:
        return await self.count(tenant_id=tenant_id)


class QuotaCounterDAO(BaseDAO[QuotaCounter]):
    """
    Data Access Object for QuotaCounter model.

    HOW: Mutations bypass the ORM unit of work (synchronize_session=False)
    and reads use populate_existing so a counter object already in the
    identity map is refreshed from the row.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(QuotaCounter, session)

    async def get_for_tenant(self, tenant_id: int) -> Optional[QuotaCounter]:
        result = await self.session.execute(
            select(QuotaCounter)
            .where(QuotaCounter.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, tenant_id: int, now: Optional[datetime] = None) -> QuotaCounter:
        """
        Get the tenant's counter row, creating a zeroed one if missing.

        Args:
            tenant_id: Tenant ID
            now: Window start for a newly created row

        Returns:
            QuotaCounter for the tenant
        """
        counter = await self.get_for_tenant(tenant_id)
        if counter is None:
            counter = await self.create(
                tenant_id=tenant_id,
                invoices_count=0,
                pdf_api_usage=0,
                ocr_usage=0,
                last_reset_date=now or datetime.utcnow(),
            )
        return counter

    async def reset_if_expired(self, tenant_id: int, cutoff: datetime, now: datetime) -> bool:
        """
        Zero all counters when the window started before cutoff.

        HOW: UPDATE ... WHERE last_reset_date < cutoff. A second concurrent
        caller finds last_reset_date already advanced and updates nothing.

        Args:
            tenant_id: Tenant ID
            cutoff: now - window length
            now: New window start

        Returns:
            True if this call performed the reset
        """
        result = await self.session.execute(
            update(QuotaCounter)
            .where(
                QuotaCounter.tenant_id == tenant_id,
                QuotaCounter.last_reset_date < cutoff,
            )
            .values(
                invoices_count=0,
                pdf_api_usage=0,
                ocr_usage=0,
                last_reset_date=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def try_increment(self, tenant_id: int, feature: str, amount: int, limit: int) -> bool:
        """
        Atomically add amount to a counter if the result stays within limit.

        Args:
            tenant_id: Tenant ID
            feature: Key of COUNTER_COLUMNS
            amount: Units to consume
            limit: Plan limit for the feature

        Returns:
            True if the increment was applied

        Raises:
            KeyError: If feature has no counter column
        """
        column = getattr(QuotaCounter, COUNTER_COLUMNS[feature])
        result = await self.session.execute(
            update(QuotaCounter)
            .where(
                QuotaCounter.tenant_id == tenant_id,
                column + amount <= limit,
            )
            .values({column: column + amount, QuotaCounter.updated_at: datetime.utcnow()})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0
