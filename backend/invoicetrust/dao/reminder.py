"""
Payment Reminder Data Access Object (DAO).

WHAT: Database operations for PaymentReminder.

WHY: Every state change a reminder can go through is expressed as a
conditional UPDATE whose WHERE clause encodes the allowed source state:

- cancel: only PENDING rows
- claim: only PENDING rows that are unclaimed or whose lease expired
- outcome: only the row still carrying the caller's claim token

A rowcount of zero means another actor got there first, so callers never
read-then-write and two dispatch runs cannot deliver the same reminder.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional
from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.dao.base import BaseDAO
from invoicetrust.models.reminder import (
    PaymentReminder,
    ReminderStatus,
    ReminderType,
    STALE_REMINDER_STATUSES,
)


class ReminderDAO(BaseDAO[PaymentReminder]):
    """
    Data Access Object for PaymentReminder model.

    HOW: Bulk and conditional updates skip ORM session synchronization;
    reads that follow them use populate_existing.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(PaymentReminder, session)

    async def get_fresh(self, reminder_id: int) -> Optional[PaymentReminder]:
        """Load a reminder, overwriting any stale copy in the identity map."""
        result = await self.session.execute(
            select(PaymentReminder)
            .where(PaymentReminder.id == reminder_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_invoice(self, invoice_id: int, tenant_id: int) -> List[PaymentReminder]:
        """All reminders of one invoice ordered by scheduled time."""
        result = await self.session.execute(
            select(PaymentReminder)
            .where(
                PaymentReminder.invoice_id == invoice_id,
                PaymentReminder.tenant_id == tenant_id,
            )
            .order_by(PaymentReminder.scheduled_for.asc(), PaymentReminder.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_for_tenant(
        self,
        tenant_id: int,
        status: Optional[ReminderStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[PaymentReminder]:
        """A tenant's reminders, optionally filtered by status."""
        filters = {"status": status} if status is not None else {}
        return await self.get_by_tenant(
            tenant_id,
            skip=skip,
            limit=limit,
            order_by=(PaymentReminder.scheduled_for.asc(), PaymentReminder.id.asc()),
            **filters,
        )

    async def find_active_slot(
        self,
        invoice_id: int,
        reminder_type: ReminderType,
        days_offset: int,
        scheduled_for: datetime,
        statuses: Iterable[ReminderStatus] = (ReminderStatus.PENDING,),
    ) -> Optional[PaymentReminder]:
        """
        Return the reminder occupying a slot, if any.

        Only rows in `statuses` count as occupying it. When several do, a
        PENDING one is returned first.
        """
        result = await self.session.execute(
            select(PaymentReminder)
            .where(
                PaymentReminder.invoice_id == invoice_id,
                PaymentReminder.type == reminder_type,
                PaymentReminder.days_offset == days_offset,
                PaymentReminder.scheduled_for == scheduled_for,
                PaymentReminder.status.in_(list(statuses)),
            )
            .order_by(
                case((PaymentReminder.status == ReminderStatus.PENDING, 0), else_=1),
                PaymentReminder.id.asc(),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def delete_with_status(
        self,
        invoice_id: int,
        statuses: Iterable[ReminderStatus] = STALE_REMINDER_STATUSES,
    ) -> int:
        """
        Delete an invoice's reminders in the given statuses.

        Returns:
            Number of rows deleted
        """
        result = await self.session.execute(
            delete(PaymentReminder)
            .where(
                PaymentReminder.invoice_id == invoice_id,
                PaymentReminder.status.in_(list(statuses)),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def cancel(self, reminder_id: int, tenant_id: int) -> bool:
        """
        PENDING -> CANCELLED for one reminder.

        Returns:
            False if the reminder was not PENDING (already terminal)
        """
        result = await self.session.execute(
            update(PaymentReminder)
            .where(
                PaymentReminder.id == reminder_id,
                PaymentReminder.tenant_id == tenant_id,
                PaymentReminder.status == ReminderStatus.PENDING,
            )
            .values(status=ReminderStatus.CANCELLED, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def cancel_all_for_invoice(self, invoice_id: int, tenant_id: int) -> int:
        """
        PENDING -> CANCELLED for every reminder of an invoice.

        Returns:
            Number of reminders cancelled
        """
        result = await self.session.execute(
            update(PaymentReminder)
            .where(
                PaymentReminder.invoice_id == invoice_id,
                PaymentReminder.tenant_id == tenant_id,
                PaymentReminder.status == ReminderStatus.PENDING,
            )
            .values(status=ReminderStatus.CANCELLED, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def list_due(
        self,
        before: datetime,
        lease_cutoff: datetime,
        limit: int = 50,
    ) -> List[PaymentReminder]:
        """
        PENDING reminders due at or before `before` that nobody holds.

        A claim older than lease_cutoff is treated as abandoned (the worker
        holding it crashed) and the reminder becomes claimable again.

        Args:
            before: Upper bound for scheduled_for
            lease_cutoff: Claims older than this are expired
            limit: Batch size

        Returns:
            Reminders ordered by scheduled_for
        """
        result = await self.session.execute(
            select(PaymentReminder)
            .where(
                PaymentReminder.status == ReminderStatus.PENDING,
                PaymentReminder.scheduled_for <= before,
                or_(
                    PaymentReminder.claimed_at.is_(None),
                    PaymentReminder.claimed_at < lease_cutoff,
                ),
            )
            .order_by(PaymentReminder.scheduled_for.asc(), PaymentReminder.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def claim(
        self,
        reminder_id: int,
        claim_token: str,
        now: datetime,
        lease_cutoff: datetime,
        statuses: Iterable[ReminderStatus] = (ReminderStatus.PENDING,),
    ) -> bool:
        """
        Take ownership of a reminder before delivering it.

        HOW: One conditional UPDATE. Exactly one concurrent caller sees
        rowcount 1; every other caller sees 0 and must skip the reminder.

        Args:
            reminder_id: Reminder to claim
            claim_token: Caller's unique token
            now: Claim time
            lease_cutoff: Existing claims older than this may be taken over
            statuses: Source statuses the claim accepts (manual resend also
                accepts FAILED)

        Returns:
            True if the claim was acquired
        """
        result = await self.session.execute(
            update(PaymentReminder)
            .where(
                PaymentReminder.id == reminder_id,
                PaymentReminder.status.in_(list(statuses)),
                or_(
                    PaymentReminder.claimed_at.is_(None),
                    PaymentReminder.claimed_at < lease_cutoff,
                ),
            )
            .values(claimed_at=now, claim_token=claim_token)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def record_outcome(
        self,
        reminder_id: int,
        claim_token: str,
        status: ReminderStatus,
        sent_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
        provider_message_id: Optional[str] = None,
    ) -> bool:
        """
        Write the dispatch result and release the claim.

        HOW: Guarded by claim_token so a worker whose lease was taken over
        cannot overwrite the newer owner's result.

        Returns:
            True if the outcome was recorded
        """
        now = datetime.utcnow()
        result = await self.session.execute(
            update(PaymentReminder)
            .where(
                PaymentReminder.id == reminder_id,
                PaymentReminder.claim_token == claim_token,
            )
            .values(
                status=status,
                sent_at=sent_at,
                error_message=error_message,
                provider_message_id=provider_message_id,
                claimed_at=None,
                claim_token=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def status_counts(self, tenant_id: int) -> Dict[ReminderStatus, int]:
        """Number of reminders per status for a tenant."""
        result = await self.session.execute(
            select(PaymentReminder.status, func.count(PaymentReminder.id))
            .where(PaymentReminder.tenant_id == tenant_id)
            .group_by(PaymentReminder.status)
        )
        return {status: count for status, count in result.all()}

    async def count_upcoming(self, tenant_id: int, start: datetime, end: datetime) -> int:
        """PENDING reminders scheduled within [start, end]."""
        result = await self.session.execute(
            select(func.count(PaymentReminder.id)).where(
                and_(
                    PaymentReminder.tenant_id == tenant_id,
                    PaymentReminder.status == ReminderStatus.PENDING,
                    PaymentReminder.scheduled_for >= start,
                    PaymentReminder.scheduled_for <= end,
                )
            )
        )
        return result.scalar() or 0
