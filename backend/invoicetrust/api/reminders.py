"""
Payment reminder API endpoints.

WHAT: List, create, cancel and manually send payment reminders.

WHY: Tenants normally rely on the default set created at issue time, but
need to see what is scheduled, add one-off reminders, stop reminders for
an invoice they settled offline, and resend one that failed.

HOW: Every route requires a plan with payment reminders
(require_reminder_plan); ReminderScheduler does the work.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.core.deps import require_reminder_plan
from invoicetrust.db.session import get_db
from invoicetrust.models.reminder import ReminderStatus
from invoicetrust.models.tenant import Tenant
from invoicetrust.schemas.reminder import (
    ReminderCancelResponse,
    ReminderCreate,
    ReminderResponse,
    ReminderStats,
)
from invoicetrust.services.reminder_scheduler import ReminderScheduler


router = APIRouter(tags=["reminders"])


# ============================================================================
# Tenant-wide
# ============================================================================


@router.get(
    "/reminders",
    response_model=List[ReminderResponse],
    status_code=status.HTTP_200_OK,
    summary="List reminders",
)
async def list_reminders(
    status_filter: Optional[ReminderStatus] = Query(
        default=None,
        alias="status",
        description="Filter by reminder status",
    ),
    skip: int = Query(default=0, ge=0, description="Number of items to skip"),
    limit: int = Query(default=50, ge=1, le=200, description="Maximum items to return"),
    tenant: Tenant = Depends(require_reminder_plan),
    db: AsyncSession = Depends(get_db),
) -> List[ReminderResponse]:
    reminders = await ReminderScheduler(db).list_for_tenant(
        tenant.id, status=status_filter, skip=skip, limit=limit
    )
    return [ReminderResponse.model_validate(r) for r in reminders]


@router.get(
    "/reminders/stats",
    response_model=ReminderStats,
    status_code=status.HTTP_200_OK,
    summary="Reminder statistics",
)
async def get_reminder_stats(
    tenant: Tenant = Depends(require_reminder_plan),
    db: AsyncSession = Depends(get_db),
) -> ReminderStats:
    return await ReminderScheduler(db).get_stats(tenant.id)


@router.post(
    "/reminders/{reminder_id}/cancel",
    response_model=ReminderCancelResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel reminder",
    description="Cancel one pending reminder (no-op if already sent, failed or cancelled)",
)
async def cancel_reminder(
    reminder_id: int,
    tenant: Tenant = Depends(require_reminder_plan),
    db: AsyncSession = Depends(get_db),
) -> ReminderCancelResponse:
    cancelled = await ReminderScheduler(db).cancel(tenant.id, reminder_id)
    return ReminderCancelResponse(cancelled=1 if cancelled else 0)


@router.post(
    "/reminders/{reminder_id}/send",
    response_model=ReminderResponse,
    status_code=status.HTTP_200_OK,
    summary="Send reminder now",
    description="Deliver a pending or failed reminder immediately",
)
async def send_reminder_now(
    reminder_id: int,
    tenant: Tenant = Depends(require_reminder_plan),
    db: AsyncSession = Depends(get_db),
) -> ReminderResponse:
    reminder = await ReminderScheduler(db).send_now(tenant.id, reminder_id)
    return ReminderResponse.model_validate(reminder)


# ============================================================================
# Per invoice
# ============================================================================


@router.get(
    "/invoices/{invoice_id}/reminders",
    response_model=List[ReminderResponse],
    status_code=status.HTTP_200_OK,
    summary="List invoice reminders",
)
async def list_invoice_reminders(
    invoice_id: int,
    tenant: Tenant = Depends(require_reminder_plan),
    db: AsyncSession = Depends(get_db),
) -> List[ReminderResponse]:
    reminders = await ReminderScheduler(db).list_for_invoice(tenant.id, invoice_id)
    return [ReminderResponse.model_validate(r) for r in reminders]


@router.post(
    "/invoices/{invoice_id}/reminders/defaults",
    response_model=List[ReminderResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create default reminders",
    description="Create the tenant's default reminder set (idempotent)",
)
async def create_default_reminders(
    invoice_id: int,
    tenant: Tenant = Depends(require_reminder_plan),
    db: AsyncSession = Depends(get_db),
) -> List[ReminderResponse]:
    reminders = await ReminderScheduler(db).create_default_set(tenant.id, invoice_id)
    return [ReminderResponse.model_validate(r) for r in reminders]


@router.post(
    "/invoices/{invoice_id}/reminders",
    response_model=ReminderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create reminder",
)
async def create_reminder(
    invoice_id: int,
    data: ReminderCreate,
    tenant: Tenant = Depends(require_reminder_plan),
    db: AsyncSession = Depends(get_db),
) -> ReminderResponse:
    """
    Raises:
        ValidationError (400): Past date or missing custom_date
        ResourceAlreadyExistsError (409): Slot already has a pending reminder
    """
    reminder = await ReminderScheduler(db).create_single(
        tenant.id,
        invoice_id,
        data.type,
        days_offset=data.days_offset,
        channel=data.channel,
        custom_date=data.custom_date,
    )
    return ReminderResponse.model_validate(reminder)


@router.post(
    "/invoices/{invoice_id}/reminders/cancel",
    response_model=ReminderCancelResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel invoice reminders",
)
async def cancel_invoice_reminders(
    invoice_id: int,
    tenant: Tenant = Depends(require_reminder_plan),
    db: AsyncSession = Depends(get_db),
) -> ReminderCancelResponse:
    cancelled = await ReminderScheduler(db).cancel_all_for_invoice(tenant.id, invoice_id)
    return ReminderCancelResponse(cancelled=cancelled)
