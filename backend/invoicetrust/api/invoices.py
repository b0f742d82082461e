"""
Invoice API endpoints.

WHAT: Issue invoices and manage their lifecycle.

WHY: Issuing is where the engine's components meet: the plan quota is
consumed, the invoice is sealed and its default reminders are planned.
Lifecycle changes keep reminders in step with the invoice (closing it
cancels them, moving the due date rebuilds them).

HOW: FastAPI router with:
- Tenant-scoped queries (a foreign invoice id is a 404)
- Per-tenant rate limiting on issue
- InvoiceService for orchestration
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.core.deps import get_current_tenant
from invoicetrust.db.session import get_db
from invoicetrust.middleware.rate_limiter import rate_limit_issue
from invoicetrust.models.tenant import Tenant
from invoicetrust.schemas.invoice import (
    InvoiceCreate,
    InvoiceDueDateUpdate,
    InvoiceIssueResponse,
    InvoiceResponse,
    InvoiceSendRequest,
    InvoiceStatusUpdate,
)
from invoicetrust.schemas.verification import VerificationStats
from invoicetrust.services.invoice_service import InvoiceService
from invoicetrust.services.reminder_messages import verification_url
from invoicetrust.services.verification import VerificationEngine


router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post(
    "",
    response_model=InvoiceIssueResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue invoice",
    description="Create, seal and schedule reminders for a new invoice",
    dependencies=[Depends(rate_limit_issue)],
)
async def issue_invoice(
    data: InvoiceCreate,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> InvoiceIssueResponse:
    """
    Issue a new invoice.

    Raises:
        QuotaExceededError (403): Template not in plan or invoice limit reached
        ValidationError (400): Inconsistent dates or amounts
    """
    invoice, reminders = await InvoiceService(db).issue_invoice(tenant, data)

    response = InvoiceIssueResponse.model_validate(invoice)
    response.reminders_scheduled = len(reminders)
    response.verification_url = verification_url(invoice.verification_code)
    return response


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    status_code=status.HTTP_200_OK,
    summary="Get invoice",
)
async def get_invoice(
    invoice_id: int,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    invoice = await InvoiceService(db).get_invoice(tenant.id, invoice_id)
    return InvoiceResponse.model_validate(invoice)


@router.patch(
    "/{invoice_id}/status",
    response_model=InvoiceResponse,
    status_code=status.HTTP_200_OK,
    summary="Update payment status",
    description="PAID and CANCELLED cancel all pending reminders",
)
async def update_invoice_status(
    invoice_id: int,
    data: InvoiceStatusUpdate,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    invoice = await InvoiceService(db).update_status(tenant.id, invoice_id, data.status)
    return InvoiceResponse.model_validate(invoice)


@router.patch(
    "/{invoice_id}/due-date",
    response_model=InvoiceResponse,
    status_code=status.HTTP_200_OK,
    summary="Update due date",
    description="Moves the due date and rebuilds unsent reminders",
)
async def update_invoice_due_date(
    invoice_id: int,
    data: InvoiceDueDateUpdate,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    invoice, _ = await InvoiceService(db).update_due_date(tenant.id, invoice_id, data.due_date)
    return InvoiceResponse.model_validate(invoice)


@router.post(
    "/{invoice_id}/send",
    response_model=InvoiceResponse,
    status_code=status.HTTP_200_OK,
    summary="Send invoice",
    description="Deliver the invoice notice with its verification link to the buyer",
)
async def send_invoice(
    invoice_id: int,
    data: InvoiceSendRequest,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """
    Raises:
        ValidationError (400): Buyer has no contact for the channel
        DeliveryError (502): Provider rejected the message
    """
    invoice = await InvoiceService(db).send_invoice(tenant.id, invoice_id, data.channel)
    return InvoiceResponse.model_validate(invoice)


@router.delete(
    "/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete invoice",
)
async def delete_invoice(
    invoice_id: int,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await InvoiceService(db).delete_invoice(tenant.id, invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{invoice_id}/verification-stats",
    response_model=VerificationStats,
    status_code=status.HTTP_200_OK,
    summary="Verification statistics",
    description="How often the invoice was checked and how many checks failed",
)
async def get_verification_stats(
    invoice_id: int,
    tenant: Tenant = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> VerificationStats:
    return await VerificationEngine(db).get_stats(tenant.id, invoice_id)
