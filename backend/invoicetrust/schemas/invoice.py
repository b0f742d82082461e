"""
Invoice schemas for API request/response validation.

WHAT: Pydantic schemas for issuing invoices and changing their lifecycle.

WHY: Schemas provide:
1. Type-safe request/response handling
2. Automatic validation with clear error messages
3. A response shape that never includes sealed_hash

HOW: Uses Pydantic v2 with Field validators and model_config.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, Field, ConfigDict

from invoicetrust.models.invoice import DeliveryStatus, PaymentStatus
from invoicetrust.models.reminder import ReminderChannel


# ============================================================================
# Request Schemas
# ============================================================================


class InvoiceItemCreate(BaseModel):
    """One line item. amount is computed server-side."""

    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit: Optional[str] = Field(default=None, max_length=20)
    unit_price: Decimal = Field(..., ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    discount: Decimal = Field(default=Decimal("0"), ge=0)


class BuyerSnapshot(BaseModel):
    """Buyer details copied onto the invoice at issue time."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[str] = Field(default=None, max_length=2000)
    tax_id: Optional[str] = Field(default=None, max_length=100)


class InvoiceCreate(BaseModel):
    """
    Schema for issuing an invoice.

    Totals are derived from the items; callers only send an invoice-level
    discount on top of the per-item discounts.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    buyer: BuyerSnapshot
    items: List[InvoiceItemCreate] = Field(..., min_length=1)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    issue_date: Optional[date] = Field(
        default=None,
        description="Invoice issue date (defaults to today)",
    )
    due_date: Optional[date] = Field(default=None, description="Payment due date")
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = Field(default=None, max_length=5000)
    terms: Optional[str] = Field(default=None, max_length=5000)
    template_id: str = Field(default="classic", max_length=100)


class InvoiceStatusUpdate(BaseModel):
    """Schema for changing the payment status."""

    status: PaymentStatus


class InvoiceDueDateUpdate(BaseModel):
    """Schema for changing the due date (regenerates reminders)."""

    due_date: Optional[date]


class InvoiceSendRequest(BaseModel):
    """Schema for delivering the invoice notice to the buyer."""

    channel: ReminderChannel = ReminderChannel.EMAIL


# ============================================================================
# Response Schemas
# ============================================================================


class InvoiceItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    quantity: Decimal
    unit: Optional[str] = None
    unit_price: Decimal
    tax_rate: Decimal
    discount: Decimal
    amount: Decimal
    sort_order: int


class InvoiceResponse(BaseModel):
    """
    Invoice as returned to the issuing tenant.

    WHY: sealed_hash is deliberately absent. Only the public verification
    code leaves the server.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    invoice_number: str
    currency: str
    buyer_name: str
    buyer_email: Optional[str] = None
    buyer_phone: Optional[str] = None
    buyer_address: Optional[str] = None
    buyer_tax_id: Optional[str] = None
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    notes: Optional[str] = None
    terms: Optional[str] = None
    issue_date: date
    due_date: Optional[date] = None
    payment_status: PaymentStatus
    delivery_status: DeliveryStatus
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    verification_code: Optional[str] = None
    items: List[InvoiceItemResponse] = []
    created_at: datetime
    updated_at: datetime


class InvoiceIssueResponse(InvoiceResponse):
    """Issue response including how many reminders were scheduled."""

    reminders_scheduled: int = 0
    verification_url: Optional[str] = None
