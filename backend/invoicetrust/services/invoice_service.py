"""
Invoice lifecycle service.

WHAT: Issues invoices (quota, pricing, sealing, default reminders) and
applies lifecycle changes (payment status, due date, delivery, deletion).

WHY: Issuing touches every component of the engine in a fixed order, and
each lifecycle change has reminder side effects (closing an invoice
cancels its reminders, moving the due date rebuilds them). Keeping that
orchestration here leaves the routers thin and the order testable.

HOW: Everything runs in the caller's session/transaction, so a failure
after the quota was consumed rolls the consumption back with the rest.
"""

import logging
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.core.exceptions import (
    DeliveryError,
    InvalidStateTransitionError,
    InvoiceNotFoundError,
    QuotaExceededError,
    ResourceAlreadyExistsError,
    ValidationError,
)
from invoicetrust.dao.invoice import InvoiceDAO
from invoicetrust.dao.reminder import ReminderDAO
from invoicetrust.models.invoice import DeliveryStatus, Invoice, PaymentStatus
from invoicetrust.models.reminder import ReminderChannel, ReminderStatus
from invoicetrust.models.tenant import Tenant
from invoicetrust.schemas.invoice import InvoiceCreate, InvoiceItemCreate
from invoicetrust.schemas.tenant_settings import TenantSettings
from invoicetrust.services.audit import AuditService
from invoicetrust.services.delivery import DeliveryRouter
from invoicetrust.services.quota import QuotaFeature, QuotaGate
from invoicetrust.services.reminder_messages import ReminderMessageService, get_message_service
from invoicetrust.services.reminder_scheduler import ReminderScheduler
from invoicetrust.services.verification import VerificationEngine

logger = logging.getLogger(__name__)


CENTS = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def price_item(item: InvoiceItemCreate) -> Tuple[Decimal, Decimal]:
    """
    Net and tax amounts of one line.

    net = quantity * unit_price - discount
    tax = net * tax_rate / 100
    """
    net = _money(item.quantity * item.unit_price - item.discount)
    if net < 0:
        raise ValidationError(
            message="Item discount exceeds the line amount",
            description=item.description,
        )
    tax = _money(net * item.tax_rate / Decimal(100))
    return net, tax


class InvoiceService:
    """
    Orchestrates invoice issuing and lifecycle changes.

    Example:
        service = InvoiceService(db)
        invoice, reminders = await service.issue_invoice(tenant, data)
    """

    def __init__(
        self,
        session: AsyncSession,
        router: Optional[DeliveryRouter] = None,
        messages: Optional[ReminderMessageService] = None,
    ):
        self.session = session
        self.invoice_dao = InvoiceDAO(session)
        self.reminder_dao = ReminderDAO(session)
        self.quota_gate = QuotaGate(session)
        self.router = router or DeliveryRouter()
        self.messages = messages or get_message_service()
        self.scheduler = ReminderScheduler(
            session,
            quota_gate=self.quota_gate,
            router=self.router,
            messages=self.messages,
        )
        self.audit = AuditService(session)

    async def get_invoice(self, tenant_id: int, invoice_id: int) -> Invoice:
        invoice = await self.invoice_dao.get_by_id_and_tenant(invoice_id, tenant_id)
        if not invoice:
            raise InvoiceNotFoundError(invoice_id=invoice_id)
        return invoice

    async def issue_invoice(
        self,
        tenant: Tenant,
        data: InvoiceCreate,
    ) -> Tuple[Invoice, List]:
        """
        Issue a new invoice.

        Steps:
        1. Template allow-list check
        2. Atomic invoices quota consume
        3. Price items and totals, insert invoice with items
        4. Seal
        5. Default reminders when the plan allows and a due date is set

        Args:
            tenant: Issuing tenant
            data: Validated request

        Returns:
            (sealed invoice, scheduled reminders)

        Raises:
            QuotaExceededError: Template not in plan, or invoices limit reached
            ValidationError: Due date before issue date, negative total
            ResourceAlreadyExistsError: Concurrent invoice number collision
        """
        if not await self.quota_gate.can_use_template(tenant.id, data.template_id):
            raise QuotaExceededError(
                feature=QuotaFeature.TEMPLATES.value,
                message=f"Template '{data.template_id}' is not available on your plan",
                template_id=data.template_id,
            )

        issue_date = data.issue_date or date.today()
        if data.due_date and data.due_date < issue_date:
            raise ValidationError(message="Due date cannot be before the issue date")

        items = []
        subtotal = Decimal("0")
        tax_amount = Decimal("0")
        for index, item in enumerate(data.items):
            net, tax = price_item(item)
            subtotal += net
            tax_amount += tax
            items.append(
                {
                    "description": item.description,
                    "quantity": item.quantity,
                    "unit": item.unit,
                    "unit_price": item.unit_price,
                    "tax_rate": item.tax_rate,
                    "discount": item.discount,
                    "amount": net + tax,
                    "sort_order": index,
                }
            )

        discount_amount = _money(data.discount_amount)
        total_amount = _money(subtotal + tax_amount - discount_amount)
        if total_amount < 0:
            raise ValidationError(message="Invoice discount exceeds the invoice amount")

        decision = await self.quota_gate.consume(tenant.id, QuotaFeature.INVOICES)
        if not decision.allowed:
            raise QuotaExceededError(
                feature=QuotaFeature.INVOICES.value,
                message="Monthly invoice limit reached. Upgrade your plan to issue more invoices.",
                used=decision.used,
                limit=decision.limit,
            )

        sequence = await self.invoice_dao.next_sequence(tenant.id)
        try:
            async with self.session.begin_nested():
                invoice = await self.invoice_dao.create_with_items(
                    items,
                    tenant_id=tenant.id,
                    invoice_number=Invoice.generate_invoice_number(sequence),
                    currency=data.currency.upper(),
                    buyer_name=data.buyer.name,
                    buyer_email=data.buyer.email,
                    buyer_phone=data.buyer.phone,
                    buyer_address=data.buyer.address,
                    buyer_tax_id=data.buyer.tax_id,
                    subtotal=_money(subtotal),
                    tax_amount=_money(tax_amount),
                    discount_amount=discount_amount,
                    total_amount=total_amount,
                    notes=data.notes,
                    terms=data.terms,
                    issue_date=issue_date,
                    due_date=data.due_date,
                    payment_status=PaymentStatus.PENDING,
                    delivery_status=DeliveryStatus.DRAFT,
                )
        except IntegrityError:
            raise ResourceAlreadyExistsError(
                message="Invoice number already in use, please retry",
                tenant_id=tenant.id,
            )

        await VerificationEngine(self.session).seal(invoice)

        reminders = []
        if invoice.due_date and await self.scheduler.is_eligible(tenant.id):
            reminders = await self.scheduler.create_default_set(tenant.id, invoice.id)

        await self.audit.log_invoice_issued(
            tenant.id,
            invoice.id,
            invoice.invoice_number,
            reminders_scheduled=len(reminders),
        )
        logger.info(
            f"Invoice {invoice.invoice_number} issued",
            extra={"tenant_id": tenant.id, "invoice_id": invoice.id, "reminders": len(reminders)},
        )
        return invoice, reminders

    async def update_status(
        self,
        tenant_id: int,
        invoice_id: int,
        new_status: PaymentStatus,
    ) -> Invoice:
        """
        Change the payment status.

        PAID and CANCELLED cancel every pending reminder. PAID also marks a
        draft invoice as delivered.

        Returns:
            Updated invoice
        """
        invoice = await self.get_invoice(tenant_id, invoice_id)
        old_status = invoice.payment_status
        if old_status == new_status:
            return invoice

        delivery_status = None
        if new_status == PaymentStatus.PAID and invoice.delivery_status == DeliveryStatus.DRAFT:
            delivery_status = DeliveryStatus.SENT

        invoice = await self.invoice_dao.update_status(
            invoice_id, tenant_id, new_status, delivery_status=delivery_status
        )

        cancelled = 0
        if new_status in (PaymentStatus.PAID, PaymentStatus.CANCELLED):
            cancelled = await self.scheduler.cancel_all_for_invoice(tenant_id, invoice_id)

        await self.audit.log_status_change(
            tenant_id,
            invoice_id,
            old_status.value,
            new_status.value,
            reminders_cancelled=cancelled,
        )
        return invoice

    async def update_due_date(
        self,
        tenant_id: int,
        invoice_id: int,
        due_date: Optional[date],
    ) -> Tuple[Invoice, List]:
        """
        Move the due date and rebuild the unsent reminders.

        The due date is not sealed, so the invoice still verifies.

        Returns:
            (updated invoice, new active reminders)
        """
        invoice = await self.get_invoice(tenant_id, invoice_id)
        if invoice.is_paid:
            raise InvalidStateTransitionError(
                message="Cannot change the due date of a paid invoice",
                invoice_id=invoice_id,
            )
        if due_date and due_date < invoice.issue_date:
            raise ValidationError(message="Due date cannot be before the issue date")

        old_due_date = invoice.due_date
        invoice = await self.invoice_dao.update_due_date(invoice_id, tenant_id, due_date)
        reminders = await self.scheduler.reschedule_for_invoice(tenant_id, invoice_id)

        await self.audit.log_due_date_change(
            tenant_id,
            invoice_id,
            old_due_date.isoformat() if old_due_date else None,
            due_date.isoformat() if due_date else None,
            reminders_scheduled=len(reminders),
        )
        return invoice, reminders

    async def send_invoice(
        self,
        tenant_id: int,
        invoice_id: int,
        channel: ReminderChannel = ReminderChannel.EMAIL,
    ) -> Invoice:
        """
        Deliver the invoice notice (with verification link) to the buyer.

        Raises:
            ValidationError: If the buyer has no contact for the channel
            InvalidStateTransitionError: If the invoice is cancelled
            DeliveryError: If the channel rejected the message
        """
        invoice = await self.get_invoice(tenant_id, invoice_id)
        if invoice.payment_status == PaymentStatus.CANCELLED:
            raise InvalidStateTransitionError(
                message="Cannot send a cancelled invoice",
                invoice_id=invoice_id,
            )

        recipient = invoice.buyer_email if channel == ReminderChannel.EMAIL else invoice.buyer_phone
        if not recipient:
            raise ValidationError(
                message="No buyer email address" if channel == ReminderChannel.EMAIL else "No buyer phone number",
                channel=channel.value,
            )

        tenant = invoice.tenant
        tenant_settings = TenantSettings.from_raw(tenant.settings)
        rendered = self.messages.render_invoice_notice(invoice, tenant.business_name, channel)
        message = self.router.build_message(
            channel, recipient, rendered.subject, rendered.text, rendered.html, tenant_settings
        )
        result = await self.router.get_channel(channel, tenant_settings).send(message)
        if not result.success:
            raise DeliveryError(
                message="Invoice could not be delivered",
                channel=channel.value,
                provider=result.provider,
                reason=result.error,
            )

        invoice = await self.invoice_dao.mark_sent(invoice_id, tenant_id)
        await self.audit.log_invoice_sent(tenant_id, invoice_id, channel.value)
        return invoice

    async def delete_invoice(self, tenant_id: int, invoice_id: int) -> None:
        """Cancel reminders, then delete the invoice and its items."""
        invoice = await self.get_invoice(tenant_id, invoice_id)

        await self.scheduler.cancel_all_for_invoice(tenant_id, invoice_id)
        await self.reminder_dao.delete_with_status(invoice_id, list(ReminderStatus))
        await self.audit.log_invoice_deleted(tenant_id, invoice_id, invoice.invoice_number)

        await self.session.delete(invoice)
        await self.session.flush()
        logger.info(f"Invoice {invoice_id} deleted", extra={"tenant_id": tenant_id})
