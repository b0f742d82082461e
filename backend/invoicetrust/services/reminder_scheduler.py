"""
Reminder scheduling.

WHAT: Creates, cancels, reschedules and manually sends payment reminders
for an invoice.

WHY: Reminders are planned up front from the invoice due date and the
tenant's reminder settings, then left for the dispatch worker. Re-running
the planner (retries, double clicks, concurrent requests) must never
produce two active reminders for the same slot.

HOW:
- The default set is built inside one SAVEPOINT: stale CANCELLED/SKIPPED
  rows are deleted, then each slot is inserted unless a PENDING, SENT or
  FAILED reminder already holds it, so a delivered reminder is never
  planned again
- The partial unique index on active slots catches the race between two
  concurrent creators; the loser rolls back its savepoint and returns
  the winner's reminders
- Cancellation is a conditional UPDATE on status = PENDING
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.core.config import settings
from invoicetrust.core.exceptions import (
    InvalidStateTransitionError,
    InvoiceNotFoundError,
    ReminderNotFoundError,
    ResourceAlreadyExistsError,
    ValidationError,
)
from invoicetrust.dao.invoice import InvoiceDAO
from invoicetrust.dao.reminder import ReminderDAO
from invoicetrust.models.audit_log import AuditAction
from invoicetrust.models.invoice import Invoice
from invoicetrust.models.reminder import (
    PaymentReminder,
    ReminderChannel,
    ReminderStatus,
    ReminderType,
    SLOT_HOLDING_STATUSES,
    STALE_REMINDER_STATUSES,
)
from invoicetrust.schemas.reminder import ReminderStats
from invoicetrust.schemas.tenant_settings import ReminderSettings, TenantSettings
from invoicetrust.services.audit import AuditService
from invoicetrust.services.delivery import DeliveryRouter
from invoicetrust.services.quota import QuotaFeature, QuotaGate
from invoicetrust.services.reminder_dispatch import deliver_reminder, new_claim_token
from invoicetrust.services.reminder_messages import ReminderMessageService, get_message_service

logger = logging.getLogger(__name__)


UPCOMING_WINDOW = timedelta(days=7)

# Statuses a manual send accepts
RESENDABLE_STATUSES = (ReminderStatus.PENDING, ReminderStatus.FAILED)


def signed_offset(reminder_type: ReminderType, days: int) -> int:
    """
    Apply the sign implied by the reminder type.

    BEFORE_DUE is always negative, ON_DUE is 0, AFTER_DUE is always
    positive. CUSTOM keeps the value as given.
    """
    if reminder_type == ReminderType.BEFORE_DUE:
        return -abs(days)
    if reminder_type == ReminderType.ON_DUE:
        return 0
    if reminder_type == ReminderType.AFTER_DUE:
        return abs(days)
    return days


def scheduled_time(due_date: date, days_offset: int) -> datetime:
    """Midnight UTC of due_date shifted by days_offset."""
    return datetime.combine(due_date, time.min) + timedelta(days=days_offset)


def default_slots(reminder_settings: ReminderSettings) -> List[tuple[ReminderType, int]]:
    """(type, signed offset) pairs of a tenant's default reminder set."""
    slots = [(ReminderType.BEFORE_DUE, -day) for day in reminder_settings.before_due_days]
    if reminder_settings.on_due_date:
        slots.append((ReminderType.ON_DUE, 0))
    slots.extend((ReminderType.AFTER_DUE, day) for day in reminder_settings.after_due_days)
    return slots


class ReminderScheduler:
    """
    Plans and manages an invoice's reminders.

    Example:
        scheduler = ReminderScheduler(db)
        if await scheduler.is_eligible(tenant.id):
            await scheduler.create_default_set(tenant.id, invoice.id)
    """

    def __init__(
        self,
        session: AsyncSession,
        quota_gate: Optional[QuotaGate] = None,
        router: Optional[DeliveryRouter] = None,
        messages: Optional[ReminderMessageService] = None,
    ):
        """
        Initialize scheduler.

        Args:
            session: Async database session
            quota_gate: Plan gate (created from the session if omitted)
            router: Channel selector used by send_now
            messages: Message renderer used by send_now
        """
        self.session = session
        self.quota_gate = quota_gate or QuotaGate(session)
        self.router = router or DeliveryRouter()
        self.messages = messages or get_message_service()
        self.invoice_dao = InvoiceDAO(session)
        self.reminder_dao = ReminderDAO(session)
        self.audit = AuditService(session)

    async def is_eligible(self, tenant_id: int) -> bool:
        """Whether the tenant's plan includes payment reminders."""
        return await self.quota_gate.check_limit(tenant_id, QuotaFeature.PAYMENT_REMINDERS)

    async def _get_invoice(self, tenant_id: int, invoice_id: int) -> Invoice:
        invoice = await self.invoice_dao.get_by_id_and_tenant(invoice_id, tenant_id)
        if not invoice:
            raise InvoiceNotFoundError(invoice_id=invoice_id)
        return invoice

    async def _get_reminder(self, tenant_id: int, reminder_id: int) -> PaymentReminder:
        reminder = await self.reminder_dao.get_by_id_and_tenant(reminder_id, tenant_id)
        if not reminder:
            raise ReminderNotFoundError(reminder_id=reminder_id)
        return reminder

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_default_set(
        self,
        tenant_id: int,
        invoice_id: int,
        reminder_settings: Optional[ReminderSettings] = None,
        today: Optional[date] = None,
    ) -> List[PaymentReminder]:
        """
        Create the tenant's default reminders for an invoice.

        Re-running is a no-op for slots that already hold a PENDING, SENT
        or FAILED reminder. Slots whose day has already passed are skipped.

        Args:
            tenant_id: Tenant ID
            invoice_id: Invoice ID
            reminder_settings: Schedule override (defaults to tenant settings)
            today: Clock override (tests)

        Returns:
            The PENDING reminders holding the default slots, by time

        Raises:
            InvoiceNotFoundError: If the invoice is missing or owned by another tenant
            InvalidStateTransitionError: If the invoice has no due date or is closed
        """
        invoice = await self._get_invoice(tenant_id, invoice_id)
        if invoice.due_date is None:
            raise InvalidStateTransitionError(
                message="Invoice has no due date",
                invoice_id=invoice_id,
            )
        if invoice.is_closed:
            raise InvalidStateTransitionError(
                message=f"Cannot schedule reminders for a {invoice.payment_status.value} invoice",
                invoice_id=invoice_id,
            )

        if reminder_settings is None:
            reminder_settings = TenantSettings.from_raw(invoice.tenant.settings).reminders
        if not reminder_settings.enable_reminders:
            logger.info(f"Reminders disabled for tenant {tenant_id}")
            return []

        today = today or datetime.utcnow().date()
        channel = reminder_settings.preferred_channel
        reminders: List[PaymentReminder] = []
        created = 0

        try:
            async with self.session.begin_nested():
                await self.reminder_dao.delete_with_status(invoice_id, STALE_REMINDER_STATUSES)

                for reminder_type, offset in default_slots(reminder_settings):
                    scheduled_for = scheduled_time(invoice.due_date, offset)
                    if scheduled_for.date() < today:
                        continue

                    existing = await self.reminder_dao.find_active_slot(
                        invoice_id,
                        reminder_type,
                        offset,
                        scheduled_for,
                        statuses=SLOT_HOLDING_STATUSES,
                    )
                    if existing:
                        if not existing.is_terminal:
                            reminders.append(existing)
                        continue

                    reminders.append(
                        await self.reminder_dao.create(
                            tenant_id=tenant_id,
                            invoice_id=invoice_id,
                            type=reminder_type,
                            days_offset=offset,
                            channel=channel,
                            scheduled_for=scheduled_for,
                            status=ReminderStatus.PENDING,
                        )
                    )
                    created += 1

        except IntegrityError:
            # A concurrent creator won the slot; its set is the result
            logger.info(f"Concurrent reminder creation for invoice {invoice_id}, using existing set")
            existing = await self.reminder_dao.list_for_invoice(invoice_id, tenant_id)
            return [r for r in existing if r.status == ReminderStatus.PENDING]

        if created:
            await self.audit.log_reminder_event(
                AuditAction.REMINDERS_CREATED,
                tenant_id,
                invoice_id,
                extra_data={"created": created, "channel": channel.value},
            )
            logger.info(
                f"Created {created} reminders for invoice {invoice_id}",
                extra={"tenant_id": tenant_id, "invoice_id": invoice_id},
            )

        return sorted(reminders, key=lambda r: r.scheduled_for)

    async def create_single(
        self,
        tenant_id: int,
        invoice_id: int,
        reminder_type: ReminderType,
        days_offset: int = 0,
        channel: ReminderChannel = ReminderChannel.EMAIL,
        custom_date: Optional[datetime] = None,
        today: Optional[date] = None,
    ) -> PaymentReminder:
        """
        Create one reminder.

        Args:
            tenant_id: Tenant ID
            invoice_id: Invoice ID
            reminder_type: Reminder type (sign of days_offset follows it)
            days_offset: Days relative to the due date
            channel: Delivery channel
            custom_date: Absolute time (CUSTOM only, required there)
            today: Clock override (tests)

        Returns:
            The created reminder

        Raises:
            InvoiceNotFoundError: If the invoice is missing or owned by another tenant
            ValidationError: Missing custom_date, or a time in the past
            InvalidStateTransitionError: No due date, or the invoice is paid
            ResourceAlreadyExistsError: An active reminder already holds the slot
        """
        invoice = await self._get_invoice(tenant_id, invoice_id)
        if invoice.is_paid:
            raise InvalidStateTransitionError(
                message="Cannot schedule reminders for a paid invoice",
                invoice_id=invoice_id,
            )

        if reminder_type == ReminderType.CUSTOM:
            if custom_date is None:
                raise ValidationError(message="custom_date is required for CUSTOM reminders")
            offset = days_offset
            scheduled_for = custom_date
            if scheduled_for.tzinfo is not None:
                scheduled_for = scheduled_for.astimezone(timezone.utc).replace(tzinfo=None)
        else:
            if invoice.due_date is None:
                raise InvalidStateTransitionError(
                    message="Invoice has no due date",
                    invoice_id=invoice_id,
                )
            offset = signed_offset(reminder_type, days_offset)
            scheduled_for = scheduled_time(invoice.due_date, offset)

        today = today or datetime.utcnow().date()
        if scheduled_for.date() < today:
            raise ValidationError(
                message="Reminder cannot be scheduled in the past",
                scheduled_for=scheduled_for.isoformat(),
            )

        if await self.reminder_dao.find_active_slot(invoice_id, reminder_type, offset, scheduled_for):
            raise ResourceAlreadyExistsError(
                message="A pending reminder already exists for this slot",
                invoice_id=invoice_id,
            )

        try:
            async with self.session.begin_nested():
                reminder = await self.reminder_dao.create(
                    tenant_id=tenant_id,
                    invoice_id=invoice_id,
                    type=reminder_type,
                    days_offset=offset,
                    channel=channel,
                    scheduled_for=scheduled_for,
                    status=ReminderStatus.PENDING,
                )
        except IntegrityError:
            raise ResourceAlreadyExistsError(
                message="A pending reminder already exists for this slot",
                invoice_id=invoice_id,
            )

        await self.audit.log_reminder_event(
            AuditAction.REMINDER_CREATED,
            tenant_id,
            reminder.id,
            extra_data={"invoice_id": invoice_id, "type": reminder_type.value},
        )
        return reminder

    async def reschedule_for_invoice(
        self,
        tenant_id: int,
        invoice_id: int,
        today: Optional[date] = None,
    ) -> List[PaymentReminder]:
        """
        Rebuild the reminder set after a due date change.

        PENDING, CANCELLED and SKIPPED reminders are removed; SENT and
        FAILED ones stay as history. A new default set is created when the
        plan allows reminders and the invoice is open with a due date.

        Returns:
            The new active reminders (empty if none were created)
        """
        invoice = await self._get_invoice(tenant_id, invoice_id)

        async with self.session.begin_nested():
            removed = await self.reminder_dao.delete_with_status(
                invoice_id,
                (ReminderStatus.PENDING,) + tuple(STALE_REMINDER_STATUSES),
            )
        logger.info(f"Removed {removed} unsent reminders for invoice {invoice_id}")

        if invoice.due_date is None or invoice.is_closed:
            return []
        if not await self.is_eligible(tenant_id):
            return []

        return await self.create_default_set(tenant_id, invoice_id, today=today)

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel(self, tenant_id: int, reminder_id: int) -> bool:
        """
        Cancel one PENDING reminder.

        Returns:
            True if cancelled, False if it was already terminal

        Raises:
            ReminderNotFoundError: If missing or owned by another tenant
        """
        await self._get_reminder(tenant_id, reminder_id)

        cancelled = await self.reminder_dao.cancel(reminder_id, tenant_id)
        if cancelled:
            await self.audit.log_reminder_event(AuditAction.REMINDER_CANCELLED, tenant_id, reminder_id)
        return cancelled

    async def cancel_all_for_invoice(self, tenant_id: int, invoice_id: int) -> int:
        """
        Cancel every PENDING reminder of an invoice.

        Returns:
            Number of reminders cancelled

        Raises:
            InvoiceNotFoundError: If missing or owned by another tenant
        """
        await self._get_invoice(tenant_id, invoice_id)

        count = await self.reminder_dao.cancel_all_for_invoice(invoice_id, tenant_id)
        if count:
            await self.audit.log_reminder_event(
                AuditAction.REMINDERS_CANCELLED,
                tenant_id,
                invoice_id,
                extra_data={"cancelled": count},
            )
        return count

    # =========================================================================
    # Manual send
    # =========================================================================

    async def send_now(
        self,
        tenant_id: int,
        reminder_id: int,
        now: Optional[datetime] = None,
    ) -> PaymentReminder:
        """
        Deliver a reminder immediately, ignoring its scheduled time.

        Accepts PENDING or FAILED reminders. Uses the same claim, render
        and delivery path as the dispatch worker, so a reminder that a
        worker is delivering right now cannot be sent twice.

        Returns:
            The reminder with its new status

        Raises:
            ReminderNotFoundError: If missing or owned by another tenant
            InvalidStateTransitionError: If the reminder is not resendable
                or is being dispatched
        """
        reminder = await self._get_reminder(tenant_id, reminder_id)
        if reminder.status not in RESENDABLE_STATUSES:
            raise InvalidStateTransitionError(
                message=f"Cannot send a {reminder.status.value} reminder",
                reminder_id=reminder_id,
            )

        now = now or datetime.utcnow()
        lease_cutoff = now - timedelta(seconds=settings.REMINDER_CLAIM_LEASE_SECONDS)
        claim_token = new_claim_token()

        if not await self.reminder_dao.claim(
            reminder_id, claim_token, now, lease_cutoff, statuses=RESENDABLE_STATUSES
        ):
            raise InvalidStateTransitionError(
                message="Reminder is being dispatched",
                reminder_id=reminder_id,
            )

        status = await deliver_reminder(
            self.session,
            reminder_id,
            claim_token,
            self.router,
            self.messages,
            now,
        )

        await self.audit.log_reminder_event(
            AuditAction.REMINDER_SENT_MANUALLY,
            tenant_id,
            reminder_id,
            extra_data={"status": status.value},
        )
        return await self.reminder_dao.get_fresh(reminder_id)

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_for_invoice(self, tenant_id: int, invoice_id: int) -> List[PaymentReminder]:
        await self._get_invoice(tenant_id, invoice_id)
        return await self.reminder_dao.list_for_invoice(invoice_id, tenant_id)

    async def list_for_tenant(
        self,
        tenant_id: int,
        status: Optional[ReminderStatus] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[PaymentReminder]:
        return await self.reminder_dao.list_for_tenant(tenant_id, status=status, skip=skip, limit=limit)

    async def get_stats(self, tenant_id: int, now: Optional[datetime] = None) -> ReminderStats:
        """Reminder counts per status plus PENDING ones due in the next 7 days."""
        now = now or datetime.utcnow()
        counts = await self.reminder_dao.status_counts(tenant_id)
        return ReminderStats(
            pending=counts.get(ReminderStatus.PENDING, 0),
            sent=counts.get(ReminderStatus.SENT, 0),
            failed=counts.get(ReminderStatus.FAILED, 0),
            cancelled=counts.get(ReminderStatus.CANCELLED, 0),
            skipped=counts.get(ReminderStatus.SKIPPED, 0),
            upcoming=await self.reminder_dao.count_upcoming(tenant_id, now, now + UPCOMING_WINDOW),
        )
