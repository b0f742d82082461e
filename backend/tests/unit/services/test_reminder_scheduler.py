"""
Unit tests for ReminderScheduler.

WHAT: Default set creation, single reminders, rescheduling, cancellation,
manual sends and statistics.

WHY: The scheduler decides which reminders a buyer will receive. A
duplicate means the buyer is nagged twice; a missing slot means a late
payment goes unchased. The tests pin down:
1. Re-running the default set never duplicates a slot
2. Past slots are skipped, closed invoices refused
3. Manual sends share the dispatch claim so they cannot double-send
"""

from datetime import date, datetime, time, timedelta, timezone

import pytest
from sqlalchemy import func, select

from invoicetrust.core.exceptions import (
    InvalidStateTransitionError,
    InvoiceNotFoundError,
    ReminderNotFoundError,
    ResourceAlreadyExistsError,
    ValidationError,
)
from invoicetrust.models.audit_log import AuditAction, AuditLog
from invoicetrust.models.invoice import PaymentStatus
from invoicetrust.models.reminder import (
    PaymentReminder,
    ReminderChannel,
    ReminderStatus,
    ReminderType,
)
from invoicetrust.schemas.tenant_settings import ReminderSettings
from invoicetrust.services.delivery import MockChannel
from invoicetrust.services.reminder_scheduler import (
    ReminderScheduler,
    default_slots,
    scheduled_time,
    signed_offset,
)
from tests.factories import InvoiceFactory, ReminderFactory, TenantFactory


TODAY = datetime.utcnow().date()


def midnight(day: date) -> datetime:
    return datetime.combine(day, time.min)


class TestHelpers:
    """Tests for the offset and slot helpers."""

    def test_signed_offset_follows_type(self):
        assert signed_offset(ReminderType.BEFORE_DUE, 3) == -3
        assert signed_offset(ReminderType.BEFORE_DUE, -3) == -3
        assert signed_offset(ReminderType.ON_DUE, 5) == 0
        assert signed_offset(ReminderType.AFTER_DUE, -7) == 7
        assert signed_offset(ReminderType.CUSTOM, -2) == -2

    def test_scheduled_time_is_midnight_utc(self):
        assert scheduled_time(date(2026, 3, 10), -3) == datetime(2026, 3, 7, 0, 0)
        assert scheduled_time(date(2026, 3, 10), 7) == datetime(2026, 3, 17, 0, 0)

    def test_default_slots(self):
        slots = default_slots(ReminderSettings())

        assert slots == [
            (ReminderType.BEFORE_DUE, -3),
            (ReminderType.BEFORE_DUE, -1),
            (ReminderType.ON_DUE, 0),
            (ReminderType.AFTER_DUE, 1),
            (ReminderType.AFTER_DUE, 3),
            (ReminderType.AFTER_DUE, 7),
        ]

    def test_settings_normalize_day_lists(self):
        """Signs, zeros and duplicates are dropped from the day lists."""
        reminder_settings = ReminderSettings(before_due_days=[-3, 3, 0, 1], after_due_days=[2, 2])

        assert reminder_settings.before_due_days == [3, 1]
        assert reminder_settings.after_due_days == [2]


class TestCreateDefaultSet:
    """Tests for ReminderScheduler.create_default_set."""

    @pytest.mark.asyncio
    async def test_creates_six_default_reminders(self, db_session, test_tenant):
        due = TODAY + timedelta(days=14)
        invoice = await InvoiceFactory.create(db_session, test_tenant, due_date=due)

        reminders = await ReminderScheduler(db_session).create_default_set(
            test_tenant.id, invoice.id, today=TODAY
        )

        assert [r.days_offset for r in reminders] == [-3, -1, 0, 1, 3, 7]
        assert [r.scheduled_for for r in reminders] == [
            midnight(due + timedelta(days=offset)) for offset in (-3, -1, 0, 1, 3, 7)
        ]
        assert all(r.status == ReminderStatus.PENDING for r in reminders)
        assert all(r.channel == ReminderChannel.EMAIL for r in reminders)

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, db_session, test_tenant):
        """
        Running the default set twice leaves six reminders, not twelve.

        WHY: Issuing retries and double clicks both re-run the planner.
        """
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        scheduler = ReminderScheduler(db_session)

        first = await scheduler.create_default_set(test_tenant.id, invoice.id, today=TODAY)
        second = await scheduler.create_default_set(test_tenant.id, invoice.id, today=TODAY)

        assert [r.id for r in first] == [r.id for r in second]
        count = await db_session.scalar(
            select(func.count(PaymentReminder.id)).where(PaymentReminder.invoice_id == invoice.id)
        )
        assert count == 6

    @pytest.mark.asyncio
    async def test_past_slots_are_skipped(self, db_session, test_tenant):
        due = TODAY + timedelta(days=2)
        invoice = await InvoiceFactory.create(db_session, test_tenant, due_date=due)

        reminders = await ReminderScheduler(db_session).create_default_set(
            test_tenant.id, invoice.id, today=TODAY
        )

        assert [r.days_offset for r in reminders] == [-1, 0, 1, 3, 7]

    @pytest.mark.asyncio
    async def test_slot_today_is_kept(self, db_session, test_tenant):
        """A slot at midnight today is due now, not in the past."""
        due = TODAY + timedelta(days=3)
        invoice = await InvoiceFactory.create(db_session, test_tenant, due_date=due)

        reminders = await ReminderScheduler(db_session).create_default_set(
            test_tenant.id, invoice.id, today=TODAY
        )

        assert reminders[0].days_offset == -3
        assert reminders[0].scheduled_for == midnight(TODAY)

    @pytest.mark.asyncio
    async def test_tenant_settings_drive_schedule(self, db_session):
        tenant = await TenantFactory.create(
            db_session,
            email="custom@example.com",
            settings={
                "reminders": {
                    "before_due_days": [5],
                    "on_due_date": False,
                    "after_due_days": [],
                    "preferred_channel": "SMS",
                }
            },
        )
        invoice = await InvoiceFactory.create(db_session, tenant)

        reminders = await ReminderScheduler(db_session).create_default_set(
            tenant.id, invoice.id, today=TODAY
        )

        assert len(reminders) == 1
        assert reminders[0].days_offset == -5
        assert reminders[0].channel == ReminderChannel.SMS

    @pytest.mark.asyncio
    async def test_disabled_reminders_create_nothing(self, db_session):
        tenant = await TenantFactory.create(
            db_session,
            email="quiet@example.com",
            settings={"reminders": {"enable_reminders": False}},
        )
        invoice = await InvoiceFactory.create(db_session, tenant)

        assert await ReminderScheduler(db_session).create_default_set(tenant.id, invoice.id) == []

    @pytest.mark.asyncio
    async def test_closed_invoice_is_refused(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(
            db_session, test_tenant, payment_status=PaymentStatus.PAID
        )

        with pytest.raises(InvalidStateTransitionError):
            await ReminderScheduler(db_session).create_default_set(test_tenant.id, invoice.id)

    @pytest.mark.asyncio
    async def test_other_tenants_invoice_is_not_found(self, db_session, test_tenant, free_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)

        with pytest.raises(InvoiceNotFoundError):
            await ReminderScheduler(db_session).create_default_set(free_tenant.id, invoice.id)

    @pytest.mark.asyncio
    async def test_cancelled_reminders_are_replaced(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        scheduler = ReminderScheduler(db_session)
        await scheduler.create_default_set(test_tenant.id, invoice.id, today=TODAY)
        await scheduler.cancel_all_for_invoice(test_tenant.id, invoice.id)

        recreated = await scheduler.create_default_set(test_tenant.id, invoice.id, today=TODAY)

        remaining = await scheduler.list_for_invoice(test_tenant.id, invoice.id)
        assert len(recreated) == 6
        assert len(remaining) == 6
        assert all(r.status == ReminderStatus.PENDING for r in remaining)

    @pytest.mark.asyncio
    async def test_sent_and_failed_slots_are_not_refilled(self, db_session, test_tenant):
        """
        A slot whose reminder already went out stays taken.

        WHY: Refilling it would queue a second delivery of the same
        reminder on the next dispatch run.
        """
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        scheduler = ReminderScheduler(db_session)
        first = await scheduler.create_default_set(test_tenant.id, invoice.id, today=TODAY)
        on_due = next(r for r in first if r.type == ReminderType.ON_DUE)
        after_due = next(r for r in first if r.type == ReminderType.AFTER_DUE)
        on_due.status = ReminderStatus.SENT
        after_due.status = ReminderStatus.FAILED
        await db_session.flush()

        second = await scheduler.create_default_set(test_tenant.id, invoice.id, today=TODAY)

        assert len(second) == 4
        assert on_due.id not in [r.id for r in second]
        assert after_due.id not in [r.id for r in second]
        count = await db_session.scalar(
            select(func.count(PaymentReminder.id)).where(PaymentReminder.invoice_id == invoice.id)
        )
        assert count == 6

    @pytest.mark.asyncio
    async def test_creation_is_audited(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)

        await ReminderScheduler(db_session).create_default_set(test_tenant.id, invoice.id, today=TODAY)

        logs = (
            await db_session.execute(
                select(AuditLog).where(AuditLog.action == AuditAction.REMINDERS_CREATED)
            )
        ).scalars().all()
        assert len(logs) == 1
        assert logs[0].extra_data["created"] == 6


class TestCreateSingle:
    """Tests for ReminderScheduler.create_single."""

    @pytest.mark.asyncio
    async def test_sign_follows_type(self, db_session, test_tenant):
        due = TODAY + timedelta(days=10)
        invoice = await InvoiceFactory.create(db_session, test_tenant, due_date=due)

        reminder = await ReminderScheduler(db_session).create_single(
            test_tenant.id, invoice.id, ReminderType.AFTER_DUE, days_offset=-5
        )

        assert reminder.days_offset == 5
        assert reminder.scheduled_for == midnight(due + timedelta(days=5))
        assert reminder.status == ReminderStatus.PENDING

    @pytest.mark.asyncio
    async def test_whatsapp_channel(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)

        reminder = await ReminderScheduler(db_session).create_single(
            test_tenant.id,
            invoice.id,
            ReminderType.ON_DUE,
            channel=ReminderChannel.WHATSAPP,
        )

        assert reminder.channel == ReminderChannel.WHATSAPP
        assert reminder.days_offset == 0

    @pytest.mark.asyncio
    async def test_past_time_is_rejected(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(
            db_session, test_tenant, due_date=TODAY + timedelta(days=1)
        )

        with pytest.raises(ValidationError):
            await ReminderScheduler(db_session).create_single(
                test_tenant.id, invoice.id, ReminderType.BEFORE_DUE, days_offset=3, today=TODAY
            )

    @pytest.mark.asyncio
    async def test_duplicate_slot_is_rejected(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        scheduler = ReminderScheduler(db_session)
        await scheduler.create_single(test_tenant.id, invoice.id, ReminderType.BEFORE_DUE, days_offset=2)

        with pytest.raises(ResourceAlreadyExistsError):
            await scheduler.create_single(
                test_tenant.id, invoice.id, ReminderType.BEFORE_DUE, days_offset=2
            )

    @pytest.mark.asyncio
    async def test_custom_requires_date(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)

        with pytest.raises(ValidationError):
            await ReminderScheduler(db_session).create_single(
                test_tenant.id, invoice.id, ReminderType.CUSTOM
            )

    @pytest.mark.asyncio
    async def test_custom_date_is_stored_as_utc(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        local = datetime.combine(TODAY + timedelta(days=5), time(9, 30)).replace(
            tzinfo=timezone(timedelta(hours=2))
        )

        reminder = await ReminderScheduler(db_session).create_single(
            test_tenant.id, invoice.id, ReminderType.CUSTOM, custom_date=local
        )

        assert reminder.scheduled_for == datetime.combine(TODAY + timedelta(days=5), time(7, 30))
        assert reminder.scheduled_for.tzinfo is None

    @pytest.mark.asyncio
    async def test_paid_invoice_is_refused(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(
            db_session, test_tenant, payment_status=PaymentStatus.PAID
        )

        with pytest.raises(InvalidStateTransitionError):
            await ReminderScheduler(db_session).create_single(
                test_tenant.id, invoice.id, ReminderType.ON_DUE
            )


class TestReschedule:
    """Tests for ReminderScheduler.reschedule_for_invoice."""

    @pytest.mark.asyncio
    async def test_due_date_change_rebuilds_pending(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(
            db_session, test_tenant, due_date=TODAY + timedelta(days=10)
        )
        scheduler = ReminderScheduler(db_session)
        await scheduler.create_default_set(test_tenant.id, invoice.id, today=TODAY)

        new_due = TODAY + timedelta(days=30)
        invoice.due_date = new_due
        await db_session.flush()

        reminders = await scheduler.reschedule_for_invoice(test_tenant.id, invoice.id, today=TODAY)

        assert len(reminders) == 6
        assert min(r.scheduled_for for r in reminders) == midnight(new_due - timedelta(days=3))
        all_reminders = await scheduler.list_for_invoice(test_tenant.id, invoice.id)
        assert len(all_reminders) == 6

    @pytest.mark.asyncio
    async def test_sent_reminders_are_kept(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        sent = await ReminderFactory.create(db_session, invoice, status=ReminderStatus.SENT)

        await ReminderScheduler(db_session).reschedule_for_invoice(
            test_tenant.id, invoice.id, today=TODAY
        )

        reminders = await ReminderScheduler(db_session).list_for_invoice(test_tenant.id, invoice.id)
        assert sent.id in [r.id for r in reminders]
        assert len(reminders) == 7

    @pytest.mark.asyncio
    async def test_plan_without_reminders_only_clears(self, db_session, free_tenant):
        invoice = await InvoiceFactory.create(db_session, free_tenant)
        await ReminderFactory.create(db_session, invoice)

        reminders = await ReminderScheduler(db_session).reschedule_for_invoice(
            free_tenant.id, invoice.id, today=TODAY
        )

        assert reminders == []
        assert await ReminderScheduler(db_session).list_for_invoice(free_tenant.id, invoice.id) == []


class TestCancel:
    """Tests for cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_pending(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(db_session, invoice)
        scheduler = ReminderScheduler(db_session)

        assert await scheduler.cancel(test_tenant.id, reminder.id) is True
        assert await scheduler.cancel(test_tenant.id, reminder.id) is False

        refreshed = await scheduler.reminder_dao.get_fresh(reminder.id)
        assert refreshed.status == ReminderStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_terminal_is_noop(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(db_session, invoice, status=ReminderStatus.SENT)

        assert await ReminderScheduler(db_session).cancel(test_tenant.id, reminder.id) is False

    @pytest.mark.asyncio
    async def test_cancel_other_tenants_reminder(self, db_session, test_tenant, free_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(db_session, invoice)

        with pytest.raises(ReminderNotFoundError):
            await ReminderScheduler(db_session).cancel(free_tenant.id, reminder.id)

    @pytest.mark.asyncio
    async def test_cancel_all_counts_only_pending(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        scheduler = ReminderScheduler(db_session)
        await scheduler.create_default_set(test_tenant.id, invoice.id, today=TODAY)
        await ReminderFactory.create(db_session, invoice, status=ReminderStatus.SENT)

        assert await scheduler.cancel_all_for_invoice(test_tenant.id, invoice.id) == 6
        assert await scheduler.cancel_all_for_invoice(test_tenant.id, invoice.id) == 0


class TestSendNow:
    """Tests for ReminderScheduler.send_now."""

    @pytest.mark.asyncio
    async def test_sends_pending_reminder(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(
            db_session, invoice, scheduled_for=datetime.utcnow() + timedelta(days=3)
        )

        result = await ReminderScheduler(db_session).send_now(test_tenant.id, reminder.id)

        assert result.status == ReminderStatus.SENT
        assert result.sent_at is not None
        assert result.provider_message_id.startswith("mock-")
        assert result.claim_token is None
        assert len(MockChannel.sent_messages) == 1
        assert MockChannel.sent_messages[0].recipient == invoice.buyer_email

    @pytest.mark.asyncio
    async def test_failed_reminder_can_be_resent(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(db_session, invoice, status=ReminderStatus.FAILED)

        result = await ReminderScheduler(db_session).send_now(test_tenant.id, reminder.id)

        assert result.status == ReminderStatus.SENT

    @pytest.mark.asyncio
    async def test_sent_reminder_is_refused(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(db_session, invoice, status=ReminderStatus.SENT)

        with pytest.raises(InvalidStateTransitionError):
            await ReminderScheduler(db_session).send_now(test_tenant.id, reminder.id)

    @pytest.mark.asyncio
    async def test_claimed_reminder_is_refused(self, db_session, test_tenant):
        """A reminder a worker holds right now must not be sent again."""
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(
            db_session,
            invoice,
            claimed_at=datetime.utcnow(),
            claim_token="worker-token",
        )

        with pytest.raises(InvalidStateTransitionError):
            await ReminderScheduler(db_session).send_now(test_tenant.id, reminder.id)

        assert MockChannel.sent_messages == []

    @pytest.mark.asyncio
    async def test_closed_invoice_is_skipped(self, db_session, test_tenant):
        invoice = await InvoiceFactory.create(
            db_session, test_tenant, payment_status=PaymentStatus.CANCELLED
        )
        reminder = await ReminderFactory.create(db_session, invoice)

        result = await ReminderScheduler(db_session).send_now(test_tenant.id, reminder.id)

        assert result.status == ReminderStatus.SKIPPED
        assert MockChannel.sent_messages == []


class TestStats:
    """Tests for ReminderScheduler.get_stats."""

    @pytest.mark.asyncio
    async def test_counts_per_status(self, db_session, test_tenant):
        now = datetime.utcnow()
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        await ReminderFactory.create(db_session, invoice, scheduled_for=now + timedelta(days=2))
        await ReminderFactory.create(
            db_session, invoice, days_offset=-2, scheduled_for=now + timedelta(days=20)
        )
        await ReminderFactory.create(db_session, invoice, status=ReminderStatus.SENT)
        await ReminderFactory.create(db_session, invoice, status=ReminderStatus.FAILED)
        await ReminderFactory.create(db_session, invoice, status=ReminderStatus.CANCELLED)

        stats = await ReminderScheduler(db_session).get_stats(test_tenant.id, now=now)

        assert stats.pending == 2
        assert stats.sent == 1
        assert stats.failed == 1
        assert stats.cancelled == 1
        assert stats.skipped == 0
        assert stats.upcoming == 1

    @pytest.mark.asyncio
    async def test_stats_are_tenant_scoped(self, db_session, test_tenant, free_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        await ReminderFactory.create(db_session, invoice)

        stats = await ReminderScheduler(db_session).get_stats(free_tenant.id)

        assert stats.pending == 0
