"""
Unit tests for ReminderDispatchWorker.

WHAT: Batch dispatch of due reminders through injected channels.

WHY: The worker runs unattended and may overlap with a cron-triggered
run. The tests pin down:
1. Due reminders are delivered once and recorded as SENT
2. Closed invoices are SKIPPED, missing contacts and provider errors FAILED
3. Claimed reminders are left alone until their lease expires
4. One broken reminder does not stop the batch

HOW: The worker opens its own sessions from session_factory. Test data is
committed and the test session's transaction closed before each run, so
the worker sees the rows and the shared in-memory connection is free.
Overlapping runs use a file-backed database with a connection per session.
"""

import asyncio
from datetime import datetime, timedelta
from typing import List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from invoicetrust.dao.reminder import ReminderDAO
from invoicetrust.models.base import Base
from invoicetrust.models.invoice import PaymentStatus
from invoicetrust.models.reminder import ReminderChannel, ReminderStatus, ReminderType
from invoicetrust.services.delivery import (
    DeliveryChannel,
    DeliveryMessage,
    DeliveryResult,
    MockChannel,
)
from invoicetrust.services.reminder_dispatch import MAX_ERROR_LENGTH, ReminderDispatchWorker
from invoicetrust.services.reminder_scheduler import ReminderScheduler
from tests.factories import InvoiceFactory, ReminderFactory, TenantFactory


class RecordingChannel(DeliveryChannel):
    """Channel that records messages and returns a fixed result."""

    name = "recording"

    def __init__(self, result: DeliveryResult):
        self.result = result
        self.messages: List[DeliveryMessage] = []

    def is_configured(self) -> bool:
        return True

    async def send(self, message: DeliveryMessage) -> DeliveryResult:
        self.messages.append(message)
        return self.result


class ExplodingChannel(DeliveryChannel):
    """Channel whose send raises, simulating a bug below the worker."""

    name = "exploding"

    def is_configured(self) -> bool:
        return True

    async def send(self, message: DeliveryMessage) -> DeliveryResult:
        raise RuntimeError("provider client crashed")


class BlockingChannel(RecordingChannel):
    """Channel that holds every delivery open until released."""

    def __init__(self):
        super().__init__(DeliveryResult(success=True, provider_message_id="msg-slow", provider="recording"))
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, message: DeliveryMessage) -> DeliveryResult:
        self.messages.append(message)
        self.started.set()
        await self.release.wait()
        return self.result


def ok_channel() -> RecordingChannel:
    return RecordingChannel(DeliveryResult(success=True, provider_message_id="msg-123", provider="recording"))


async def load(db_session, reminder_id):
    return await ReminderDAO(db_session).get_fresh(reminder_id)


@pytest_asyncio.fixture
async def file_session_factory(tmp_path) -> async_sessionmaker:
    """
    Session factory on a file-backed database.

    WHY: Overlapping runs need a connection each. The in-memory database
    of the shared fixtures lives on a single StaticPool connection.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


class TestDispatch:
    """Tests for a single dispatch run."""

    @pytest.mark.asyncio
    async def test_due_reminder_is_sent(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(db_session, invoice)
        await db_session.commit()
        channel = ok_channel()

        summary = await ReminderDispatchWorker(
            session_factory, channels={ReminderChannel.EMAIL: channel}
        ).run()

        assert summary.sent == 1
        assert summary.failed == 0
        assert summary.claimed == 1
        assert channel.messages[0].recipient == invoice.buyer_email
        assert invoice.invoice_number in channel.messages[0].subject

        stored = await load(db_session, reminder.id)
        assert stored.status == ReminderStatus.SENT
        assert stored.provider_message_id == "msg-123"
        assert stored.sent_at is not None
        assert stored.claim_token is None
        assert stored.claimed_at is None

    @pytest.mark.asyncio
    async def test_future_reminder_is_not_touched(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(
            db_session, invoice, scheduled_for=datetime.utcnow() + timedelta(days=1)
        )
        await db_session.commit()

        summary = await ReminderDispatchWorker(session_factory).run()

        assert summary.claimed == 0
        assert (await load(db_session, reminder.id)).status == ReminderStatus.PENDING

    @pytest.mark.asyncio
    async def test_default_email_channel_uses_mock_without_key(
        self, db_session, session_factory, test_tenant
    ):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        await ReminderFactory.create(db_session, invoice)
        await db_session.commit()

        summary = await ReminderDispatchWorker(session_factory).run()

        assert summary.sent == 1
        assert len(MockChannel.sent_messages) == 1

    @pytest.mark.asyncio
    async def test_closed_invoice_is_skipped(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(
            db_session, test_tenant, payment_status=PaymentStatus.PAID
        )
        reminder = await ReminderFactory.create(db_session, invoice)
        await db_session.commit()
        channel = ok_channel()

        summary = await ReminderDispatchWorker(
            session_factory, channels={ReminderChannel.EMAIL: channel}
        ).run()

        assert summary.skipped == 1
        assert channel.messages == []
        assert (await load(db_session, reminder.id)).status == ReminderStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_missing_email_fails_without_sending(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant, buyer_email=None)
        reminder = await ReminderFactory.create(db_session, invoice)
        await db_session.commit()
        channel = ok_channel()

        summary = await ReminderDispatchWorker(
            session_factory, channels={ReminderChannel.EMAIL: channel}
        ).run()

        stored = await load(db_session, reminder.id)
        assert summary.failed == 1
        assert channel.messages == []
        assert stored.status == ReminderStatus.FAILED
        assert stored.error_message == "No buyer email address"

    @pytest.mark.asyncio
    async def test_missing_phone_fails_for_sms(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant, buyer_phone=None)
        reminder = await ReminderFactory.create(db_session, invoice, channel=ReminderChannel.SMS)
        await db_session.commit()

        await ReminderDispatchWorker(session_factory).run()

        stored = await load(db_session, reminder.id)
        assert stored.status == ReminderStatus.FAILED
        assert stored.error_message == "No buyer phone number"

    @pytest.mark.asyncio
    async def test_sms_uses_phone_and_plain_text(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        await ReminderFactory.create(
            db_session,
            invoice,
            reminder_type=ReminderType.AFTER_DUE,
            days_offset=3,
            channel=ReminderChannel.SMS,
        )
        await db_session.commit()
        channel = ok_channel()

        await ReminderDispatchWorker(session_factory, channels={ReminderChannel.SMS: channel}).run()

        message = channel.messages[0]
        assert message.recipient == invoice.buyer_phone
        assert message.html is None
        assert invoice.invoice_number in message.text

    @pytest.mark.asyncio
    async def test_provider_failure_is_recorded(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(db_session, invoice)
        await db_session.commit()
        channel = RecordingChannel(
            DeliveryResult(success=False, error="Resend API error: 422 - " + "x" * 1000, provider="recording")
        )

        summary = await ReminderDispatchWorker(
            session_factory, channels={ReminderChannel.EMAIL: channel}
        ).run()

        stored = await load(db_session, reminder.id)
        assert summary.failed == 1
        assert stored.status == ReminderStatus.FAILED
        assert stored.error_message.startswith("Resend API error: 422")
        assert len(stored.error_message) == MAX_ERROR_LENGTH

    @pytest.mark.asyncio
    async def test_exception_does_not_stop_batch(self, db_session, session_factory, test_tenant):
        """
        A channel that raises fails its reminder; the next one still goes out.

        WHY: One bad provider response must not hold every other tenant's
        reminders hostage.
        """
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        broken = await ReminderFactory.create(
            db_session,
            invoice,
            channel=ReminderChannel.WHATSAPP,
            scheduled_for=datetime.utcnow() - timedelta(hours=2),
        )
        healthy = await ReminderFactory.create(db_session, invoice)
        await db_session.commit()
        email = ok_channel()

        summary = await ReminderDispatchWorker(
            session_factory,
            channels={ReminderChannel.WHATSAPP: ExplodingChannel(), ReminderChannel.EMAIL: email},
        ).run()

        assert summary.failed == 1
        assert summary.sent == 1
        assert (await load(db_session, broken.id)).error_message == "provider client crashed"
        assert (await load(db_session, healthy.id)).status == ReminderStatus.SENT


class TestClaims:
    """Tests for claim handling across runs."""

    @pytest.mark.asyncio
    async def test_claimed_reminder_is_left_alone(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(
            db_session,
            invoice,
            claimed_at=datetime.utcnow() - timedelta(seconds=30),
            claim_token="other-worker",
        )
        await db_session.commit()
        channel = ok_channel()

        summary = await ReminderDispatchWorker(
            session_factory,
            channels={ReminderChannel.EMAIL: channel},
            claim_lease_seconds=300,
        ).run()

        stored = await load(db_session, reminder.id)
        assert summary.claimed == 0
        assert channel.messages == []
        assert stored.status == ReminderStatus.PENDING
        assert stored.claim_token == "other-worker"

    @pytest.mark.asyncio
    async def test_expired_lease_is_reclaimed(self, db_session, session_factory, test_tenant):
        """A claim older than the lease belongs to a crashed worker."""
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        reminder = await ReminderFactory.create(
            db_session,
            invoice,
            claimed_at=datetime.utcnow() - timedelta(minutes=30),
            claim_token="crashed-worker",
        )
        await db_session.commit()

        summary = await ReminderDispatchWorker(
            session_factory,
            channels={ReminderChannel.EMAIL: ok_channel()},
            claim_lease_seconds=300,
        ).run()

        assert summary.sent == 1
        assert (await load(db_session, reminder.id)).status == ReminderStatus.SENT

    @pytest.mark.asyncio
    async def test_second_run_sends_nothing(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        await ReminderFactory.create(db_session, invoice)
        await db_session.commit()
        channel = ok_channel()
        worker = ReminderDispatchWorker(session_factory, channels={ReminderChannel.EMAIL: channel})

        first = await worker.run()
        second = await worker.run()

        assert first.sent == 1
        assert second.claimed == 0
        assert len(channel.messages) == 1

    @pytest.mark.asyncio
    async def test_overlapping_runs_deliver_once(self, file_session_factory):
        """
        A second run started mid-delivery leaves the claimed reminder alone.

        WHY: The interval job and the cron trigger can fire together. The
        first run's claim is committed before it calls the channel, so the
        second run must see the reminder as taken.
        """
        async with file_session_factory() as session:
            tenant = await TenantFactory.create(session)
            invoice = await InvoiceFactory.create(session, tenant)
            reminder = await ReminderFactory.create(session, invoice)
        channel = BlockingChannel()
        first_worker = ReminderDispatchWorker(
            file_session_factory, channels={ReminderChannel.EMAIL: channel}
        )
        second_worker = ReminderDispatchWorker(
            file_session_factory, channels={ReminderChannel.EMAIL: channel}
        )

        async def run_while_first_delivers():
            await channel.started.wait()
            try:
                return await second_worker.run()
            finally:
                channel.release.set()

        first, second = await asyncio.wait_for(
            asyncio.gather(first_worker.run(), run_while_first_delivers()),
            timeout=30,
        )

        assert first.sent == 1
        assert second.claimed == 0
        assert len(channel.messages) == 1
        async with file_session_factory() as session:
            assert (await ReminderDAO(session).get_fresh(reminder.id)).status == ReminderStatus.SENT

    @pytest.mark.asyncio
    async def test_replanning_after_dispatch_does_not_resend(
        self, db_session, session_factory, test_tenant
    ):
        """
        Dispatch, re-run the default set, dispatch again: one delivery.

        WHY: The on-due reminder of an invoice due today is delivered on
        the first run. Re-planning must not put a fresh PENDING copy in
        its slot for the second run to pick up.
        """
        today = datetime.utcnow().date()
        invoice = await InvoiceFactory.create(db_session, test_tenant, due_date=today)
        scheduler = ReminderScheduler(db_session)
        await scheduler.create_default_set(test_tenant.id, invoice.id, today=today)
        await db_session.commit()
        channel = ok_channel()
        worker = ReminderDispatchWorker(session_factory, channels={ReminderChannel.EMAIL: channel})

        first = await worker.run()
        await scheduler.create_default_set(test_tenant.id, invoice.id, today=today)
        await db_session.commit()
        second = await worker.run()

        assert first.sent == 1
        assert second.claimed == 0
        assert len(channel.messages) == 1
        on_due = [
            r
            for r in await ReminderDAO(db_session).list_for_invoice(invoice.id, test_tenant.id)
            if r.type == ReminderType.ON_DUE
        ]
        assert [r.status for r in on_due] == [ReminderStatus.SENT]

    @pytest.mark.asyncio
    async def test_batch_size_limits_run(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        for hours in (3, 2, 1):
            await ReminderFactory.create(
                db_session, invoice, scheduled_for=datetime.utcnow() - timedelta(hours=hours)
            )
        await db_session.commit()

        summary = await ReminderDispatchWorker(
            session_factory, channels={ReminderChannel.EMAIL: ok_channel()}, batch_size=2
        ).run()

        assert summary.sent == 2
        pending = await ReminderDAO(db_session).list_for_tenant(
            test_tenant.id, status=ReminderStatus.PENDING
        )
        assert len(pending) == 1

    @pytest.mark.asyncio
    async def test_cancelled_reminder_is_never_claimed(self, db_session, session_factory, test_tenant):
        invoice = await InvoiceFactory.create(db_session, test_tenant)
        await ReminderFactory.create(db_session, invoice, status=ReminderStatus.CANCELLED)
        await db_session.commit()

        summary = await ReminderDispatchWorker(session_factory).run()

        assert summary.claimed == 0
