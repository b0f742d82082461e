"""
Reminder dispatch worker.

WHAT: Finds due reminders, takes ownership of each one, renders a
channel-appropriate message and hands it to the delivery channel.

WHY: The worker runs on a fixed interval (in-process APScheduler job) and
can also be triggered by an external cron call, so two runs may overlap.
Each reminder must be delivered at most once, and one bad reminder must
not stop the rest of the batch.

HOW:
1. List PENDING reminders with scheduled_for <= now that are unclaimed
   (or whose claim lease expired)
2. Per reminder, in its own session: claim with one conditional UPDATE
   and commit before any network call. A zero rowcount means another run
   owns it.
3. Re-check the invoice: PAID or CANCELLED -> SKIPPED
4. Pre-flight the buyer contact, render, send
5. Record SENT or FAILED, guarded by the claim token
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoicetrust.core.config import settings
from invoicetrust.dao.invoice import InvoiceDAO
from invoicetrust.dao.reminder import ReminderDAO
from invoicetrust.models.reminder import ReminderChannel, ReminderStatus
from invoicetrust.schemas.reminder import DispatchSummary
from invoicetrust.schemas.tenant_settings import TenantSettings
from invoicetrust.services.delivery import DeliveryChannel, DeliveryRouter
from invoicetrust.services.reminder_messages import ReminderMessageService, get_message_service

logger = logging.getLogger(__name__)


# Stored error messages are truncated to keep rows small
MAX_ERROR_LENGTH = 500


def new_claim_token() -> str:
    return uuid.uuid4().hex


async def deliver_reminder(
    session: AsyncSession,
    reminder_id: int,
    claim_token: str,
    router: DeliveryRouter,
    messages: ReminderMessageService,
    now: datetime,
) -> ReminderStatus:
    """
    Deliver one already-claimed reminder and record the outcome.

    Shared by the dispatch worker and the manual "send now" action.

    Args:
        session: Session holding the claim
        reminder_id: Claimed reminder
        claim_token: Token the claim was taken with
        router: Channel selector
        messages: Message renderer
        now: Time recorded as sent_at

    Returns:
        Final status (SENT, FAILED or SKIPPED)
    """
    reminder_dao = ReminderDAO(session)
    reminder = await reminder_dao.get_fresh(reminder_id)
    invoice = await InvoiceDAO(session).get_by_id(reminder.invoice_id)

    async def record(status: ReminderStatus, **fields) -> ReminderStatus:
        await reminder_dao.record_outcome(reminder_id, claim_token, status, **fields)
        return status

    if invoice is None or invoice.is_closed:
        logger.info(
            f"Reminder {reminder_id} skipped, invoice closed",
            extra={"reminder_id": reminder_id, "invoice_id": reminder.invoice_id},
        )
        return await record(ReminderStatus.SKIPPED)

    if reminder.channel == ReminderChannel.EMAIL:
        recipient = invoice.buyer_email
        missing = "No buyer email address"
    else:
        recipient = invoice.buyer_phone
        missing = "No buyer phone number"

    if not recipient:
        logger.warning(
            f"Reminder {reminder_id} failed: {missing}",
            extra={"reminder_id": reminder_id, "channel": reminder.channel.value},
        )
        return await record(ReminderStatus.FAILED, error_message=missing)

    tenant = invoice.tenant
    tenant_settings = TenantSettings.from_raw(tenant.settings)
    rendered = messages.render_reminder(
        invoice,
        tenant.business_name,
        reminder.type,
        reminder.days_offset,
        reminder.channel,
    )
    channel = router.get_channel(reminder.channel, tenant_settings)
    message = router.build_message(
        reminder.channel,
        recipient,
        rendered.subject,
        rendered.text,
        rendered.html,
        tenant_settings,
    )

    result = await channel.send(message)

    if result.success:
        logger.info(
            f"Reminder {reminder_id} sent via {result.provider}",
            extra={"reminder_id": reminder_id, "provider_message_id": result.provider_message_id},
        )
        return await record(
            ReminderStatus.SENT,
            sent_at=now,
            provider_message_id=result.provider_message_id,
        )

    logger.error(
        f"Reminder {reminder_id} delivery failed: {result.error}",
        extra={"reminder_id": reminder_id, "provider": result.provider},
    )
    return await record(
        ReminderStatus.FAILED,
        error_message=(result.error or "Delivery failed")[:MAX_ERROR_LENGTH],
    )


class ReminderDispatchWorker:
    """
    Delivers due reminders in batches.

    Example:
        worker = ReminderDispatchWorker()
        summary = await worker.run()
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        channels: Optional[Dict[ReminderChannel, DeliveryChannel]] = None,
        batch_size: Optional[int] = None,
        claim_lease_seconds: Optional[int] = None,
        messages: Optional[ReminderMessageService] = None,
    ):
        """
        Initialize worker.

        Args:
            session_factory: Session factory (defaults to AsyncSessionLocal)
            channels: Channel overrides per tag (tests)
            batch_size: Reminders per run (defaults to REMINDER_BATCH_SIZE)
            claim_lease_seconds: Age after which a claim is considered
                abandoned (defaults to REMINDER_CLAIM_LEASE_SECONDS)
            messages: Message renderer
        """
        if session_factory is None:
            from invoicetrust.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal

        self.session_factory = session_factory
        self.router = DeliveryRouter(channels)
        self.messages = messages or get_message_service()
        self.batch_size = batch_size or settings.REMINDER_BATCH_SIZE
        self.claim_lease = timedelta(seconds=claim_lease_seconds or settings.REMINDER_CLAIM_LEASE_SECONDS)

    async def run(self, now: Optional[datetime] = None) -> DispatchSummary:
        """
        Process one batch of due reminders.

        Args:
            now: Clock override (tests)

        Returns:
            DispatchSummary with per-outcome counts
        """
        now = now or datetime.utcnow()
        summary = DispatchSummary(started_at=datetime.utcnow())
        lease_cutoff = now - self.claim_lease

        async with self.session_factory() as session:
            due = await ReminderDAO(session).list_due(
                before=now,
                lease_cutoff=lease_cutoff,
                limit=self.batch_size,
            )
            reminder_ids = [reminder.id for reminder in due]

        logger.info(f"Reminder dispatch: {len(reminder_ids)} due")

        for reminder_id in reminder_ids:
            status = await self._process(reminder_id, now, lease_cutoff)
            if status is None:
                continue

            summary.claimed += 1
            if status == ReminderStatus.SENT:
                summary.sent += 1
            elif status == ReminderStatus.SKIPPED:
                summary.skipped += 1
            else:
                summary.failed += 1

        summary.finished_at = datetime.utcnow()
        logger.info(
            f"Reminder dispatch finished: sent={summary.sent} failed={summary.failed} "
            f"skipped={summary.skipped}",
            extra=summary.model_dump(include={"sent", "failed", "skipped", "claimed"}),
        )
        return summary

    async def _process(
        self,
        reminder_id: int,
        now: datetime,
        lease_cutoff: datetime,
    ) -> Optional[ReminderStatus]:
        """
        Claim and deliver one reminder.

        Returns:
            Final status, or None if another run owns the reminder
        """
        claim_token = new_claim_token()

        async with self.session_factory() as session:
            dao = ReminderDAO(session)
            try:
                claimed = await dao.claim(reminder_id, claim_token, now, lease_cutoff)
                await session.commit()
                if not claimed:
                    logger.debug(f"Reminder {reminder_id} already claimed, skipping")
                    return None

                status = await deliver_reminder(
                    session,
                    reminder_id,
                    claim_token,
                    self.router,
                    self.messages,
                    now,
                )
                await session.commit()
                return status

            except Exception as e:
                # One reminder must never abort the batch
                logger.error(f"Reminder {reminder_id} dispatch error: {e}", exc_info=True)
                await session.rollback()
                return await self._mark_failed(session, reminder_id, claim_token, str(e))

    async def _mark_failed(
        self,
        session: AsyncSession,
        reminder_id: int,
        claim_token: str,
        error: str,
    ) -> Optional[ReminderStatus]:
        try:
            recorded = await ReminderDAO(session).record_outcome(
                reminder_id,
                claim_token,
                ReminderStatus.FAILED,
                error_message=error[:MAX_ERROR_LENGTH] or "Dispatch error",
            )
            await session.commit()
        except Exception as e:
            logger.error(f"Could not record failure for reminder {reminder_id}: {e}", exc_info=True)
            await session.rollback()
            return None

        return ReminderStatus.FAILED if recorded else None
