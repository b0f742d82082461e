"""
Payment reminder model.

WHAT: One scheduled collection message for one invoice.

WHY: Reminders are created ahead of time relative to the invoice due date
and picked up later by the dispatch worker. Two invariants are enforced
here rather than in service code:

1. At most one PENDING reminder per (invoice, type, offset, scheduled_for)
   slot. A partial unique index makes concurrent creators collide at the
   storage layer instead of producing duplicates.
2. A reminder is claimed before delivery. claimed_at/claim_token let the
   worker take ownership with a single conditional UPDATE so two workers
   can never both deliver the same reminder.

HOW:
- status moves PENDING -> SENT | FAILED | CANCELLED | SKIPPED, all terminal
- days_offset is signed: negative before due, 0 on due, positive after
- scheduled_for is absolute and set once at creation
"""

import enum
from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from invoicetrust.models.base import Base, PrimaryKeyMixin, TimestampMixin


class ReminderType(str, enum.Enum):
    """When the reminder fires relative to the due date."""

    BEFORE_DUE = "BEFORE_DUE"
    ON_DUE = "ON_DUE"
    AFTER_DUE = "AFTER_DUE"
    CUSTOM = "CUSTOM"


class ReminderChannel(str, enum.Enum):
    """Delivery channel tag."""

    EMAIL = "EMAIL"
    WHATSAPP = "WHATSAPP"
    SMS = "SMS"


class ReminderStatus(str, enum.Enum):
    """
    Reminder lifecycle.

    - PENDING: waiting for its scheduled time
    - SENT: delivered by the channel
    - FAILED: channel refused or errored (no automatic retry)
    - CANCELLED: cancelled by the tenant or by the invoice closing
    - SKIPPED: invoice was already closed at dispatch time
    """

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    SKIPPED = "SKIPPED"


TERMINAL_REMINDER_STATUSES = frozenset(
    [
        ReminderStatus.SENT,
        ReminderStatus.FAILED,
        ReminderStatus.CANCELLED,
        ReminderStatus.SKIPPED,
    ]
)

# Removed before a default set is regenerated
STALE_REMINDER_STATUSES = frozenset([ReminderStatus.CANCELLED, ReminderStatus.SKIPPED])

# Keep their slot when a default set is regenerated; a SENT or FAILED slot
# is never refilled
SLOT_HOLDING_STATUSES = frozenset(
    [ReminderStatus.PENDING, ReminderStatus.SENT, ReminderStatus.FAILED]
)


class PaymentReminder(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Scheduled payment reminder.

    Fields:
    - tenant_id / invoice_id: owner and target
    - type, days_offset, channel: what and how
    - scheduled_for: absolute time the reminder becomes due
    - status, sent_at, error_message, provider_message_id: outcome
    - claimed_at, claim_token: dispatch ownership lease
    """

    __tablename__ = "payment_reminders"

    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    invoice_id = Column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    type = Column(Enum(ReminderType, name="remindertype"), nullable=False)
    days_offset = Column(Integer, nullable=False, default=0)
    channel = Column(
        Enum(ReminderChannel, name="reminderchannel"),
        nullable=False,
        default=ReminderChannel.EMAIL,
    )
    scheduled_for = Column(DateTime, nullable=False, index=True)

    status = Column(
        Enum(ReminderStatus, name="reminderstatus"),
        nullable=False,
        default=ReminderStatus.PENDING,
        index=True,
    )
    sent_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    provider_message_id = Column(String(255), nullable=True)

    claimed_at = Column(DateTime, nullable=True)
    claim_token = Column(String(64), nullable=True)

    invoice = relationship("Invoice")

    __table_args__ = (
        # One active reminder per slot. The predicate is spelled out for both
        # dialects because partial indexes are dialect-specific.
        Index(
            "uq_payment_reminders_active_slot",
            "invoice_id",
            "type",
            "days_offset",
            "scheduled_for",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index("ix_payment_reminders_due", "status", "scheduled_for"),
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentReminder(id={self.id}, invoice_id={self.invoice_id}, "
            f"type={self.type}, status={self.status}, scheduled_for={self.scheduled_for})>"
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REMINDER_STATUSES
