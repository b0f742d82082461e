"""
Audit Log Model.

WHAT: SQLAlchemy model for storing tenant activity events.

WHY: Invoices are financial records, so every change to them (status
changes, due date edits, deletions) and every reminder action needs a
tamper-proof trail. Status changes that reverse a PAID invoice are
flagged in extra_data for review.

HOW: Immutable append-only table with rich context fields.
Uses JSON for flexible storage of changes and metadata.
(PostgreSQL uses JSONB, SQLite uses JSON for compatibility)
"""

import enum
from sqlalchemy import Column, Integer, String, Enum, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship

from invoicetrust.models.base import Base, TimestampMixin, PrimaryKeyMixin


class AuditAction(str, enum.Enum):
    """
    Enumeration of auditable actions.

    Categories:
    - Invoice: issuance and lifecycle changes
    - Reminder: scheduling, cancellation and manual sends
    - Quota: window resets
    """

    # Invoice events
    INVOICE_ISSUED = "INVOICE_ISSUED"
    INVOICE_STATUS_CHANGED = "INVOICE_STATUS_CHANGED"
    INVOICE_DUE_DATE_CHANGED = "INVOICE_DUE_DATE_CHANGED"
    INVOICE_SENT = "INVOICE_SENT"
    INVOICE_DELETED = "INVOICE_DELETED"

    # Reminder events
    REMINDERS_CREATED = "REMINDERS_CREATED"
    REMINDER_CREATED = "REMINDER_CREATED"
    REMINDER_CANCELLED = "REMINDER_CANCELLED"
    REMINDERS_CANCELLED = "REMINDERS_CANCELLED"
    REMINDER_SENT_MANUALLY = "REMINDER_SENT_MANUALLY"

    # Quota events
    QUOTA_RESET = "QUOTA_RESET"


class AuditLog(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Immutable audit log entry.

    Fields:
    - action: What type of event occurred (AuditAction enum)
    - resource_type: Category of affected resource ("invoice", "reminder")
    - resource_id: Specific resource ID (nullable)
    - tenant_id: Tenant context for filtering
    - changes: Before/after values for mutations
    - extra_data: Additional context
    - ip_address / user_agent: Request context when available
    - created_at: Timestamp (from TimestampMixin)
    """

    __tablename__ = "audit_logs"

    action = Column(Enum(AuditAction, name="auditaction"), nullable=False, index=True)

    resource_type = Column(String(100), nullable=False, index=True)
    resource_id = Column(Integer, nullable=True, index=True)

    # WHY: SET NULL keeps the trail after a tenant is removed
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Example: {"payment_status": {"before": "PENDING", "after": "PAID"}}
    changes = Column(JSON, nullable=True)

    # NOTE: Named 'extra_data' because 'metadata' is reserved by SQLAlchemy
    extra_data = Column(JSON, nullable=True)

    ip_address = Column(String(45), nullable=True, index=True)
    user_agent = Column(Text, nullable=True)

    tenant = relationship("Tenant", foreign_keys=[tenant_id])

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, action={self.action.value}, "
            f"tenant_id={self.tenant_id}, resource_type={self.resource_type})>"
        )
