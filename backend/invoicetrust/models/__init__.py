"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from invoicetrust.models.base import Base, TimestampMixin, PrimaryKeyMixin
from invoicetrust.models.tenant import (
    Tenant,
    QuotaCounter,
    TeamMember,
    PlanTier,
    PLAN_LIMITS,
    ALL_TEMPLATES,
)
from invoicetrust.models.invoice import (
    Invoice,
    InvoiceItem,
    PaymentStatus,
    DeliveryStatus,
    SEALED_FIELDS,
)
from invoicetrust.models.reminder import (
    PaymentReminder,
    ReminderType,
    ReminderChannel,
    ReminderStatus,
)
from invoicetrust.models.verification_log import VerificationLog, VerificationOutcome
from invoicetrust.models.audit_log import AuditLog, AuditAction

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "Tenant",
    "QuotaCounter",
    "TeamMember",
    "PlanTier",
    "PLAN_LIMITS",
    "ALL_TEMPLATES",
    "Invoice",
    "InvoiceItem",
    "PaymentStatus",
    "DeliveryStatus",
    "SEALED_FIELDS",
    "PaymentReminder",
    "ReminderType",
    "ReminderChannel",
    "ReminderStatus",
    "VerificationLog",
    "VerificationOutcome",
    "AuditLog",
    "AuditAction",
]
