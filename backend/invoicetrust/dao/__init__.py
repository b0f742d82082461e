"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from invoicetrust.dao.base import BaseDAO
from invoicetrust.dao.tenant import TenantDAO, TeamMemberDAO, QuotaCounterDAO
from invoicetrust.dao.invoice import InvoiceDAO
from invoicetrust.dao.reminder import ReminderDAO
from invoicetrust.dao.verification_log import VerificationLogDAO
from invoicetrust.dao.audit_log import AuditLogDAO

__all__ = [
    "BaseDAO",
    "TenantDAO",
    "TeamMemberDAO",
    "QuotaCounterDAO",
    "InvoiceDAO",
    "ReminderDAO",
    "VerificationLogDAO",
    "AuditLogDAO",
]
