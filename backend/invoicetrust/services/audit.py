"""
Audit logging service.

WHAT: Service layer for creating audit log entries with proper context.

WHY: Invoice and reminder changes need a trail, but writing that trail
must never break the operation being audited. This service provides:
- Automatic context extraction from request middleware
- Convenience methods for invoice and reminder events
- Background-safe logging that won't break if context is missing

HOW: Uses the AuditLogDAO for persistence inside a SAVEPOINT, so a
failed insert rolls back only the audit row, and RequestContext
middleware for automatic IP/user-agent capture.
"""

import logging
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.dao.audit_log import AuditLogDAO
from invoicetrust.models.audit_log import AuditLog, AuditAction
from invoicetrust.middleware.request_context import get_request_context


# Logger for audit service errors (not audit events themselves)
logger = logging.getLogger(__name__)


class AuditService:
    """
    Service for creating audit log entries.

    Example:
        audit = AuditService(db)
        await audit.log_status_change(invoice, old_status, new_status)
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize audit service with database session.

        Args:
            session: Async database session for audit log persistence
        """
        self.dao = AuditLogDAO(session)
        self._session = session

    def _get_context(self) -> tuple[Optional[str], Optional[str]]:
        """
        Get IP address and user agent from request context.

        Returns:
            Tuple of (ip_address, user_agent), both may be None
        """
        ctx = get_request_context()
        if ctx:
            return ctx.ip_address, ctx.user_agent
        return None, None

    async def log_event(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: Optional[int] = None,
        tenant_id: Optional[int] = None,
        changes: Optional[Dict[str, Any]] = None,
        extra_data: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """
        Log a generic audit event.

        Args:
            action: Type of event (from AuditAction enum)
            resource_type: Category of affected resource
            resource_id: Specific resource ID (optional)
            tenant_id: Tenant context (optional)
            changes: Before/after values for mutations
            extra_data: Additional context
            ip_address: Override auto-detected IP
            user_agent: Override auto-detected user agent

        Returns:
            Created AuditLog or None if logging failed

        Note:
            This method never raises exceptions to prevent audit
            logging from breaking business operations. Errors are
            logged to the application logger instead.
        """
        try:
            if ip_address is None or user_agent is None:
                ctx_ip, ctx_ua = self._get_context()
                ip_address = ip_address or ctx_ip
                user_agent = user_agent or ctx_ua

            async with self._session.begin_nested():
                return await self.dao.create(
                    action=action,
                    resource_type=resource_type,
                    resource_id=resource_id,
                    tenant_id=tenant_id,
                    changes=changes,
                    extra_data=extra_data,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )

        except Exception as e:
            # Audit logging should never break business logic
            logger.error(f"Failed to create audit log: {e}", exc_info=True)
            return None

    # =========================================================================
    # Invoice Events
    # =========================================================================

    async def log_invoice_issued(
        self,
        tenant_id: int,
        invoice_id: int,
        invoice_number: str,
        reminders_scheduled: int = 0,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.INVOICE_ISSUED,
            resource_type="invoice",
            resource_id=invoice_id,
            tenant_id=tenant_id,
            extra_data={
                "invoice_number": invoice_number,
                "reminders_scheduled": reminders_scheduled,
            },
        )

    async def log_status_change(
        self,
        tenant_id: int,
        invoice_id: int,
        old_status: str,
        new_status: str,
        reminders_cancelled: int = 0,
    ) -> Optional[AuditLog]:
        """
        Log a payment status change.

        WHY: Moving an invoice out of PAID is unusual and can hide fraud,
        so the entry is flagged for review.

        Args:
            tenant_id: Tenant owning the invoice
            invoice_id: Invoice ID
            old_status: Previous payment status value
            new_status: New payment status value
            reminders_cancelled: Reminders cancelled as a side effect

        Returns:
            Created AuditLog or None if logging failed
        """
        paid_reversal = old_status == "PAID" and new_status != "PAID"
        return await self.log_event(
            action=AuditAction.INVOICE_STATUS_CHANGED,
            resource_type="invoice",
            resource_id=invoice_id,
            tenant_id=tenant_id,
            changes={"payment_status": {"before": old_status, "after": new_status}},
            extra_data={
                "paid_reversal": paid_reversal,
                "reminders_cancelled": reminders_cancelled,
            },
        )

    async def log_due_date_change(
        self,
        tenant_id: int,
        invoice_id: int,
        old_due_date: Optional[str],
        new_due_date: Optional[str],
        reminders_scheduled: int,
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.INVOICE_DUE_DATE_CHANGED,
            resource_type="invoice",
            resource_id=invoice_id,
            tenant_id=tenant_id,
            changes={"due_date": {"before": old_due_date, "after": new_due_date}},
            extra_data={"reminders_scheduled": reminders_scheduled},
        )

    async def log_invoice_sent(
        self, tenant_id: int, invoice_id: int, channel: str
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.INVOICE_SENT,
            resource_type="invoice",
            resource_id=invoice_id,
            tenant_id=tenant_id,
            extra_data={"channel": channel},
        )

    async def log_invoice_deleted(
        self, tenant_id: int, invoice_id: int, invoice_number: str
    ) -> Optional[AuditLog]:
        return await self.log_event(
            action=AuditAction.INVOICE_DELETED,
            resource_type="invoice",
            resource_id=invoice_id,
            tenant_id=tenant_id,
            extra_data={"invoice_number": invoice_number},
        )

    # =========================================================================
    # Reminder Events
    # =========================================================================

    async def log_reminder_event(
        self,
        action: AuditAction,
        tenant_id: int,
        resource_id: Optional[int],
        extra_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """
        Log a reminder-related event.

        resource_id is the reminder ID for single-reminder actions and the
        invoice ID for bulk ones (REMINDERS_CREATED, REMINDERS_CANCELLED).
        """
        bulk = action in (AuditAction.REMINDERS_CREATED, AuditAction.REMINDERS_CANCELLED)
        return await self.log_event(
            action=action,
            resource_type="invoice" if bulk else "reminder",
            resource_id=resource_id,
            tenant_id=tenant_id,
            extra_data=extra_data,
        )
