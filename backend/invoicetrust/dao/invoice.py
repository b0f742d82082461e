"""
Invoice Data Access Object (DAO).

WHAT: Database operations for the Invoice model.

WHY: The DAO pattern:
1. Separates data access from business logic
2. Enforces tenant scoping for every tenant-facing lookup
3. Keeps the one unscoped lookup (by public verification code) explicit

HOW: Extends BaseDAO with invoice-specific queries:
- Lookup by verification code (public verification)
- Lifecycle updates (payment status, due date, delivery)
- Per-tenant numbering
"""

from datetime import date, datetime
from typing import List, Optional
from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.dao.base import BaseDAO
from invoicetrust.models.invoice import (
    DeliveryStatus,
    Invoice,
    InvoiceItem,
    PaymentStatus,
)


class InvoiceDAO(BaseDAO[Invoice]):
    """
    Data Access Object for Invoice model.

    HOW: Extends BaseDAO with invoice-specific methods.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(Invoice, session)

    async def create_with_items(self, items: List[dict], **fields) -> Invoice:
        """
        Insert an invoice together with its line items.

        WHY: Items are part of the sealed content, so they must exist
        before the seal is computed.

        Args:
            items: Line item dicts (already priced)
            **fields: Invoice column values

        Returns:
            The created Invoice with items loaded
        """
        invoice = Invoice(**fields)
        for index, item in enumerate(items):
            item.setdefault("sort_order", index)
            invoice.items.append(InvoiceItem(**item))
        self.session.add(invoice)
        await self.session.flush()
        await self.session.refresh(invoice)
        return invoice

    async def get_by_verification_code(self, code: str) -> Optional[Invoice]:
        """
        Get an invoice by its public verification code.

        WHY: Public verification is the only unscoped lookup. The caller
        is anonymous and holds nothing but the printed code.

        Args:
            code: Verification code (case-insensitive)

        Returns:
            Invoice if found, None otherwise
        """
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.verification_code == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def verification_code_exists(self, code: str) -> bool:
        result = await self.session.execute(
            select(Invoice.id).where(Invoice.verification_code == code).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def next_sequence(self, tenant_id: int) -> int:
        """
        Next per-tenant invoice sequence number.

        HOW: count + 1. The (tenant_id, invoice_number) unique constraint
        rejects a concurrent duplicate, which the caller surfaces as a conflict.
        """
        result = await self.session.execute(
            select(func.count(Invoice.id)).where(Invoice.tenant_id == tenant_id)
        )
        return (result.scalar() or 0) + 1

    async def set_seal(self, invoice_id: int, verification_code: str, sealed_hash: str) -> bool:
        """
        Write the verification code and hash exactly once.

        HOW: Conditional UPDATE on sealed_hash IS NULL, so an existing seal
        is never overwritten even by a concurrent caller.

        Returns:
            True if this call wrote the seal
        """
        result = await self.session.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.sealed_hash.is_(None))
            .values(verification_code=verification_code, sealed_hash=sealed_hash)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def update_status(
        self,
        invoice_id: int,
        tenant_id: int,
        payment_status: PaymentStatus,
        delivery_status: Optional[DeliveryStatus] = None,
    ) -> Optional[Invoice]:
        """
        Change payment (and optionally delivery) status.

        Args:
            invoice_id: Invoice ID
            tenant_id: Tenant ID for scoping
            payment_status: New payment status
            delivery_status: New delivery status (unchanged when None)

        Returns:
            Updated invoice, or None if not found
        """
        invoice = await self.get_by_id_and_tenant(invoice_id, tenant_id)
        if not invoice:
            return None

        invoice.payment_status = payment_status
        if delivery_status is not None:
            invoice.delivery_status = delivery_status
        if payment_status == PaymentStatus.PAID:
            invoice.paid_at = datetime.utcnow()
        elif invoice.paid_at is not None:
            invoice.paid_at = None

        await self.session.flush()
        await self.session.refresh(invoice)
        return invoice

    async def update_due_date(
        self,
        invoice_id: int,
        tenant_id: int,
        due_date: Optional[date],
    ) -> Optional[Invoice]:
        """Change the due date (a lifecycle field, not sealed)."""
        invoice = await self.get_by_id_and_tenant(invoice_id, tenant_id)
        if not invoice:
            return None

        invoice.due_date = due_date
        await self.session.flush()
        await self.session.refresh(invoice)
        return invoice

    async def mark_sent(self, invoice_id: int, tenant_id: int) -> Optional[Invoice]:
        """Record that the invoice was delivered to the buyer."""
        invoice = await self.get_by_id_and_tenant(invoice_id, tenant_id)
        if not invoice:
            return None

        invoice.delivery_status = DeliveryStatus.SENT
        invoice.sent_at = datetime.utcnow()
        await self.session.flush()
        await self.session.refresh(invoice)
        return invoice
