"""
Invoice and line item models.

WHAT: SQLAlchemy models for issued invoices and their line items.

WHY: An invoice is a legal document. Once issued, its business content
(parties, dates, amounts, items) is sealed by an HMAC so anyone holding
the public verification code can prove it has not been altered. Payment
and delivery progress still change over time, so the columns are split
into two groups:

- SEALED_FIELDS: covered by sealed_hash, never edited after issuance
- everything else (payment/delivery state, due date) stays mutable

HOW: Uses SQLAlchemy 2.0 with:
- Tenant relationship for scoping
- Buyer snapshot columns (the buyer record may change later, the
  invoice must not)
- verification_code (public, unique) and sealed_hash (secret-keyed digest)
  written exactly once when the invoice is sealed
"""

from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import List, Optional, TYPE_CHECKING
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Date,
    ForeignKey,
    Numeric,
    Enum as SQLEnum,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, Mapped

from invoicetrust.models.base import Base

if TYPE_CHECKING:
    from invoicetrust.models.tenant import Tenant


class PaymentStatus(str, Enum):
    """
    Invoice payment workflow status.

    - DRAFT: Created but not yet awaiting payment
    - PENDING: Awaiting payment
    - PAID: Full payment received (stops reminders)
    - OVERDUE: Past due date without payment
    - CANCELLED: Voided (stops reminders)
    """

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class DeliveryStatus(str, Enum):
    """Whether the invoice has reached the buyer."""

    DRAFT = "DRAFT"
    SENT = "SENT"
    VIEWED = "VIEWED"
    DOWNLOADED = "DOWNLOADED"


# Payment states in which no collection message may go out
CLOSED_PAYMENT_STATUSES = frozenset([PaymentStatus.PAID, PaymentStatus.CANCELLED])

# Columns covered by the seal. Items are sealed as well (see InvoiceItem).
SEALED_FIELDS = (
    "invoice_number",
    "tenant_id",
    "currency",
    "issue_date",
    "buyer_name",
    "buyer_email",
    "buyer_phone",
    "buyer_address",
    "buyer_tax_id",
    "subtotal",
    "tax_amount",
    "discount_amount",
    "total_amount",
    "notes",
    "terms",
)

SEALED_ITEM_FIELDS = (
    "description",
    "quantity",
    "unit",
    "unit_price",
    "tax_rate",
    "discount",
    "amount",
    "sort_order",
)


class Invoice(Base):
    """
    Issued invoice.

    Attributes:
        id: Primary key
        tenant_id: Issuing tenant (all queries are scoped by it)
        invoice_number: Human-readable identifier (e.g., INV-2026-0001)

        Buyer snapshot:
        buyer_name, buyer_email, buyer_phone, buyer_address, buyer_tax_id

        Amounts:
        subtotal: Sum of line amounts before tax
        tax_amount: Total tax
        discount_amount: Invoice-level discount
        total_amount: subtotal + tax_amount - discount_amount

        Lifecycle:
        payment_status, delivery_status, due_date, sent_at, paid_at

        Trust:
        verification_code: Public 12-char code printed on the invoice
        sealed_hash: HMAC-SHA256 over the sealed fields (never exposed)
    """

    __tablename__ = "invoices"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)

    tenant_id: Mapped[int] = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Issuing tenant (for queries and access control)",
    )

    invoice_number: Mapped[str] = Column(
        String(50),
        nullable=False,
        index=True,
        comment="Invoice number (e.g., INV-2026-0001)",
    )

    currency: Mapped[str] = Column(String(3), nullable=False, default="USD")

    # Buyer snapshot
    buyer_name: Mapped[str] = Column(String(255), nullable=False)
    buyer_email: Mapped[Optional[str]] = Column(String(255), nullable=True)
    buyer_phone: Mapped[Optional[str]] = Column(String(50), nullable=True)
    buyer_address: Mapped[Optional[str]] = Column(Text, nullable=True)
    buyer_tax_id: Mapped[Optional[str]] = Column(String(100), nullable=True)

    # Amounts
    subtotal: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=0)

    notes: Mapped[Optional[str]] = Column(Text, nullable=True)
    terms: Mapped[Optional[str]] = Column(Text, nullable=True)

    # Dates
    issue_date: Mapped[date] = Column(
        Date,
        nullable=False,
        default=date.today,
        comment="Date invoice was issued",
    )
    due_date: Mapped[Optional[date]] = Column(
        Date,
        nullable=True,
        comment="Payment due date (drives reminder schedule)",
    )
    sent_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    paid_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    # Lifecycle status
    # WHY: values_callable ensures the enum value is stored, not the name
    payment_status: Mapped[PaymentStatus] = Column(
        SQLEnum(
            PaymentStatus,
            name="paymentstatus",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )
    delivery_status: Mapped[DeliveryStatus] = Column(
        SQLEnum(
            DeliveryStatus,
            name="deliverystatus",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=DeliveryStatus.DRAFT,
    )

    # Trust fields
    verification_code: Mapped[Optional[str]] = Column(
        String(32),
        unique=True,
        nullable=True,
        index=True,
        comment="Public verification code",
    )
    sealed_hash: Mapped[Optional[str]] = Column(
        String(64),
        nullable=True,
        comment="HMAC-SHA256 hex digest of sealed fields",
    )

    created_at: Mapped[datetime] = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
    )
    updated_at: Mapped[datetime] = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    # Relationships
    tenant: Mapped["Tenant"] = relationship("Tenant", lazy="joined")
    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.sort_order",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
    )

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id}, number={self.invoice_number}, "
            f"status={self.payment_status})>"
        )

    @property
    def is_sealed(self) -> bool:
        """True once a verification code and hash have been written."""
        return bool(self.sealed_hash)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def is_closed(self) -> bool:
        """
        Check if collection messages must stop.

        Returns:
            True if the invoice is PAID or CANCELLED
        """
        return self.payment_status in CLOSED_PAYMENT_STATUSES

    @classmethod
    def generate_invoice_number(cls, sequence: int) -> str:
        """
        Generate an invoice number.

        HOW: Format INV-YYYY-NNNN where NNNN is the tenant's zero-padded
        sequence number.

        Args:
            sequence: Sequential number for this invoice within the tenant

        Returns:
            Formatted invoice number string
        """
        year = datetime.utcnow().year
        return f"INV-{year}-{sequence:04d}"


class InvoiceItem(Base):
    """
    Line item on an invoice.

    HOW: amount = (quantity * unit_price - discount) * (1 + tax_rate / 100),
    computed by the invoice service before insert and sealed with the invoice.
    """

    __tablename__ = "invoice_items"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    invoice_id: Mapped[int] = Column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = Column(String(500), nullable=False)
    quantity: Mapped[Decimal] = Column(Numeric(12, 3), nullable=False, default=1)
    unit: Mapped[Optional[str]] = Column(String(20), nullable=True)
    unit_price: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=0)
    tax_rate: Mapped[Decimal] = Column(Numeric(5, 2), nullable=False, default=0)
    discount: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=0)
    amount: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=0)
    sort_order: Mapped[int] = Column(Integer, nullable=False, default=0)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    def __repr__(self) -> str:
        return f"<InvoiceItem(id={self.id}, invoice_id={self.invoice_id}, amount={self.amount})>"
