"""
Verification log model.

WHAT: Append-only record of every public verification attempt.

WHY: Issuers want to know how often (and how successfully) their invoices
are checked, and repeated TAMPERED or NOT_FOUND results for one code are a
fraud signal. Rows are never updated or deleted.
"""

import enum
from sqlalchemy import Column, Enum, ForeignKey, Integer, String, Text

from invoicetrust.models.base import Base, PrimaryKeyMixin, TimestampMixin


class VerificationOutcome(str, enum.Enum):
    """Result of recomputing an invoice seal."""

    VALID = "VALID"
    TAMPERED = "TAMPERED"
    NOT_FOUND = "NOT_FOUND"


class VerificationLog(Base, PrimaryKeyMixin, TimestampMixin):
    """
    One verification attempt.

    invoice_id is null when the code did not match any invoice.
    """

    __tablename__ = "verification_logs"

    verification_code = Column(String(32), nullable=False, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    outcome = Column(Enum(VerificationOutcome, name="verificationoutcome"), nullable=False)
    ip_address = Column(String(45), nullable=True)  # IPv6 max length
    user_agent = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<VerificationLog(id={self.id}, code={self.verification_code}, "
            f"outcome={self.outcome})>"
        )
