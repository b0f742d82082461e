"""
Verification schemas.

WHAT: Public verification result and per-invoice verification stats.

WHY: The public response carries only a status and, when VALID, a
redacted summary. It never includes the sealed hash or any buyer data
beyond what is printed on the invoice header.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from invoicetrust.models.verification_log import VerificationOutcome


class InvoiceSummary(BaseModel):
    """Redacted invoice details shown to anyone holding the code."""

    invoice_number: str
    issuer_name: str
    issue_date: date
    total_amount: Decimal
    currency: str


class VerificationResult(BaseModel):
    status: VerificationOutcome
    invoice: Optional[InvoiceSummary] = None

    @property
    def is_valid(self) -> bool:
        return self.status == VerificationOutcome.VALID


class VerificationStats(BaseModel):
    total_checks: int = 0
    valid_checks: int = 0
    failed_checks: int = 0
