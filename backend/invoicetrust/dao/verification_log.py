"""
Verification Log Data Access Object (DAO).

WHAT: Append-only writes and aggregate reads for verification attempts.
"""

from typing import Dict
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.dao.base import BaseDAO
from invoicetrust.models.verification_log import VerificationLog, VerificationOutcome


class VerificationLogDAO(BaseDAO[VerificationLog]):
    """Data Access Object for VerificationLog model."""

    def __init__(self, session: AsyncSession):
        super().__init__(VerificationLog, session)

    async def outcome_counts(self, invoice_id: int) -> Dict[VerificationOutcome, int]:
        """
        Number of verification attempts per outcome for one invoice.

        Args:
            invoice_id: Invoice ID

        Returns:
            Mapping of outcome to count (missing outcomes are absent)
        """
        result = await self.session.execute(
            select(VerificationLog.outcome, func.count(VerificationLog.id))
            .where(VerificationLog.invoice_id == invoice_id)
            .group_by(VerificationLog.outcome)
        )
        return {outcome: count for outcome, count in result.all()}
