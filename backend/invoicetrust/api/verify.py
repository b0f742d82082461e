"""
Public invoice verification API.

WHAT: Anonymous endpoint that tells anyone holding a verification code
whether the invoice is genuine.

WHY: Buyers, banks and auditors need to check an invoice without an
account. The response is deliberately minimal: a status and, only when
VALID, the header details already printed on the invoice.

HOW: Rate limited per client IP through Redis; every attempt is logged
by the VerificationEngine.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.db.session import get_db
from invoicetrust.middleware.rate_limiter import rate_limit_verify
from invoicetrust.middleware.request_context import get_client_ip, get_user_agent
from invoicetrust.schemas.verification import VerificationResult
from invoicetrust.services.verification import VerificationEngine


router = APIRouter(prefix="/verify", tags=["verification"])


@router.get(
    "/{code}",
    response_model=VerificationResult,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Verify invoice",
    description="Check whether an invoice matches its seal (public, rate limited)",
    dependencies=[Depends(rate_limit_verify)],
)
async def verify_invoice(
    code: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> VerificationResult:
    """
    Verify an invoice by public code.

    Returns VALID with a redacted summary, TAMPERED, or NOT_FOUND. All
    three are 200 responses so the status is always in the body.
    """
    engine = VerificationEngine(db)
    return await engine.verify(
        code,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
