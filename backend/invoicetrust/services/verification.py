"""
Invoice sealing and public verification.

WHAT: Seals an invoice at issue time with an HMAC over its business
content, and later proves whether the stored content still matches.

WHY: A buyer (or their bank, or an auditor) holding only the code printed
on an invoice must be able to tell a genuine invoice from an altered one.
The digest is keyed by a server-side secret, so someone with database
write access can change the content but cannot produce a matching hash.

HOW:
1. canonical_payload() picks only SEALED_FIELDS and the line items and
   normalises decimals and dates to strings
2. canonicalize() serialises with sorted keys and fixed separators so
   the bytes are identical on every run
3. compute_digest() is HMAC-SHA256(secret, code + "." + bytes)
4. verify() recomputes from the current row and compares in constant
   time against the current secret, then each legacy secret

Every verification attempt is appended to verification_logs inside a
SAVEPOINT. A failed log write never changes the verification result.
"""

import hashlib
import hmac
import json
import logging
import secrets
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.core.config import settings
from invoicetrust.core.exceptions import (
    ConfigurationError,
    InvalidStateTransitionError,
    InvoiceNotFoundError,
    ResourceAlreadyExistsError,
)
from invoicetrust.dao.invoice import InvoiceDAO
from invoicetrust.dao.verification_log import VerificationLogDAO
from invoicetrust.models.invoice import Invoice, SEALED_FIELDS, SEALED_ITEM_FIELDS
from invoicetrust.models.verification_log import VerificationOutcome
from invoicetrust.schemas.verification import (
    InvoiceSummary,
    VerificationResult,
    VerificationStats,
)

logger = logging.getLogger(__name__)


# Used only when DEBUG is on and no VERIFICATION_SECRET is set
DEV_VERIFICATION_SECRET = "invoicetrust-dev-verification-secret"

CODE_BYTES = 6  # 12 hex chars
MAX_CODE_ATTEMPTS = 5

MONEY_PLACES = Decimal("0.01")
QUANTITY_PLACES = Decimal("0.001")

# Item columns stored with three decimal places
QUANTITY_FIELDS = frozenset(["quantity"])


def _normalize(value: Any, places: Decimal = MONEY_PLACES) -> Any:
    """Turn a column value into a JSON-stable primitive."""
    if isinstance(value, Decimal):
        return str(value.quantize(places, rounding=ROUND_HALF_UP))
    if isinstance(value, float):
        return str(Decimal(str(value)).quantize(places, rounding=ROUND_HALF_UP))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def resolve_secret(secret: Optional[str] = None) -> str:
    """
    Get the sealing secret.

    Raises:
        ConfigurationError: If no secret is configured outside debug mode
    """
    secret = secret or settings.VERIFICATION_SECRET
    if secret:
        return secret

    if settings.DEBUG:
        logger.warning("VERIFICATION_SECRET not set, using development secret")
        return DEV_VERIFICATION_SECRET

    raise ConfigurationError(
        message="Invoice verification is not configured",
        hint="Set VERIFICATION_SECRET environment variable",
    )


class VerificationEngine:
    """
    Seals invoices and verifies them by public code.

    Example:
        engine = VerificationEngine(db)
        await engine.seal(invoice)
        result = await engine.verify("A1B2C3D4E5F6")
    """

    def __init__(
        self,
        session: AsyncSession,
        secret: Optional[str] = None,
        legacy_secrets: Optional[List[str]] = None,
    ):
        """
        Initialize engine.

        Args:
            session: Async database session
            secret: Current sealing secret (defaults to settings)
            legacy_secrets: Previous secrets still accepted by verify()

        Raises:
            ConfigurationError: If no secret is available
        """
        self.session = session
        self.invoice_dao = InvoiceDAO(session)
        self.log_dao = VerificationLogDAO(session)
        self._secret = resolve_secret(secret)
        if legacy_secrets is None:
            legacy_secrets = settings.VERIFICATION_SECRET_LEGACY
        self._legacy_secrets = [s for s in legacy_secrets if s and s != self._secret]

    # =========================================================================
    # Digest
    # =========================================================================

    @staticmethod
    def generate_verification_code() -> str:
        """12 uppercase hex characters from a CSPRNG."""
        return secrets.token_hex(CODE_BYTES).upper()

    @staticmethod
    def canonical_payload(invoice: Invoice) -> Dict[str, Any]:
        """
        Extract the sealed content of an invoice.

        Lifecycle fields (payment/delivery status, due date) are not part
        of the payload, so they can change without breaking the seal.

        Args:
            invoice: Invoice with items loaded

        Returns:
            Dict of primitive values
        """
        payload: Dict[str, Any] = {
            field: _normalize(getattr(invoice, field)) for field in SEALED_FIELDS
        }

        items = []
        for item in sorted(invoice.items, key=lambda i: (i.sort_order or 0)):
            items.append(
                {
                    field: _normalize(
                        getattr(item, field),
                        QUANTITY_PLACES if field in QUANTITY_FIELDS else MONEY_PLACES,
                    )
                    for field in SEALED_ITEM_FIELDS
                }
            )
        payload["items"] = items
        return payload

    @staticmethod
    def canonicalize(payload: Dict[str, Any]) -> bytes:
        """Deterministic UTF-8 JSON encoding (sorted keys at every depth)."""
        return json.dumps(
            payload,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")

    @classmethod
    def compute_digest(cls, code: str, payload: Dict[str, Any], secret: str) -> str:
        """
        HMAC-SHA256 over the code and canonical payload.

        Binding the code into the message means a valid hash cannot be
        moved to another invoice's code.
        """
        message = code.encode("utf-8") + b"." + cls.canonicalize(payload)
        return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    # =========================================================================
    # Seal
    # =========================================================================

    async def _allocate_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self.generate_verification_code()
            if not await self.invoice_dao.verification_code_exists(code):
                return code
            logger.warning("Verification code collision, regenerating")

        raise ResourceAlreadyExistsError(
            message="Could not allocate a unique verification code",
            attempts=MAX_CODE_ATTEMPTS,
        )

    async def seal(self, invoice: Invoice) -> str:
        """
        Seal an invoice.

        Assigns a verification code if the invoice has none, computes the
        digest and stores both. The write is conditional on the invoice
        being unsealed, so an existing seal is never replaced.

        Args:
            invoice: Freshly created invoice with items loaded

        Returns:
            The sealed hash

        Raises:
            InvalidStateTransitionError: If the invoice is already sealed
        """
        if invoice.is_sealed:
            raise InvalidStateTransitionError(
                message="Invoice is already sealed",
                invoice_id=invoice.id,
            )

        code = invoice.verification_code or await self._allocate_code()
        sealed_hash = self.compute_digest(code, self.canonical_payload(invoice), self._secret)

        if not await self.invoice_dao.set_seal(invoice.id, code, sealed_hash):
            raise InvalidStateTransitionError(
                message="Invoice is already sealed",
                invoice_id=invoice.id,
            )

        await self.session.refresh(invoice)

        logger.info(
            f"Invoice {invoice.id} sealed",
            extra={"invoice_id": invoice.id, "tenant_id": invoice.tenant_id},
        )
        return sealed_hash

    # =========================================================================
    # Verify
    # =========================================================================

    def _matches(self, invoice: Invoice) -> bool:
        payload = self.canonical_payload(invoice)
        for secret in [self._secret] + self._legacy_secrets:
            candidate = self.compute_digest(invoice.verification_code, payload, secret)
            if hmac.compare_digest(candidate, invoice.sealed_hash):
                return True
        return False

    async def _record(
        self,
        code: str,
        invoice_id: Optional[int],
        outcome: VerificationOutcome,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        try:
            async with self.session.begin_nested():
                await self.log_dao.create(
                    verification_code=code[:32],
                    invoice_id=invoice_id,
                    outcome=outcome,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
        except SQLAlchemyError as e:
            # The verification answer stands even if the log row is lost
            logger.error(f"Failed to record verification attempt: {e}", exc_info=True)

    async def verify(
        self,
        code: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> VerificationResult:
        """
        Verify an invoice by its public code.

        Never raises on a mismatch and never exposes the hash or secret.

        Args:
            code: Verification code (case-insensitive)
            ip_address: Caller IP for the log
            user_agent: Caller user agent for the log

        Returns:
            VerificationResult with VALID (plus summary), TAMPERED or NOT_FOUND
        """
        normalized = (code or "").strip().upper()
        invoice = await self.invoice_dao.get_by_verification_code(normalized) if normalized else None

        if invoice is None or not invoice.sealed_hash:
            await self._record(normalized, None, VerificationOutcome.NOT_FOUND, ip_address, user_agent)
            return VerificationResult(status=VerificationOutcome.NOT_FOUND)

        if not self._matches(invoice):
            logger.warning(
                f"Tampered invoice detected: {invoice.id}",
                extra={"invoice_id": invoice.id, "tenant_id": invoice.tenant_id},
            )
            await self._record(normalized, invoice.id, VerificationOutcome.TAMPERED, ip_address, user_agent)
            return VerificationResult(status=VerificationOutcome.TAMPERED)

        await self._record(normalized, invoice.id, VerificationOutcome.VALID, ip_address, user_agent)
        return VerificationResult(
            status=VerificationOutcome.VALID,
            invoice=InvoiceSummary(
                invoice_number=invoice.invoice_number,
                issuer_name=invoice.tenant.business_name,
                issue_date=invoice.issue_date,
                total_amount=invoice.total_amount,
                currency=invoice.currency,
            ),
        )

    async def get_stats(self, tenant_id: int, invoice_id: int) -> VerificationStats:
        """
        Verification counts for one of the tenant's invoices.

        Raises:
            InvoiceNotFoundError: If the invoice is missing or owned by another tenant
        """
        invoice = await self.invoice_dao.get_by_id_and_tenant(invoice_id, tenant_id)
        if not invoice:
            raise InvoiceNotFoundError(invoice_id=invoice_id)

        counts = await self.log_dao.outcome_counts(invoice_id)
        valid = counts.get(VerificationOutcome.VALID, 0)
        total = sum(counts.values())
        return VerificationStats(
            total_checks=total,
            valid_checks=valid,
            failed_checks=total - valid,
        )
