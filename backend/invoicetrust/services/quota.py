"""
Plan quota enforcement.

WHAT: Decides whether a tenant may use a feature and records usage of
counted features within a rolling window.

WHY: Every paid feature of the engine (issuing invoices, reminders, PDF
API calls, OCR) is limited by the tenant's plan. Counters grow within a
30-day window and reset lazily on the first read after the window ends,
so no cron job is needed to roll them over.

HOW:
- Limits come from PLAN_LIMITS[tenant.plan]
- Lazy reset: one conditional UPDATE ... WHERE last_reset_date < cutoff
- Consume: one conditional UPDATE ... SET col = col + n WHERE col + n <= limit
- Fail closed: a missing tenant or a database error denies the request
  and is logged, never raised
"""

import enum
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from invoicetrust.core.config import settings
from invoicetrust.dao.tenant import COUNTER_COLUMNS, QuotaCounterDAO, TeamMemberDAO, TenantDAO
from invoicetrust.models.tenant import ALL_TEMPLATES, PLAN_LIMITS, QuotaCounter, Tenant
from invoicetrust.schemas.quota import QuotaDecision, UsageSnapshot

logger = logging.getLogger(__name__)


class QuotaFeature(str, enum.Enum):
    """Features gated by plan."""

    INVOICES = "invoices"
    PDF_API = "pdf_api"
    OCR = "ocr"
    TEAM_MEMBERS = "team_members"
    INVENTORY = "inventory"
    EMAIL_INTEGRATION = "email_integration"
    PAYMENT_REMINDERS = "payment_reminders"
    TEMPLATES = "templates"


# Features with a windowed usage counter
COUNTED_FEATURES = frozenset(COUNTER_COLUMNS.keys())

# Plan flags (True/False in PLAN_LIMITS)
BOOLEAN_FEATURES = frozenset(["inventory", "email_integration", "payment_reminders"])


class QuotaGate:
    """
    Checks and consumes plan quotas.

    Example:
        gate = QuotaGate(db)
        decision = await gate.consume(tenant.id, QuotaFeature.INVOICES)
        if not decision.allowed:
            raise QuotaExceededError(feature="invoices")
    """

    def __init__(self, session: AsyncSession, window_days: Optional[int] = None):
        """
        Initialize quota gate.

        Args:
            session: Async database session
            window_days: Rolling window length (defaults to QUOTA_WINDOW_DAYS)
        """
        self.session = session
        self.tenant_dao = TenantDAO(session)
        self.counter_dao = QuotaCounterDAO(session)
        self.team_dao = TeamMemberDAO(session)
        self.window = timedelta(days=window_days or settings.QUOTA_WINDOW_DAYS)

    async def _load(
        self, tenant_id: int, now: Optional[datetime] = None
    ) -> tuple[Optional[Tenant], Optional[QuotaCounter]]:
        """
        Load the tenant and its counter, applying a lazy reset first.

        Returns:
            (tenant, counter), or (None, None) when the tenant is unknown
        """
        now = now or datetime.utcnow()
        tenant = await self.tenant_dao.get_by_id(tenant_id)
        if tenant is None:
            logger.warning(f"Quota check for unknown tenant {tenant_id}")
            return None, None

        await self.counter_dao.get_or_create(tenant_id, now=now)
        if await self.counter_dao.reset_if_expired(tenant_id, cutoff=now - self.window, now=now):
            logger.info(
                f"Quota window reset for tenant {tenant_id}",
                extra={"tenant_id": tenant_id},
            )

        counter = await self.counter_dao.get_for_tenant(tenant_id)
        return tenant, counter

    async def _used(self, tenant_id: int, feature: str, counter: QuotaCounter) -> int:
        if feature == QuotaFeature.TEAM_MEMBERS.value:
            return await self.team_dao.count_for_tenant(tenant_id)
        return getattr(counter, COUNTER_COLUMNS[feature])

    async def check_limit(self, tenant_id: int, feature: str, now: Optional[datetime] = None) -> bool:
        """
        Check whether the tenant may use a feature right now.

        Persists a lazy window reset as a side effect.

        Args:
            tenant_id: Tenant ID
            feature: QuotaFeature value
            now: Clock override (tests)

        Returns:
            True if allowed. Anything unknown (feature or tenant) and database
            errors return False.
        """
        try:
            feature = QuotaFeature(feature).value
        except ValueError:
            logger.warning(
                f"Quota check for unknown feature {feature!r}",
                extra={"tenant_id": tenant_id},
            )
            return False

        try:
            tenant, counter = await self._load(tenant_id, now)
            if tenant is None:
                return False

            limits = PLAN_LIMITS[tenant.plan]
            if feature == QuotaFeature.TEMPLATES.value:
                return True
            if feature in BOOLEAN_FEATURES:
                return bool(limits[feature])

            used = await self._used(tenant_id, feature, counter)
            return used < limits[feature]

        except SQLAlchemyError as e:
            logger.error(f"Quota check failed for tenant {tenant_id}: {e}", exc_info=True)
            return False

    async def can_use_template(self, tenant_id: int, template_id: str) -> bool:
        """
        Check the plan's template allow-list.

        Returns:
            True if the template is listed or the plan allows all templates
        """
        try:
            tenant = await self.tenant_dao.get_by_id(tenant_id)
        except SQLAlchemyError as e:
            logger.error(f"Template check failed for tenant {tenant_id}: {e}", exc_info=True)
            return False

        if tenant is None:
            return False

        allowed = PLAN_LIMITS[tenant.plan]["template_ids"]
        return ALL_TEMPLATES in allowed or template_id in allowed

    async def consume(
        self,
        tenant_id: int,
        feature: str,
        amount: int = 1,
        now: Optional[datetime] = None,
    ) -> QuotaDecision:
        """
        Atomically check and record usage of a counted feature.

        HOW: The increment only applies when the new total stays within the
        limit, so two concurrent callers at limit - 1 cannot both succeed.

        Args:
            tenant_id: Tenant ID
            feature: invoices, pdf_api or ocr
            amount: Units to consume
            now: Clock override (tests)

        Returns:
            QuotaDecision (allowed=False with a reason when rejected)

        Raises:
            ValueError: If a known feature has no usage counter
        """
        try:
            feature = QuotaFeature(feature).value
        except ValueError:
            logger.warning(
                f"Quota consume for unknown feature {feature!r}",
                extra={"tenant_id": tenant_id},
            )
            return QuotaDecision(allowed=False, feature=str(feature), reason="Unknown feature")

        if feature not in COUNTED_FEATURES:
            raise ValueError(f"Feature '{feature}' has no usage counter")

        try:
            tenant, counter = await self._load(tenant_id, now)
            if tenant is None:
                return QuotaDecision(allowed=False, feature=feature, reason="Tenant not found")

            limit = PLAN_LIMITS[tenant.plan][feature]
            applied = await self.counter_dao.try_increment(tenant_id, feature, amount, limit)
            counter = await self.counter_dao.get_for_tenant(tenant_id)
            used = getattr(counter, COUNTER_COLUMNS[feature])

        except SQLAlchemyError as e:
            logger.error(f"Quota consume failed for tenant {tenant_id}: {e}", exc_info=True)
            return QuotaDecision(allowed=False, feature=feature, reason="Quota unavailable")

        if not applied:
            logger.info(
                f"Quota exceeded for tenant {tenant_id}: {feature}",
                extra={"tenant_id": tenant_id, "feature": feature, "used": used, "limit": limit},
            )
            return QuotaDecision(
                allowed=False,
                feature=feature,
                used=used,
                limit=limit,
                reason="Plan limit reached",
            )

        return QuotaDecision(allowed=True, feature=feature, used=used, limit=limit)

    async def get_usage(self, tenant_id: int, now: Optional[datetime] = None) -> Optional[UsageSnapshot]:
        """
        Current window usage against plan limits.

        Returns:
            UsageSnapshot, or None if the tenant is unknown
        """
        tenant, counter = await self._load(tenant_id, now)
        if tenant is None:
            return None

        limits = PLAN_LIMITS[tenant.plan]
        usage = {feature: getattr(counter, column) for feature, column in COUNTER_COLUMNS.items()}
        usage["team_members"] = await self.team_dao.count_for_tenant(tenant_id)

        return UsageSnapshot(
            plan=tenant.plan,
            usage=usage,
            limits={feature: limits[feature] for feature in usage},
            features={feature: bool(limits[feature]) for feature in sorted(BOOLEAN_FEATURES)},
            template_ids=list(limits["template_ids"]),
            window_started_at=counter.last_reset_date,
            window_ends_at=counter.last_reset_date + self.window,
        )
