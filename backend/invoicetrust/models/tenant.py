"""
Tenant, quota counter and team member models.

WHAT: A tenant is the business that issues invoices. Each tenant is on
one plan tier and owns exactly one QuotaCounter row that tracks usage
within a rolling window.

WHY: Every feature in the engine (issuing invoices, scheduling reminders,
PDF API calls, OCR) is gated by the tenant's plan. Keeping the plan
catalogue next to the model mirrors how limits are read everywhere:
PLAN_LIMITS[tenant.plan][feature].

HOW:
- plan is a string enum stored as its value
- settings is free-form JSON parsed through TenantSettings on read
- quota counters live in their own table so the reset and increment can
  be single conditional UPDATE statements
"""

import enum
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
)
from sqlalchemy.orm import relationship

from invoicetrust.models.base import Base, PrimaryKeyMixin, TimestampMixin


class PlanTier(str, enum.Enum):
    """
    Subscription tiers.

    Plans:
    - FREE: trial tier, no reminders or integrations
    - BASIC / PRO / PREMIUM: monthly tiers with increasing limits
    - LIFETIME: one-off purchase with the highest limits
    """

    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"
    PREMIUM = "PREMIUM"
    LIFETIME = "LIFETIME"


# Sentinel in template_ids meaning every template is allowed
ALL_TEMPLATES = "all"

# Plan limits configuration
# WHY: Centralised so QuotaGate, the API and tests read identical numbers.
# Numeric limits are per rolling window except team_members (live count)
# and businesses (static).
PLAN_LIMITS: Dict[PlanTier, Dict[str, Any]] = {
    PlanTier.FREE: {
        "name": "Free Trial",
        "price": 0,
        "invoices": 10,
        "templates": 1,
        "template_ids": ["classic"],
        "team_members": 1,
        "pdf_api": 0,
        "inventory": False,
        "ocr": 0,
        "email_integration": False,
        "businesses": 1,
        "payment_reminders": False,
    },
    PlanTier.BASIC: {
        "name": "Basic",
        "price": 10,
        "invoices": 2000,
        "templates": 5,
        "template_ids": [
            "classic",
            "modern_minimal",
            "corporate_professional",
            "bold_executive",
            "elegant_serif",
        ],
        "team_members": 3,
        "pdf_api": 1000,
        "inventory": False,
        "ocr": 0,
        "email_integration": True,
        "businesses": 1,
        "payment_reminders": True,
    },
    PlanTier.PRO: {
        "name": "Pro",
        "price": 20,
        "invoices": 5000,
        "templates": 15,
        "template_ids": [ALL_TEMPLATES],
        "team_members": 10,
        "pdf_api": 2000,
        "inventory": True,
        "ocr": 0,
        "email_integration": True,
        "businesses": 3,
        "payment_reminders": True,
    },
    PlanTier.PREMIUM: {
        "name": "Premium",
        "price": 40,
        "invoices": 12000,
        "templates": 15,
        "template_ids": [ALL_TEMPLATES],
        "team_members": 10,
        "pdf_api": 5000,
        "inventory": True,
        "ocr": 2000,
        "email_integration": True,
        "businesses": 5,
        "payment_reminders": True,
    },
    PlanTier.LIFETIME: {
        "name": "Lifetime",
        "price": 199,
        "invoices": 50000,
        "templates": 15,
        "template_ids": [ALL_TEMPLATES],
        "team_members": 10,
        "pdf_api": 10000,
        "inventory": True,
        "ocr": 10000,
        "email_integration": True,
        "businesses": 5,
        "payment_reminders": True,
    },
}


class Tenant(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Invoice-issuing business.

    Fields:
    - business_name: Issuer name shown on invoices and verification pages
    - plan: PlanTier controlling quotas and feature flags
    - settings: JSON document validated by schemas.tenant_settings.TenantSettings
    """

    __tablename__ = "tenants"

    business_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(50), nullable=True)
    plan = Column(
        Enum(PlanTier, name="plantier"),
        nullable=False,
        default=PlanTier.FREE,
    )
    settings = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    quota = relationship(
        "QuotaCounter",
        back_populates="tenant",
        uselist=False,
        cascade="all, delete-orphan",
    )
    team_members = relationship(
        "TeamMember",
        back_populates="tenant",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name={self.business_name}, plan={self.plan})>"

    @property
    def limits(self) -> Dict[str, Any]:
        """Get the limits dict for the tenant's current plan."""
        return PLAN_LIMITS[self.plan]


class QuotaCounter(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Rolling-window usage counters for one tenant.

    WHY: Counters only grow inside the window. Once the window has elapsed
    they are reset lazily by the next read (see QuotaGate), so no cron job
    is needed to roll them over.
    """

    __tablename__ = "quota_counters"

    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    invoices_count = Column(Integer, nullable=False, default=0)
    pdf_api_usage = Column(Integer, nullable=False, default=0)
    ocr_usage = Column(Integer, nullable=False, default=0)
    last_reset_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="quota")

    def __repr__(self) -> str:
        return (
            f"<QuotaCounter(tenant_id={self.tenant_id}, invoices={self.invoices_count}, "
            f"last_reset={self.last_reset_date})>"
        )


class TeamMember(Base, PrimaryKeyMixin, TimestampMixin):
    """Member of a tenant's team, counted live against the team_members limit."""

    __tablename__ = "team_members"

    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, default="MEMBER")

    tenant = relationship("Tenant", back_populates="team_members")
