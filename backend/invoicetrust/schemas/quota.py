"""
Quota schemas.

WHAT: Usage snapshot, feature check and consume decision models returned
by QuotaGate and the quota API.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from invoicetrust.models.tenant import PlanTier


class QuotaDecision(BaseModel):
    """
    Outcome of an atomic consume.

    allowed is False when the increment would exceed the plan limit or
    the tenant could not be resolved (fail closed).
    """

    allowed: bool
    feature: str
    used: Optional[int] = None
    limit: Optional[int] = None
    reason: Optional[str] = None


class FeatureCheck(BaseModel):
    feature: str
    allowed: bool


class TemplateCheck(BaseModel):
    template_id: str
    allowed: bool


class UsageSnapshot(BaseModel):
    """Current window usage against plan limits."""

    plan: PlanTier
    usage: Dict[str, int]
    limits: Dict[str, int]
    features: Dict[str, bool]
    template_ids: List[str]
    window_started_at: datetime
    window_ends_at: datetime
