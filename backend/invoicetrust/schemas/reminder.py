"""
Payment reminder schemas.

WHAT: Request/response models for scheduling, listing and dispatching
reminders, plus the dispatch run summary.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from invoicetrust.models.reminder import ReminderChannel, ReminderStatus, ReminderType


class ReminderCreate(BaseModel):
    """
    Schema for one custom or relative reminder.

    CUSTOM reminders need custom_date; the other types derive their time
    from the invoice due date and days_offset.
    """

    type: ReminderType
    days_offset: int = Field(default=0, ge=-365, le=365)
    channel: ReminderChannel = ReminderChannel.EMAIL
    custom_date: Optional[datetime] = None

    @model_validator(mode="after")
    def require_custom_date(self) -> "ReminderCreate":
        if self.type == ReminderType.CUSTOM and self.custom_date is None:
            raise ValueError("custom_date is required for CUSTOM reminders")
        return self


class ReminderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    invoice_id: int
    type: ReminderType
    days_offset: int
    channel: ReminderChannel
    scheduled_for: datetime
    status: ReminderStatus
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    provider_message_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReminderCancelResponse(BaseModel):
    cancelled: int


class ReminderStats(BaseModel):
    """Reminder counts for a tenant dashboard."""

    pending: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0
    upcoming: int = Field(default=0, description="PENDING reminders due in the next 7 days")


class DispatchSummary(BaseModel):
    """
    Result of one dispatch run.

    claimed counts reminders this run took ownership of; reminders another
    run already held are not counted anywhere.
    """

    sent: int = 0
    failed: int = 0
    skipped: int = 0
    claimed: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
