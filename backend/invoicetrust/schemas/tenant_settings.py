"""
Typed tenant settings.

WHAT: Pydantic models for the JSON document stored in Tenant.settings.

WHY: The settings column is free-form JSON. Parsing it through a schema
on every read gives the reminder scheduler and delivery channels typed,
defaulted values and rejects malformed documents at the API boundary
instead of deep inside a background job.

HOW: Every field has a default, so an empty or missing document yields
the platform defaults (reminders 3 and 1 days before due, on the due
date, and 1, 3 and 7 days after, over email).
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from invoicetrust.models.reminder import ReminderChannel


class ReminderSettings(BaseModel):
    """Per-tenant reminder schedule."""

    model_config = ConfigDict(extra="ignore")

    enable_reminders: bool = True
    before_due_days: List[int] = Field(default_factory=lambda: [3, 1])
    on_due_date: bool = True
    after_due_days: List[int] = Field(default_factory=lambda: [1, 3, 7])
    preferred_channel: ReminderChannel = ReminderChannel.EMAIL

    @field_validator("before_due_days", "after_due_days")
    @classmethod
    def normalize_days(cls, value: List[int]) -> List[int]:
        """
        Store offsets as distinct positive day counts.

        WHY: The sign is implied by the list (before vs after), so -3 and 3
        mean the same thing and duplicates would only collide on the slot.
        """
        seen = []
        for day in value:
            day = abs(int(day))
            if day == 0:
                continue
            if day not in seen:
                seen.append(day)
        return seen


class EmailIntegration(BaseModel):
    """Sender identity used for reminder emails."""

    model_config = ConfigDict(extra="ignore")

    from_email: Optional[str] = None
    from_name: Optional[str] = None
    reply_to: Optional[str] = None


class WhatsAppIntegration(BaseModel):
    """
    Meta WhatsApp Cloud API credentials.

    access_token is stored Fernet-encrypted and decrypted only by the
    delivery channel at send time.
    """

    model_config = ConfigDict(extra="ignore")

    phone_number_id: Optional[str] = None
    access_token: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)


class SmsIntegration(BaseModel):
    """Sender number for Twilio SMS."""

    model_config = ConfigDict(extra="ignore")

    from_number: Optional[str] = None


class TenantSettings(BaseModel):
    """Root of Tenant.settings."""

    model_config = ConfigDict(extra="ignore")

    reminders: ReminderSettings = Field(default_factory=ReminderSettings)
    email: EmailIntegration = Field(default_factory=EmailIntegration)
    whatsapp: WhatsAppIntegration = Field(default_factory=WhatsAppIntegration)
    sms: SmsIntegration = Field(default_factory=SmsIntegration)

    @classmethod
    def from_raw(cls, raw: Any) -> "TenantSettings":
        """
        Parse the stored JSON document.

        Args:
            raw: Value of Tenant.settings (dict or None)

        Returns:
            TenantSettings with defaults filled in

        Raises:
            pydantic.ValidationError: If the document is malformed
        """
        return cls.model_validate(raw or {})
