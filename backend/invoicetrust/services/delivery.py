"""
Delivery channels for reminder and invoice messages.

WHAT: A single interface for sending a rendered message to a buyer over
email (Resend), WhatsApp (Meta Cloud API) or SMS (Twilio).

WHY: The dispatch worker should not care which provider carries a
message. Each channel reports success or failure as a DeliveryResult
instead of raising, so one provider outage turns into FAILED reminders
rather than an aborted batch.

HOW:
- DeliveryChannel ABC with send() and is_configured()
- One class per provider, all using httpx.AsyncClient with a bounded timeout
- DeliveryRouter picks the channel from the reminder's channel tag and
  the tenant's integration settings
- MockChannel records messages for development and tests
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

import httpx

from invoicetrust.core.config import settings
from invoicetrust.core.exceptions import EncryptionError
from invoicetrust.models.reminder import ReminderChannel
from invoicetrust.schemas.tenant_settings import TenantSettings
from invoicetrust.services.encryption_service import get_encryption_service

logger = logging.getLogger(__name__)


RESEND_API_URL = "https://api.resend.com/emails"


@dataclass
class DeliveryMessage:
    """
    A message addressed to one recipient.

    recipient is an email address for EMAIL and a phone number (E.164)
    for WHATSAPP and SMS.
    """

    recipient: str
    """Email address or phone number."""

    subject: str
    """Subject line (email only, kept for logging on other channels)."""

    text: str
    """Plain text body."""

    html: Optional[str] = None
    """HTML body (email only)."""

    from_email: Optional[str] = None
    from_name: Optional[str] = None
    reply_to: Optional[str] = None


@dataclass
class DeliveryResult:
    """Result of a send attempt."""

    success: bool
    """Whether the provider accepted the message."""

    provider_message_id: Optional[str] = None
    """Provider message ID for tracking."""

    error: Optional[str] = None
    """Error message if send failed."""

    provider: Optional[str] = None
    """Which provider was used."""


# ============================================================================
# Channel Interface
# ============================================================================


class DeliveryChannel(ABC):
    """
    Abstract base class for delivery channels.

    WHY: Channel abstraction allows adding providers without touching the
    dispatch worker, and substituting a mock in tests.
    """

    name: str = "channel"

    @abstractmethod
    async def send(self, message: DeliveryMessage) -> DeliveryResult:
        """
        Send a message.

        Args:
            message: The message to send

        Returns:
            DeliveryResult with success status and provider details
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """
        Check if this channel has the credentials it needs.

        Returns:
            True if API keys/credentials are present
        """
        pass

    def _failure(self, error: str) -> DeliveryResult:
        return DeliveryResult(success=False, error=error, provider=self.name)


class EmailChannel(DeliveryChannel):
    """
    Resend email channel.

    WHY: Resend has a simple REST API with good deliverability.
    """

    name = "resend"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize Resend channel.

        Args:
            api_key: Resend API key (defaults to settings)
            timeout: Request timeout in seconds (defaults to settings)
        """
        self._api_key = api_key or settings.RESEND_API_KEY
        self._timeout = timeout or settings.DELIVERY_TIMEOUT_SECONDS

    def is_configured(self) -> bool:
        """Check if Resend API key is configured."""
        return bool(self._api_key)

    def _sender(self, message: DeliveryMessage) -> str:
        from_email = message.from_email or settings.EMAIL_FROM
        from_name = message.from_name or settings.EMAIL_FROM_NAME
        return f"{from_name} <{from_email}>"

    async def send(self, message: DeliveryMessage) -> DeliveryResult:
        """
        Send email via Resend API.

        HOW: POST to the Resend emails endpoint with a Bearer key.
        """
        if not self.is_configured():
            return self._failure("Resend API key not configured")

        payload = {
            "from": self._sender(message),
            "to": [message.recipient],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        if message.reply_to:
            payload["reply_to"] = message.reply_to

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    RESEND_API_URL,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(f"Resend send error: {e}")
            return self._failure(f"Email provider unreachable: {e}")

        if response.status_code in (200, 201):
            data = response.json()
            return DeliveryResult(
                success=True,
                provider_message_id=data.get("id"),
                provider=self.name,
            )

        return self._failure(f"Resend API error: {response.status_code} - {response.text}")


class WhatsAppChannel(DeliveryChannel):
    """
    Meta WhatsApp Cloud API channel.

    The tenant's access token is stored encrypted in its settings and
    decrypted only here, at send time.
    """

    name = "whatsapp"

    def __init__(
        self,
        phone_number_id: Optional[str],
        encrypted_access_token: Optional[str],
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._phone_number_id = phone_number_id
        self._encrypted_access_token = encrypted_access_token
        self._base_url = (base_url or settings.WHATSAPP_API_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.DELIVERY_TIMEOUT_SECONDS

    def is_configured(self) -> bool:
        return bool(self._phone_number_id and self._encrypted_access_token)

    async def send(self, message: DeliveryMessage) -> DeliveryResult:
        if not self.is_configured():
            return self._failure("WhatsApp integration not configured")

        try:
            access_token = get_encryption_service().decrypt(self._encrypted_access_token)
        except EncryptionError:
            logger.error("WhatsApp access token could not be decrypted")
            return self._failure("WhatsApp credentials are invalid")

        url = f"{self._base_url}/{self._phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": message.recipient.lstrip("+"),
            "type": "text",
            "text": {"preview_url": True, "body": message.text},
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    url,
                    headers={"Authorization": f"Bearer {access_token}"},
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp send error: {e}")
            return self._failure(f"WhatsApp provider unreachable: {e}")

        if response.status_code in (200, 201):
            messages = response.json().get("messages") or [{}]
            return DeliveryResult(
                success=True,
                provider_message_id=messages[0].get("id"),
                provider=self.name,
            )

        return self._failure(f"WhatsApp API error: {response.status_code} - {response.text}")


class SmsChannel(DeliveryChannel):
    """Twilio SMS channel (account credentials come from settings)."""

    name = "twilio"

    def __init__(
        self,
        from_number: Optional[str],
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._from_number = from_number
        self._account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self._auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self._base_url = (base_url or settings.TWILIO_API_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.DELIVERY_TIMEOUT_SECONDS

    def is_configured(self) -> bool:
        return all([self._from_number, self._account_sid, self._auth_token])

    async def send(self, message: DeliveryMessage) -> DeliveryResult:
        if not self.is_configured():
            return self._failure("SMS integration not configured")

        url = f"{self._base_url}/Accounts/{self._account_sid}/Messages.json"

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    url,
                    auth=(self._account_sid, self._auth_token),
                    data={
                        "To": message.recipient,
                        "From": self._from_number,
                        "Body": message.text,
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"Twilio send error: {e}")
            return self._failure(f"SMS provider unreachable: {e}")

        if response.status_code in (200, 201):
            return DeliveryResult(
                success=True,
                provider_message_id=response.json().get("sid"),
                provider=self.name,
            )

        return self._failure(f"Twilio API error: {response.status_code} - {response.text}")


class MockChannel(DeliveryChannel):
    """
    Mock channel for testing and development.

    Logs messages instead of sending them.
    """

    name = "mock"

    sent_messages: List[DeliveryMessage] = []
    """Class-level list to track sent messages for testing."""

    def is_configured(self) -> bool:
        return True

    async def send(self, message: DeliveryMessage) -> DeliveryResult:
        logger.info(f"[MOCK DELIVERY] To: {message.recipient}, Subject: {message.subject}")

        MockChannel.sent_messages.append(message)

        return DeliveryResult(
            success=True,
            provider_message_id=f"mock-{datetime.utcnow().timestamp()}",
            provider=self.name,
        )

    @classmethod
    def clear_sent_messages(cls):
        """Clear sent messages list (for test cleanup)."""
        cls.sent_messages = []


# ============================================================================
# Router
# ============================================================================


class DeliveryRouter:
    """
    Selects the channel implementation for a reminder.

    HOW: Explicit overrides win (tests inject channels per tag). Otherwise
    the channel is built from the tenant's integration settings. Email
    falls back to MockChannel when no Resend key is configured, matching
    local development.

    Example:
        router = DeliveryRouter()
        channel = router.get_channel(ReminderChannel.EMAIL, tenant_settings)
        result = await channel.send(message)
    """

    def __init__(self, overrides: Optional[Dict[ReminderChannel, DeliveryChannel]] = None):
        self._overrides = overrides or {}

    def get_channel(
        self,
        channel: ReminderChannel,
        tenant_settings: TenantSettings,
    ) -> DeliveryChannel:
        if channel in self._overrides:
            return self._overrides[channel]

        if channel == ReminderChannel.EMAIL:
            if settings.RESEND_API_KEY:
                return EmailChannel()
            logger.warning("No email provider configured, using mock channel")
            return MockChannel()

        if channel == ReminderChannel.WHATSAPP:
            return WhatsAppChannel(
                phone_number_id=tenant_settings.whatsapp.phone_number_id,
                encrypted_access_token=tenant_settings.whatsapp.access_token,
            )

        return SmsChannel(from_number=tenant_settings.sms.from_number)

    def build_message(
        self,
        channel: ReminderChannel,
        recipient: str,
        subject: str,
        text: str,
        html: Optional[str],
        tenant_settings: TenantSettings,
    ) -> DeliveryMessage:
        """Attach the tenant's sender identity to a rendered message."""
        message = DeliveryMessage(recipient=recipient, subject=subject, text=text)
        if channel == ReminderChannel.EMAIL:
            message.html = html
            message.from_email = tenant_settings.email.from_email
            message.from_name = tenant_settings.email.from_name
            message.reply_to = tenant_settings.email.reply_to
        return message
