"""
Reminder message rendering.

WHAT: Renders channel-appropriate collection messages (email subject and
HTML/text body, WhatsApp text, SMS text) and the invoice notice sent when
an invoice is delivered.

WHY: Message wording depends on the reminder type (friendly before the
due date, firm on the due date, overdue after it) and each channel has
its own format limits. Keeping the wording in Jinja2 templates lets it
change without touching the dispatch logic.

HOW: Jinja2 environment with FileSystemLoader over
invoicetrust/templates/reminders and HTML autoescaping. Every message
links to the public verification page instead of attaching the invoice.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from invoicetrust.core.config import settings
from invoicetrust.core.exceptions import DeliveryError
from invoicetrust.models.invoice import Invoice
from invoicetrust.models.reminder import ReminderChannel, ReminderType


logger = logging.getLogger(__name__)


# Header colour per reminder type (email only)
ACCENT_COLORS = {
    ReminderType.BEFORE_DUE: "#3b82f6",
    ReminderType.ON_DUE: "#f59e0b",
    ReminderType.AFTER_DUE: "#ef4444",
    ReminderType.CUSTOM: "#3b82f6",
}

HEADINGS = {
    ReminderType.BEFORE_DUE: "Friendly Payment Reminder",
    ReminderType.ON_DUE: "Payment Due Today",
    ReminderType.AFTER_DUE: "Overdue Payment Notice",
    ReminderType.CUSTOM: "Payment Reminder",
}


@dataclass
class RenderedMessage:
    """Message ready to hand to a delivery channel."""

    subject: str
    text: str
    html: Optional[str] = None


def format_amount(value: Any) -> str:
    """Format a money value with thousands separators and 2 decimals."""
    return f"{Decimal(value or 0):,.2f}"


def format_date(value: Optional[date]) -> str:
    """Format a date as e.g. 15 Mar 2026, or N/A."""
    if value is None:
        return "N/A"
    return value.strftime("%d %b %Y")


def verification_url(code: Optional[str]) -> Optional[str]:
    """Public verification link for a code."""
    if not code:
        return None
    return f"{settings.PUBLIC_APP_URL.rstrip('/')}/verify/{code}"


def reminder_subject(reminder_type: ReminderType, invoice_number: str, issuer_name: str) -> str:
    """
    Subject line for a reminder email.

    Args:
        reminder_type: Reminder type
        invoice_number: Invoice number
        issuer_name: Issuing business name

    Returns:
        Subject string
    """
    if reminder_type == ReminderType.BEFORE_DUE:
        return f"Payment Reminder: Invoice {invoice_number} from {issuer_name} - Due Soon"
    if reminder_type == ReminderType.ON_DUE:
        return f"Payment Due Today: Invoice {invoice_number} from {issuer_name}"
    if reminder_type == ReminderType.AFTER_DUE:
        return f"Overdue Payment: Invoice {invoice_number} from {issuer_name}"
    return f"Payment Reminder: Invoice {invoice_number} from {issuer_name}"


class ReminderMessageService:
    """
    Renders reminder and invoice notice messages.

    Example:
        renderer = ReminderMessageService()
        message = renderer.render_reminder(invoice, "Acme Ltd", ReminderType.ON_DUE, 0,
                                           ReminderChannel.EMAIL)
    """

    def __init__(self, template_dir: Optional[Path] = None):
        """
        Initialize renderer.

        Args:
            template_dir: Template directory (defaults to invoicetrust/templates/reminders)
        """
        if template_dir is None:
            template_dir = Path(__file__).parent.parent / "templates" / "reminders"

        self._template_dir = template_dir
        self._env = Environment(
            loader=FileSystemLoader(str(self._template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _render(self, template_name: str, context: Dict[str, Any]) -> str:
        """
        Render one template.

        Raises:
            DeliveryError: If the template is missing
        """
        try:
            return self._env.get_template(template_name).render(**context).strip()
        except TemplateNotFound:
            logger.error(f"Reminder template not found: {template_name}")
            raise DeliveryError(
                message=f"Message template not found: {template_name}",
                template=template_name,
            )

    def _base_context(self, invoice: Invoice, issuer_name: str) -> Dict[str, Any]:
        return {
            "invoice_number": invoice.invoice_number,
            "buyer_name": invoice.buyer_name or "Customer",
            "issuer_name": issuer_name,
            "currency": invoice.currency,
            "amount_due": format_amount(invoice.total_amount),
            "due_date": format_date(invoice.due_date) if invoice.due_date else None,
            "verification_code": invoice.verification_code,
            "verification_url": verification_url(invoice.verification_code),
        }

    def render_reminder(
        self,
        invoice: Invoice,
        issuer_name: str,
        reminder_type: ReminderType,
        days_offset: int,
        channel: ReminderChannel,
    ) -> RenderedMessage:
        """
        Render a reminder for one channel.

        Args:
            invoice: Invoice being collected
            issuer_name: Tenant business name
            reminder_type: Reminder type (drives wording)
            days_offset: Signed day offset (positive means overdue days)
            channel: Target channel

        Returns:
            RenderedMessage (html only for EMAIL)
        """
        context = self._base_context(invoice, issuer_name)
        context.update(
            {
                "reminder_type": reminder_type.value,
                "days_overdue": abs(days_offset),
                "due_date": format_date(invoice.due_date),
                "heading": HEADINGS[reminder_type],
                "accent_color": ACCENT_COLORS[reminder_type],
            }
        )
        subject = reminder_subject(reminder_type, invoice.invoice_number, issuer_name)

        if channel == ReminderChannel.EMAIL:
            return RenderedMessage(
                subject=subject,
                text=self._render("reminder_message.txt", context),
                html=self._render("reminder_email.html", context),
            )
        if channel == ReminderChannel.SMS:
            return RenderedMessage(subject=subject, text=self._render("reminder_sms.txt", context))
        return RenderedMessage(subject=subject, text=self._render("reminder_message.txt", context))

    def render_invoice_notice(
        self,
        invoice: Invoice,
        issuer_name: str,
        channel: ReminderChannel,
    ) -> RenderedMessage:
        """Render the "you have a new invoice" message."""
        context = self._base_context(invoice, issuer_name)
        subject = f"Invoice {invoice.invoice_number} from {issuer_name}"
        text = self._render("invoice_notice.txt", context)
        html = self._render("invoice_notice.html", context) if channel == ReminderChannel.EMAIL else None
        return RenderedMessage(subject=subject, text=text, html=html)


_message_service: Optional[ReminderMessageService] = None


def get_message_service() -> ReminderMessageService:
    """Get or create the global renderer (keeps the template cache warm)."""
    global _message_service

    if _message_service is None:
        _message_service = ReminderMessageService()

    return _message_service
