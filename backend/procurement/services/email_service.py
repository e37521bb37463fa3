import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Callable, Iterable

from procurement import jsonfields
from procurement.config import MailSettings
from procurement.exceptions import MailTransportError
from procurement.models.rfp import RFP
from procurement.models.vendor import Vendor

logger = logging.getLogger(__name__)

RFP_TOKEN_FORMAT = "RFP-{id}"


def rfp_token(rfp_id: int) -> str:
    return RFP_TOKEN_FORMAT.format(id=rfp_id)


def format_deadline(value: datetime | None) -> str:
    if value is None:
        return "To be discussed"
    return f"{value:%B} {value.day}, {value.year}"


def format_budget(value: float | None) -> str:
    if value is None:
        return "To be discussed"
    return f"${value:,.0f}" if float(value).is_integer() else f"${value:,.2f}"


def rfp_subject(rfp: RFP) -> str:
    """The correlation token leads the subject so a plain reply keeps it."""
    return f"{rfp_token(rfp.id)}: {rfp.title} - Request for Proposal"


def render_rfp_email(rfp: RFP) -> str:
    items = jsonfields.loads(rfp.items, default=[]) or []
    terms = jsonfields.loads(rfp.terms, default={}) or {}
    item_lines = "\n".join(
        f"- {item.get('quantity') or 1}x {item.get('name') or 'Item'} ({item.get('specifications') or 'See description'})"
        for item in items
        if isinstance(item, dict)
    ) or "- See description"
    other = f"\n- Additional Terms: {terms['otherTerms']}" if terms.get("otherTerms") else ""
    return f"""Dear Vendor,

We are pleased to invite you to submit a proposal for the following procurement:

=== RFP: {rfp.title} ===

DESCRIPTION:
{rfp.description}

ITEMS REQUIRED:
{item_lines}

BUDGET: {format_budget(rfp.budget)}
DEADLINE: {format_deadline(rfp.deadline)}

TERMS:
- Payment Terms: {terms.get('paymentTerms') or 'To be discussed'}
- Warranty Required: {terms.get('warranty') or 'To be discussed'}
- Delivery Terms: {terms.get('deliveryTerms') or 'To be discussed'}{other}

Please reply to this email with your proposal including:
1. Detailed pricing for each item
2. Your payment terms
3. Warranty offered
4. Delivery timeline
5. Any other relevant information

To help us process your response, please include "{rfp_token(rfp.id)}" in your reply subject line.

Thank you for your interest.

Best regards,
Procurement Team"""


@dataclass
class SendResult:
    sent: int = 0
    failed: int = 0
    failed_recipients: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        msg = f"Sent to {self.sent} vendors"
        if self.failed:
            msg += f", {self.failed} failed"
        return msg


class RFPMailer:
    """Sends an RFP to vendors over one authenticated SMTP session, one message per vendor."""

    def __init__(self, settings: MailSettings, smtp_factory: Callable[..., Any] = smtplib.SMTP):
        self.settings = settings
        self._smtp_factory = smtp_factory

    @property
    def sender(self) -> str:
        return formataddr((self.settings.from_name, self.settings.user or "rfp-system@localhost"))

    def _connect(self) -> Any:
        s = self.settings
        try:
            server = self._smtp_factory(s.smtp_host, s.smtp_port, timeout=s.timeout_seconds)
            if s.smtp_use_tls:
                server.starttls()
            if s.user:
                server.login(s.user, s.password)
            return server
        except (smtplib.SMTPException, OSError) as e:
            raise MailTransportError(f"SMTP connection to {s.smtp_host}:{s.smtp_port} failed: {e}") from e

    def _build_message(self, vendor: Vendor, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = vendor.email
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    def send_rfp(self, rfp: RFP, vendors: Iterable[Vendor]) -> SendResult:
        """
        Send sequentially. A failure for one recipient is logged and counted; the loop continues.
        Raises MailTransportError only when the session itself cannot be opened.
        """
        subject = rfp_subject(rfp)
        body = render_rfp_email(rfp)
        result = SendResult()
        server = self._connect()
        try:
            for vendor in vendors:
                try:
                    server.send_message(self._build_message(vendor, subject, body))
                    result.sent += 1
                    logger.info("RFP %s sent to %s", rfp.id, vendor.email)
                except (smtplib.SMTPException, OSError) as e:
                    result.failed += 1
                    result.failed_recipients.append(vendor.email)
                    logger.error("Failed to send RFP %s to %s: %s", rfp.id, vendor.email, e)
        finally:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError) as e:
                logger.warning("SMTP quit failed: %s", e)
        return result
