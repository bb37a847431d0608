"""
Outbound mail dispatch for campaigns.

Providers:
- Console: logs the message (development/testing)
- SMTP: smtplib with SSL on 465, STARTTLS otherwise, bounded by a socket timeout

Dispatch is never retried here; a failed or timed-out send comes back as
an unsuccessful MailResult and the caller decides what to do with it.
"""
import asyncio
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from src.lib.logging import get_logger
from src.lib.settings import settings
from src.lib.templating import parse_template
from src.models.email_templates import EmailTemplate

logger = get_logger(__name__)


@dataclass
class MailResult:
    """Outcome of a single send."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class MailProvider(ABC):
    """Abstract base class for mail delivery providers."""

    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str) -> MailResult:
        """
        Send one HTML email.

        Args:
            to: Recipient address
            subject: Subject line
            html_body: HTML body

        Returns:
            MailResult describing the outcome
        """
        pass


class ConsoleMailProvider(MailProvider):
    """Console mail provider for development/testing."""

    async def send(self, to: str, subject: str, html_body: str) -> MailResult:
        message_id = make_msgid(domain="console.local")
        logger.info(
            f"Email logged to console: {subject}",
            extra={"to": to, "message_id": message_id, "body_length": len(html_body)},
        )
        return MailResult(success=True, message_id=message_id)


class SMTPMailProvider(MailProvider):
    """SMTP mail provider.

    Requires SMTP credentials in environment variables.
    """

    def __init__(self):
        if not settings.smtp_username or not settings.smtp_password:
            raise ValueError(
                "SMTP credentials not configured. "
                "Set SMTP_USERNAME and SMTP_PASSWORD environment variables."
            )

        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.smtp_from_email or settings.smtp_username
        self.from_name = settings.smtp_from_name
        self.timeout = settings.smtp_timeout_seconds

    def _build_message(self, to: str, subject: str, html_body: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg["Message-ID"] = make_msgid()
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def _deliver(self, msg: MIMEMultipart) -> None:
        if self.smtp_port == 465:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)

    async def send(self, to: str, subject: str, html_body: str) -> MailResult:
        msg = self._build_message(to, subject, html_body)
        try:
            # smtplib blocks; keep the event loop free
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send failed: {e}", extra={"to": to})
            return MailResult(success=False, error=str(e))

        logger.info("Email sent via SMTP", extra={"to": to, "message_id": msg["Message-ID"]})
        return MailResult(success=True, message_id=msg["Message-ID"])


def get_mail_provider() -> MailProvider:
    """Mail provider based on configuration."""
    provider_name = settings.mail_provider.lower()

    if provider_name == "console":
        return ConsoleMailProvider()
    if provider_name == "smtp":
        return SMTPMailProvider()

    raise ValueError(
        f"Unknown mail provider: {provider_name}. "
        f"Valid options: console, smtp"
    )


class MailService:
    """
    Mail dispatcher used by campaign delivery.

    Handles:
    - Plain sends through the configured provider
    - Templated sends (template id + variables -> ``{{var}}`` substitution)
    """

    def __init__(self, provider: Optional[MailProvider] = None, db: Optional[Session] = None):
        self.provider = provider or get_mail_provider()
        self.db = db

    async def send(self, to: str, subject: str, html_body: str) -> MailResult:
        """Send one email; provider exceptions propagate to the caller."""
        return await self.provider.send(to, subject, html_body)

    async def send_templated(
        self,
        to: str,
        template_id: UUID,
        variables: Optional[Dict[str, object]] = None,
    ) -> MailResult:
        """
        Render a stored template and send it.

        Args:
            to: Recipient address
            template_id: EmailTemplate id
            variables: Placeholder values; unresolved placeholders are stripped

        Returns:
            MailResult; a missing template is an unsuccessful result
        """
        if self.db is None:
            return MailResult(success=False, error="Templated send requires a database session")

        template = self.db.get(EmailTemplate, template_id)
        if template is None:
            logger.warning(f"Email template not found: {template_id}")
            return MailResult(success=False, error=f"Template {template_id} not found")

        variables = variables or {}
        subject = parse_template(template.subject, variables)
        body = parse_template(template.body, variables)
        return await self.send(to, subject, body)
