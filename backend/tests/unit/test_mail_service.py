"""
Unit tests for mail providers and MailService.
"""
import smtplib
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from src.models.email_templates import EmailTemplate
from src.services.mail_service import (
    ConsoleMailProvider,
    MailService,
    SMTPMailProvider,
    get_mail_provider,
)


@pytest.fixture
def smtp_settings():
    """Settings with SMTP credentials filled in."""
    with patch("src.services.mail_service.settings") as mock_settings:
        mock_settings.smtp_host = "smtp.example.com"
        mock_settings.smtp_port = 587
        mock_settings.smtp_username = "mailer@example.com"
        mock_settings.smtp_password = "app-password"
        mock_settings.smtp_from_email = "campaigns@example.com"
        mock_settings.smtp_from_name = "Campaigns"
        mock_settings.smtp_timeout_seconds = 5.0
        mock_settings.mail_provider = "smtp"
        yield mock_settings


@pytest.mark.unit
@pytest.mark.asyncio
async def test_console_provider_succeeds():
    """Test console provider logs and reports success."""
    result = await ConsoleMailProvider().send("a@example.com", "Subject", "<p>Body</p>")

    assert result.success is True
    assert result.message_id


@pytest.mark.unit
def test_get_mail_provider_console():
    """Test the default provider is the console provider."""
    with patch("src.services.mail_service.settings") as mock_settings:
        mock_settings.mail_provider = "Console"
        assert isinstance(get_mail_provider(), ConsoleMailProvider)


@pytest.mark.unit
def test_get_mail_provider_unknown():
    """Test an unknown provider name is rejected."""
    with patch("src.services.mail_service.settings") as mock_settings:
        mock_settings.mail_provider = "pigeon"
        with pytest.raises(ValueError, match="Unknown mail provider"):
            get_mail_provider()


@pytest.mark.unit
def test_smtp_provider_requires_credentials():
    """Test SMTP provider refuses to start without credentials."""
    with patch("src.services.mail_service.settings") as mock_settings:
        mock_settings.smtp_username = ""
        mock_settings.smtp_password = ""
        with pytest.raises(ValueError, match="SMTP credentials not configured"):
            SMTPMailProvider()


@pytest.mark.unit
def test_smtp_message_headers(smtp_settings):
    """Test the MIME message carries sender, recipient and subject."""
    provider = get_mail_provider()

    msg = provider._build_message("lead@example.com", "Spring intake", "<p>Hi</p>")

    assert isinstance(provider, SMTPMailProvider)
    assert msg["From"] == "Campaigns <campaigns@example.com>"
    assert msg["To"] == "lead@example.com"
    assert msg["Subject"] == "Spring intake"
    assert msg["Message-ID"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_smtp_send_uses_starttls(smtp_settings):
    """Test port 587 sends over STARTTLS with the configured timeout."""
    with patch("src.services.mail_service.smtplib.SMTP") as smtp_cls:
        server = smtp_cls.return_value.__enter__.return_value

        result = await SMTPMailProvider().send("lead@example.com", "Hi", "<p>Hi</p>")

    assert result.success is True
    smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=5.0)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("mailer@example.com", "app-password")
    server.send_message.assert_called_once()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_smtp_timeout_is_a_failed_result(smtp_settings):
    """Test socket timeouts come back as an unsuccessful result."""
    with patch("src.services.mail_service.smtplib.SMTP", side_effect=TimeoutError("timed out")):
        result = await SMTPMailProvider().send("lead@example.com", "Hi", "<p>Hi</p>")

    assert result.success is False
    assert "timed out" in result.error


@pytest.mark.unit
@pytest.mark.asyncio
async def test_smtp_rejection_is_a_failed_result(smtp_settings):
    """Test SMTP protocol errors come back as an unsuccessful result."""
    with patch("src.services.mail_service.smtplib.SMTP") as smtp_cls:
        server = smtp_cls.return_value.__enter__.return_value
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused({"lead@example.com": (550, b"no")})

        result = await SMTPMailProvider().send("lead@example.com", "Hi", "<p>Hi</p>")

    assert result.success is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_templated_renders_template(db_session):
    """Test a stored template is rendered with the given variables."""
    template = EmailTemplate(
        name="Welcome",
        subject="Welcome {{name}}",
        body="<p>Your course: {{ course }}{{unknown}}</p>",
    )
    db_session.add(template)
    db_session.commit()
    provider = MagicMock()

    async def fake_send(to, subject, html_body):
        provider.calls = (to, subject, html_body)
        return MagicMock(success=True)

    provider.send = fake_send
    service = MailService(provider=provider, db=db_session)

    result = await service.send_templated("lead@example.com", template.id, {"name": "Sara", "course": "UX"})

    assert result.success is True
    assert provider.calls == ("lead@example.com", "Welcome Sara", "<p>Your course: UX</p>")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_templated_missing_template(db_session):
    """Test a missing template is an unsuccessful result, not an exception."""
    service = MailService(provider=ConsoleMailProvider(), db=db_session)

    result = await service.send_templated("lead@example.com", uuid4())

    assert result.success is False
    assert "not found" in result.error


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_templated_without_session():
    """Test templated sends need a database session."""
    service = MailService(provider=ConsoleMailProvider())

    result = await service.send_templated("lead@example.com", uuid4())

    assert result.success is False
