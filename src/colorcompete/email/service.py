"""
Email service with provider abstraction.

Supports SMTP (default), Resend API, AWS SES and a logging-only stub.
Provider is selected via configuration.
"""

from __future__ import annotations

import ssl
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any

import structlog

from colorcompete.config import get_settings
from colorcompete.email.interpolator import html_to_text, render_template

logger = structlog.get_logger()


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class BaseEmailProvider(ABC):
    """Abstract base class for email delivery providers."""

    name = "base"

    @abstractmethod
    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> EmailResult:
        """Send an email. Never raises; failures come back as EmailResult."""
        ...


class SMTPProvider(BaseEmailProvider):
    """Send emails via SMTP using aiosmtplib."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_address: str,
        from_name: str,
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.from_name = from_name
        self.use_tls = use_tls

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> EmailResult:
        """Send via SMTP."""
        import aiosmtplib

        message_id = make_msgid(domain=self.from_address.rpartition("@")[2] or None)
        msg = MIMEMultipart("alternative")
        msg["From"] = f"{self.from_name} <{self.from_address}>"
        msg["To"] = to_email
        msg["Subject"] = subject
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            tls_context = ssl.create_default_context() if self.use_tls else None
            await aiosmtplib.send(
                msg,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.use_tls,
                tls_context=tls_context,
            )
        except Exception as exc:
            logger.exception("email_send_failed", to=to_email, provider=self.name)
            return EmailResult(success=False, error=str(exc))
        logger.info("email_sent", to=to_email, subject=subject, provider=self.name)
        return EmailResult(success=True, message_id=message_id)


class ResendProvider(BaseEmailProvider):
    """Send emails via Resend API."""

    name = "resend"

    def __init__(self, api_key: str, from_address: str, from_name: str) -> None:
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> EmailResult:
        """Send via Resend HTTP API."""
        import httpx

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    "https://api.resend.com/emails",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": f"{self.from_name} <{self.from_address}>",
                        "to": [to_email],
                        "subject": subject,
                        "html": html_body,
                        "text": text_body,
                    },
                    timeout=10.0,
                )
                response.raise_for_status()
                message_id = response.json().get("id")
        except Exception as exc:
            logger.exception("email_send_failed", to=to_email, provider=self.name)
            return EmailResult(success=False, error=str(exc))
        logger.info("email_sent", to=to_email, subject=subject, provider=self.name)
        return EmailResult(success=True, message_id=message_id)


class SESProvider(BaseEmailProvider):
    """Send emails via AWS SES."""

    name = "ses"

    def __init__(self, region: str, from_address: str, from_name: str) -> None:
        self.region = region
        self.from_address = from_address
        self.from_name = from_name

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> EmailResult:
        """Send via AWS SES."""
        try:
            import aioboto3

            session = aioboto3.Session()
            async with session.client("ses", region_name=self.region) as ses:
                response = await ses.send_email(
                    Source=f"{self.from_name} <{self.from_address}>",
                    Destination={"ToAddresses": [to_email]},
                    Message={
                        "Subject": {"Data": subject, "Charset": "UTF-8"},
                        "Body": {
                            "Text": {"Data": text_body, "Charset": "UTF-8"},
                            "Html": {"Data": html_body, "Charset": "UTF-8"},
                        },
                    },
                )
        except Exception as exc:
            logger.exception("email_send_failed", to=to_email, provider=self.name)
            return EmailResult(success=False, error=str(exc))
        logger.info("email_sent", to=to_email, subject=subject, provider=self.name)
        return EmailResult(success=True, message_id=response.get("MessageId"))


class StubEmailProvider(BaseEmailProvider):
    """Log instead of sending. Used in development and tests."""

    name = "stub"

    def __init__(self) -> None:
        self.outbox: list[dict[str, str]] = []

    async def send(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str,
    ) -> EmailResult:
        self.outbox.append({"to": to_email, "subject": subject, "html": html_body, "text": text_body})
        logger.info("email_sent", to=to_email, subject=subject, provider=self.name)
        return EmailResult(success=True, message_id=f"stub-{uuid.uuid4().hex}")


def _create_provider() -> BaseEmailProvider:
    """Create email provider based on configuration."""
    settings = get_settings()
    provider_name = settings.email_provider.lower()

    if provider_name == "smtp":
        return SMTPProvider(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
            use_tls=settings.smtp_use_tls,
        )
    if provider_name == "resend":
        return ResendProvider(
            api_key=settings.resend_api_key,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
        )
    if provider_name == "ses":
        return SESProvider(
            region=settings.ses_region,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
        )
    if provider_name == "stub":
        return StubEmailProvider()
    msg = f"Unsupported email provider: {provider_name}"
    raise ValueError(msg)


class EmailService:
    """
    High-level email service for ColorCompete.

    Callers hand over fully rendered content; send_template renders a stored
    automation template first.
    """

    def __init__(self, provider: BaseEmailProvider | None = None) -> None:
        self.provider = provider or _create_provider()

    async def send_email(
        self,
        to: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
        automation_id: int | None = None,
        campaign_id: str | None = None,
    ) -> EmailResult:
        """
        Send one email.

        The plain-text part is derived from the HTML when not supplied.
        automation_id and campaign_id are bound into the provider's log events.
        """
        if not to:
            return EmailResult(success=False, error="missing recipient address")
        text_body = text_content or html_to_text(html_content)
        with structlog.contextvars.bound_contextvars(automation_id=automation_id, campaign_id=campaign_id):
            return await self.provider.send(to, subject, html_content, text_body)

    async def send_template(
        self,
        to: str,
        template: Mapping[str, Any],
        variables: Mapping[str, Any],
        automation_id: int | None = None,
    ) -> EmailResult:
        """
        Render an automation template and send.

        Args:
            to: Recipient email.
            template: {subject, htmlContent, textContent?} as stored on the automation.
            variables: Template variables; any supported key spelling works.
        """
        subject, html_body, text_body = render_email(template, variables)
        return await self.send_email(to, subject, html_body, text_body, automation_id=automation_id)


def render_email(template: Mapping[str, Any], variables: Mapping[str, Any]) -> tuple[str, str, str | None]:
    """Render (subject, html, text) from a stored template.

    Accepts both htmlContent / textContent and html_content / text_content keys.
    """
    html_source = template.get("htmlContent", template.get("html_content", ""))
    text_source = template.get("textContent", template.get("text_content"))
    subject = render_template(template.get("subject", ""), variables)
    html_body = render_template(html_source, variables)
    text_body = render_template(text_source, variables) if text_source else None
    return subject, html_body, text_body


# Module-level singleton
_email_service: EmailService | None = None


def get_email_service() -> EmailService:
    """Get or create the email service singleton."""
    global _email_service  # noqa: PLW0603
    if _email_service is None:
        _email_service = EmailService()
    return _email_service


def reset_email_service() -> None:
    """Reset the email service singleton (for testing)."""
    global _email_service  # noqa: PLW0603
    _email_service = None
