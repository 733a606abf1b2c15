"""Tests for email service, providers and built-in templates."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from colorcompete.email.service import (
    EmailResult,
    EmailService,
    ResendProvider,
    SMTPProvider,
    StubEmailProvider,
    render_email,
)
from colorcompete.email.templates import (
    monthly_drawing_participant_template,
    monthly_drawing_winner_template,
    winner_reward_template,
)


class TestEmailTemplates:
    def test_winner_template_renders(self):
        template = monthly_drawing_winner_template("Pro", 50)
        subject, html, text = render_email(template, {
            "winner_name": "Ada",
            "tier_name": "Pro",
            "month_year": "March 2026",
            "prize_amount": "50",
            "gift_card_code": "ABC-123",
            "redeem_url": "https://redeem.test/abc",
            "dashboard_url": "https://colorcompete.test/dashboard",
        })
        assert "Pro" in subject
        assert "Ada" in html
        assert "ABC-123" in html
        assert "https://redeem.test/abc" in html
        assert "{{" not in html
        assert "ABC-123" in text

    def test_winner_template_without_code_hides_block(self):
        _, html, _ = render_email(monthly_drawing_winner_template("Lite", 25), {"winner_name": "Ada"})
        assert "Gift Card Code" not in html

    def test_participant_template(self):
        subject, html, _ = render_email(monthly_drawing_participant_template(), {
            "user_name": "Bo",
            "tier_name": "Lite",
            "month_year": "March 2026",
            "winner_name": "Ada",
            "total_participants": 12,
        })
        assert "March 2026" in subject
        assert "Bo" in html
        assert "12" in html

    def test_unsubscribe_footer_only_when_url_given(self):
        template = winner_reward_template()
        _, with_link, _ = render_email(template, {"unsubscribe_url": "https://colorcompete.test/unsubscribe?userId=3"})
        _, without_link, _ = render_email(template, {})
        assert "unsubscribe?userId=3" in with_link
        assert "Unsubscribe" not in without_link

    def test_render_email_accepts_snake_keys(self):
        subject, html, text = render_email(
            {"subject": "Hi {{userName}}", "html_content": "<p>{{user_name}}</p>"},
            {"user_name": "Ada"},
        )
        assert subject == "Hi Ada"
        assert html == "<p>Ada</p>"
        assert text is None


class TestEmailService:
    @pytest.mark.asyncio
    async def test_send_email_derives_text_part(self):
        provider = StubEmailProvider()
        service = EmailService(provider=provider)

        result = await service.send_email("ada@example.com", "Hello", "<p>Hi <b>Ada</b></p>")

        assert result.success is True
        assert result.message_id.startswith("stub-")
        assert provider.outbox[0]["text"] == "Hi Ada"

    @pytest.mark.asyncio
    async def test_missing_recipient_is_failure(self):
        provider = StubEmailProvider()
        result = await EmailService(provider=provider).send_email("", "Hello", "<p>x</p>")
        assert result.success is False
        assert provider.outbox == []

    @pytest.mark.asyncio
    async def test_send_template(self):
        provider = StubEmailProvider()
        service = EmailService(provider=provider)

        result = await service.send_template(
            "ada@example.com",
            {"subject": "Welcome {{first_name}}", "htmlContent": "<p>{{userName}}</p>"},
            {"user_name": "Ada"},
            automation_id=7,
        )

        assert result.success
        assert provider.outbox[0]["subject"] == "Welcome Ada"

    @pytest.mark.asyncio
    async def test_provider_failure_is_returned(self):
        provider = MagicMock()
        provider.send = AsyncMock(return_value=EmailResult(success=False, error="boom"))
        result = await EmailService(provider=provider).send_email("ada@example.com", "s", "<p>b</p>")
        assert result == EmailResult(success=False, error="boom")


class TestSMTPProvider:
    @pytest.mark.asyncio
    async def test_smtp_failure_never_raises(self):
        provider = SMTPProvider(
            host="smtp.invalid",
            port=587,
            username="",
            password="",
            from_address="noreply@colorcompete.com",
            from_name="ColorCompete",
        )
        with patch("aiosmtplib.send", new=AsyncMock(side_effect=OSError("connection refused"))):
            result = await provider.send("ada@example.com", "s", "<p>b</p>", "b")
        assert result.success is False
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_smtp_success_has_message_id(self):
        provider = SMTPProvider(
            host="smtp.test",
            port=587,
            username="user",
            password="pw",
            from_address="noreply@colorcompete.com",
            from_name="ColorCompete",
        )
        with patch("aiosmtplib.send", new=AsyncMock(return_value=({}, "OK"))) as send:
            result = await provider.send("ada@example.com", "s", "<p>b</p>", "b")
        assert result.success is True
        assert result.message_id.endswith("@colorcompete.com>")
        sent_message = send.await_args.args[0]
        assert sent_message["To"] == "ada@example.com"


class TestResendProvider:
    @pytest.mark.asyncio
    async def test_resend_error_never_raises(self):
        provider = ResendProvider(api_key="re_test", from_address="noreply@colorcompete.com", from_name="ColorCompete")
        with patch("httpx.AsyncClient.post", new=AsyncMock(side_effect=RuntimeError("network down"))):
            result = await provider.send("ada@example.com", "s", "<p>b</p>", "b")
        assert result.success is False
        assert result.error == "network down"
