"""Collaborators shared by every automation handler."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.config import Settings, get_settings
from colorcompete.db.models import EmailAutomation, EmailLog
from colorcompete.email.service import EmailService, get_email_service, render_email
from colorcompete.rewards.gift_card_service import (
    BaseGiftCardProvider,
    GiftCardResult,
    create_gift_card_provider,
)

logger = structlog.get_logger()


@dataclass
class AutomationContext:
    """Delivery services, settings and the injectable randomness/sleep."""

    email_service: EmailService
    gift_cards: BaseGiftCardProvider
    settings: Settings
    rng: random.Random = field(default_factory=random.Random)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    # --- Links ---

    def url(self, path: str = "") -> str:
        return f"{self.settings.frontend_base_url.rstrip('/')}{path}"

    def unsubscribe_url(self, user_id: int) -> str:
        return self.url(f"/unsubscribe?userId={user_id}")

    def common_links(self, user_id: int | None = None) -> dict[str, str]:
        links = {
            "website_url": self.url(),
            "dashboard_url": self.url("/dashboard"),
        }
        links["unsubscribe_url"] = self.unsubscribe_url(user_id) if user_id is not None else self.url("/unsubscribe")
        return links

    # --- Delivery ---

    async def deliver(
        self,
        db: AsyncSession,
        *,
        to: str,
        subject: str,
        html_content: str,
        text_content: str | None = None,
        user_id: int | None = None,
        automation_id: int | None = None,
    ) -> bool:
        """Send one email and record the attempt in email_logs."""
        result = await self.email_service.send_email(
            to, subject, html_content, text_content, automation_id=automation_id,
        )
        db.add(EmailLog(
            user_id=user_id,
            recipient_email=to,
            automation_id=automation_id,
            subject=subject[:512],
            status="sent" if result.success else "failed",
            message_id=result.message_id,
            failure_reason=result.error,
            sent_at=datetime.now(timezone.utc),
        ))
        if not result.success:
            logger.error(
                "email_send_failed",
                to=to,
                user_id=user_id,
                automation_id=automation_id,
                error=result.error,
            )
        return result.success

    async def deliver_template(
        self,
        db: AsyncSession,
        template: Mapping[str, Any],
        variables: Mapping[str, Any],
        *,
        to: str,
        user_id: int | None = None,
        automation_id: int | None = None,
    ) -> bool:
        """Render a stored template for one recipient and deliver it."""
        subject, html_body, text_body = render_email(template, variables)
        return await self.deliver(
            db,
            to=to,
            subject=subject,
            html_content=html_body,
            text_content=text_body,
            user_id=user_id,
            automation_id=automation_id,
        )

    async def send_gift_card(
        self,
        db: AsyncSession,
        *,
        to: str,
        name: str,
        amount: float,
        message: str | None = None,
        user_id: int | None = None,
        automation_id: int | None = None,
    ) -> GiftCardResult:
        """Order a gift card and record the attempt in email_logs."""
        result = await self.gift_cards.send_gift_card(to, name, amount, message)
        db.add(EmailLog(
            user_id=user_id,
            recipient_email=to,
            automation_id=automation_id,
            subject=f"Gift Card Reward - ${amount:g}",
            status="sent" if result.success else "failed",
            message_id=result.order_id,
            failure_reason=result.error,
            sent_at=datetime.now(timezone.utc),
        ))
        if not result.success:
            logger.error(
                "gift_card_failed",
                to=to,
                user_id=user_id,
                amount=amount,
                automation_id=automation_id,
                error=result.error,
            )
        return result


def build_automation_context(settings: Settings | None = None) -> AutomationContext:
    """Context wired to the configured email and gift card providers."""
    settings = settings or get_settings()
    return AutomationContext(
        email_service=get_email_service(),
        gift_cards=create_gift_card_provider(),
        settings=settings,
    )


async def find_active_automation(db: AsyncSession, trigger_type: str) -> EmailAutomation | None:
    """The first active automation configured for a trigger type."""
    result = await db.execute(
        select(EmailAutomation)
        .where(EmailAutomation.trigger_type == trigger_type, EmailAutomation.is_active.is_(True))
        .order_by(EmailAutomation.id)
        .limit(1)
    )
    return result.scalar_one_or_none()
