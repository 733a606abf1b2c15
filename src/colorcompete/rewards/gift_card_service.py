"""
Gift card delivery with provider abstraction.

Supports Tremendous (default) and a logging-only stub.
Provider is selected via configuration.
"""

from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from colorcompete.config import get_settings

logger = structlog.get_logger()


@dataclass(frozen=True)
class GiftCardResult:
    success: bool
    gift_card_id: str | None = None
    gift_card_code: str | None = None
    redeem_url: str | None = None
    order_id: str | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


class BaseGiftCardProvider(ABC):
    """Abstract base class for gift card providers."""

    name = "base"

    @abstractmethod
    async def send_gift_card(
        self,
        recipient_email: str,
        recipient_name: str,
        amount: float,
        message: str | None = None,
    ) -> GiftCardResult:
        """Order and deliver a gift card. Never raises."""
        ...


def default_gift_card_message(amount: float) -> str:
    return f"Congratulations! You've won ${amount:g} in the ColorCompete monthly drawing!"


class TremendousProvider(BaseGiftCardProvider):
    """Order rewards through the Tremendous v2 REST API."""

    name = "tremendous"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        funding_source_id: str,
        campaign_id: str = "",
        message_field_id: str = "",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.funding_source_id = funding_source_id
        self.campaign_id = campaign_id
        self.message_field_id = message_field_id
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def build_order(
        self,
        recipient_email: str,
        recipient_name: str,
        amount: float,
        message: str | None = None,
    ) -> dict[str, Any]:
        """Order payload for POST /orders."""
        reward: dict[str, Any] = {
            "value": {"denomination": amount, "currency_code": "USD"},
            "campaign_id": self.campaign_id or None,
            "delivery": {
                "method": "EMAIL",
                "recipient": {"email": recipient_email, "name": recipient_name},
            },
        }
        if self.message_field_id:
            reward["custom_fields"] = [
                {"id": self.message_field_id, "value": message or default_gift_card_message(amount)},
            ]
        return {
            "external_id": f"colorcompete_monthly_{int(time.time() * 1000)}",
            "payment": {"funding_source_id": self.funding_source_id},
            "reward": reward,
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:  # noqa: ANN401
        url = f"{self.base_url}{path}"
        if self._client is not None:
            return await self._client.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)

    async def send_gift_card(
        self,
        recipient_email: str,
        recipient_name: str,
        amount: float,
        message: str | None = None,
    ) -> GiftCardResult:
        """Send via Tremendous."""
        if not self.api_key:
            return GiftCardResult(success=False, error="Tremendous API key not configured")
        if not self.funding_source_id:
            return GiftCardResult(success=False, error="Tremendous funding source not configured")

        payload = self.build_order(recipient_email, recipient_name, amount, message)
        try:
            response = await self._request("POST", "/orders", json=payload)
            response.raise_for_status()
            order = response.json()["order"]
        except httpx.HTTPStatusError as exc:
            logger.error(
                "gift_card_failed",
                to=recipient_email,
                amount=amount,
                provider=self.name,
                status_code=exc.response.status_code,
                error=exc.response.text,
            )
            return GiftCardResult(success=False, error=_error_message(exc.response))
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.exception("gift_card_failed", to=recipient_email, amount=amount, provider=self.name)
            return GiftCardResult(success=False, error=str(exc))

        reward = order.get("reward") or {}
        logger.info("gift_card_sent", to=recipient_email, amount=amount, provider=self.name, order_id=order.get("id"))
        return GiftCardResult(
            success=True,
            order_id=order.get("id"),
            gift_card_id=reward.get("id"),
            gift_card_code=reward.get("credential_identifier") or reward.get("id"),
            redeem_url=reward.get("redemption_url") or reward.get("redemption_link"),
            details=order,
        )

    async def get_order(self, order_id: str) -> dict[str, Any] | None:
        """Fetch an order for reconciliation. Returns None on failure."""
        try:
            response = await self._request("GET", f"/orders/{order_id}")
            response.raise_for_status()
            return response.json().get("order")
        except (httpx.HTTPError, ValueError):
            logger.warning("gift_card_order_lookup_failed", order_id=order_id, provider=self.name, exc_info=True)
            return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    errors = body.get("errors") if isinstance(body, dict) else None
    if isinstance(errors, dict):
        return str(errors.get("message") or errors)
    if errors:
        return str(errors)
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"HTTP {response.status_code}"


class StubGiftCardProvider(BaseGiftCardProvider):
    """Pretend to deliver gift cards. Used in development and tests."""

    name = "stub"

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_gift_card(
        self,
        recipient_email: str,
        recipient_name: str,
        amount: float,
        message: str | None = None,
    ) -> GiftCardResult:
        reward_id = f"stub-{uuid.uuid4().hex[:12]}"
        self.sent.append({"email": recipient_email, "name": recipient_name, "amount": amount, "message": message})
        logger.info("gift_card_sent", to=recipient_email, amount=amount, provider=self.name)
        return GiftCardResult(
            success=True,
            order_id=f"order-{reward_id}",
            gift_card_id=reward_id,
            gift_card_code=reward_id.upper(),
            redeem_url=f"https://example.invalid/redeem/{reward_id}",
        )


def create_gift_card_provider() -> BaseGiftCardProvider:
    """Create gift card provider based on configuration."""
    settings = get_settings()
    provider_name = settings.gift_card_provider.lower()

    if provider_name == "tremendous":
        return TremendousProvider(
            api_key=settings.tremendous_api_key,
            base_url=settings.tremendous_base_url,
            funding_source_id=settings.tremendous_funding_source_id,
            campaign_id=settings.tremendous_campaign_id,
            message_field_id=settings.tremendous_message_field_id,
            timeout=settings.gift_card_timeout_seconds,
        )
    if provider_name == "stub":
        return StubGiftCardProvider()
    msg = f"Unsupported gift card provider: {provider_name}"
    raise ValueError(msg)
