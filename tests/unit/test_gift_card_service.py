"""Tremendous gift card provider against a mocked HTTP transport."""

from __future__ import annotations

import json

import httpx
import pytest

from colorcompete.rewards.gift_card_service import StubGiftCardProvider, TremendousProvider

BASE_URL = "https://testflight.tremendous.test/api/v2"


def _provider(handler, **overrides) -> TremendousProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    options = {
        "api_key": "TEST_KEY",
        "base_url": BASE_URL,
        "funding_source_id": "FUND-1",
        "campaign_id": "CAMP-1",
        "message_field_id": "MSG-1",
        "client": client,
    }
    options.update(overrides)
    return TremendousProvider(**options)


class TestBuildOrder:
    def test_payload_shape(self):
        provider = _provider(lambda request: httpx.Response(500))
        order = provider.build_order("ada@example.com", "Ada Lovelace", 50, "Well done")

        assert order["external_id"].startswith("colorcompete_monthly_")
        assert order["payment"] == {"funding_source_id": "FUND-1"}
        reward = order["reward"]
        assert reward["value"] == {"denomination": 50, "currency_code": "USD"}
        assert reward["campaign_id"] == "CAMP-1"
        assert reward["delivery"]["method"] == "EMAIL"
        assert reward["delivery"]["recipient"] == {"email": "ada@example.com", "name": "Ada Lovelace"}
        assert reward["custom_fields"] == [{"id": "MSG-1", "value": "Well done"}]

    def test_default_message(self):
        provider = _provider(lambda request: httpx.Response(500))
        order = provider.build_order("ada@example.com", "Ada", 25)
        assert "$25" in order["reward"]["custom_fields"][0]["value"]

    def test_no_custom_fields_without_field_id(self):
        provider = _provider(lambda request: httpx.Response(500), message_field_id="")
        assert "custom_fields" not in provider.build_order("ada@example.com", "Ada", 25)["reward"]


class TestSendGiftCard:
    @pytest.mark.asyncio
    async def test_success_maps_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "order": {
                    "id": "ORDER-9",
                    "status": "EXECUTED",
                    "reward": {"id": "REWARD-9", "redemption_url": "https://redeem.test/9"},
                },
            })

        result = await _provider(handler).send_gift_card("ada@example.com", "Ada", 50)

        assert result.success is True
        assert result.order_id == "ORDER-9"
        assert result.gift_card_id == "REWARD-9"
        assert result.gift_card_code == "REWARD-9"
        assert result.redeem_url == "https://redeem.test/9"
        assert seen["url"] == f"{BASE_URL}/orders"
        assert seen["auth"] == "Bearer TEST_KEY"
        assert seen["body"]["reward"]["value"]["denomination"] == 50

    @pytest.mark.asyncio
    async def test_api_error_is_failure_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(422, json={"errors": {"message": "Insufficient funds"}})

        result = await _provider(handler).send_gift_card("ada@example.com", "Ada", 50)

        assert result.success is False
        assert result.error == "Insufficient funds"

    @pytest.mark.asyncio
    async def test_network_error_is_failure_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await _provider(handler).send_gift_card("ada@example.com", "Ada", 50)

        assert result.success is False
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_missing_configuration(self):
        result = await _provider(lambda r: httpx.Response(200), api_key="").send_gift_card("a@b.co", "A", 5)
        assert result.success is False
        assert "API key" in result.error

    @pytest.mark.asyncio
    async def test_get_order(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/orders/ORDER-9")
            return httpx.Response(200, json={"order": {"id": "ORDER-9", "status": "EXECUTED"}})

        assert await _provider(handler).get_order("ORDER-9") == {"id": "ORDER-9", "status": "EXECUTED"}

    @pytest.mark.asyncio
    async def test_get_order_failure_is_none(self):
        assert await _provider(lambda r: httpx.Response(404)).get_order("missing") is None


class TestStubProvider:
    @pytest.mark.asyncio
    async def test_records_sends(self):
        provider = StubGiftCardProvider()
        result = await provider.send_gift_card("ada@example.com", "Ada", 25, "hi")
        assert result.success
        assert result.gift_card_code
        assert provider.sent == [{"email": "ada@example.com", "name": "Ada", "amount": 25, "message": "hi"}]
