"""Tests for the backend function client."""

from __future__ import annotations

import json

import httpx
import pytest

from src.models import PaymentIntentStatus
from src.payments.client import BackendClient
from src.payments.errors import ProviderError, VerificationError
from src.payments.functions import CreatePaymentIntentRequest

TOKEN = "client-test-token"


def _client(handler) -> BackendClient:
    return BackendClient("http://backend.test/", TOKEN, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_invoke_posts_json_with_bearer() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    data = await _client(handler).invoke("create-customer", {"email": "a@b.co"})

    assert data == {"ok": True}
    assert str(seen[0].url) == "http://backend.test/functions/create-customer"
    assert seen[0].headers["authorization"] == f"Bearer {TOKEN}"
    assert json.loads(seen[0].content) == {"email": "a@b.co"}


@pytest.mark.asyncio
async def test_error_response_carries_server_message() -> None:
    client = _client(lambda r: httpx.Response(400, json={"error": "Missing required fields"}))
    with pytest.raises(ProviderError, match="Missing required fields") as exc_info:
        await client.invoke("create-payment-intent", {})
    assert exc_info.value.code == "400"


@pytest.mark.asyncio
async def test_error_without_body_uses_status() -> None:
    client = _client(lambda r: httpx.Response(502, content=b"bad gateway"))
    with pytest.raises(ProviderError, match=r"Backend error \(502\)"):
        await client.invoke("create-payment-intent", {})


@pytest.mark.asyncio
async def test_connection_failure_is_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProviderError, match="Payment backend unavailable"):
        await _client(handler).invoke("create-customer", {})


@pytest.mark.asyncio
async def test_create_payment_intent_parses_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "id": "pi_1",
            "client_secret": "pi_1_secret",
            "amount": body["amount"],
            "currency": body["currency"],
            "status": "requires_payment_method",
            "customer_id": "cus_1",
        })

    request = CreatePaymentIntentRequest(
        amount=1500, currency="usd", product_id="prod_growth",
        customer_email="a@b.co", metadata={"user_id": "user-1"},
    )
    intent = await _client(handler).create_payment_intent(request)

    assert intent.amount == 1500
    assert intent.status == PaymentIntentStatus.REQUIRES_PAYMENT_METHOD
    assert intent.metadata == {"user_id": "user-1"}


@pytest.mark.asyncio
async def test_verify_code_maps_bad_request() -> None:
    client = _client(lambda r: httpx.Response(400, json={"error": "Verification code expired"}))
    with pytest.raises(VerificationError, match="expired"):
        await client.verify_code("chk-1", "123456")


@pytest.mark.asyncio
async def test_verify_code_result() -> None:
    client = _client(lambda r: httpx.Response(200, json={"verified": False}))
    assert await client.verify_code("chk-1", "123456") is False


@pytest.mark.asyncio
async def test_read_error_is_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadError("connection reset", request=request)

    with pytest.raises(ProviderError, match="Payment backend unavailable"):
        await _client(handler).invoke("create-payment-intent", {})


@pytest.mark.asyncio
async def test_non_object_body_is_provider_error() -> None:
    client = _client(lambda r: httpx.Response(200, json=["pi_123"]))
    with pytest.raises(ProviderError, match="Malformed"):
        await client.invoke("create-payment-intent", {})


@pytest.mark.asyncio
async def test_intent_response_without_id_is_provider_error() -> None:
    client = _client(lambda r: httpx.Response(200, json={"client_secret": "s"}))
    with pytest.raises(ProviderError, match="Malformed"):
        await client.create_payment_intent(CreatePaymentIntentRequest(amount=100))
