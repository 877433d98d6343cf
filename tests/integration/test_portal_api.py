"""Integration tests for the portal backend HTTP surface."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.models import CustomerRecord
from src.payments.errors import ProviderError
from src.payments.functions import PaymentFunctions, stripe_provider_factory
from src.payments.provider import StripeWebhookVerifier
from src.payments.reconciliation import ReconciliationLedger
from src.payments.verification import VerificationService
from src.payments.webhook import StripeWebhookHandler
from src.security.events import SecurityEventService
from src.store.records import PortalStore
from tests.conftest import WEBHOOK_SECRET, encode_event, make_intent, make_stripe_event, sign_payload

TOKEN = "integration-test-token-xyz"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


class _Sender:
    def __init__(self) -> None:
        self.codes: list[str] = []

    def send(self, recipient: str, code: str) -> None:
        self.codes.append(code)


@pytest.fixture
def provider() -> MagicMock:
    p = MagicMock()
    p.find_customer_by_email.return_value = None
    p.create_customer.return_value = CustomerRecord(id="cus_1", email="jane@example.com")
    p.create_payment_intent.return_value = make_intent(customer_id="cus_1")
    p.list_card_payment_methods.return_value = ([], False)
    return p


@pytest.fixture
def sender() -> _Sender:
    return _Sender()


def _build_app(
    store: PortalStore, sender: _Sender, functions: PaymentFunctions,
) -> FastAPI:
    return create_app(
        token=TOKEN,
        functions=functions,
        webhook_handler=StripeWebhookHandler(
            StripeWebhookVerifier(WEBHOOK_SECRET), store, ReconciliationLedger(store),
        ),
        security_events=SecurityEventService(store),
        verification=VerificationService(sender=sender),
        audit_sink=store,
    )


@pytest.fixture
def app(seeded_store: PortalStore, sender: _Sender, provider: MagicMock) -> FastAPI:
    return _build_app(seeded_store, sender, PaymentFunctions(lambda: provider))


@pytest_asyncio.fixture
async def client(app: FastAPI):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


class TestAuth:
    @pytest.mark.asyncio
    async def test_health_needs_no_token(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_function_without_token_rejected_and_audited(
        self, client: AsyncClient, seeded_store: PortalStore,
    ) -> None:
        resp = await client.post("/functions/create-customer", json={})
        assert resp.status_code == 401
        assert seeded_store.count_audit_logs() == 1

    @pytest.mark.asyncio
    async def test_wrong_token_forbidden(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/functions/create-customer", json={}, headers={"Authorization": "Bearer nope"},
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_cors_preflight_answered(self, client: AsyncClient) -> None:
        resp = await client.options("/functions/create-payment-intent", headers={
            "Origin": "https://portal.example",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization, content-type",
        })
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "*"


class TestFunctions:
    @pytest.mark.asyncio
    async def test_create_payment_intent(self, client: AsyncClient) -> None:
        resp = await client.post("/functions/create-payment-intent", headers=AUTH, json={
            "amount": 50000,
            "currency": "usd",
            "product_id": "prod_growth",
            "customer_email": "jane@example.com",
            "customer_name": "Jane Doe",
            "metadata": {"user_id": "user-1"},
        })
        assert resp.status_code == 200
        assert resp.json() == {
            "id": "pi_123",
            "client_secret": "pi_123_secret_abc",
            "amount": 50000,
            "currency": "usd",
            "status": "requires_payment_method",
            "customer_id": "cus_1",
        }

    @pytest.mark.asyncio
    async def test_missing_fields_is_400(self, client: AsyncClient, provider: MagicMock) -> None:
        resp = await client.post(
            "/functions/create-payment-intent", headers=AUTH, json={"amount": 100},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing required fields"}
        provider.find_customer_by_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_malformed_json_is_400(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/functions/create-payment-intent", headers=AUTH, content=b"{not json",
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_wrong_field_type_is_400(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/functions/create-payment-intent", headers=AUTH, json={"amount": "lots"},
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_secret_key_is_500(
        self, seeded_store: PortalStore, sender: _Sender,
    ) -> None:
        app = _build_app(seeded_store, sender, PaymentFunctions(stripe_provider_factory(None)))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            resp = await c.post("/functions/create-payment-intent", headers=AUTH, json={
                "amount": 100, "currency": "usd", "product_id": "p",
                "customer_email": "jane@example.com",
            })
        assert resp.status_code == 500
        assert resp.json() == {"error": "Stripe configuration error. Please contact support."}

    @pytest.mark.asyncio
    async def test_missing_secret_key_wins_over_empty_body(
        self, seeded_store: PortalStore, sender: _Sender,
    ) -> None:
        app = _build_app(seeded_store, sender, PaymentFunctions(stripe_provider_factory(None)))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            resp = await c.post("/functions/create-payment-intent", headers=AUTH, json={})
        assert resp.status_code == 500

    @pytest.mark.asyncio
    async def test_provider_failure_is_502(self, client: AsyncClient, provider: MagicMock) -> None:
        provider.create_payment_intent.side_effect = ProviderError("Your card was declined.")
        resp = await client.post("/functions/create-payment-intent", headers=AUTH, json={
            "amount": 100, "currency": "usd", "product_id": "p",
            "customer_email": "jane@example.com",
        })
        assert resp.status_code == 502
        assert resp.json()["error"] == "Your card was declined."

    @pytest.mark.asyncio
    async def test_create_customer_reports_existing(
        self, client: AsyncClient, provider: MagicMock,
    ) -> None:
        provider.find_customer_by_email.return_value = CustomerRecord(
            id="cus_old", email="jane@example.com", existing=True,
        )
        resp = await client.post("/functions/create-customer", headers=AUTH, json={
            "email": "jane@example.com", "name": "Jane",
        })
        assert resp.status_code == 200
        assert resp.json()["id"] == "cus_old"
        assert resp.json()["existing"] is True

    @pytest.mark.asyncio
    async def test_get_payment_methods(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/functions/get-payment-methods", headers=AUTH, json={"customer_id": "cus_1"},
        )
        assert resp.json() == {"payment_methods": [], "has_more": False}

    @pytest.mark.asyncio
    async def test_get_payment_methods_requires_customer(self, client: AsyncClient) -> None:
        resp = await client.post("/functions/get-payment-methods", headers=AUTH, json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing customer_id"}


class TestVerificationRoutes:
    @pytest.mark.asyncio
    async def test_issue_then_verify(self, client: AsyncClient, sender: _Sender) -> None:
        resp = await client.post("/functions/issue-verification-code", headers=AUTH, json={
            "challenge_id": "chk-1", "recipient": "jane@example.com",
        })
        assert resp.status_code == 200
        assert "expires_at" in resp.json()

        resp = await client.post("/functions/verify-code", headers=AUTH, json={
            "challenge_id": "chk-1", "code": sender.codes[-1],
        })
        assert resp.json() == {"verified": True}

    @pytest.mark.asyncio
    async def test_verify_without_issue_is_400(self, client: AsyncClient) -> None:
        resp = await client.post("/functions/verify-code", headers=AUTH, json={
            "challenge_id": "chk-unknown", "code": "123456",
        })
        assert resp.status_code == 400


class TestStripeWebhook:
    @pytest.mark.asyncio
    async def test_signed_event_recorded_once(
        self, client: AsyncClient, seeded_store: PortalStore,
    ) -> None:
        payload = encode_event(make_stripe_event("payment_intent.succeeded"))
        for _ in range(2):
            resp = await client.post(
                "/webhook/stripe", content=payload,
                headers={"stripe-signature": sign_payload(payload)},
            )
            assert resp.status_code == 200
            assert resp.json()["received"] is True

        assert len(seeded_store.list_payments("user-1")) == 1
        assert len(seeded_store.list_transactions("user-1")) == 1

    @pytest.mark.asyncio
    async def test_bad_signature_is_400_and_writes_nothing(
        self, client: AsyncClient, seeded_store: PortalStore,
    ) -> None:
        payload = encode_event(make_stripe_event("payment_intent.succeeded"))
        resp = await client.post(
            "/webhook/stripe", content=payload,
            headers={"stripe-signature": sign_payload(payload, secret="whsec_wrong")},
        )
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Webhook Error")
        assert seeded_store.get_payment("pi_123") is None

    @pytest.mark.asyncio
    async def test_missing_signature_is_400(self, client: AsyncClient) -> None:
        resp = await client.post("/webhook/stripe", content=b"{}")
        assert resp.status_code == 400


class TestSecurityWebhook:
    @pytest.mark.asyncio
    async def test_event_logged(self, client: AsyncClient, seeded_store: PortalStore) -> None:
        resp = await client.post("/webhook/security", headers=AUTH, json={
            "user_id": "user-1", "event_type": "failed_login", "severity": "medium",
            "details": {"attempt": 1},
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["event_id"] is not None
        assert body["message"] == "Security event logged successfully"
        assert seeded_store.count_audit_logs("user-1") == 1

    @pytest.mark.asyncio
    async def test_invalid_severity_is_400(self, client: AsyncClient) -> None:
        resp = await client.post("/webhook/security", headers=AUTH, json={
            "event_type": "failed_login", "severity": "apocalyptic",
        })
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_non_object_details_is_400(self, client: AsyncClient) -> None:
        resp = await client.post("/webhook/security", headers=AUTH, json={
            "user_id": "user-1", "event_type": "failed_login", "severity": "low",
            "details": ["a", "b"],
        })
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_repeated_events_escalate_once(
        self, client: AsyncClient, seeded_store: PortalStore,
    ) -> None:
        escalations = []
        for _ in range(7):
            resp = await client.post("/webhook/security", headers=AUTH, json={
                "user_id": "user-9", "event_type": "failed_login", "severity": "low",
            })
            escalations.append(resp.json()["escalated"])

        assert escalations.count(True) == 1
        assert escalations[5] is True

    @pytest.mark.asyncio
    async def test_requires_bearer_token(self, client: AsyncClient) -> None:
        resp = await client.post("/webhook/security", json={
            "event_type": "failed_login", "severity": "low",
        })
        assert resp.status_code == 401
