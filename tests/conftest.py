"""Shared test fixtures for the portal payment and security core."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from src.audit.logger import AuditLogger
from src.models import (
    PaymentIntent,
    PaymentIntentStatus,
    Product,
    SecurityEvent,
    SecurityEventType,
    Severity,
)
from src.store.records import PortalStore

WEBHOOK_SECRET = "whsec_test_secret"


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start_ms: float = 1_700_000_000_000.0) -> None:
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: float) -> None:
        self.now_ms += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> Iterator[PortalStore]:
    s = PortalStore.open(str(tmp_path / "portal.db"))
    yield s
    s.close()


@pytest.fixture
def seeded_store(store: PortalStore) -> PortalStore:
    store.upsert_product(Product(id="prod_growth", name="Growth Portfolio", price=2500))
    store.upsert_product(Product(id="prod_free", name="Market Newsletter", price=0))
    return store


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


# --- Factory functions for test data ---


def make_security_event(**kwargs: Any) -> SecurityEvent:
    """Factory for SecurityEvent with sensible defaults."""
    defaults: dict[str, Any] = {
        "type": SecurityEventType.LOGIN_ATTEMPT,
        "severity": Severity.LOW,
        "details": {},
    }
    defaults.update(kwargs)
    return SecurityEvent(**defaults)


def make_intent(**kwargs: Any) -> PaymentIntent:
    """Factory for PaymentIntent with sensible defaults."""
    defaults: dict[str, Any] = {
        "id": "pi_123",
        "client_secret": "pi_123_secret_abc",
        "amount": 50000,
        "currency": "usd",
        "status": PaymentIntentStatus.REQUIRES_PAYMENT_METHOD,
        "customer_id": "cus_123",
    }
    defaults.update(kwargs)
    return PaymentIntent(**defaults)


def make_stripe_event(event_type: str, **intent_fields: Any) -> dict[str, Any]:
    """A provider event wrapping a payment intent object."""
    obj: dict[str, Any] = {
        "id": "pi_123",
        "object": "payment_intent",
        "amount": 250000,
        "currency": "usd",
        "status": "succeeded",
        "metadata": {"user_id": "user-1", "product_id": "prod_growth"},
    }
    obj.update(intent_fields)
    return {
        "id": "evt_123",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a provider signature header for ``payload``."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def encode_event(event: dict[str, Any]) -> bytes:
    return json.dumps(event).encode()
