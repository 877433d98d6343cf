"""Backend payment functions.

These are the server-side operations the checkout client invokes over HTTP:
``create-payment-intent``, ``create-customer`` and ``get-payment-methods``.
The provider is injected; a missing secret key surfaces as
:class:`ConfigError` on first use rather than at import time.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from src.models import CustomerRecord, PaymentIntent, PaymentMethodSummary
from src.payments.errors import ConfigError, PaymentValidationError
from src.payments.provider import PaymentProvider, StripeProvider

logger = logging.getLogger(__name__)


class CreatePaymentIntentRequest(BaseModel):
    amount: int = 0  # minor units
    currency: str = ""
    product_id: str = ""
    customer_email: str = ""
    customer_name: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)


class CreateCustomerRequest(BaseModel):
    email: str = ""
    name: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)


class CreatedIntent(BaseModel):
    id: str
    client_secret: str
    amount: int
    currency: str
    status: str
    customer_id: str


def stripe_provider_factory(secret_key: str | None) -> Callable[[], PaymentProvider]:
    """Build a factory that fails with ConfigError when the key is absent."""

    def _factory() -> PaymentProvider:
        if not secret_key:
            logger.error("STRIPE_SECRET_KEY is not set")
            raise ConfigError("Stripe configuration error. Please contact support.")
        return StripeProvider(secret_key)

    return _factory


class PaymentFunctions:
    """Server-side payment operations over an injected provider."""

    def __init__(self, provider_factory: Callable[[], PaymentProvider]) -> None:
        self._provider_factory = provider_factory

    def create_payment_intent(self, request: CreatePaymentIntentRequest) -> CreatedIntent:
        provider = self._provider_factory()
        if (
            request.amount <= 0
            or not request.currency
            or not request.product_id
            or not request.customer_email
        ):
            raise PaymentValidationError("Missing required fields")

        customer = provider.find_customer_by_email(request.customer_email)
        if customer is None:
            customer = provider.create_customer(
                request.customer_email,
                request.customer_name,
                {"product_id": request.product_id, **request.metadata},
            )

        label = request.metadata.get("product_name") or request.product_id
        intent: PaymentIntent = provider.create_payment_intent(
            amount=request.amount,
            currency=request.currency,
            customer_id=customer.id,
            metadata={
                "product_id": request.product_id,
                "customer_email": request.customer_email,
                **request.metadata,
            },
            description=f"Payment for {label}",
            receipt_email=request.customer_email,
        )
        logger.info("Created payment intent %s for customer %s", intent.id, customer.id)

        return CreatedIntent(
            id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount,
            currency=intent.currency,
            status=intent.status.value,
            customer_id=customer.id,
        )

    def create_customer(self, request: CreateCustomerRequest) -> CustomerRecord:
        if not request.email or not request.name:
            raise PaymentValidationError("Missing required fields")

        provider = self._provider_factory()
        existing = provider.find_customer_by_email(request.email)
        if existing is not None:
            return existing
        return provider.create_customer(request.email, request.name, request.metadata)

    def get_payment_methods(self, customer_id: str | None) -> dict[str, Any]:
        if not customer_id:
            raise PaymentValidationError("Missing customer_id")

        methods, has_more = self._provider_factory().list_card_payment_methods(customer_id)
        return {
            "payment_methods": [m.model_dump() for m in methods],
            "has_more": has_more,
        }


def summarize_methods(payload: dict[str, Any]) -> list[PaymentMethodSummary]:
    """Parse a ``get-payment-methods`` response body."""
    return [PaymentMethodSummary.model_validate(m) for m in payload.get("payment_methods", [])]
