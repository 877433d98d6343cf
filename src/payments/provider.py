"""Payment provider adapters.

The backend talks to the provider with the secret key through
:class:`StripeProvider`; the checkout client confirms card payments with the
publishable key and the intent's client secret through
:class:`StripeCardConfirmer`. Keys are passed per call so that no
module-level client state exists.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import stripe

from src.models import (
    CardSummary,
    CustomerRecord,
    PaymentIntent,
    PaymentIntentStatus,
    PaymentMethodSummary,
)
from src.payments.errors import ProviderError, SignatureError

logger = logging.getLogger(__name__)

API_VERSION = "2023-10-16"


class PaymentProvider(Protocol):
    def find_customer_by_email(self, email: str) -> CustomerRecord | None: ...

    def create_customer(
        self, email: str, name: str, metadata: dict[str, str],
    ) -> CustomerRecord: ...

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        customer_id: str,
        metadata: dict[str, str],
        description: str,
        receipt_email: str,
    ) -> PaymentIntent: ...

    def list_card_payment_methods(
        self, customer_id: str,
    ) -> tuple[list[PaymentMethodSummary], bool]: ...


class CardConfirmer(Protocol):
    def confirm_card_payment(
        self, intent: PaymentIntent, payment_method_id: str,
    ) -> PaymentIntent: ...


def _customer(obj: Any, existing: bool) -> CustomerRecord:
    return CustomerRecord(
        id=obj["id"],
        email=obj.get("email"),
        name=obj.get("name"),
        created=obj.get("created"),
        existing=existing,
    )


def _intent(obj: Any) -> PaymentIntent:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    last_error = obj.get("last_payment_error") or {}
    return PaymentIntent(
        id=obj["id"],
        client_secret=obj.get("client_secret") or "",
        amount=obj["amount"],
        currency=obj["currency"],
        status=PaymentIntentStatus(obj["status"]),
        customer_id=customer,
        metadata=dict(obj.get("metadata") or {}),
        error_message=last_error.get("message"),
    )


class StripeProvider:
    """Server-side provider operations authenticated with the secret key."""

    def __init__(self, secret_key: str) -> None:
        self._key = secret_key

    def _opts(self) -> dict[str, str]:
        return {"api_key": self._key, "stripe_version": API_VERSION}

    def find_customer_by_email(self, email: str) -> CustomerRecord | None:
        try:
            found = stripe.Customer.list(email=email, limit=1, **self._opts())
        except stripe.StripeError as e:
            raise ProviderError(str(e.user_message or e), code=e.code) from e
        if not found.data:
            return None
        return _customer(found.data[0], existing=True)

    def create_customer(
        self, email: str, name: str, metadata: dict[str, str],
    ) -> CustomerRecord:
        try:
            created = stripe.Customer.create(
                email=email, name=name, metadata=metadata, **self._opts(),
            )
        except stripe.StripeError as e:
            raise ProviderError(str(e.user_message or e), code=e.code) from e
        return _customer(created, existing=False)

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        customer_id: str,
        metadata: dict[str, str],
        description: str,
        receipt_email: str,
    ) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                customer=customer_id,
                automatic_payment_methods={"enabled": True},
                metadata=metadata,
                description=description,
                receipt_email=receipt_email,
                **self._opts(),
            )
        except stripe.StripeError as e:
            raise ProviderError(str(e.user_message or e), code=e.code) from e
        return _intent(intent)

    def list_card_payment_methods(
        self, customer_id: str,
    ) -> tuple[list[PaymentMethodSummary], bool]:
        try:
            methods = stripe.PaymentMethod.list(
                customer=customer_id, type="card", **self._opts(),
            )
        except stripe.StripeError as e:
            raise ProviderError(str(e.user_message or e), code=e.code) from e

        summaries = []
        for pm in methods.data:
            card = pm.get("card")
            summaries.append(PaymentMethodSummary(
                id=pm["id"],
                type=pm["type"],
                card=CardSummary(
                    brand=card["brand"],
                    last4=card["last4"],
                    exp_month=card["exp_month"],
                    exp_year=card["exp_year"],
                ) if card else None,
                created=pm.get("created"),
            ))
        return summaries, bool(methods.get("has_more", False))


class StripeCardConfirmer:
    """Client-side confirmation using the publishable key and client secret."""

    def __init__(self, publishable_key: str) -> None:
        self._key = publishable_key

    def confirm_card_payment(
        self, intent: PaymentIntent, payment_method_id: str,
    ) -> PaymentIntent:
        try:
            confirmed = stripe.PaymentIntent.confirm(
                intent.id,
                client_secret=intent.client_secret,
                payment_method=payment_method_id,
                api_key=self._key,
                stripe_version=API_VERSION,
            )
        except stripe.StripeError as e:
            raise ProviderError(str(e.user_message or e), code=e.code) from e
        return _intent(confirmed)


class StripeWebhookVerifier:
    """Verifies provider-signed webhook payloads against the shared secret."""

    def __init__(self, webhook_secret: str | None, tolerance: int = 300) -> None:
        self._secret = webhook_secret
        self._tolerance = tolerance

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if not signature or not self._secret:
            raise SignatureError("Missing signature or webhook secret")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, self._secret, tolerance=self._tolerance,
            )
            event = json.loads(payload)
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning("Webhook signature verification failed: %s", e)
            raise SignatureError("Invalid signature") from e
        if not isinstance(event, dict) or "type" not in event:
            raise SignatureError("Malformed event payload")
        return event
