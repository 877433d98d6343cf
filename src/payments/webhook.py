"""Payment provider webhook handling.

Delivery is at-least-once and unordered relative to the checkout client.
``payment_intent.succeeded`` writes the purchase rows (payment, investment
for paid products, outgoing transaction) exactly once per intent;
``payment_intent.payment_failed`` marks the payment row failed. Other event
types are logged and ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from src.models import InvestmentRecord, PaymentRecord, TransactionRecord

if TYPE_CHECKING:
    from src.payments.provider import StripeWebhookVerifier
    from src.payments.reconciliation import ReconciliationLedger
    from src.store.records import PortalStore

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
CUSTOMER_CREATED = "customer.created"


@dataclass
class WebhookOutcome:
    event_type: str
    handled: bool
    detail: str = ""


class StripeWebhookHandler:
    """Verifies and applies provider events to the datastore."""

    def __init__(
        self,
        verifier: StripeWebhookVerifier,
        store: PortalStore,
        ledger: ReconciliationLedger | None = None,
    ) -> None:
        self._verifier = verifier
        self._store = store
        self._ledger = ledger

    def handle(self, payload: bytes, signature: str | None) -> WebhookOutcome:
        """Verify ``payload`` and apply it. Raises SignatureError if unverified."""
        event = self._verifier.construct_event(payload, signature)
        event_type = str(event["type"])
        obj: dict[str, Any] = event.get("data", {}).get("object", {})
        logger.info("Received webhook event: %s", event_type)

        if event_type == PAYMENT_SUCCEEDED:
            return self._payment_succeeded(obj)
        if event_type == PAYMENT_FAILED:
            return self._payment_failed(obj)
        if event_type == CUSTOMER_CREATED:
            logger.info("New customer created: %s", obj.get("id"))
            return WebhookOutcome(event_type, handled=True)

        logger.info("Unhandled event type: %s", event_type)
        return WebhookOutcome(event_type, handled=False, detail="ignored")

    def _payment_succeeded(self, intent: dict[str, Any]) -> WebhookOutcome:
        metadata: dict[str, str] = intent.get("metadata") or {}
        user_id = metadata.get("user_id")
        product_id = metadata.get("product_id")
        if not user_id or not product_id:
            return WebhookOutcome(PAYMENT_SUCCEEDED, handled=False, detail="missing metadata")

        product = self._store.get_product(product_id)
        if product is None:
            logger.warning("Payment %s references unknown product %s", intent["id"], product_id)
            return WebhookOutcome(PAYMENT_SUCCEEDED, handled=False, detail="unknown product")

        amount = intent["amount"] / 100
        created = self._store.record_purchase(
            PaymentRecord(
                user_id=user_id,
                stripe_payment_intent_id=intent["id"],
                amount=amount,
                currency=intent["currency"],
                status=intent["status"],
                product_id=product_id,
                metadata=metadata,
            ),
            InvestmentRecord(
                user_id=user_id,
                package_name=product.name,
                amount=amount,
                current_value=amount,
            ) if product.price > 0 else None,
            TransactionRecord(
                user_id=user_id,
                type="investment",
                amount=-amount,
                description=f"Purchase of {product.name} - Payment ID: {intent['id']}",
            ),
        )

        if self._ledger is not None:
            self._ledger.confirm(intent["id"], user_id, intent["amount"], intent["currency"])

        if not created:
            logger.info("Duplicate delivery for payment %s ignored", intent["id"])
            return WebhookOutcome(PAYMENT_SUCCEEDED, handled=True, detail="duplicate")

        logger.info("Successfully processed payment for user: %s", user_id)
        return WebhookOutcome(PAYMENT_SUCCEEDED, handled=True, detail="recorded")

    def _payment_failed(self, intent: dict[str, Any]) -> WebhookOutcome:
        logger.info("Payment failed for payment intent: %s", intent.get("id"))
        metadata: dict[str, str] = intent.get("metadata") or {}
        if not metadata.get("user_id"):
            return WebhookOutcome(PAYMENT_FAILED, handled=False, detail="missing metadata")

        updated = self._store.mark_payment_failed(intent["id"])
        return WebhookOutcome(
            PAYMENT_FAILED, handled=True, detail="marked" if updated else "no payment row",
        )
