"""Checkout orchestration for a single payment attempt.

State machine::

    idle -> intent_requested -> intent_created -> card_entered
         -> [verification_required] -> confirming -> succeeded | failed

The payment rate limit gates both intent creation and confirmation; an
attempt is counted when confirmation starts. Amounts above the high-value
threshold detour through a server-issued verification code once per
session. A ``succeeded`` result is provisional until the provider webhook
has written the purchase rows (see :mod:`src.payments.reconciliation`).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from src.models import (
    TERMINAL_CHECKOUT_STATES,
    CheckoutState,
    PaymentIntent,
    PaymentIntentStatus,
    RateLimitCategory,
    SecurityEvent,
    SecurityEventType,
    Severity,
)
from src.payments.errors import (
    ConfigError,
    InvalidTransitionError,
    PaymentValidationError,
    ProviderError,
    RateLimitedError,
    VerificationError,
)
from src.payments.functions import CreatePaymentIntentRequest
from src.payments.provider import StripeCardConfirmer
from src.sanitizer.sanitizer import sanitize_input, validate_email

if TYPE_CHECKING:
    from src.config import Settings
    from src.payments.provider import CardConfirmer
    from src.payments.reconciliation import ReconciliationLedger
    from src.security.monitor import SecurityMonitor
    from src.security.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_HIGH_VALUE_THRESHOLD = 1000
_CONFIRMABLE = frozenset({
    PaymentIntentStatus.REQUIRES_PAYMENT_METHOD,
    PaymentIntentStatus.REQUIRES_CONFIRMATION,
})


class PaymentBackend(Protocol):
    async def create_payment_intent(self, request: CreatePaymentIntentRequest) -> PaymentIntent: ...

    async def issue_verification(self, challenge_id: str, recipient: str) -> None: ...

    async def verify_code(self, challenge_id: str, code: str) -> bool: ...


@dataclass(frozen=True)
class CheckoutCustomer:
    user_id: str
    email: str
    first_name: str = ""
    last_name: str = ""

    @property
    def full_name(self) -> str:
        return sanitize_input(f"{self.first_name} {self.last_name}")


@dataclass(frozen=True)
class CheckoutProduct:
    id: str
    name: str


class CheckoutSession:
    """Drives one checkout attempt from intent request to a terminal state."""

    def __init__(
        self,
        backend: PaymentBackend,
        confirmer: CardConfirmer,
        rate_limiter: RateLimiter,
        monitor: SecurityMonitor,
        customer: CheckoutCustomer,
        product: CheckoutProduct,
        amount: float,
        currency: str = "usd",
        high_value_threshold: float = DEFAULT_HIGH_VALUE_THRESHOLD,
        ledger: ReconciliationLedger | None = None,
    ) -> None:
        self._backend = backend
        self._confirmer = confirmer
        self._limiter = rate_limiter
        self._monitor = monitor
        self._ledger = ledger
        self.customer = customer
        self.product = product
        self.amount = amount
        self.currency = currency
        self.high_value_threshold = high_value_threshold
        self.challenge_id = str(uuid.uuid4())

        self.state = CheckoutState.IDLE
        self.intent: PaymentIntent | None = None
        self.error: str | None = None
        self.verified = False
        self._payment_method_id: str | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        backend: PaymentBackend,
        rate_limiter: RateLimiter,
        monitor: SecurityMonitor,
        customer: CheckoutCustomer,
        product: CheckoutProduct,
        amount: float,
        currency: str = "usd",
        ledger: ReconciliationLedger | None = None,
        confirmer: CardConfirmer | None = None,
    ) -> CheckoutSession:
        """Build a session using the configured threshold and publishable key."""
        if confirmer is None:
            if not settings.stripe_publishable_key:
                logger.error("STRIPE_PUBLISHABLE_KEY is not set")
                raise ConfigError("Stripe configuration error. Please contact support.")
            confirmer = StripeCardConfirmer(settings.stripe_publishable_key)
        return cls(
            backend=backend,
            confirmer=confirmer,
            rate_limiter=rate_limiter,
            monitor=monitor,
            customer=customer,
            product=product,
            amount=amount,
            currency=currency,
            high_value_threshold=settings.high_value_threshold,
            ledger=ledger,
        )

    @property
    def amount_minor(self) -> int:
        return round(self.amount * 100)

    @property
    def requires_verification(self) -> bool:
        return self.amount > self.high_value_threshold and not self.verified

    # --- Steps ---

    async def request_intent(self) -> PaymentIntent:
        self._expect(CheckoutState.IDLE)
        self._check_rate_limit()
        if self.amount <= 0:
            raise PaymentValidationError("Amount must be positive")
        if not validate_email(self.customer.email):
            raise PaymentValidationError("Invalid email address")

        self.state = CheckoutState.INTENT_REQUESTED
        request = CreatePaymentIntentRequest(
            amount=self.amount_minor,
            currency=self.currency,
            product_id=self.product.id,
            customer_email=self.customer.email,
            customer_name=self.customer.full_name,
            metadata={
                "product_name": self.product.name,
                "user_id": self.customer.user_id,
                "security_token": str(uuid.uuid4()),
            },
        )
        try:
            intent = await self._backend.create_payment_intent(request)
        except ProviderError as e:
            self._fail(str(e))
            await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.HIGH, {
                "error": "Payment initialization failed", "message": str(e),
            })
            raise
        except Exception as e:
            logger.exception("Unexpected error creating payment intent")
            self._fail("Payment initialization failed")
            await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.CRITICAL, {
                "error": "Payment initialization failed", "type": "payment_exception",
            })
            raise ProviderError("Payment initialization failed") from e

        self.intent = intent
        self.state = CheckoutState.INTENT_CREATED
        await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.LOW, {
            "amount": self.amount,
            "product_id": self.product.id,
            "payment_intent_id": intent.id,
        })
        return intent

    def enter_card(self, payment_method_id: str) -> None:
        """Attach the tokenized card produced by the provider-hosted input."""
        self._expect(CheckoutState.INTENT_CREATED, CheckoutState.CARD_ENTERED)
        if not payment_method_id:
            raise PaymentValidationError("Card details are incomplete")
        self._payment_method_id = payment_method_id
        self.state = CheckoutState.CARD_ENTERED

    async def report_card_error(self, message: str) -> None:
        self.error = message
        await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.MEDIUM, {
            "error": message, "type": "card_validation",
        })

    async def submit(self) -> CheckoutState:
        """Confirm the payment, or detour to verification for high values."""
        self._expect(CheckoutState.CARD_ENTERED)
        if self.intent is None or self.intent.status not in _CONFIRMABLE:
            raise InvalidTransitionError("Payment intent is not awaiting confirmation")
        self._check_rate_limit()

        if self.requires_verification:
            # Stays in card_entered on failure so the caller can resubmit
            if not await self._issue_code():
                return self.state
            self.state = CheckoutState.VERIFICATION_REQUIRED
            return self.state

        return await self._confirm()

    async def verify(self, code: str) -> CheckoutState:
        """Check the verification code and, if it matches, confirm the payment."""
        self._expect(CheckoutState.VERIFICATION_REQUIRED)
        try:
            ok = await self._backend.verify_code(self.challenge_id, code)
        except VerificationError as e:
            self.error = str(e)
            await self._log(SecurityEventType.SUSPICIOUS_ACTIVITY, Severity.HIGH, {
                "type": "verification_failed", "reason": str(e),
            })
            raise

        if not ok:
            self.error = "Invalid verification code"
            await self._log(SecurityEventType.SUSPICIOUS_ACTIVITY, Severity.HIGH, {
                "type": "invalid_verification_code",
            })
            return self.state

        self.verified = True
        self.error = None
        self._check_rate_limit()
        return await self._confirm()

    async def resend_code(self) -> bool:
        """Send a fresh code. Returns False if it could not be delivered."""
        self._expect(CheckoutState.VERIFICATION_REQUIRED)
        return await self._issue_code()

    # --- Internals ---

    async def _issue_code(self) -> bool:
        try:
            await self._backend.issue_verification(self.challenge_id, self.customer.email)
        except ProviderError as e:
            self.error = str(e)
            await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.HIGH, {
                "error": "Verification code delivery failed", "message": str(e),
            })
            return False
        except Exception:
            logger.exception("Unexpected error issuing verification code")
            self.error = "Verification code delivery failed"
            await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.CRITICAL, {
                "error": self.error, "type": "payment_exception",
            })
            return False
        self.error = None
        return True

    async def _confirm(self) -> CheckoutState:
        if self.intent is None or self._payment_method_id is None:
            raise InvalidTransitionError("No payment intent or card to confirm")
        self.state = CheckoutState.CONFIRMING
        self.error = None
        self._limiter.record_attempt(RateLimitCategory.PAYMENT)

        await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.MEDIUM, {
            "amount": self.amount,
            "product_id": self.product.id,
            "timestamp": datetime.now(UTC).isoformat(),
            "status": "processing",
        })

        try:
            confirmed = await asyncio.to_thread(
                self._confirmer.confirm_card_payment, self.intent, self._payment_method_id,
            )
        except ProviderError as e:
            self._fail(str(e))
            await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.HIGH, {
                "error": str(e), "type": "payment_failed",
            })
            return self.state
        except Exception as e:
            logger.exception("Unexpected error confirming payment %s", self.intent.id)
            self._fail(str(e) or "Payment failed")
            await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.CRITICAL, {
                "error": self.error, "type": "payment_exception",
            })
            return self.state

        self.intent = confirmed
        if confirmed.status != PaymentIntentStatus.SUCCEEDED:
            self._fail(confirmed.error_message or f"Payment not completed ({confirmed.status.value})")
            await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.MEDIUM, {
                "payment_intent_id": confirmed.id, "status": confirmed.status.value,
            })
            return self.state

        self.state = CheckoutState.SUCCEEDED
        await self._log(SecurityEventType.PAYMENT_ATTEMPT, Severity.LOW, {
            "payment_intent_id": confirmed.id, "status": "succeeded", "amount": self.amount,
        })
        if self._ledger is not None:
            self._ledger.report_client_success(confirmed, self.customer.user_id)
        return self.state

    def _expect(self, *states: CheckoutState) -> None:
        if self.state not in states:
            if self.state in TERMINAL_CHECKOUT_STATES:
                raise InvalidTransitionError(f"Checkout already {self.state.value}")
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransitionError(
                f"Cannot proceed from {self.state.value}; expected {allowed}",
            )

    def _check_rate_limit(self) -> None:
        if not self._limiter.can_proceed(RateLimitCategory.PAYMENT):
            remaining = self._limiter.remaining_time(RateLimitCategory.PAYMENT)
            self.error = str(RateLimitedError(remaining))
            raise RateLimitedError(remaining)

    def _fail(self, message: str) -> None:
        self.state = CheckoutState.FAILED
        self.error = message

    async def _log(
        self, kind: SecurityEventType, severity: Severity, details: dict[str, Any],
    ) -> None:
        await self._monitor.log_security_event(
            SecurityEvent(type=kind, severity=severity, details=details),
        )
