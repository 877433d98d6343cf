"""Shared Pydantic data models for the client portal security and payment core."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ALERT_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})


class SecurityEventType(str, Enum):
    LOGIN_ATTEMPT = "login_attempt"
    FAILED_LOGIN = "failed_login"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    DATA_ACCESS = "data_access"
    PAYMENT_ATTEMPT = "payment_attempt"
    # Only synthesized by the backend escalation check
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


class RateLimitCategory(str, Enum):
    LOGIN = "login"
    PAYMENT = "payment"
    API = "api"
    TRADING = "trading"


class PaymentIntentStatus(str, Enum):
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    FAILED = "failed"


class CheckoutState(str, Enum):
    IDLE = "idle"
    INTENT_REQUESTED = "intent_requested"
    INTENT_CREATED = "intent_created"
    CARD_ENTERED = "card_entered"
    VERIFICATION_REQUIRED = "verification_required"
    CONFIRMING = "confirming"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_CHECKOUT_STATES = frozenset({CheckoutState.SUCCEEDED, CheckoutState.FAILED})


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# --- Rate limiting ---


class RateLimitRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(ge=1)
    window_ms: int = Field(ge=1)


class RateLimitWindow(BaseModel):
    category: RateLimitCategory
    attempt_count: int = 0
    window_start_ms: float
    blocked: bool = False


# --- Security monitoring ---


class SecurityEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: SecurityEventType
    severity: Severity
    details: dict[str, object] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=_now_iso)


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    user_id: str | None = None
    action: str
    resource: str
    details: dict[str, object] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    risk_level: Severity


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: list[str] = Field(default_factory=list)


# --- Payments ---


class PaymentIntent(BaseModel):
    id: str
    client_secret: str
    amount: int = Field(ge=0)  # minor units
    currency: str
    status: PaymentIntentStatus
    customer_id: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    error_message: str | None = None


class CardSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    brand: str
    last4: str
    exp_month: int
    exp_year: int


class PaymentMethodSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    card: CardSummary | None = None
    created: int | None = None


class CustomerRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str | None = None
    name: str | None = None
    created: int | None = None
    existing: bool = False


# --- Durable records ---


class Product(BaseModel):
    id: str
    name: str
    price: float = Field(ge=0)


class PaymentRecord(BaseModel):
    id: int | None = None
    user_id: str
    stripe_payment_intent_id: str
    amount: float
    currency: str
    status: str
    product_id: str
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: str = Field(default_factory=_now_iso)


class InvestmentRecord(BaseModel):
    id: int | None = None
    user_id: str
    package_name: str
    amount: float
    current_value: float
    status: str = "active"
    created_at: str = Field(default_factory=_now_iso)


class TransactionRecord(BaseModel):
    id: int | None = None
    user_id: str
    type: str
    amount: float
    description: str
    status: str = "completed"
    created_at: str = Field(default_factory=_now_iso)


class SecurityEventRecord(BaseModel):
    id: int | None = None
    user_id: str | None = None
    event_type: str
    severity: Severity
    details: dict[str, object] = Field(default_factory=dict)
    created_at: str = Field(default_factory=_now_iso)


class ProvisionalPayment(BaseModel):
    payment_intent_id: str
    user_id: str | None = None
    amount: int
    currency: str
    reported_at: str | None = None
    confirmed_at: str | None = None
