"""Exceptions raised by the payment backend functions and checkout flow."""

from __future__ import annotations


class PaymentError(Exception):
    """Base class for payment failures."""


class ConfigError(PaymentError):
    """Raised when payment provider keys are not configured."""


class PaymentValidationError(PaymentError):
    """Raised when a request is missing required fields."""


class ProviderError(PaymentError):
    """Raised when the payment provider or backend reports a failure."""

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class RateLimitedError(PaymentError):
    """Raised when the local payment rate limit denies an attempt."""

    def __init__(self, remaining_ms: int) -> None:
        self.remaining_ms = remaining_ms
        minutes = -(-remaining_ms // 60_000)
        super().__init__(f"Too many payment attempts. Please wait {minutes} minutes.")


class InvalidTransitionError(PaymentError):
    """Raised when a checkout step is attempted from the wrong state."""


class VerificationError(PaymentError):
    """Raised when a verification code is missing, wrong, expired or exhausted."""


class SignatureError(PaymentError):
    """Raised when a webhook signature cannot be verified."""
