"""Input sanitization and client-side validation.

Everything here is pure. Validation failures are reported to the user
inline and never sent to the backend.
"""

from __future__ import annotations

import re
import secrets
from typing import Any

from src.models import ValidationResult

PASSWORD_MIN_LENGTH = 12
EMAIL_MAX_LENGTH = 254
MAX_TRADE_AMOUNT = 1_000_000

COMMON_PASSWORDS = (
    "password", "123456", "password123", "admin", "qwerty", "letmein",
    "welcome", "monkey", "1234567890", "password1", "abc123",
)

VALID_CURRENCY_PAIRS = frozenset({
    "EUR/USD", "GBP/USD", "USD/JPY", "AUD/USD", "USD/CAD", "NZD/USD",
})
VALID_TRADE_TYPES = frozenset({"buy", "sell", "limit", "stop"})

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_UNSAFE_CHARS_RE = re.compile(r"[<>'\"]")
_SPECIAL_CHARS_RE = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")


def sanitize_input(text: str) -> str:
    """Drop angle brackets and quotes, then trim."""
    return _UNSAFE_CHARS_RE.sub("", text).strip()


def validate_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email)) and len(email) <= EMAIL_MAX_LENGTH


def validate_password(password: str) -> ValidationResult:
    errors: list[str] = []

    if len(password) < PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not _SPECIAL_CHARS_RE.search(password):
        errors.append("Password must contain at least one special character")

    lowered = password.lower()
    if any(common in lowered for common in COMMON_PASSWORDS):
        errors.append("Password cannot contain common words or patterns")

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_trade_request(request: dict[str, Any]) -> ValidationResult:
    errors: list[str] = []

    amount = request.get("amount")
    if not isinstance(amount, (int, float)) or isinstance(amount, bool) or amount <= 0:
        errors.append("Invalid trade amount")
    elif amount > MAX_TRADE_AMOUNT:
        errors.append("Trade amount exceeds maximum limit")

    if request.get("pair") not in VALID_CURRENCY_PAIRS:
        errors.append("Invalid currency pair")

    if request.get("type") not in VALID_TRADE_TYPES:
        errors.append("Invalid trade type")

    return ValidationResult(is_valid=not errors, errors=errors)


def generate_secure_token(length: int = 32) -> str:
    """Hex token built from ``length`` random bytes."""
    return secrets.token_hex(length)
