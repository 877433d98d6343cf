"""Out-of-band verification codes for high-value payments.

Codes are generated and checked on the server. Only a SHA-256 digest of
each code is kept, with an expiry and an attempt budget. Delivery goes
through an injected :class:`CodeSender`.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from src.payments.errors import VerificationError

logger = logging.getLogger(__name__)

CODE_DIGITS = 6
DEFAULT_TTL_SECONDS = 300
DEFAULT_MAX_ATTEMPTS = 5


class CodeSender(Protocol):
    def send(self, recipient: str, code: str) -> None: ...


class LoggingCodeSender:
    """Placeholder delivery channel; records that a code went out, never the code."""

    def send(self, recipient: str, code: str) -> None:
        logger.info("Verification code issued to %s", recipient)


@dataclass
class _Challenge:
    digest: str
    expires_at: float
    attempts_left: int


def _hash(challenge_id: str, code: str) -> str:
    return hashlib.sha256(f"{challenge_id}:{code}".encode()).hexdigest()


class VerificationService:
    """Issues and checks one-time codes keyed by checkout challenge id."""

    def __init__(
        self,
        sender: CodeSender | None = None,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sender = sender or LoggingCodeSender()
        self._ttl = ttl_seconds
        self._max_attempts = max_attempts
        self._clock = clock
        self._challenges: dict[str, _Challenge] = {}

    def issue(self, challenge_id: str, recipient: str) -> float:
        """Send a fresh code, replacing any outstanding one. Returns its expiry."""
        if not challenge_id or not recipient:
            raise VerificationError("challenge_id and recipient are required")

        code = str(secrets.randbelow(9 * 10 ** (CODE_DIGITS - 1)) + 10 ** (CODE_DIGITS - 1))
        expires_at = self._clock() + self._ttl
        self._challenges[challenge_id] = _Challenge(
            digest=_hash(challenge_id, code),
            expires_at=expires_at,
            attempts_left=self._max_attempts,
        )
        self._sender.send(recipient, code)
        return expires_at

    def verify(self, challenge_id: str, code: str) -> bool:
        """Return True and consume the challenge if ``code`` matches.

        Raises VerificationError when no code is outstanding, it expired, or
        its attempts are used up.
        """
        challenge = self._challenges.get(challenge_id)
        if challenge is None:
            raise VerificationError("No verification code outstanding")
        if self._clock() > challenge.expires_at:
            del self._challenges[challenge_id]
            raise VerificationError("Verification code expired")

        if hmac.compare_digest(challenge.digest, _hash(challenge_id, code or "")):
            del self._challenges[challenge_id]
            return True

        challenge.attempts_left -= 1
        if challenge.attempts_left <= 0:
            del self._challenges[challenge_id]
            raise VerificationError("Too many invalid verification attempts")
        return False

    def pending(self, challenge_id: str) -> bool:
        challenge = self._challenges.get(challenge_id)
        return challenge is not None and self._clock() <= challenge.expires_at
