"""Circuit breaker guarding trade submission."""

from __future__ import annotations

import time
from collections.abc import Callable


class TradingCircuitBreaker:
    """Opens after ``threshold`` consecutive failures for ``timeout_ms``."""

    def __init__(
        self,
        threshold: int = 5,
        timeout_ms: int = 60_000,
        clock: Callable[[], float] = lambda: time.time() * 1000,
    ) -> None:
        self._threshold = threshold
        self._timeout_ms = timeout_ms
        self._clock = clock
        self._failures = 0
        self._last_failure_ms = 0.0

    @property
    def failures(self) -> int:
        return self._failures

    def can_execute(self) -> bool:
        if self._failures < self._threshold:
            return True
        if self._clock() - self._last_failure_ms < self._timeout_ms:
            return False
        self._reset()
        return True

    def record_failure(self) -> None:
        self._failures += 1
        self._last_failure_ms = self._clock()

    def record_success(self) -> None:
        self._failures = 0

    def _reset(self) -> None:
        self._failures = 0
        self._last_failure_ms = 0.0
