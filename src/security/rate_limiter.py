"""Fixed-window rate limiter for sensitive client actions.

One limiter belongs to one client session. Each category (login, payment,
api, trading) has its own window that is created on first use and reset
once ``window_ms`` has elapsed since it started. Nothing is persisted: a new
session starts with fresh counters, so this is a UI gate, not an
authoritative server-side control.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping

from src.models import RateLimitCategory, RateLimitRule, RateLimitWindow

MINUTE_MS = 60 * 1000

DEFAULT_RULES: dict[RateLimitCategory, RateLimitRule] = {
    RateLimitCategory.LOGIN: RateLimitRule(max_attempts=5, window_ms=15 * MINUTE_MS),
    RateLimitCategory.API: RateLimitRule(max_attempts=100, window_ms=MINUTE_MS),
    RateLimitCategory.TRADING: RateLimitRule(max_attempts=10, window_ms=MINUTE_MS),
    RateLimitCategory.PAYMENT: RateLimitRule(max_attempts=3, window_ms=60 * MINUTE_MS),
}


def _now_ms() -> float:
    return time.time() * 1000


class RateLimiter:
    """Per-category fixed-window attempt counter."""

    def __init__(
        self,
        rules: Mapping[RateLimitCategory, RateLimitRule] | None = None,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        self._rules = {**DEFAULT_RULES, **(rules or {})}
        self._clock = clock
        self._windows: dict[RateLimitCategory, RateLimitWindow] = {}

    def rule(self, category: RateLimitCategory) -> RateLimitRule:
        return self._rules[RateLimitCategory(category)]

    def window(self, category: RateLimitCategory) -> RateLimitWindow:
        """Return the window for ``category``, creating it lazily."""
        category = RateLimitCategory(category)
        current = self._windows.get(category)
        if current is None:
            current = RateLimitWindow(category=category, window_start_ms=self._clock())
            self._windows[category] = current
        return current

    def can_proceed(self, category: RateLimitCategory) -> bool:
        """Return True if another attempt is allowed in the current window.

        An expired window is reset here. A full window is marked blocked.
        """
        rule = self.rule(category)
        current = self.window(category)
        now = self._clock()

        if now - current.window_start_ms >= rule.window_ms:
            current.attempt_count = 0
            current.window_start_ms = now
            current.blocked = False
            return True

        if current.attempt_count >= rule.max_attempts:
            current.blocked = True
            return False

        return True

    def record_attempt(self, category: RateLimitCategory) -> None:
        # Blocking is re-evaluated by the next can_proceed call
        self.window(category).attempt_count += 1

    def remaining_time(self, category: RateLimitCategory) -> int:
        """Milliseconds until a blocked window reopens; 0 when not blocked."""
        current = self.window(category)
        if not current.blocked:
            return 0
        elapsed = self._clock() - current.window_start_ms
        return max(0, int(self.rule(category).window_ms - elapsed))

    def is_blocked(self, category: RateLimitCategory) -> bool:
        return self.window(category).blocked

    def reset(self, category: RateLimitCategory) -> None:
        current = self.window(category)
        current.attempt_count = 0
        current.window_start_ms = self._clock()
        current.blocked = False
