"""Client-side security event logging.

:class:`SecurityMonitor` keeps a bounded, newest-first buffer of recent
events, forwards every event to a durable audit sink and raises real-time
alerts for high and critical severities. Logging is fire-and-forget: no
failure in a sink or dispatcher ever reaches the caller.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import TYPE_CHECKING, Any

from src.models import (
    ALERT_SEVERITIES,
    AuditEvent,
    SecurityEvent,
    SecurityEventType,
    Severity,
)

if TYPE_CHECKING:
    from src.audit.logger import AuditSink
    from src.security.alerts import AlertDispatcher

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100
SESSION_INACTIVITY_MS = 30 * 60 * 1000

_FAILED_LOGIN_LIMIT = 3
_TRADES_PER_MINUTE_LIMIT = 10
_LARGE_TRANSACTION_AMOUNT = 50_000


class SecurityMonitor:
    """Records security events for one client session."""

    def __init__(
        self,
        audit_sink: AuditSink | None = None,
        alert_dispatcher: AlertDispatcher | None = None,
        capacity: int = DEFAULT_CAPACITY,
        user_id: str | None = None,
    ) -> None:
        self._audit = audit_sink
        self._alerts = alert_dispatcher
        self._buffer: deque[SecurityEvent] = deque(maxlen=capacity)
        self._last_activity_ms: float | None = None
        self.user_id = user_id
        self.enabled = True

    @property
    def alerts(self) -> list[SecurityEvent]:
        """Recent events, newest first."""
        return list(self._buffer)

    async def log_security_event(self, event: SecurityEvent) -> None:
        """Record ``event``. Never raises."""
        try:
            self._buffer.appendleft(event)
        except Exception:
            logger.exception("Failed to buffer security event")
            return

        if self._audit is not None:
            try:
                self._audit.log(AuditEvent(
                    user_id=self.user_id,
                    action=event.type.value,
                    resource="security_monitoring",
                    details=dict(event.details),
                    risk_level=event.severity,
                ))
            except Exception:
                logger.exception("Failed to write audit entry for %s", event.type.value)

        if event.severity in ALERT_SEVERITIES and self._alerts is not None:
            try:
                await self._alerts.dispatch(event, self.user_id)
            except Exception:
                logger.exception("Failed to dispatch security alert")

    async def detect_suspicious_activity(self, activity: dict[str, Any]) -> bool:
        """Flag activity matching a known risk pattern as a high-severity event.

        Returns True when an event was logged.
        """
        patterns = (
            activity.get("failed_logins", 0) > _FAILED_LOGIN_LIMIT,
            activity.get("trades_per_minute", 0) > _TRADES_PER_MINUTE_LIMIT,
            bool(activity.get("new_location") and activity.get("high_value_actions")),
            activity.get("transaction_amount", 0) > _LARGE_TRANSACTION_AMOUNT,
        )
        if not any(patterns):
            return False

        await self.log_security_event(SecurityEvent(
            type=SecurityEventType.SUSPICIOUS_ACTIVITY,
            severity=Severity.HIGH,
            details=dict(activity),
        ))
        return True

    async def check_session_activity(self, now_ms: float | None = None) -> bool:
        """Record activity; log a medium event if the session sat idle too long.

        Returns True when the inactivity timeout was exceeded.
        """
        if not self.enabled:
            return False

        now = time.time() * 1000 if now_ms is None else now_ms
        previous = self._last_activity_ms
        self._last_activity_ms = now

        if previous is None or now - previous <= SESSION_INACTIVITY_MS:
            return False

        await self.log_security_event(SecurityEvent(
            type=SecurityEventType.SUSPICIOUS_ACTIVITY,
            severity=Severity.MEDIUM,
            details={"reason": "session_timeout_exceeded"},
        ))
        return True
