"""Server-side security event intake.

Backs the security webhook: each reported event is persisted as a
security_events row plus an audit_logs row. Critical events are alerted.
Bursts of the same event type from one user inside the escalation window
produce a single synthesized ``rate_limit_exceeded`` event.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from src.models import (
    AuditEvent,
    SecurityEvent,
    SecurityEventRecord,
    SecurityEventType,
    Severity,
)

if TYPE_CHECKING:
    from src.security.alerts import AlertDispatcher
    from src.store.records import PortalStore

logger = logging.getLogger(__name__)

ESCALATION_WINDOW = timedelta(minutes=15)
ESCALATION_THRESHOLD = 5


class SecurityEventValidationError(ValueError):
    """Raised when a reported event lacks a type or has an unknown severity."""


@dataclass
class IntakeResult:
    event_id: int | None
    escalated: bool


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SecurityEventService:
    """Persists reported security events and escalates repeated ones."""

    def __init__(
        self,
        store: PortalStore,
        alert_dispatcher: AlertDispatcher | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._alerts = alert_dispatcher
        self._clock = clock

    @staticmethod
    def parse(payload: dict[str, Any]) -> tuple[str, Severity]:
        event_type = payload.get("event_type")
        severity = payload.get("severity")
        if not event_type or not severity:
            raise SecurityEventValidationError("Missing required fields")
        details = payload.get("details")
        if details is not None and not isinstance(details, dict):
            raise SecurityEventValidationError("Invalid details: expected an object")
        for field in ("user_id", "ip_address", "user_agent"):
            value = payload.get(field)
            if value is not None and not isinstance(value, str):
                raise SecurityEventValidationError(f"Invalid {field}: expected a string")
        try:
            return str(event_type), Severity(severity)
        except ValueError as e:
            raise SecurityEventValidationError(f"Invalid severity: {severity}") from e

    async def ingest(self, payload: dict[str, Any]) -> IntakeResult:
        event_type, severity = self.parse(payload)
        user_id: str | None = payload.get("user_id")
        details: dict[str, Any] = payload.get("details") or {}
        now = self._clock()

        record = self._store.insert_security_event(SecurityEventRecord(
            user_id=user_id,
            event_type=event_type,
            severity=severity,
            details=details,
            created_at=now.isoformat(),
        ))
        self._store.insert_audit_log(AuditEvent(
            timestamp=now.isoformat(),
            user_id=user_id,
            action=event_type,
            resource="security_monitoring",
            details=details,
            ip_address=payload.get("ip_address"),
            user_agent=payload.get("user_agent"),
            risk_level=severity,
        ))

        if severity == Severity.CRITICAL:
            logger.warning("CRITICAL SECURITY EVENT: %s user=%s", event_type, user_id)
            await self._alert(event_type, severity, details, user_id)

        escalated = False
        if user_id:
            escalated = await self._maybe_escalate(user_id, event_type, now)

        return IntakeResult(event_id=record.id, escalated=escalated)

    async def _maybe_escalate(self, user_id: str, event_type: str, now: datetime) -> bool:
        if event_type == SecurityEventType.RATE_LIMIT_EXCEEDED.value:
            return False

        since = (now - ESCALATION_WINDOW).isoformat()
        recent = self._store.recent_security_events(user_id, event_type, since)
        if len(recent) <= ESCALATION_THRESHOLD:
            return False

        # One escalation per user and event type per window
        prior = self._store.recent_security_events(
            user_id, SecurityEventType.RATE_LIMIT_EXCEEDED.value, since,
        )
        if any(p.details.get("original_event") == event_type for p in prior):
            return False

        details: dict[str, Any] = {
            "original_event": event_type,
            "count": len(recent),
            "timeframe": "15_minutes",
        }
        self._store.insert_security_event(SecurityEventRecord(
            user_id=user_id,
            event_type=SecurityEventType.RATE_LIMIT_EXCEEDED.value,
            severity=Severity.HIGH,
            details=details,
            created_at=now.isoformat(),
        ))
        logger.warning(
            "Escalated %d %s events for user %s", len(recent), event_type, user_id,
        )
        await self._alert(
            SecurityEventType.RATE_LIMIT_EXCEEDED.value, Severity.HIGH, details, user_id,
        )
        return True

    async def _alert(
        self,
        event_type: str,
        severity: Severity,
        details: dict[str, Any],
        user_id: str | None,
    ) -> None:
        if self._alerts is None:
            return
        try:
            kind = SecurityEventType(event_type)
        except ValueError:
            kind = SecurityEventType.SUSPICIOUS_ACTIVITY
            details = {**details, "reported_type": event_type}
        try:
            await self._alerts.dispatch(
                SecurityEvent(type=kind, severity=severity, details=details), user_id,
            )
        except Exception:
            logger.exception("Failed to dispatch alert for %s", event_type)
