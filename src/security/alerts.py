"""Real-time alert delivery for high and critical security events."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from src.models import SecurityEvent

logger = logging.getLogger(__name__)


class AlertDispatcher(Protocol):
    async def dispatch(self, event: SecurityEvent, user_id: str | None = None) -> None: ...


class LoggingAlertDispatcher:
    """Writes alerts to the process log only."""

    async def dispatch(self, event: SecurityEvent, user_id: str | None = None) -> None:
        logger.warning(
            "SECURITY ALERT: %s (%s) user=%s details=%s",
            event.type.value, event.severity.value, user_id, event.details,
        )


class WebhookAlertDispatcher:
    """POSTs alerts to an incident webhook. Delivery is attempted once."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def dispatch(self, event: SecurityEvent, user_id: str | None = None) -> None:
        payload = {
            "user_id": user_id,
            "event_type": event.type.value,
            "severity": event.severity.value,
            "details": event.details,
            "timestamp": event.timestamp,
        }
        async with httpx.AsyncClient(transport=self._transport) as client:
            resp = await client.post(self._url, json=payload, timeout=self._timeout)
        if resp.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"Alert webhook returned {resp.status_code}",
                request=resp.request,
                response=resp,
            )
