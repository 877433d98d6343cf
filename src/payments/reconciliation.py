"""Handoff between client-reported payment success and webhook bookkeeping.

A checkout that succeeds on the client is only *provisional*. The purchase
is durable once the provider's ``payment_intent.succeeded`` webhook has
written its rows. The two sides run independently and in either order, so
the ledger accepts both a report-then-confirm and a confirm-then-report
sequence, and lists provisional successes the webhook has not yet
confirmed.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from src.models import PaymentIntent, ProvisionalPayment
from src.store.records import PortalStore


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReconciliationLedger:
    def __init__(
        self,
        store: PortalStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    def report_client_success(self, intent: PaymentIntent, user_id: str | None) -> None:
        self._store.report_provisional(ProvisionalPayment(
            payment_intent_id=intent.id,
            user_id=user_id,
            amount=intent.amount,
            currency=intent.currency,
            reported_at=self._clock().isoformat(),
        ))

    def confirm(
        self, payment_intent_id: str, user_id: str | None, amount: int, currency: str,
    ) -> None:
        self._store.confirm_provisional(
            payment_intent_id,
            confirmed_at=self._clock().isoformat(),
            user_id=user_id,
            amount=amount,
            currency=currency,
        )

    def is_confirmed(self, payment_intent_id: str) -> bool:
        entry = self._store.get_provisional(payment_intent_id)
        return entry is not None and entry.confirmed_at is not None

    def pending(self, older_than_seconds: int = 0) -> list[ProvisionalPayment]:
        """Client-reported successes without a webhook confirmation."""
        cutoff = self._clock() - timedelta(seconds=older_than_seconds)
        return self._store.unconfirmed_provisional(cutoff.isoformat())
