"""Typed access to the portal datastore."""

from __future__ import annotations

import json
from typing import Any

from src.models import (
    AuditEvent,
    InvestmentRecord,
    PaymentRecord,
    Product,
    ProvisionalPayment,
    SecurityEventRecord,
    Severity,
    TransactionRecord,
)
from src.store.db import PortalDB


class PortalStore:
    """Reads and writes business rows through a :class:`PortalDB`."""

    def __init__(self, db: PortalDB) -> None:
        self._db = db

    @classmethod
    def open(cls, db_path: str) -> PortalStore:
        return cls(PortalDB(db_path))

    def close(self) -> None:
        self._db.close()

    # --- Products ---

    def upsert_product(self, product: Product) -> None:
        self._db.execute(
            """INSERT INTO products (id, name, price) VALUES (?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET name=excluded.name, price=excluded.price""",
            (product.id, product.name, product.price),
        )

    def get_product(self, product_id: str) -> Product | None:
        row = self._db.fetch_one("SELECT * FROM products WHERE id = ?", (product_id,))
        return Product.model_validate(row) if row else None

    # --- Purchases ---

    def record_purchase(
        self,
        payment: PaymentRecord,
        investment: InvestmentRecord | None,
        transaction: TransactionRecord,
    ) -> bool:
        """Write the payment, investment and transaction rows of one purchase.

        Returns False without writing anything if a payment row for the same
        intent already exists.
        """
        with self._db.transaction() as conn:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO payments
                   (user_id, stripe_payment_intent_id, amount, currency, status,
                    product_id, metadata_json, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    payment.user_id,
                    payment.stripe_payment_intent_id,
                    payment.amount,
                    payment.currency,
                    payment.status,
                    payment.product_id,
                    json.dumps(payment.metadata),
                    payment.created_at,
                ),
            )
            if cursor.rowcount == 0:
                return False

            if investment is not None:
                conn.execute(
                    """INSERT INTO investments
                       (user_id, package_name, amount, current_value, status, created_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        investment.user_id,
                        investment.package_name,
                        investment.amount,
                        investment.current_value,
                        investment.status,
                        investment.created_at,
                    ),
                )
            conn.execute(
                """INSERT INTO transactions
                   (user_id, type, amount, description, status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    transaction.user_id,
                    transaction.type,
                    transaction.amount,
                    transaction.description,
                    transaction.status,
                    transaction.created_at,
                ),
            )
        return True

    def get_payment(self, payment_intent_id: str) -> PaymentRecord | None:
        row = self._db.fetch_one(
            "SELECT * FROM payments WHERE stripe_payment_intent_id = ?",
            (payment_intent_id,),
        )
        if row is None:
            return None
        row["metadata"] = json.loads(row.pop("metadata_json"))
        return PaymentRecord.model_validate(row)

    def mark_payment_failed(self, payment_intent_id: str) -> int:
        cursor = self._db.execute(
            "UPDATE payments SET status = 'failed' WHERE stripe_payment_intent_id = ?",
            (payment_intent_id,),
        )
        return cursor.rowcount

    def list_payments(self, user_id: str) -> list[PaymentRecord]:
        rows = self._db.fetch_all(
            "SELECT * FROM payments WHERE user_id = ? ORDER BY id", (user_id,),
        )
        for row in rows:
            row["metadata"] = json.loads(row.pop("metadata_json"))
        return [PaymentRecord.model_validate(r) for r in rows]

    def list_investments(self, user_id: str) -> list[InvestmentRecord]:
        rows = self._db.fetch_all(
            "SELECT * FROM investments WHERE user_id = ? ORDER BY id", (user_id,),
        )
        return [InvestmentRecord.model_validate(r) for r in rows]

    def list_transactions(self, user_id: str) -> list[TransactionRecord]:
        rows = self._db.fetch_all(
            "SELECT * FROM transactions WHERE user_id = ? ORDER BY id", (user_id,),
        )
        return [TransactionRecord.model_validate(r) for r in rows]

    # --- Security events and audit ---

    def insert_security_event(self, record: SecurityEventRecord) -> SecurityEventRecord:
        cursor = self._db.execute(
            """INSERT INTO security_events
               (user_id, event_type, severity, details_json, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (
                record.user_id,
                record.event_type,
                record.severity.value,
                json.dumps(record.details, default=str),
                record.created_at,
            ),
        )
        return record.model_copy(update={"id": cursor.lastrowid})

    def recent_security_events(
        self, user_id: str, event_type: str, since: str,
    ) -> list[SecurityEventRecord]:
        rows = self._db.fetch_all(
            """SELECT * FROM security_events
               WHERE user_id = ? AND event_type = ? AND created_at >= ?
               ORDER BY id""",
            (user_id, event_type, since),
        )
        return [self._row_to_event(r) for r in rows]

    def list_security_events(
        self, user_id: str | None = None, limit: int = 50,
    ) -> list[SecurityEventRecord]:
        if user_id is None:
            rows = self._db.fetch_all(
                "SELECT * FROM security_events ORDER BY id DESC LIMIT ?", (limit,),
            )
        else:
            rows = self._db.fetch_all(
                "SELECT * FROM security_events WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            )
        return [self._row_to_event(r) for r in rows]

    def insert_audit_log(self, event: AuditEvent) -> None:
        self._db.execute(
            """INSERT INTO audit_logs
               (user_id, action, resource, details_json, ip_address, user_agent,
                risk_level, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                event.user_id,
                event.action,
                event.resource,
                json.dumps(event.details or {}, default=str),
                event.ip_address,
                event.user_agent,
                event.risk_level.value,
                event.timestamp,
            ),
        )

    # AuditSink interface, so the table can back the audit trail directly
    log = insert_audit_log

    def count_audit_logs(self, user_id: str | None = None) -> int:
        if user_id is None:
            row = self._db.fetch_one("SELECT COUNT(*) AS n FROM audit_logs")
        else:
            row = self._db.fetch_one(
                "SELECT COUNT(*) AS n FROM audit_logs WHERE user_id = ?", (user_id,),
            )
        return int(row["n"]) if row else 0

    # --- Provisional payments ---

    def report_provisional(self, payment: ProvisionalPayment) -> None:
        """Record a client-reported success; keeps an existing confirmation."""
        self._db.execute(
            """INSERT INTO provisional_payments
               (payment_intent_id, user_id, amount, currency, reported_at, confirmed_at)
               VALUES (?, ?, ?, ?, ?, NULL)
               ON CONFLICT(payment_intent_id) DO UPDATE SET
                 user_id=COALESCE(provisional_payments.user_id, excluded.user_id),
                 reported_at=excluded.reported_at""",
            (
                payment.payment_intent_id,
                payment.user_id,
                payment.amount,
                payment.currency,
                payment.reported_at,
            ),
        )

    def confirm_provisional(
        self,
        payment_intent_id: str,
        confirmed_at: str,
        user_id: str | None,
        amount: int,
        currency: str,
    ) -> None:
        """Mark an intent as durably recorded, creating the entry if needed."""
        self._db.execute(
            """INSERT INTO provisional_payments
               (payment_intent_id, user_id, amount, currency, reported_at, confirmed_at)
               VALUES (?, ?, ?, ?, NULL, ?)
               ON CONFLICT(payment_intent_id) DO UPDATE SET
                 confirmed_at=COALESCE(provisional_payments.confirmed_at, excluded.confirmed_at)""",
            (payment_intent_id, user_id, amount, currency, confirmed_at),
        )

    def get_provisional(self, payment_intent_id: str) -> ProvisionalPayment | None:
        row = self._db.fetch_one(
            "SELECT * FROM provisional_payments WHERE payment_intent_id = ?",
            (payment_intent_id,),
        )
        return ProvisionalPayment.model_validate(row) if row else None

    def unconfirmed_provisional(self, reported_before: str) -> list[ProvisionalPayment]:
        rows = self._db.fetch_all(
            """SELECT * FROM provisional_payments
               WHERE confirmed_at IS NULL AND reported_at IS NOT NULL AND reported_at <= ?
               ORDER BY reported_at""",
            (reported_before,),
        )
        return [ProvisionalPayment.model_validate(r) for r in rows]

    @staticmethod
    def _row_to_event(row: dict[str, Any]) -> SecurityEventRecord:
        return SecurityEventRecord(
            id=row["id"],
            user_id=row["user_id"],
            event_type=row["event_type"],
            severity=Severity(row["severity"]),
            details=json.loads(row["details_json"]),
            created_at=row["created_at"],
        )
