"""Append-only per-citizen tax payment history."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .principal import normalize_address


class TaxPaymentStatus(str, Enum):
    UNPROCESSED = "unprocessed"
    PROCESSED = "processed"


@dataclass(frozen=True)
class TaxPayment:
    """A single tax payment. The zero value stands in for out-of-range reads."""

    amount: int = 0
    timestamp: int = 0
    status: TaxPaymentStatus = TaxPaymentStatus.UNPROCESSED

    def to_dict(self) -> dict:
        return {
            "amount": str(self.amount),
            "timestamp": self.timestamp,
            "status": self.status.value,
        }


@dataclass
class CitizenTaxRecord:
    """All payments of one principal plus their lifetime total."""

    principal: str
    payments: list[TaxPayment] = field(default_factory=list)
    total_paid: int = 0

    @property
    def count(self) -> int:
        return len(self.payments)


class TaxLedger:
    def _row_to_payment(self, row: sqlite3.Row) -> TaxPayment:
        return TaxPayment(
            amount=int(row["amount"]),
            timestamp=row["timestamp"],
            status=TaxPaymentStatus(row["status"]),
        )

    def _totals_row(self, conn: sqlite3.Connection, principal: str) -> Optional[sqlite3.Row]:
        return conn.execute(
            "SELECT payment_count, total_paid FROM citizen_totals WHERE principal = ?",
            (principal,),
        ).fetchone()

    def record(
        self,
        conn: sqlite3.Connection,
        payer: str,
        amount: int,
        timestamp: int,
    ) -> tuple[int, TaxPayment]:
        """Append a processed payment at the payer's next index."""
        row = self._totals_row(conn, payer)
        index = row["payment_count"] if row else 0
        total = int(row["total_paid"]) if row else 0

        payment = TaxPayment(amount=amount, timestamp=timestamp, status=TaxPaymentStatus.PROCESSED)
        conn.execute(
            """
            INSERT INTO tax_payments (principal, payment_index, amount, timestamp, status)
            VALUES (?, ?, ?, ?, ?)
            """,
            (payer, index, str(amount), timestamp, payment.status.value),
        )
        conn.execute(
            """
            INSERT INTO citizen_totals (principal, payment_count, total_paid) VALUES (?, ?, ?)
            ON CONFLICT (principal) DO UPDATE
            SET payment_count = excluded.payment_count, total_paid = excluded.total_paid
            """,
            (payer, index + 1, str(total + amount)),
        )
        return index, payment

    def payment(self, conn: sqlite3.Connection, principal: str, index: int) -> Optional[TaxPayment]:
        row = conn.execute(
            """
            SELECT amount, timestamp, status FROM tax_payments
            WHERE principal = ? AND payment_index = ?
            """,
            (normalize_address(principal), index),
        ).fetchone()
        return self._row_to_payment(row) if row else None

    def count(self, conn: sqlite3.Connection, principal: str) -> int:
        row = self._totals_row(conn, normalize_address(principal))
        return row["payment_count"] if row else 0

    def total_paid(self, conn: sqlite3.Connection, principal: str) -> int:
        row = self._totals_row(conn, normalize_address(principal))
        return int(row["total_paid"]) if row else 0

    def citizen_record(self, conn: sqlite3.Connection, principal: str) -> CitizenTaxRecord:
        normalized = normalize_address(principal)
        rows = conn.execute(
            """
            SELECT amount, timestamp, status FROM tax_payments
            WHERE principal = ? ORDER BY payment_index ASC
            """,
            (normalized,),
        ).fetchall()
        return CitizenTaxRecord(
            principal=normalized,
            payments=[self._row_to_payment(r) for r in rows],
            total_paid=self.total_paid(conn, normalized),
        )
