"""Append-only global expenditure history with a separate detail record per entry."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ExpenditureStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Expenditure:
    """A committed disbursement. The zero value stands in for out-of-range reads."""

    timestamp: int = 0
    amount: int = 0
    purpose: str = ""
    status: ExpenditureStatus = ExpenditureStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "amount": str(self.amount),
            "purpose": self.purpose,
            "status": self.status.value,
        }


class ExpenditureLedger:
    def _row_to_expenditure(self, row: sqlite3.Row) -> Expenditure:
        return Expenditure(
            timestamp=row["timestamp"],
            amount=int(row["amount"]),
            purpose=row["purpose"],
            status=ExpenditureStatus(row["status"]),
        )

    def count(self, conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT expenditure_count FROM ledger_totals WHERE id = 1").fetchone()
        return row["expenditure_count"]

    def commit(
        self,
        conn: sqlite3.Connection,
        recipient: str,
        amount: int,
        purpose: str,
        details: str,
        timestamp: int,
    ) -> tuple[int, Expenditure]:
        """Persist a settled expenditure at the next id.

        Ids are allocated here, at commit, so a disbursement whose settlement
        failed never consumes one and committed ids stay dense.
        """
        expenditure_id = self.count(conn)
        expenditure = Expenditure(
            timestamp=timestamp,
            amount=amount,
            purpose=purpose,
            status=ExpenditureStatus.COMPLETED,
        )
        conn.execute(
            """
            INSERT INTO expenditures (expenditure_id, timestamp, amount, purpose, status, recipient)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (expenditure_id, timestamp, str(amount), purpose, expenditure.status.value, recipient),
        )
        conn.execute(
            "INSERT INTO expenditure_details (expenditure_id, details) VALUES (?, ?)",
            (expenditure_id, details),
        )
        conn.execute(
            "UPDATE ledger_totals SET expenditure_count = expenditure_count + 1 WHERE id = 1"
        )
        return expenditure_id, expenditure

    def get(self, conn: sqlite3.Connection, expenditure_id: int) -> Optional[tuple[Expenditure, str]]:
        row = conn.execute(
            """
            SELECT e.timestamp, e.amount, e.purpose, e.status, d.details
            FROM expenditures e
            JOIN expenditure_details d ON d.expenditure_id = e.expenditure_id
            WHERE e.expenditure_id = ?
            """,
            (expenditure_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_expenditure(row), row["details"]

    def page(self, conn: sqlite3.Connection, cursor: int = 0, size: int = 100) -> tuple[list[tuple[int, Expenditure]], int]:
        if size <= 0:
            raise ValueError("size must be > 0")
        if cursor < 0:
            raise ValueError("cursor must be >= 0")
        rows = conn.execute(
            """
            SELECT expenditure_id, timestamp, amount, purpose, status FROM expenditures
            WHERE expenditure_id >= ? ORDER BY expenditure_id ASC LIMIT ?
            """,
            (cursor, size),
        ).fetchall()
        items = [(r["expenditure_id"], self._row_to_expenditure(r)) for r in rows]
        next_cursor = items[-1][0] + 1 if items else cursor
        return items, next_cursor
