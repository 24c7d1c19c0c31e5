"""
Custody bookkeeping.

The settlement collaborator's balance for the custodian is ground truth;
`total_collected - total_spent` is the audit trail that must agree with it.
Disbursements reserve funds in a journal before settlement so a crash
between moving funds and recording them leaves a visible `reserved` entry
instead of an unexplained gap.
"""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from eth_utils import keccak

from .errors import InvalidAddressError, ReservationError
from .principal import normalize_address, require_principal
from .settlement import SettlementBackend


DEFAULT_TREASURY_ADDRESS = "0x" + keccak(text="govledger:treasury")[-20:].hex()


class ReservationStatus(str, Enum):
    RESERVED = "reserved"
    SETTLED = "settled"
    FAILED = "failed"


@dataclass(frozen=True)
class LedgerTotals:
    total_collected: int = 0
    total_spent: int = 0

    @property
    def book_balance(self) -> int:
        return self.total_collected - self.total_spent


@dataclass
class Reservation:
    reservation_id: str
    recipient: str
    amount: int
    purpose: str
    details: str
    created_at: int
    status: ReservationStatus
    expenditure_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "reservation_id": self.reservation_id,
            "recipient": self.recipient,
            "amount": str(self.amount),
            "purpose": self.purpose,
            "created_at": self.created_at,
            "status": self.status.value,
            "expenditure_id": self.expenditure_id,
        }


@dataclass(frozen=True)
class TreasuryReport:
    totals: LedgerTotals
    custodied_balance: int
    reserved: int

    @property
    def in_sync(self) -> bool:
        return self.totals.book_balance == self.custodied_balance

    @property
    def discrepancy(self) -> int:
        return self.custodied_balance - self.totals.book_balance

    def to_dict(self) -> dict:
        return {
            "total_collected": str(self.totals.total_collected),
            "total_spent": str(self.totals.total_spent),
            "book_balance": str(self.totals.book_balance),
            "custodied_balance": str(self.custodied_balance),
            "reserved": str(self.reserved),
            "in_sync": self.in_sync,
        }


class Treasury:
    """Binds the ledger totals to the custodian's balance at the settlement layer."""

    def __init__(self, settlement: SettlementBackend, custodian: str = DEFAULT_TREASURY_ADDRESS):
        self.settlement = settlement
        self.custodian = normalize_address(custodian)

    def get_balance(self) -> int:
        return self.settlement.balance_of(self.custodian)

    def require_counterparty(self, address: str) -> str:
        """Normalize a payer or payee; custody cannot move funds to itself."""
        normalized = require_principal(address)
        if normalized == self.custodian:
            raise InvalidAddressError(address)
        return normalized

    def totals(self, conn: sqlite3.Connection) -> LedgerTotals:
        row = conn.execute(
            "SELECT total_collected, total_spent FROM ledger_totals WHERE id = 1"
        ).fetchone()
        return LedgerTotals(int(row["total_collected"]), int(row["total_spent"]))

    def credit_collected(self, conn: sqlite3.Connection, amount: int) -> None:
        totals = self.totals(conn)
        conn.execute(
            "UPDATE ledger_totals SET total_collected = ? WHERE id = 1",
            (str(totals.total_collected + amount),),
        )

    def debit_spent(self, conn: sqlite3.Connection, amount: int) -> None:
        totals = self.totals(conn)
        conn.execute(
            "UPDATE ledger_totals SET total_spent = ? WHERE id = 1",
            (str(totals.total_spent + amount),),
        )

    def outstanding_reserved(self, conn: sqlite3.Connection) -> int:
        rows = conn.execute(
            "SELECT amount FROM reservations WHERE status = ?",
            (ReservationStatus.RESERVED.value,),
        ).fetchall()
        return sum(int(r["amount"]) for r in rows)

    def disbursable_balance(self, conn: sqlite3.Connection) -> int:
        """Funds that may be paid out now.

        Bounded by both the custodied balance and the book balance, so
        spending can never exceed what was collected even if custody was
        topped up outside the ledger.
        """
        available = min(self.get_balance(), self.totals(conn).book_balance)
        return max(0, available - self.outstanding_reserved(conn))

    def reconcile(self, conn: sqlite3.Connection) -> TreasuryReport:
        return TreasuryReport(
            totals=self.totals(conn),
            custodied_balance=self.get_balance(),
            reserved=self.outstanding_reserved(conn),
        )

    # ── Reservation journal ──────────────────────────────────────

    def _row_to_reservation(self, row: sqlite3.Row) -> Reservation:
        return Reservation(
            reservation_id=row["reservation_id"],
            recipient=row["recipient"],
            amount=int(row["amount"]),
            purpose=row["purpose"],
            details=row["details"],
            created_at=row["created_at"],
            status=ReservationStatus(row["status"]),
            expenditure_id=row["expenditure_id"],
        )

    def reserve(
        self,
        conn: sqlite3.Connection,
        recipient: str,
        amount: int,
        purpose: str,
        details: str,
        timestamp: int,
    ) -> Reservation:
        reservation = Reservation(
            reservation_id=f"rsv-{uuid.uuid4().hex}",
            recipient=recipient,
            amount=amount,
            purpose=purpose,
            details=details,
            created_at=timestamp,
            status=ReservationStatus.RESERVED,
        )
        conn.execute(
            """
            INSERT INTO reservations (
                reservation_id, recipient, amount, purpose, details, created_at, status
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                reservation.reservation_id,
                recipient,
                str(amount),
                purpose,
                details,
                timestamp,
                reservation.status.value,
            ),
        )
        return reservation

    def get_reservation(self, conn: sqlite3.Connection, reservation_id: str) -> Reservation:
        row = conn.execute(
            "SELECT * FROM reservations WHERE reservation_id = ?",
            (reservation_id,),
        ).fetchone()
        if row is None:
            raise ReservationError(f"Reservation not found: {reservation_id}")
        return self._row_to_reservation(row)

    def reservations(self, conn: sqlite3.Connection, status: Optional[ReservationStatus] = None) -> list[Reservation]:
        if status is None:
            rows = conn.execute("SELECT * FROM reservations ORDER BY created_at ASC, rowid ASC").fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM reservations WHERE status = ? ORDER BY created_at ASC, rowid ASC",
                (status.value,),
            ).fetchall()
        return [self._row_to_reservation(r) for r in rows]

    def mark_settled(self, conn: sqlite3.Connection, reservation_id: str, expenditure_id: int) -> None:
        self._transition(conn, reservation_id, ReservationStatus.SETTLED, expenditure_id)

    def mark_failed(self, conn: sqlite3.Connection, reservation_id: str) -> None:
        self._transition(conn, reservation_id, ReservationStatus.FAILED, None)

    def _transition(
        self,
        conn: sqlite3.Connection,
        reservation_id: str,
        status: ReservationStatus,
        expenditure_id: Optional[int],
    ) -> None:
        current = self.get_reservation(conn, reservation_id)
        if current.status != ReservationStatus.RESERVED:
            raise ReservationError(
                f"Cannot move reservation {reservation_id} from {current.status.value} to {status.value}"
            )
        conn.execute(
            "UPDATE reservations SET status = ?, expenditure_id = ? WHERE reservation_id = ?",
            (status.value, expenditure_id, reservation_id),
        )
