"""
The public ledger service.

Disbursement flow:
1. Check the caller is the government principal
2. Validate amount and recipient
3. Check the amount against the disbursable balance and reserve it
4. Settle through the settlement collaborator
5. Commit the expenditure and close the reservation, or release it on failure
6. Emit the notification

The whole flow runs under the store's single-writer guard, so no other
operation observes or interleaves with a half-finished disbursement.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Iterable, Optional

from .access import AccessControl
from .config import LedgerConfig
from .errors import (
    InsufficientFundsError,
    LedgerNotInitializedError,
    RecordNotFoundError,
    ReservationError,
    TransferFailedError,
)
from .events import EventLog, EventSink, LedgerEvent, expenditure_created, tax_paid
from .expenditure import Expenditure, ExpenditureLedger
from .money import validate_amount
from .settlement import LocalSettlement, SettlementBackend
from .store import LedgerStore
from .tax import CitizenTaxRecord, TaxLedger, TaxPayment
from .treasury import (
    DEFAULT_TREASURY_ADDRESS,
    LedgerTotals,
    Reservation,
    ReservationStatus,
    Treasury,
    TreasuryReport,
)

logger = logging.getLogger(__name__)


def _wall_clock() -> int:
    return int(time.time())


class PublicLedger:
    """Single owned aggregate behind every ledger operation."""

    def __init__(
        self,
        store: LedgerStore,
        settlement: SettlementBackend,
        events: Optional[EventSink] = None,
        clock: Optional[Callable[[], int]] = None,
        treasury_address: str = DEFAULT_TREASURY_ADDRESS,
        strict_reads: bool = False,
    ):
        self.store = store
        self.events = events
        self.clock = clock or _wall_clock
        self.strict_reads = strict_reads
        self.access = AccessControl()
        self.taxes = TaxLedger()
        self.expenditures = ExpenditureLedger()
        self.treasury = Treasury(settlement, treasury_address)

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig,
        clock: Optional[Callable[[], int]] = None,
    ) -> "PublicLedger":
        return cls(
            store=LedgerStore(config.state_dir),
            settlement=LocalSettlement(config.custody_path, config.treasury_address),
            events=EventLog(config.events_path),
            clock=clock,
            treasury_address=config.treasury_address,
            strict_reads=config.strict_reads,
        )

    @property
    def settlement(self) -> SettlementBackend:
        return self.treasury.settlement

    def _publish(self, events: Iterable[LedgerEvent]) -> None:
        if self.events is None:
            return
        for event in events:
            try:
                self.events.emit(event)
            except Exception:
                # Already committed.
                logger.exception("Event sink failed for %s", event.event_type)

    # ── Administration ───────────────────────────────────────────

    def initialize(self, caller: str) -> str:
        """Make caller the government principal of a fresh ledger."""
        with self.store.transaction() as conn:
            government = self.access.initialize(conn, caller, self.clock())
        logger.info("Ledger initialized with government %s", government)
        return government

    def set_auditor(self, caller: str, target: str, enabled: bool) -> None:
        with self.store.guard():
            with self.store.transaction() as conn:
                event = self.access.set_auditor(conn, caller, target, enabled, self.clock())
            logger.info("Auditor %s set to %s", event.data["auditor"], enabled)
            self._publish([event])

    def change_government_wallet(self, caller: str, new_principal: str) -> None:
        with self.store.guard():
            with self.store.transaction() as conn:
                event = self.access.change_government_wallet(conn, caller, new_principal, self.clock())
            logger.info("Government wallet changed from %s to %s", event.data["old"], event.data["new"])
            self._publish([event])

    def government(self) -> str:
        with self.store.reader() as conn:
            government = self.access.government(conn)
        if government is None:
            raise LedgerNotInitializedError("Ledger has no government principal")
        return government

    def is_government(self, principal: str) -> bool:
        with self.store.reader() as conn:
            return self.access.is_government(conn, principal)

    def is_auditor(self, principal: str) -> bool:
        with self.store.reader() as conn:
            return self.access.is_auditor(conn, principal)

    def auditors(self) -> list[str]:
        with self.store.reader() as conn:
            return self.access.auditors(conn)

    # ── Tax collection ───────────────────────────────────────────

    def pay_tax(self, caller: str, amount: int) -> TaxPayment:
        """Deposit amount from caller into custody and record it as one operation."""
        payer = self.treasury.require_counterparty(caller)
        with self.store.guard():
            with self.store.transaction() as conn:
                validate_amount(amount)
                timestamp = self.clock()
                index, payment = self.taxes.record(conn, payer, amount, timestamp)
                self.treasury.credit_collected(conn, amount)

                reference = f"tax-{uuid.uuid4().hex}"
                try:
                    received = self.settlement.receive(payer, amount, reference)
                except Exception as exc:
                    logger.exception("Settlement error receiving tax from %s", payer)
                    raise TransferFailedError(payer, f"{type(exc).__name__}: {exc}") from exc
                if not received:
                    logger.warning("Settlement refused tax deposit of %d from %s", amount, payer)
                    raise TransferFailedError(payer, "deposit refused")

            logger.info("Tax payment #%d of %d recorded for %s", index, amount, payer)
            self._publish([tax_paid(payer, amount, timestamp, payment.status.value)])
        return payment

    def get_tax_payment(self, principal: str, index: int) -> TaxPayment:
        with self.store.reader() as conn:
            payment = self.taxes.payment(conn, principal, index)
        if payment is None:
            if self.strict_reads:
                raise RecordNotFoundError(f"No tax payment #{index} for {principal}")
            return TaxPayment()
        return payment

    def get_total_tax_paid(self, principal: str) -> int:
        with self.store.reader() as conn:
            return self.taxes.total_paid(conn, principal)

    def get_tax_payment_count(self, principal: str) -> int:
        with self.store.reader() as conn:
            return self.taxes.count(conn, principal)

    def get_citizen_record(self, principal: str) -> CitizenTaxRecord:
        with self.store.reader() as conn:
            return self.taxes.citizen_record(conn, principal)

    # ── Expenditure ──────────────────────────────────────────────

    def record_expenditure(
        self,
        caller: str,
        recipient: str,
        amount: int,
        purpose: str,
        details: str,
    ) -> int:
        """Disburse amount to recipient and record it; returns the expenditure id."""
        with self.store.guard():
            with self.store.transaction() as conn:
                self.access.require_government(conn, caller, "record expenditures")
                validate_amount(amount)
                payee = self.treasury.require_counterparty(recipient)
                available = self.treasury.disbursable_balance(conn)
                if amount > available:
                    logger.warning("Rejected expenditure of %d: only %d disbursable", amount, available)
                    raise InsufficientFundsError(amount, available)
                reservation = self.treasury.reserve(conn, payee, amount, purpose, details, self.clock())

            error = self._settle(reservation)
            if error is not None:
                with self.store.transaction() as conn:
                    self.treasury.mark_failed(conn, reservation.reservation_id)
                raise TransferFailedError(payee, error)

            expenditure_id, event = self._commit_reservation(reservation)
            logger.info("Expenditure #%d of %d to %s committed", expenditure_id, amount, payee)
            self._publish([event])
        return expenditure_id

    def _settle(self, reservation: Reservation) -> Optional[str]:
        try:
            ok = self.settlement.transfer(
                reservation.recipient,
                reservation.amount,
                reservation.reservation_id,
            )
        except Exception as exc:
            logger.exception("Settlement error paying %s", reservation.recipient)
            return f"{type(exc).__name__}: {exc}"
        if not ok:
            logger.warning("Settlement refused transfer of %d to %s", reservation.amount, reservation.recipient)
            return "settlement rejected"
        return None

    def _commit_reservation(self, reservation: Reservation) -> tuple[int, LedgerEvent]:
        with self.store.transaction() as conn:
            timestamp = self.clock()
            expenditure_id, expenditure = self.expenditures.commit(
                conn,
                recipient=reservation.recipient,
                amount=reservation.amount,
                purpose=reservation.purpose,
                details=reservation.details,
                timestamp=timestamp,
            )
            self.treasury.debit_spent(conn, reservation.amount)
            self.treasury.mark_settled(conn, reservation.reservation_id, expenditure_id)
        event = expenditure_created(
            expenditure_id,
            expenditure.amount,
            expenditure.timestamp,
            expenditure.purpose,
            expenditure.status.value,
        )
        return expenditure_id, event

    def resolve_reservation(
        self,
        caller: str,
        reservation_id: str,
        settled: Optional[bool] = None,
    ) -> Optional[int]:
        """Close a reservation left open by an interrupted disbursement.

        The settlement collaborator is asked whether a transfer with the
        reservation's reference went through; `settled` is only trusted when
        the collaborator cannot answer, and a contradicting claim is refused.
        Returns the committed expenditure id, or None when the reservation was
        released.
        """
        with self.store.guard():
            with self.store.reader() as conn:
                self.access.require_government(conn, caller, "resolve reservations")
                reservation = self.treasury.get_reservation(conn, reservation_id)
            if reservation.status != ReservationStatus.RESERVED:
                raise ReservationError(
                    f"Reservation {reservation_id} is already {reservation.status.value}"
                )

            lookup = getattr(self.settlement, "has_reference", None)
            if lookup is not None:
                observed = bool(lookup(reservation_id))
                if settled is not None and settled != observed:
                    logger.warning(
                        "Rejected resolution of %s as %s: settlement reports %s",
                        reservation_id,
                        "settled" if settled else "not settled",
                        "settled" if observed else "not settled",
                    )
                    raise ReservationError(
                        f"Settlement layer contradicts the claimed outcome for {reservation_id}"
                    )
                settled = observed
            elif settled is None:
                raise ReservationError("Settlement outcome unknown; pass settled explicitly")

            if not settled:
                with self.store.transaction() as conn:
                    self.treasury.mark_failed(conn, reservation_id)
                logger.info("Reservation %s released", reservation_id)
                return None

            expenditure_id, event = self._commit_reservation(reservation)
            logger.info("Reservation %s committed as expenditure #%d", reservation_id, expenditure_id)
            self._publish([event])
        return expenditure_id

    def get_expenditure_details(self, expenditure_id: int) -> tuple[Expenditure, str]:
        with self.store.reader() as conn:
            found = self.expenditures.get(conn, expenditure_id)
        if found is None:
            if self.strict_reads:
                raise RecordNotFoundError(f"No expenditure #{expenditure_id}")
            return Expenditure(), ""
        return found

    def get_total_expenditures(self) -> int:
        with self.store.reader() as conn:
            return self.expenditures.count(conn)

    def list_expenditures(self, cursor: int = 0, size: int = 100) -> tuple[list[tuple[int, Expenditure]], int]:
        with self.store.reader() as conn:
            return self.expenditures.page(conn, cursor=cursor, size=size)

    def reservations(self, status: Optional[ReservationStatus] = None) -> list[Reservation]:
        with self.store.reader() as conn:
            return self.treasury.reservations(conn, status)

    # ── Treasury ─────────────────────────────────────────────────

    def get_balance(self) -> int:
        """Custodied funds as reported by the settlement collaborator."""
        with self.store.guard():
            return self.treasury.get_balance()

    def get_totals(self) -> LedgerTotals:
        with self.store.reader() as conn:
            return self.treasury.totals(conn)

    def disbursable_balance(self) -> int:
        with self.store.reader() as conn:
            return self.treasury.disbursable_balance(conn)

    def reconcile(self) -> TreasuryReport:
        with self.store.reader() as conn:
            report = self.treasury.reconcile(conn)
        if not report.in_sync:
            logger.warning(
                "Treasury out of sync: book %d, custody %d",
                report.totals.book_balance,
                report.custodied_balance,
            )
        return report
