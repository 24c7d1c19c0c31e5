"""Tests for treasury bookkeeping, reservations and reconciliation."""

import random

import pytest
from eth_account import Account

from govledger.errors import (
    InsufficientFundsError,
    ReservationError,
    TransferFailedError,
    UnauthorizedError,
)
from govledger.events import EventType
from govledger.ledger import PublicLedger
from govledger.store import LedgerStore
from govledger.treasury import LedgerTotals, ReservationStatus, TreasuryReport


def assert_books_balance(ledger, citizens):
    totals = ledger.get_totals()
    assert totals.book_balance == ledger.get_balance()
    assert totals.total_spent <= totals.total_collected
    assert sum(ledger.get_total_tax_paid(c) for c in citizens) == totals.total_collected

    items, _ = ledger.list_expenditures(cursor=0, size=10_000)
    assert [i for i, _ in items] == list(range(ledger.get_total_expenditures()))
    assert sum(e.amount for _, e in items) == totals.total_spent


class TestTotals:
    def test_fresh_ledger_is_empty(self, ledger):
        assert ledger.get_totals() == LedgerTotals(0, 0)
        assert ledger.get_balance() == 0
        assert ledger.disbursable_balance() == 0
        assert ledger.reconcile().in_sync

    def test_collect_then_spend(self, funded_ledger, government):
        funded_ledger.record_expenditure(government.address, Account.create().address, 30, "x", "")
        totals = funded_ledger.get_totals()
        assert totals == LedgerTotals(total_collected=100, total_spent=30)
        assert totals.book_balance == 70
        assert funded_ledger.get_balance() == 70


class TestReconcile:
    def test_in_sync_after_normal_operation(self, funded_ledger, government):
        funded_ledger.record_expenditure(government.address, Account.create().address, 25, "x", "")
        report = funded_ledger.reconcile()
        assert report.in_sync
        assert report.discrepancy == 0
        assert report.to_dict()["book_balance"] == "75"

    def test_detects_outside_deposit(self, funded_ledger, settlement):
        settlement.mint(funded_ledger.treasury.custodian, 5)
        report = funded_ledger.reconcile()
        assert not report.in_sync
        assert report.discrepancy == 5

    def test_report_properties(self):
        report = TreasuryReport(LedgerTotals(10, 4), custodied_balance=5, reserved=0)
        assert not report.in_sync
        assert report.discrepancy == -1


class TestReservations:
    def _crash_after_settlement(self, ledger, government, monkeypatch, amount=40):
        def crash(reservation):
            raise RuntimeError("process died")

        monkeypatch.setattr(ledger, "_commit_reservation", crash)
        with pytest.raises(RuntimeError):
            ledger.record_expenditure(government.address, Account.create().address, amount, "roads", "d")
        monkeypatch.undo()
        (reservation,) = ledger.reservations(ReservationStatus.RESERVED)
        return reservation

    def _crash_before_settlement(self, ledger, government, monkeypatch, amount=40):
        def crash(reservation):
            raise RuntimeError("process died")

        monkeypatch.setattr(ledger, "_settle", crash)
        with pytest.raises(RuntimeError):
            ledger.record_expenditure(government.address, Account.create().address, amount, "roads", "d")
        monkeypatch.undo()
        (reservation,) = ledger.reservations(ReservationStatus.RESERVED)
        return reservation

    def test_open_reservation_blocks_overspend(self, funded_ledger, government, monkeypatch):
        self._crash_before_settlement(funded_ledger, government, monkeypatch, amount=80)
        assert funded_ledger.disbursable_balance() == 20
        with pytest.raises(InsufficientFundsError):
            funded_ledger.record_expenditure(government.address, Account.create().address, 21, "x", "")

    def test_resolve_settled_transfer_commits_expenditure(self, funded_ledger, government, sink, monkeypatch):
        reservation = self._crash_after_settlement(funded_ledger, government, monkeypatch)
        assert funded_ledger.get_total_expenditures() == 0
        assert not funded_ledger.reconcile().in_sync

        expenditure_id = funded_ledger.resolve_reservation(government.address, reservation.reservation_id)

        assert expenditure_id == 0
        expenditure, details = funded_ledger.get_expenditure_details(0)
        assert expenditure.amount == 40
        assert details == "d"
        assert funded_ledger.reconcile().in_sync
        assert funded_ledger.reservations(ReservationStatus.RESERVED) == []
        assert len(sink.of_type(EventType.EXPENDITURE_CREATED)) == 1

    def test_resolve_unsettled_transfer_releases_funds(self, funded_ledger, government, monkeypatch):
        reservation = self._crash_before_settlement(funded_ledger, government, monkeypatch)

        assert funded_ledger.resolve_reservation(government.address, reservation.reservation_id) is None
        assert funded_ledger.get_total_expenditures() == 0
        assert funded_ledger.disbursable_balance() == 100
        (failed,) = funded_ledger.reservations(ReservationStatus.FAILED)
        assert failed.reservation_id == reservation.reservation_id

    def test_explicit_outcome_matching_settlement_is_accepted(self, funded_ledger, government, monkeypatch):
        reservation = self._crash_before_settlement(funded_ledger, government, monkeypatch)
        assert funded_ledger.resolve_reservation(
            government.address, reservation.reservation_id, settled=False
        ) is None

    def test_claimed_settlement_without_transfer_is_refused(self, funded_ledger, government, sink, monkeypatch):
        reservation = self._crash_before_settlement(funded_ledger, government, monkeypatch)
        emitted = len(sink.events)

        with pytest.raises(ReservationError, match="contradicts"):
            funded_ledger.resolve_reservation(government.address, reservation.reservation_id, settled=True)

        assert funded_ledger.get_total_expenditures() == 0
        assert funded_ledger.get_totals().total_spent == 0
        assert funded_ledger.reconcile().in_sync
        assert funded_ledger.reservations(ReservationStatus.RESERVED) == [reservation]
        assert len(sink.events) == emitted

    def test_claimed_release_of_completed_transfer_is_refused(self, funded_ledger, government, monkeypatch):
        reservation = self._crash_after_settlement(funded_ledger, government, monkeypatch)

        with pytest.raises(ReservationError):
            funded_ledger.resolve_reservation(government.address, reservation.reservation_id, settled=False)

        assert funded_ledger.reservations(ReservationStatus.RESERVED) == [reservation]
        assert funded_ledger.resolve_reservation(government.address, reservation.reservation_id) == 0
        assert funded_ledger.reconcile().in_sync

    def test_caller_outcome_needed_without_settlement_lookup(self, tmp_path, settlement, government, citizen, monkeypatch):
        class OpaqueSettlement:
            def receive(self, payer, amount, reference):
                return settlement.receive(payer, amount, reference)

            def transfer(self, to, amount, reference):
                return settlement.transfer(to, amount, reference)

            def balance_of(self, holder):
                return settlement.balance_of(holder)

        ledger = PublicLedger(LedgerStore(tmp_path / "opaque"), OpaqueSettlement())
        ledger.initialize(government.address)
        ledger.pay_tax(citizen.address, 100)
        reservation = self._crash_before_settlement(ledger, government, monkeypatch)

        with pytest.raises(ReservationError, match="unknown"):
            ledger.resolve_reservation(government.address, reservation.reservation_id)
        assert ledger.resolve_reservation(government.address, reservation.reservation_id, settled=False) is None

    def test_resolve_requires_government(self, funded_ledger, government, citizen, monkeypatch):
        reservation = self._crash_before_settlement(funded_ledger, government, monkeypatch)
        with pytest.raises(UnauthorizedError):
            funded_ledger.resolve_reservation(citizen.address, reservation.reservation_id)

    def test_cannot_resolve_twice(self, funded_ledger, government, monkeypatch):
        reservation = self._crash_before_settlement(funded_ledger, government, monkeypatch)
        funded_ledger.resolve_reservation(government.address, reservation.reservation_id)
        with pytest.raises(ReservationError):
            funded_ledger.resolve_reservation(government.address, reservation.reservation_id)

    def test_unknown_reservation(self, ledger, government):
        with pytest.raises(ReservationError):
            ledger.resolve_reservation(government.address, "rsv-missing")

    def test_settled_reservation_links_expenditure(self, funded_ledger, government):
        expenditure_id = funded_ledger.record_expenditure(
            government.address, Account.create().address, 10, "x", ""
        )
        (settled,) = funded_ledger.reservations(ReservationStatus.SETTLED)
        assert settled.expenditure_id == expenditure_id
        assert settled.to_dict()["status"] == "settled"


def test_books_stay_balanced_under_random_operations(ledger, settlement, government, clock):
    rng = random.Random(1234)
    citizens = [Account.create().address for _ in range(4)]
    for c in citizens:
        settlement.mint(c, 1_000_000)
    recipients = [Account.create().address for _ in range(3)]
    settlement.reject_recipient(recipients[0])

    for _ in range(120):
        clock.advance(rng.randint(1, 100))
        if rng.random() < 0.5:
            ledger.pay_tax(rng.choice(citizens), rng.randint(1, 5_000))
        else:
            try:
                ledger.record_expenditure(
                    government.address,
                    rng.choice(recipients),
                    rng.randint(1, 8_000),
                    "ops",
                    "",
                )
            except (InsufficientFundsError, TransferFailedError):
                pass
        assert_books_balance(ledger, citizens)

    assert ledger.reservations(ReservationStatus.RESERVED) == []
