"""Tests for government and auditor role gating."""

import pytest
from eth_account import Account

from govledger.errors import (
    AlreadyInitializedError,
    InvalidAddressError,
    LedgerNotInitializedError,
    UnauthorizedError,
)
from govledger.events import EventType
from govledger.ledger import PublicLedger
from govledger.principal import ZERO_ADDRESS, normalize_address
from govledger.store import LedgerStore


class TestInitialization:
    def test_initializer_becomes_government(self, ledger, government):
        assert ledger.government() == normalize_address(government.address)
        assert ledger.is_government(government.address)

    def test_cannot_initialize_twice(self, ledger):
        with pytest.raises(AlreadyInitializedError):
            ledger.initialize(Account.create().address)

    def test_uninitialized_ledger_rejects_privileged_calls(self, tmp_path, settlement):
        ledger = PublicLedger(LedgerStore(tmp_path / "fresh"), settlement)
        with pytest.raises(LedgerNotInitializedError):
            ledger.set_auditor(Account.create().address, Account.create().address, True)
        with pytest.raises(LedgerNotInitializedError):
            ledger.government()

    def test_zero_address_cannot_be_government(self, tmp_path, settlement):
        ledger = PublicLedger(LedgerStore(tmp_path / "fresh"), settlement)
        with pytest.raises(InvalidAddressError):
            ledger.initialize(ZERO_ADDRESS)


class TestAuditors:
    def test_default_not_auditor(self, ledger):
        assert not ledger.is_auditor(Account.create().address)

    def test_government_sets_auditor(self, ledger, government, sink, clock):
        auditor = Account.create().address
        ledger.set_auditor(government.address, auditor, True)
        assert ledger.is_auditor(auditor)
        assert ledger.auditors() == [normalize_address(auditor)]

        events = sink.of_type(EventType.AUDITOR_STATUS_CHANGED)
        assert len(events) == 1
        assert events[0].data == {"auditor": normalize_address(auditor), "enabled": True}
        assert events[0].timestamp == clock.now

    def test_revoke_auditor(self, ledger, government):
        auditor = Account.create().address
        ledger.set_auditor(government.address, auditor, True)
        ledger.set_auditor(government.address, auditor, False)
        assert not ledger.is_auditor(auditor)
        assert ledger.auditors() == []

    def test_set_auditor_is_idempotent_and_reemits(self, ledger, government, sink):
        auditor = Account.create().address
        ledger.set_auditor(government.address, auditor, True)
        ledger.set_auditor(government.address, auditor, True)
        assert ledger.is_auditor(auditor)
        assert len(sink.of_type(EventType.AUDITOR_STATUS_CHANGED)) == 2

    def test_non_government_cannot_set_auditor(self, ledger, sink):
        outsider = Account.create().address
        with pytest.raises(UnauthorizedError):
            ledger.set_auditor(outsider, outsider, True)
        assert not ledger.is_auditor(outsider)
        assert sink.events == []

    def test_zero_address_auditor_rejected(self, ledger, government):
        with pytest.raises(InvalidAddressError):
            ledger.set_auditor(government.address, ZERO_ADDRESS, True)

    def test_malformed_address_rejected(self, ledger, government):
        with pytest.raises(InvalidAddressError):
            ledger.set_auditor(government.address, "not-an-address", True)

    def test_address_case_does_not_matter(self, ledger, government):
        auditor = Account.create().address
        ledger.set_auditor(government.address.lower(), auditor.upper().replace("0X", "0x"), True)
        assert ledger.is_auditor(auditor)


class TestGovernmentHandoff:
    def test_non_government_cannot_take_over(self, ledger, government):
        # Scenario D
        q = Account.create().address
        with pytest.raises(UnauthorizedError):
            ledger.change_government_wallet(q, q)
        assert ledger.government() == normalize_address(government.address)

    def test_handoff_moves_all_privilege(self, funded_ledger, government, sink):
        # Scenario E
        h = Account.create()
        recipient = Account.create().address
        funded_ledger.change_government_wallet(government.address, h.address)

        with pytest.raises(UnauthorizedError):
            funded_ledger.record_expenditure(government.address, recipient, 10, "roads", "x")
        with pytest.raises(UnauthorizedError):
            funded_ledger.set_auditor(government.address, recipient, True)

        assert funded_ledger.record_expenditure(h.address, recipient, 10, "roads", "x") == 0

        changed = sink.of_type(EventType.GOVERNMENT_WALLET_CHANGED)
        assert changed[0].data == {
            "old": normalize_address(government.address),
            "new": normalize_address(h.address),
        }

    def test_handoff_to_zero_address_rejected(self, ledger, government):
        with pytest.raises(InvalidAddressError):
            ledger.change_government_wallet(government.address, ZERO_ADDRESS)
        assert ledger.is_government(government.address)
