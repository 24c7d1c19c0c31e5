"""Tests for the file-backed settlement layer."""

import pytest
from eth_account import Account

from govledger.settlement import LocalSettlement


CUSTODIAN = "0x" + "cc" * 20


@pytest.fixture
def local(tmp_path):
    return LocalSettlement(tmp_path / "custody.json", CUSTODIAN)


def test_mint_and_balance(local):
    holder = Account.create().address
    assert local.balance_of(holder) == 0
    assert local.mint(holder, 7) == 7
    assert local.mint(holder, 3) == 10
    assert local.balance_of(holder.lower()) == 10


def test_mint_rejects_non_positive(local):
    with pytest.raises(ValueError):
        local.mint(Account.create().address, 0)


def test_receive_moves_into_custody(local):
    payer = Account.create().address
    local.mint(payer, 10)
    assert local.receive(payer, 4, "tax-1")
    assert local.balance_of(payer) == 6
    assert local.balance_of(CUSTODIAN) == 4
    assert local.has_reference("tax-1")


def test_receive_refuses_overdraft(local):
    payer = Account.create().address
    local.mint(payer, 3)
    assert not local.receive(payer, 4, "tax-1")
    assert local.balance_of(payer) == 3
    assert not local.has_reference("tax-1")


def test_transfer_out_of_custody(local):
    recipient = Account.create().address
    local.mint(CUSTODIAN, 10)
    assert local.transfer(recipient, 10, "rsv-1")
    assert local.balance_of(CUSTODIAN) == 0
    assert local.balance_of(recipient) == 10
    assert not local.transfer(recipient, 1, "rsv-2")


def test_rejected_recipient(local):
    recipient = Account.create().address
    local.mint(CUSTODIAN, 10)
    local.reject_recipient(recipient)
    assert not local.transfer(recipient, 5, "rsv-1")
    assert local.balance_of(CUSTODIAN) == 10

    local.reject_recipient(recipient, rejected=False)
    assert local.transfer(recipient, 5, "rsv-2")


def test_state_is_shared_through_the_file(tmp_path):
    path = tmp_path / "custody.json"
    holder = Account.create().address
    LocalSettlement(path, CUSTODIAN).mint(holder, 5)
    assert LocalSettlement(path, CUSTODIAN).balance_of(holder) == 5
