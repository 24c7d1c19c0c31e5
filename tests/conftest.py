import pytest
from eth_account import Account

from govledger.events import MemoryEventSink
from govledger.ledger import PublicLedger
from govledger.settlement import LocalSettlement
from govledger.store import LedgerStore
from govledger.treasury import DEFAULT_TREASURY_ADDRESS


T0 = 1_700_000_000


class FakeClock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int = 1) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def government():
    return Account.create()


@pytest.fixture
def settlement(tmp_path):
    return LocalSettlement(tmp_path / "custody.json", DEFAULT_TREASURY_ADDRESS)


@pytest.fixture
def sink():
    return MemoryEventSink()


@pytest.fixture
def ledger(tmp_path, settlement, sink, clock, government):
    ledger = PublicLedger(
        store=LedgerStore(tmp_path / "state"),
        settlement=settlement,
        events=sink,
        clock=clock,
    )
    ledger.initialize(government.address)
    return ledger


@pytest.fixture
def citizen(settlement):
    acct = Account.create()
    settlement.mint(acct.address, 10_000)
    return acct


@pytest.fixture
def funded_ledger(ledger, citizen):
    """Ledger whose treasury holds 100 collected from one citizen."""
    ledger.pay_tax(citizen.address, 100)
    return ledger
