"""
govledger — Permissioned public ledger for tax collection and government spending.

Anyone may pay tax and read the books; only the government principal may
disburse, and every disbursement is settled against custodied funds:
Citizen pays → Treasury holds → Government spends → Public audits.
"""

__version__ = "0.1.0"

from .access import AccessControl
from .config import LedgerConfig
from .errors import (
    InsufficientFundsError,
    InvalidAddressError,
    InvalidAmountError,
    LedgerError,
    TransferFailedError,
    UnauthorizedError,
)
from .events import EventLog, EventType, LedgerEvent, MemoryEventSink
from .expenditure import Expenditure, ExpenditureLedger, ExpenditureStatus
from .ledger import PublicLedger
from .settlement import LocalSettlement, SettlementBackend
from .store import LedgerStore
from .tax import CitizenTaxRecord, TaxLedger, TaxPayment, TaxPaymentStatus
from .treasury import LedgerTotals, Reservation, ReservationStatus, Treasury, TreasuryReport

__all__ = [
    "PublicLedger", "LedgerConfig", "LedgerStore",
    "AccessControl", "TaxLedger", "ExpenditureLedger", "Treasury",
    "TaxPayment", "TaxPaymentStatus", "CitizenTaxRecord",
    "Expenditure", "ExpenditureStatus",
    "LedgerTotals", "Reservation", "ReservationStatus", "TreasuryReport",
    "LocalSettlement", "SettlementBackend",
    "EventLog", "EventType", "LedgerEvent", "MemoryEventSink",
    "LedgerError", "UnauthorizedError", "InsufficientFundsError",
    "InvalidAmountError", "InvalidAddressError", "TransferFailedError",
]
