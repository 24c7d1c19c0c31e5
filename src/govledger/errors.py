"""
Ledger error types.

Each rejection has its own exception so callers can tell "try with
different parameters" apart from "you are not permitted" and from
"the treasury ran out of money".
"""


class LedgerError(Exception):
    """Base error for all ledger operations."""
    pass


# Authorization errors
class UnauthorizedError(LedgerError):
    """Caller lacks the role required for the operation."""
    def __init__(self, caller: str, operation: str):
        self.caller = caller
        self.operation = operation
        super().__init__(f"{caller} is not authorized to {operation}")


# Input errors
class InvalidAmountError(LedgerError):
    """Amount is zero, negative, non-integral or out of range."""
    def __init__(self, amount: object):
        self.amount = amount
        super().__init__(f"Invalid amount: {amount!r}")


class InvalidAddressError(LedgerError):
    """A null or malformed principal was supplied."""
    def __init__(self, address: object):
        self.address = address
        super().__init__(f"Invalid address: {address!r}")


# Funds errors
class InsufficientFundsError(LedgerError):
    """Requested disbursement exceeds the disbursable balance."""
    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Requested {requested} exceeds disbursable balance {available}")


class TransferFailedError(LedgerError):
    """Settlement collaborator rejected a transfer."""
    def __init__(self, recipient: str, reason: str = "settlement rejected"):
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Transfer to {recipient} failed: {reason}")


class ReservationError(LedgerError):
    """Disbursement reservation missing or already resolved."""
    pass


# Read errors
class RecordNotFoundError(LedgerError):
    """Out-of-range read on a ledger opened with strict reads."""
    pass


# State errors
class LedgerNotInitializedError(LedgerError):
    """Ledger has no government principal yet."""
    pass


class AlreadyInitializedError(LedgerError):
    """Ledger was already initialized with a government principal."""
    pass


class IntegrityError(LedgerError):
    """Local state was modified outside the ledger."""
    pass
