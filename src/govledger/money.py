"""Amount conversion helpers using integer wei precision."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_FLOOR

from .errors import InvalidAmountError


WEI_PER_ETH = 10**18
MAX_UINT256 = 2**256 - 1
_ETH_QUANT = Decimal("0.000000000000000001")


def validate_amount(value: object) -> int:
    """Return value as a positive uint256 integer or raise InvalidAmountError."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(value)
    if value <= 0 or value > MAX_UINT256:
        raise InvalidAmountError(value)
    return value


def eth_to_wei(value: Decimal | int | str) -> int:
    """Convert an ether amount to wei, rounding down (never over-credits)."""
    try:
        dec = Decimal(str(value)).quantize(_ETH_QUANT, rounding=ROUND_FLOOR)
    except InvalidOperation as exc:
        raise InvalidAmountError(value) from exc
    return int(dec * WEI_PER_ETH)


def wei_to_eth_decimal(value: int) -> Decimal:
    """Convert integer wei to Decimal ether."""
    return (Decimal(value) / Decimal(WEI_PER_ETH)).quantize(_ETH_QUANT)


def format_wei(value: int) -> str:
    """Format integer wei as an ether string with trailing zeros trimmed."""
    text = f"{wei_to_eth_decimal(value):f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} ETH"
