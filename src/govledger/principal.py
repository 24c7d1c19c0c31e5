"""Principal (caller identity) normalization."""

from __future__ import annotations

import re

from eth_utils import to_checksum_address

from .errors import InvalidAddressError


ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def normalize_address(address: str) -> str:
    """Normalize Ethereum addresses to lower-case hex."""
    if not isinstance(address, str):
        raise InvalidAddressError(address)
    candidate = address.strip()
    if candidate.startswith(("0X", "0x")):
        candidate = "0x" + candidate[2:]
    if not _ADDRESS_RE.match(candidate):
        raise InvalidAddressError(address)
    return "0x" + candidate[2:].lower()


def is_zero_address(address: str) -> bool:
    return normalize_address(address) == ZERO_ADDRESS


def require_principal(address: str) -> str:
    """Normalize an address that must name a real (non-zero) principal."""
    normalized = normalize_address(address)
    if normalized == ZERO_ADDRESS:
        raise InvalidAddressError(address)
    return normalized


def display_address(address: str) -> str:
    """EIP-55 checksummed form for output."""
    return to_checksum_address(normalize_address(address))
