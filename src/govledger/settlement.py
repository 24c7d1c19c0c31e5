"""Settlement collaborator abstractions for moving custodied funds."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol

from .principal import normalize_address
from .storage import atomic_write_json, ensure_private_dir, ensure_private_file, exclusive_lock


class SettlementBackend(Protocol):
    """Moves value atomically and reports balances.

    `receive` pulls `amount` from `payer` into custody, `transfer` pays
    `amount` out of custody to `to`. Both return False on refusal and never
    partially apply.
    """

    def receive(self, payer: str, amount: int, reference: str) -> bool: ...

    def transfer(self, to: str, amount: int, reference: str) -> bool: ...

    def balance_of(self, holder: str) -> int: ...


class LocalSettlement:
    """File-backed stand-in for an on-chain value transfer layer.

    Keeps integer balances per address and a custodian account holding the
    treasury's funds. Suitable for local development and tests.
    """

    def __init__(self, path: Path, custodian: str):
        self.path = path
        self.custodian = normalize_address(custodian)
        ensure_private_dir(self.path.parent)
        self._lock_path = self.path.parent / ".settlement.lock"
        ensure_private_file(self._lock_path)
        if not self.path.exists():
            self._save_state({"balances": {}, "rejected_recipients": [], "references": []})

    def _load_state(self) -> dict:
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def _save_state(self, state: dict) -> None:
        atomic_write_json(self.path, state)

    @staticmethod
    def _move(state: dict, source: str, dest: str, amount: int, reference: str) -> bool:
        balances = state.setdefault("balances", {})
        if amount <= 0 or int(balances.get(source, 0)) < amount:
            return False
        balances[source] = int(balances.get(source, 0)) - amount
        balances[dest] = int(balances.get(dest, 0)) + amount
        state.setdefault("references", []).append(reference)
        return True

    def mint(self, holder: str, amount: int) -> int:
        """Credit an address out of thin air (development faucet)."""
        normalized = normalize_address(holder)
        if amount <= 0:
            raise ValueError("amount must be > 0")
        with exclusive_lock(self._lock_path):
            state = self._load_state()
            balances = state.setdefault("balances", {})
            balances[normalized] = int(balances.get(normalized, 0)) + amount
            self._save_state(state)
            return balances[normalized]

    def reject_recipient(self, address: str, rejected: bool = True) -> None:
        """Make transfers to address fail, like a recipient contract that reverts."""
        normalized = normalize_address(address)
        with exclusive_lock(self._lock_path):
            state = self._load_state()
            blocked = set(state.get("rejected_recipients", []))
            if rejected:
                blocked.add(normalized)
            else:
                blocked.discard(normalized)
            state["rejected_recipients"] = sorted(blocked)
            self._save_state(state)

    def receive(self, payer: str, amount: int, reference: str) -> bool:
        normalized = normalize_address(payer)
        with exclusive_lock(self._lock_path):
            state = self._load_state()
            if not self._move(state, normalized, self.custodian, amount, reference):
                return False
            self._save_state(state)
            return True

    def transfer(self, to: str, amount: int, reference: str) -> bool:
        normalized = normalize_address(to)
        with exclusive_lock(self._lock_path):
            state = self._load_state()
            if normalized in set(state.get("rejected_recipients", [])):
                return False
            if not self._move(state, self.custodian, normalized, amount, reference):
                return False
            self._save_state(state)
            return True

    def balance_of(self, holder: str) -> int:
        normalized = normalize_address(holder)
        with exclusive_lock(self._lock_path):
            state = self._load_state()
            return int(state.get("balances", {}).get(normalized, 0))

    def has_reference(self, reference: str) -> bool:
        """Whether a movement with this reference was settled."""
        with exclusive_lock(self._lock_path):
            return reference in set(self._load_state().get("references", []))
