"""
Ledger notifications.

Events are emitted after a write commits, in commit order. They are
fire-and-forget: nothing in the ledger reads them back for control flow.
`EventLog` persists them as append-only JSONL entries with an HMAC hash
chain so tampering is detected during reads.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol

from .errors import IntegrityError
from .storage import ensure_private_dir, ensure_private_file, exclusive_lock


class EventType(str, Enum):
    TAX_PAID = "tax_paid"
    EXPENDITURE_CREATED = "expenditure_created"
    AUDITOR_STATUS_CHANGED = "auditor_status_changed"
    GOVERNMENT_WALLET_CHANGED = "government_wallet_changed"


@dataclass
class LedgerEvent:
    """A single notification."""

    event_type: str
    timestamp: int
    data: dict[str, Any] = field(default_factory=dict)
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def payload(self) -> dict:
        return {
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    def to_json(self) -> str:
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d, separators=(",", ":"))


def tax_paid(payer: str, amount: int, timestamp: int, status: str) -> LedgerEvent:
    return LedgerEvent(
        EventType.TAX_PAID.value,
        timestamp,
        {"payer": payer, "amount": str(amount), "status": status},
    )


def expenditure_created(
    expenditure_id: int,
    amount: int,
    timestamp: int,
    purpose: str,
    status: str,
) -> LedgerEvent:
    return LedgerEvent(
        EventType.EXPENDITURE_CREATED.value,
        timestamp,
        {
            "expenditure_id": expenditure_id,
            "amount": str(amount),
            "purpose": purpose,
            "status": status,
        },
    )


def auditor_status_changed(auditor: str, enabled: bool, timestamp: int) -> LedgerEvent:
    return LedgerEvent(
        EventType.AUDITOR_STATUS_CHANGED.value,
        timestamp,
        {"auditor": auditor, "enabled": enabled},
    )


def government_wallet_changed(old: str, new: str, timestamp: int) -> LedgerEvent:
    return LedgerEvent(
        EventType.GOVERNMENT_WALLET_CHANGED.value,
        timestamp,
        {"old": old, "new": new},
    )


class EventSink(Protocol):
    def emit(self, event: LedgerEvent) -> None: ...


class MemoryEventSink:
    """Keeps events in a list; useful for embedding and tests."""

    def __init__(self):
        self.events: list[LedgerEvent] = []

    def emit(self, event: LedgerEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[LedgerEvent]:
        return [e for e in self.events if e.event_type == event_type.value]


class EventLog:
    """Tamper-evident append-only event log."""

    def __init__(self, path: Path, key_path: Optional[Path] = None):
        self.path = path
        self.key_path = key_path or path.parent / "secrets" / "events_hmac.key"

        ensure_private_dir(self.path.parent)
        ensure_private_dir(self.key_path.parent)
        ensure_private_file(self.path)
        ensure_private_file(self.key_path)

        self._lock_path = self.path.parent / f".{self.path.name}.lock"
        ensure_private_file(self._lock_path)

        self._hmac_key = self._load_or_create_key()

    def _load_or_create_key(self) -> bytes:
        env_key = os.getenv("GOVLEDGER_EVENT_HMAC_KEY")
        if env_key:
            return env_key.encode()
        if self.key_path.exists() and self.key_path.stat().st_size > 0:
            return self.key_path.read_bytes().strip()
        key = secrets.token_hex(32).encode()
        self.key_path.write_bytes(key)
        ensure_private_file(self.key_path)
        return key

    def _scan_last_hash(self) -> str:
        last = ""
        with open(self.path, "r") as f:
            for line in f:
                if not line.strip():
                    continue
                last = json.loads(line).get("event_hash", "")
        return last

    def _event_hash(self, payload: dict, prev_hash: str) -> str:
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        digest = hmac.new(self._hmac_key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256)
        return digest.hexdigest()

    def emit(self, event: LedgerEvent) -> None:
        """Append event, chaining onto whatever entry is last in the file now."""
        with exclusive_lock(self._lock_path):
            prev_hash = self._scan_last_hash()
            event.prev_hash = prev_hash or None
            event.event_hash = self._event_hash(event.payload(), prev_hash)

            with open(self.path, "a") as f:
                f.write(event.to_json() + "\n")
                f.flush()
                os.fsync(f.fileno())

    def read_events(
        self,
        event_type: Optional[EventType] = None,
        limit: int = 100,
    ) -> list[LedgerEvent]:
        events: list[LedgerEvent] = []
        expected_prev = ""
        with open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                raw = json.loads(line)
                event = LedgerEvent(
                    event_type=raw["event_type"],
                    timestamp=raw["timestamp"],
                    data=raw.get("data", {}),
                    prev_hash=raw.get("prev_hash"),
                    event_hash=raw.get("event_hash"),
                )
                prev_hash = event.prev_hash or ""
                if prev_hash != expected_prev:
                    raise IntegrityError("Event chain broken: previous hash mismatch")
                expected_hash = self._event_hash(event.payload(), prev_hash)
                if not hmac.compare_digest(expected_hash, event.event_hash or ""):
                    raise IntegrityError("Event chain broken: event hash mismatch")
                expected_prev = event.event_hash or ""

                if event_type and event.event_type != event_type.value:
                    continue
                events.append(event)

        return events[-limit:] if limit else events
