"""Environment-driven locations and options for a ledger instance."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .principal import normalize_address
from .treasury import DEFAULT_TREASURY_ADDRESS


DEFAULT_HOME = Path.home() / ".govledger"


@dataclass
class LedgerConfig:
    home: Path = DEFAULT_HOME
    treasury_address: str = DEFAULT_TREASURY_ADDRESS
    strict_reads: bool = False

    @property
    def state_dir(self) -> Path:
        return self.home / "state"

    @property
    def custody_path(self) -> Path:
        return self.home / "custody.json"

    @property
    def events_path(self) -> Path:
        return self.home / "events.jsonl"

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        home = os.getenv("GOVLEDGER_HOME")
        treasury = os.getenv("GOVLEDGER_TREASURY_ADDRESS")
        strict = os.getenv("GOVLEDGER_STRICT_READS", "").strip().lower() in {"1", "true", "yes"}
        return cls(
            home=Path(home) if home else Path.home() / ".govledger",
            treasury_address=normalize_address(treasury) if treasury else DEFAULT_TREASURY_ADDRESS,
            strict_reads=strict,
        )
