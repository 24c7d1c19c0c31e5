"""
Role gating: the single government principal and the auditor set.

Auditor membership is recorded and queryable but no operation consults it;
auditors read through the same public API as everyone else.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from .errors import (
    AlreadyInitializedError,
    LedgerNotInitializedError,
    UnauthorizedError,
)
from .events import LedgerEvent, auditor_status_changed, government_wallet_changed
from .principal import normalize_address, require_principal

logger = logging.getLogger(__name__)


class AccessControl:
    """Reads and mutates authorization state on a store connection."""

    def government(self, conn: sqlite3.Connection) -> Optional[str]:
        row = conn.execute(
            "SELECT government FROM authorization_state WHERE id = 1"
        ).fetchone()
        return row["government"] if row else None

    def initialize(self, conn: sqlite3.Connection, caller: str, timestamp: int) -> str:
        government = require_principal(caller)
        if self.government(conn) is not None:
            raise AlreadyInitializedError("Ledger already has a government principal")
        conn.execute(
            "INSERT INTO authorization_state (id, government, initialized_at) VALUES (1, ?, ?)",
            (government, timestamp),
        )
        return government

    def is_government(self, conn: sqlite3.Connection, principal: str) -> bool:
        return self.government(conn) == normalize_address(principal)

    def is_auditor(self, conn: sqlite3.Connection, principal: str) -> bool:
        row = conn.execute(
            "SELECT enabled FROM auditors WHERE principal = ?",
            (normalize_address(principal),),
        ).fetchone()
        return bool(row["enabled"]) if row else False

    def auditors(self, conn: sqlite3.Connection) -> list[str]:
        rows = conn.execute(
            "SELECT principal FROM auditors WHERE enabled = 1 ORDER BY principal"
        ).fetchall()
        return [r["principal"] for r in rows]

    def require_government(self, conn: sqlite3.Connection, caller: str, operation: str) -> str:
        """Return the normalized caller, or raise if it is not the government."""
        government = self.government(conn)
        if government is None:
            raise LedgerNotInitializedError("Ledger has no government principal")
        normalized = normalize_address(caller)
        if normalized != government:
            logger.warning("Rejected %s by non-government caller %s", operation, normalized)
            raise UnauthorizedError(normalized, operation)
        return normalized

    def set_auditor(
        self,
        conn: sqlite3.Connection,
        caller: str,
        target: str,
        enabled: bool,
        timestamp: int,
    ) -> LedgerEvent:
        self.require_government(conn, caller, "set auditors")
        auditor = require_principal(target)
        conn.execute(
            """
            INSERT INTO auditors (principal, enabled, updated_at) VALUES (?, ?, ?)
            ON CONFLICT (principal) DO UPDATE
            SET enabled = excluded.enabled, updated_at = excluded.updated_at
            """,
            (auditor, int(bool(enabled)), timestamp),
        )
        return auditor_status_changed(auditor, bool(enabled), timestamp)

    def change_government_wallet(
        self,
        conn: sqlite3.Connection,
        caller: str,
        new_principal: str,
        timestamp: int,
    ) -> LedgerEvent:
        old = self.require_government(conn, caller, "change the government wallet")
        new = require_principal(new_principal)
        conn.execute(
            "UPDATE authorization_state SET government = ? WHERE id = 1",
            (new,),
        )
        return government_wallet_changed(old, new, timestamp)
