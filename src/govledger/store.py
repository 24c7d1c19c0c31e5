"""
SQLite state store for the ledger.

Every mutating operation runs under one single-writer guard (a process-local
re-entrant lock plus an exclusive file lock) and inside a `BEGIN IMMEDIATE`
transaction, so an operation either commits in full or leaves no trace, and
no two operations interleave across threads or processes.
"""

from __future__ import annotations

import fcntl
import hashlib
import hmac
import secrets
import sqlite3
import threading
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Iterator

from .errors import IntegrityError
from .storage import ensure_private_dir, ensure_private_file


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS authorization_state (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        government TEXT NOT NULL,
        initialized_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auditors (
        principal TEXT PRIMARY KEY,
        enabled INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tax_payments (
        principal TEXT NOT NULL,
        payment_index INTEGER NOT NULL,
        amount TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        status TEXT NOT NULL,
        PRIMARY KEY (principal, payment_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS citizen_totals (
        principal TEXT PRIMARY KEY,
        payment_count INTEGER NOT NULL DEFAULT 0,
        total_paid TEXT NOT NULL DEFAULT '0'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS expenditures (
        expenditure_id INTEGER PRIMARY KEY,
        timestamp INTEGER NOT NULL,
        amount TEXT NOT NULL,
        purpose TEXT NOT NULL,
        status TEXT NOT NULL,
        recipient TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS expenditure_details (
        expenditure_id INTEGER PRIMARY KEY,
        details TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_totals (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        total_collected TEXT NOT NULL DEFAULT '0',
        total_spent TEXT NOT NULL DEFAULT '0',
        expenditure_count INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reservations (
        reservation_id TEXT PRIMARY KEY,
        recipient TEXT NOT NULL,
        amount TEXT NOT NULL,
        purpose TEXT NOT NULL,
        details TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        status TEXT NOT NULL,
        expenditure_id INTEGER
    )
    """,
    "INSERT OR IGNORE INTO ledger_totals (id) VALUES (1)",
)


class LedgerStore:
    """
    Owns the ledger database and its integrity seal.

    The database file is sealed with an HMAC after every write and verified
    before every operation; a mismatch means the file was changed outside
    the ledger.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir
        ensure_private_dir(self.state_dir)
        self.db_path = self.state_dir / "ledger.sqlite3"
        self._secret_dir = self.state_dir / "secrets"
        ensure_private_dir(self._secret_dir)
        self._key_path = self._secret_dir / "ledger_hmac.key"
        self._sig_path = self._secret_dir / "ledger.sig"
        self._lock_path = self.state_dir / ".ledger.lock"
        ensure_private_file(self._lock_path)
        self._hmac_key = self._load_or_create_key()

        self._thread_lock = threading.RLock()
        self._depth = 0
        self._lockf = None

        with self.guard():
            if self.db_path.exists():
                self._verify_integrity()
            self._init_db()
            self._seal_integrity()

    @contextmanager
    def guard(self) -> Iterator[None]:
        """Single-writer guard; re-entrant within the owning thread."""
        with self._thread_lock:
            if self._depth == 0:
                self._lockf = open(self._lock_path, "r+")
                fcntl.flock(self._lockf.fileno(), fcntl.LOCK_EX)
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0 and self._lockf is not None:
                    fcntl.flock(self._lockf.fileno(), fcntl.LOCK_UN)
                    self._lockf.close()
                    self._lockf = None

    def _load_or_create_key(self) -> bytes:
        if self._key_path.exists() and self._key_path.stat().st_size > 0:
            return self._key_path.read_bytes().strip()
        key = secrets.token_hex(32).encode()
        self._key_path.write_bytes(key)
        ensure_private_file(self._key_path)
        return key

    def _compute_integrity_hash(self) -> str:
        digest = hmac.new(self._hmac_key, digestmod=hashlib.sha256)
        digest.update(self.db_path.read_bytes())
        return digest.hexdigest()

    def _verify_integrity(self) -> None:
        if not self._sig_path.exists():
            return
        expected = self._sig_path.read_text().strip()
        actual = self._compute_integrity_hash()
        if expected and not hmac.compare_digest(expected, actual):
            raise IntegrityError("Ledger integrity check failed: local state was modified")

    def _seal_integrity(self) -> None:
        self._sig_path.write_text(self._compute_integrity_hash())
        ensure_private_file(self._sig_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA synchronous=FULL")
        return conn

    def _init_db(self) -> None:
        with closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            for statement in SCHEMA:
                conn.execute(statement)
            conn.execute("COMMIT")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one atomic write; any exception rolls it back."""
        with self.guard():
            self._verify_integrity()
            with closing(self._connect()) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            self._seal_integrity()

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Connection]:
        """Connection for reads of committed state."""
        with self.guard():
            self._verify_integrity()
            with closing(self._connect()) as conn:
                yield conn
