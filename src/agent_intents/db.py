"""
SQLite persistence shared by the member, auth, intent, and rate-limit stores.

Writes run inside BEGIN IMMEDIATE transactions so conditional updates
(challenge consumption, intent status compare-and-swap) are atomic across
threads and processes. Any exception inside a transaction rolls it back.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .storage import private_db_path, restrict_sidecars

logger = logging.getLogger(__name__)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS trustchain_members (
        id TEXT PRIMARY KEY,
        trustchain_id TEXT NOT NULL,
        public_key_address TEXT NOT NULL,
        label TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        revoked_at INTEGER
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_members_active_key
    ON trustchain_members (public_key_address)
    WHERE revoked_at IS NULL
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_members_trustchain
    ON trustchain_members (trustchain_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_challenges (
        id TEXT PRIMARY KEY,
        wallet_address TEXT NOT NULL,
        nonce TEXT NOT NULL,
        chain_id INTEGER NOT NULL DEFAULT 0,
        issued_at INTEGER NOT NULL,
        expires_at INTEGER NOT NULL,
        used_at INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_sessions (
        id TEXT PRIMARY KEY,
        wallet_address TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        expires_at INTEGER NOT NULL,
        revoked_at INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS intents (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        trust_chain_id TEXT,
        status TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        expires_at INTEGER NOT NULL,
        data TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_intents_user
    ON intents (user_id, created_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_intents_status_expiry
    ON intents (status, expires_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS rate_limits (
        key TEXT NOT NULL,
        window_start INTEGER NOT NULL,
        count INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (key, window_start)
    )
    """,
)


class Database:
    """File-backed SQLite database with per-operation connections."""

    def __init__(self, path: Path, timeout: float = 30.0):
        self.path = private_db_path(Path(path))
        self.timeout = timeout
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA synchronous=FULL")
        return conn

    def _init_db(self) -> None:
        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            for statement in SCHEMA:
                conn.execute(statement)
            restrict_sidecars(self.path)
        logger.debug("Database ready at %s", self.path)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection for single-statement reads and writes."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction; commits on success, rolls back on any error."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def ping(self) -> bool:
        with self.connection() as conn:
            row: Optional[sqlite3.Row] = conn.execute("SELECT 1 AS ok").fetchone()
        return row is not None and row["ok"] == 1
