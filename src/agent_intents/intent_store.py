"""Intent persistence with compare-and-swap status updates."""

from __future__ import annotations

import json
import sqlite3
from typing import Optional

from .db import Database
from .errors import DuplicateIntentError
from .models import Intent, IntentPatch, IntentStatus


class IntentStore:
    """SQLite-backed intent store.

    The full intent is stored as JSON next to the columns used for
    filtering. ``update_if_status`` re-reads the row inside the write
    transaction and only applies the patch if the stored status still
    matches, so a stale writer gets ``None`` instead of overwriting.
    """

    def __init__(self, db: Database):
        self.db = db

    def _row_to_intent(self, row: sqlite3.Row) -> Intent:
        return Intent.from_dict(json.loads(row["data"]))

    def _write(self, conn: sqlite3.Connection, intent: Intent) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO intents (
                id, user_id, trust_chain_id, status, created_at, expires_at, data
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                intent.id,
                intent.user_id,
                intent.trust_chain_id,
                intent.status.value,
                intent.created_at,
                intent.expires_at,
                json.dumps(intent.to_dict(), sort_keys=True, separators=(",", ":")),
            ),
        )

    def insert(self, intent: Intent) -> Intent:
        with self.db.transaction() as conn:
            existing = conn.execute("SELECT 1 FROM intents WHERE id = ?", (intent.id,)).fetchone()
            if existing is not None:
                raise DuplicateIntentError(intent.id)
            self._write(conn, intent)
        return intent

    def get(self, intent_id: str) -> Optional[Intent]:
        with self.db.connection() as conn:
            row = conn.execute("SELECT data FROM intents WHERE id = ?", (intent_id,)).fetchone()
        return self._row_to_intent(row) if row else None

    def update_if_status(
        self,
        intent_id: str,
        expected_status: IntentStatus,
        patch: IntentPatch,
    ) -> Optional[Intent]:
        """Apply ``patch`` only if the stored status equals ``expected_status``."""
        with self.db.transaction() as conn:
            row = conn.execute("SELECT data FROM intents WHERE id = ?", (intent_id,)).fetchone()
            if row is None:
                return None
            current = self._row_to_intent(row)
            if current.status != expected_status:
                return None
            updated = patch.apply_to(current)
            cursor = conn.execute(
                """
                UPDATE intents SET status = ?, data = ?
                WHERE id = ? AND status = ?
                """,
                (
                    updated.status.value,
                    json.dumps(updated.to_dict(), sort_keys=True, separators=(",", ":")),
                    intent_id,
                    expected_status.value,
                ),
            )
            if cursor.rowcount != 1:
                return None
        return updated

    def list_by_user(
        self,
        user_id: str,
        status: Optional[IntentStatus] = None,
        limit: int = 50,
    ) -> list[Intent]:
        query = "SELECT data FROM intents WHERE user_id = ?"
        params: list = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(int(limit))
        with self.db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_intent(row) for row in rows]

    def list_overdue(self, now: int, status: IntentStatus = IntentStatus.PENDING) -> list[Intent]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT data FROM intents
                WHERE status = ? AND expires_at <= ?
                ORDER BY expires_at
                """,
                (status.value, now),
            ).fetchall()
        return [self._row_to_intent(row) for row in rows]
