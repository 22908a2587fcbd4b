"""Member directory: registered agent keys and their revocation state."""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from typing import Optional

from .db import Database
from .errors import DuplicateMemberError, InvalidArgumentError
from .models import TrustchainMember, normalize_address

logger = logging.getLogger(__name__)


class MemberDirectory:
    """SQLite-backed directory of trustchain members.

    At most one active member may hold a given public key address; the
    partial unique index enforces this even under concurrent registration.
    """

    def __init__(self, db: Database):
        self.db = db

    def _row_to_member(self, row: sqlite3.Row) -> TrustchainMember:
        return TrustchainMember(
            id=row["id"],
            trustchain_id=row["trustchain_id"],
            public_key_address=row["public_key_address"],
            label=row["label"],
            created_at=row["created_at"],
            revoked_at=row["revoked_at"],
        )

    def register(
        self,
        trustchain_id: str,
        public_key_address: str,
        label: str,
        now: Optional[int] = None,
    ) -> TrustchainMember:
        member = TrustchainMember(
            id=str(uuid.uuid4()),
            trustchain_id=normalize_address(trustchain_id),
            public_key_address=normalize_address(public_key_address),
            label=label,
            created_at=int(now if now is not None else time.time()),
        )
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO trustchain_members (
                        id, trustchain_id, public_key_address, label, created_at, revoked_at
                    ) VALUES (?, ?, ?, ?, ?, NULL)
                    """,
                    (
                        member.id,
                        member.trustchain_id,
                        member.public_key_address,
                        member.label,
                        member.created_at,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            logger.warning(
                "Duplicate active key %s for trustchain %s: %s",
                member.public_key_address,
                member.trustchain_id,
                exc,
            )
            raise DuplicateMemberError() from exc
        return member

    def revoke(self, member_id: str, now: Optional[int] = None) -> Optional[TrustchainMember]:
        """Revoke an active member. Returns None if missing or already revoked."""
        revoked_at = int(now if now is not None else time.time())
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE trustchain_members SET revoked_at = ?
                WHERE id = ? AND revoked_at IS NULL
                """,
                (revoked_at, member_id),
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM trustchain_members WHERE id = ?", (member_id,)
            ).fetchone()
        return self._row_to_member(row)

    def find_active_by_address(self, address: str) -> Optional[TrustchainMember]:
        try:
            normalized = normalize_address(address)
        except InvalidArgumentError:
            return None
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM trustchain_members
                WHERE public_key_address = ? AND revoked_at IS NULL
                LIMIT 1
                """,
                (normalized,),
            ).fetchone()
        return self._row_to_member(row) if row else None

    def find_by_id(self, member_id: str) -> Optional[TrustchainMember]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM trustchain_members WHERE id = ?", (member_id,)
            ).fetchone()
        return self._row_to_member(row) if row else None

    def list_by_trustchain(self, trustchain_id: str) -> list[TrustchainMember]:
        normalized = normalize_address(trustchain_id)
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM trustchain_members
                WHERE trustchain_id = ?
                ORDER BY created_at DESC, id
                """,
                (normalized,),
            ).fetchall()
        return [self._row_to_member(row) for row in rows]
