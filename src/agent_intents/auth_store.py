"""Persistence for wallet challenges and sessions."""

from __future__ import annotations

import sqlite3
from typing import Optional

from .db import Database
from .errors import InvalidChallengeError
from .models import AuthChallenge, Session


class AuthStore:
    """SQLite-backed challenge and session store.

    Consuming a challenge and creating its session happen in one
    transaction. The consume step is a conditional update, so of several
    racing verifications for the same challenge exactly one commits a
    session.
    """

    def __init__(self, db: Database):
        self.db = db

    def _row_to_challenge(self, row: sqlite3.Row) -> AuthChallenge:
        return AuthChallenge(
            id=row["id"],
            wallet_address=row["wallet_address"],
            nonce=row["nonce"],
            chain_id=row["chain_id"],
            issued_at=row["issued_at"],
            expires_at=row["expires_at"],
            used_at=row["used_at"],
        )

    def _row_to_session(self, row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            wallet_address=row["wallet_address"],
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            revoked_at=row["revoked_at"],
        )

    def save_challenge(self, challenge: AuthChallenge) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO auth_challenges (
                    id, wallet_address, nonce, chain_id, issued_at, expires_at, used_at
                ) VALUES (?, ?, ?, ?, ?, ?, NULL)
                """,
                (
                    challenge.id,
                    challenge.wallet_address,
                    challenge.nonce,
                    challenge.chain_id,
                    challenge.issued_at,
                    challenge.expires_at,
                ),
            )

    def get_challenge(self, challenge_id: str) -> Optional[AuthChallenge]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM auth_challenges WHERE id = ?", (challenge_id,)
            ).fetchone()
        return self._row_to_challenge(row) if row else None

    def consume_challenge_and_create_session(
        self,
        challenge_id: str,
        session: Session,
        now: int,
    ) -> Session:
        """Mark the challenge used and insert the session, all or nothing."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE auth_challenges SET used_at = ?
                WHERE id = ? AND used_at IS NULL AND expires_at > ?
                """,
                (now, challenge_id, now),
            )
            if cursor.rowcount != 1:
                raise InvalidChallengeError()
            conn.execute(
                """
                INSERT INTO auth_sessions (id, wallet_address, created_at, expires_at, revoked_at)
                VALUES (?, ?, ?, ?, NULL)
                """,
                (session.id, session.wallet_address, session.created_at, session.expires_at),
            )
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM auth_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return self._row_to_session(row) if row else None

    def revoke_session(self, session_id: str, now: int) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE auth_sessions SET revoked_at = ?
                WHERE id = ? AND revoked_at IS NULL
                """,
                (now, session_id),
            )
        return cursor.rowcount == 1

    def purge_expired(self, now: int) -> int:
        """Delete expired challenges and sessions; returns rows removed."""
        with self.db.transaction() as conn:
            challenges = conn.execute(
                "DELETE FROM auth_challenges WHERE expires_at <= ?", (now,)
            ).rowcount
            sessions = conn.execute(
                "DELETE FROM auth_sessions WHERE expires_at <= ?", (now,)
            ).rowcount
        return challenges + sessions
