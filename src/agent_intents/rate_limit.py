"""Fixed-window rate limiting for creation endpoints.

Checks fail closed: if the counter backend errors, the request is refused
with ServiceUnavailableError rather than let through.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from .db import Database
from .errors import RateLimitedError, ServiceUnavailableError

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def hit(self, key: str, limit: int, window_seconds: int, now: int) -> bool: ...


@dataclass(frozen=True)
class RateLimitRule:
    scope: str
    limit: int
    window_seconds: int


class SqliteRateLimiter:
    """Counts hits per (key, window) row; returns False once over the limit."""

    def __init__(self, db: Database):
        self.db = db

    def hit(self, key: str, limit: int, window_seconds: int, now: int) -> bool:
        window_start = now - (now % window_seconds)
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO rate_limits (key, window_start, count) VALUES (?, ?, 1)
                ON CONFLICT (key, window_start) DO UPDATE SET count = count + 1
                """,
                (key, window_start),
            )
            row = conn.execute(
                "SELECT count FROM rate_limits WHERE key = ? AND window_start = ?",
                (key, window_start),
            ).fetchone()
            conn.execute(
                "DELETE FROM rate_limits WHERE key = ? AND window_start < ?",
                (key, window_start),
            )
        return int(row["count"]) <= limit


def enforce_rate_limit(
    limiter: RateLimiter,
    rule: RateLimitRule,
    subject: str,
    now: Optional[int] = None,
) -> None:
    """Raise unless ``subject`` is within ``rule``."""
    key = f"{rule.scope}:{subject}"
    current = int(now if now is not None else time.time())
    try:
        allowed = limiter.hit(key, rule.limit, rule.window_seconds, current)
    except Exception as exc:
        logger.error("Rate limit check failed for %s: %s", key, exc)
        raise ServiceUnavailableError("Rate limit check unavailable, try again later") from exc
    if not allowed:
        logger.warning("Rate limit exceeded for %s (%d per %ds)", key, rule.limit, rule.window_seconds)
        raise RateLimitedError(retry_after=rule.window_seconds - (current % rule.window_seconds))
