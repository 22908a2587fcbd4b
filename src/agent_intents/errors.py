"""
Agent Intents error types.

Each exception carries the HTTP status it maps to at the API boundary,
so callers can branch on the class (refetch on conflict, re-auth on 401,
and so on) without string matching.
"""

from __future__ import annotations

from typing import Iterable, Optional


class AgentIntentsError(Exception):
    """Base error for all Agent Intents operations."""

    status_code = 500


# Authentication errors
class AuthenticationFailedError(AgentIntentsError):
    """AgentAuth header rejected.

    The message is always the same. ``reason`` holds the internal cause
    for logging and must never be sent to the caller.
    """

    status_code = 401
    MESSAGE = "Authentication failed"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(self.MESSAGE)


class UnauthorizedError(AgentIntentsError):
    """Missing, expired, or revoked session, or a bad wallet signature."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class InvalidChallengeError(UnauthorizedError):
    """Challenge is unknown, already used, or expired."""

    def __init__(self, message: str = "Invalid or expired challenge"):
        super().__init__(message)


# Authorization errors
class ForbiddenError(AgentIntentsError):
    """Caller is authenticated but not permitted."""

    status_code = 403

    def __init__(self, message: str, allowed: Optional[Iterable[str]] = None):
        self.allowed = tuple(allowed) if allowed is not None else None
        super().__init__(message)


# Lookup / input errors
class NotFoundError(AgentIntentsError):
    status_code = 404


class InvalidArgumentError(AgentIntentsError, ValueError):
    """Malformed status, address, amount, chain id, or request field."""

    status_code = 400


class InvalidTransitionError(InvalidArgumentError):
    """Requested status is not reachable from the current one."""

    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot transition intent from {current} to {requested}")


# Write conflicts
class StatusConflictError(AgentIntentsError):
    """Intent status changed between read and conditional write."""

    status_code = 409
    MESSAGE = "Intent status has changed, please refresh"

    def __init__(self, intent_id: Optional[str] = None):
        self.intent_id = intent_id
        super().__init__(self.MESSAGE)


class DuplicateMemberError(AgentIntentsError):
    """An active member already holds this public key address."""

    status_code = 409

    def __init__(self, message: str = "This agent public key is already registered"):
        super().__init__(message)


class DuplicateIntentError(AgentIntentsError):
    status_code = 409

    def __init__(self, intent_id: str):
        self.intent_id = intent_id
        super().__init__(f"Intent already exists: {intent_id}")


# Capacity errors
class RateLimitedError(AgentIntentsError):
    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", retry_after: int = 60):
        self.retry_after = retry_after
        super().__init__(message)


class ServiceUnavailableError(AgentIntentsError):
    """A collaborator check failed; the request is refused (fail closed)."""

    status_code = 503
