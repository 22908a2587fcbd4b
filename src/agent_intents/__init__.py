"""
Agent Intents: identity and authorization for agent-proposed transfers.

Agents sign every request → humans sign in with their wallet →
intents move through a role-checked lifecycle with no stale writes.
"""

__version__ = "0.1.0"

from .errors import (
    AgentIntentsError,
    AuthenticationFailedError,
    DuplicateIntentError,
    DuplicateMemberError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidChallengeError,
    InvalidTransitionError,
    NotFoundError,
    RateLimitedError,
    ServiceUnavailableError,
    StatusConflictError,
    UnauthorizedError,
)
from .models import (
    AgentIdentity,
    Intent,
    IntentStatus,
    TransferDetails,
    TrustchainMember,
    UserIdentity,
    X402Details,
)
from .agent_auth import AgentAuthVerifier, compute_body_hash, sign_agent_auth_header
from .challenge import ChallengeMode, SessionChallengeManager
from .intents import CreateIntentRequest, IntentStateMachine
from .sanitize import sanitize_intent
from .agents import AgentRegistry
from .config import Settings
from .db import Database

__all__ = [
    "AgentIntentsError", "AuthenticationFailedError", "DuplicateIntentError", "DuplicateMemberError",
    "ForbiddenError", "InvalidArgumentError", "InvalidChallengeError", "InvalidTransitionError",
    "NotFoundError", "RateLimitedError", "ServiceUnavailableError", "StatusConflictError", "UnauthorizedError",
    "AgentIdentity", "UserIdentity", "Intent", "IntentStatus", "TransferDetails",
    "TrustchainMember", "X402Details",
    "AgentAuthVerifier", "compute_body_hash", "sign_agent_auth_header",
    "ChallengeMode", "SessionChallengeManager",
    "CreateIntentRequest", "IntentStateMachine", "sanitize_intent",
    "AgentRegistry", "Settings", "Database",
]
