"""
Intent lifecycle and authorization.

Lifecycle:
    pending      -> approved | rejected | expired
    approved     -> broadcasting | rejected
    broadcasting -> authorized | confirmed | failed
    authorized   -> executing | failed
    executing    -> confirmed | failed

confirmed, rejected, failed and expired are terminal. The authorized and
executing states belong to the x402 payment path; broadcasting ->
confirmed is the direct on-chain path.

Agents drive execution outcomes (executing, confirmed, failed) on intents
of their own trustchain. Wallet users drive review decisions (approved,
rejected, authorized, broadcasting) on intents addressed to them.
Every write is conditioned on the status read, so a stale writer gets
StatusConflictError.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Protocol

from .errors import (
    ForbiddenError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    StatusConflictError,
    UnauthorizedError,
)
from .models import (
    TERMINAL_STATUSES,
    AgentIdentity,
    CallerIdentity,
    Intent,
    IntentPatch,
    IntentStatus,
    StatusHistoryEntry,
    TransferDetails,
    Urgency,
    UserIdentity,
    X402SettlementReceipt,
    normalize_address,
)
from .rate_limit import RateLimiter, RateLimitRule, enforce_rate_limit
from .sanitize import sanitize_intent

logger = logging.getLogger(__name__)


TRANSITIONS: dict[IntentStatus, frozenset[IntentStatus]] = {
    IntentStatus.PENDING: frozenset(
        {IntentStatus.APPROVED, IntentStatus.REJECTED, IntentStatus.EXPIRED}
    ),
    IntentStatus.APPROVED: frozenset({IntentStatus.BROADCASTING, IntentStatus.REJECTED}),
    IntentStatus.BROADCASTING: frozenset(
        {IntentStatus.AUTHORIZED, IntentStatus.CONFIRMED, IntentStatus.FAILED}
    ),
    IntentStatus.AUTHORIZED: frozenset({IntentStatus.EXECUTING, IntentStatus.FAILED}),
    IntentStatus.EXECUTING: frozenset({IntentStatus.CONFIRMED, IntentStatus.FAILED}),
    IntentStatus.CONFIRMED: frozenset(),
    IntentStatus.REJECTED: frozenset(),
    IntentStatus.FAILED: frozenset(),
    IntentStatus.EXPIRED: frozenset(),
}

AGENT_ALLOWED_STATUSES = (
    IntentStatus.EXECUTING,
    IntentStatus.CONFIRMED,
    IntentStatus.FAILED,
)

USER_ALLOWED_STATUSES = (
    IntentStatus.APPROVED,
    IntentStatus.REJECTED,
    IntentStatus.AUTHORIZED,
    IntentStatus.BROADCASTING,
)

DEFAULT_EXPIRY_MINUTES = 24 * 60
MAX_EXPIRY_MINUTES = 7 * 24 * 60
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 100
DEMO_USER_ID = "demo-user"


def is_legal_transition(current: IntentStatus, requested: IntentStatus) -> bool:
    return requested in TRANSITIONS[current]


def _status_list(statuses: Iterable[IntentStatus]) -> str:
    return ", ".join(s.value for s in statuses)


class IntentRepository(Protocol):
    def insert(self, intent: Intent) -> Intent: ...

    def get(self, intent_id: str) -> Optional[Intent]: ...

    def update_if_status(
        self, intent_id: str, expected_status: IntentStatus, patch: IntentPatch
    ) -> Optional[Intent]: ...

    def list_by_user(
        self, user_id: str, status: Optional[IntentStatus] = None, limit: int = 50
    ) -> list[Intent]: ...

    def list_overdue(self, now: int, status: IntentStatus = IntentStatus.PENDING) -> list[Intent]: ...


@dataclass
class CreateIntentRequest:
    agent_id: str
    details: TransferDetails
    agent_name: Optional[str] = None
    urgency: str = Urgency.NORMAL.value
    expires_in_minutes: Optional[int] = None
    user_id: Optional[str] = None


class IntentStateMachine:
    """Authoritative lifecycle for intents."""

    def __init__(
        self,
        store: IntentRepository,
        supported_chain_ids: Iterable[int] = (),
        limiter: Optional[RateLimiter] = None,
        create_rule: Optional[RateLimitRule] = None,
        allow_demo_intents: bool = False,
    ):
        self.store = store
        self.supported_chain_ids = frozenset(int(c) for c in supported_chain_ids)
        self.limiter = limiter
        self.create_rule = create_rule
        self.allow_demo_intents = allow_demo_intents

    # -- creation ---------------------------------------------------------

    def _validate_request(self, request: CreateIntentRequest) -> tuple[str, int]:
        if not request.agent_id or not request.agent_id.strip():
            raise InvalidArgumentError("agentId is required")
        chain_id = request.details.chain_id
        if self.supported_chain_ids and chain_id not in self.supported_chain_ids:
            raise InvalidArgumentError(f"Unsupported chain: {chain_id}")
        try:
            urgency = Urgency(request.urgency).value
        except ValueError:
            raise InvalidArgumentError(f"Invalid urgency: {request.urgency}") from None
        minutes = request.expires_in_minutes
        if minutes is None:
            minutes = DEFAULT_EXPIRY_MINUTES
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            raise InvalidArgumentError("expiresInMinutes must be an integer")
        if not 1 <= minutes <= MAX_EXPIRY_MINUTES:
            raise InvalidArgumentError(
                f"expiresInMinutes must be between 1 and {MAX_EXPIRY_MINUTES}"
            )
        return urgency, minutes

    def create_intent(
        self,
        identity: Optional[AgentIdentity],
        request: CreateIntentRequest,
        now: Optional[int] = None,
    ) -> Intent:
        """Create a pending intent.

        With an agent identity the owner is stamped from the identity, never
        from the request. ``identity=None`` is the legacy demo path and is
        refused unless enabled.
        """
        current = int(now if now is not None else time.time())
        urgency, minutes = self._validate_request(request)

        if identity is not None:
            if not isinstance(identity, AgentIdentity):
                raise ForbiddenError("Only agents can create intents")
            user_id = identity.trustchain_id
            trust_chain_id: Optional[str] = identity.trustchain_id
            created_by: Optional[str] = identity.member_id
            subject = identity.member_id
        else:
            if not self.allow_demo_intents:
                raise UnauthorizedError("Agent authentication required")
            user_id = normalize_address(request.user_id) if request.user_id else DEMO_USER_ID
            trust_chain_id = None
            created_by = None
            subject = f"demo:{user_id}"

        if self.limiter is not None and self.create_rule is not None:
            enforce_rate_limit(self.limiter, self.create_rule, subject, now=current)

        intent = Intent(
            id=f"int_{current}_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            agent_id=request.agent_id.strip(),
            agent_name=(request.agent_name or request.agent_id).strip(),
            details=request.details,
            urgency=urgency,
            status=IntentStatus.PENDING,
            status_history=[StatusHistoryEntry(IntentStatus.PENDING, current, "Intent created")],
            created_at=current,
            expires_at=current + minutes * 60,
            trust_chain_id=trust_chain_id,
            created_by_member_id=created_by,
        )
        self.store.insert(intent)
        logger.info(
            "Intent created: %s by %s (%s %s to %s)",
            intent.id,
            intent.agent_name,
            intent.details.amount,
            intent.details.token,
            intent.details.recipient,
        )
        return intent

    # -- reads ------------------------------------------------------------

    def _load(self, intent_id: str) -> Intent:
        intent = self.store.get(intent_id)
        if intent is None:
            raise NotFoundError("Intent not found")
        return intent

    def get_intent(self, intent_id: str, identity: CallerIdentity) -> Intent:
        """Return the intent as ``identity`` may see it."""
        intent = self._load(intent_id)
        if isinstance(identity, AgentIdentity):
            if intent.trust_chain_id != identity.trustchain_id:
                raise ForbiddenError("You can only access intents on your own trustchain")
            return intent
        if isinstance(identity, UserIdentity):
            if intent.user_id.lower() != identity.wallet_address:
                raise ForbiddenError("You can only access your own intents")
            return sanitize_intent(intent, identity)
        raise ForbiddenError("Authentication required")

    def list_user_intents(
        self,
        identity: UserIdentity,
        user_id: str,
        status: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[Intent]:
        if user_id.strip().lower() != identity.wallet_address:
            raise ForbiddenError("You can only list your own intents")
        parsed_status = IntentStatus.parse(status) if status else None
        bounded = max(1, min(int(limit), MAX_LIST_LIMIT))
        intents = self.store.list_by_user(identity.wallet_address, status=parsed_status, limit=bounded)
        return [sanitize_intent(intent, identity) for intent in intents]

    # -- transitions ------------------------------------------------------

    def _authorize(self, intent: Intent, requested: IntentStatus, identity: CallerIdentity) -> None:
        if isinstance(identity, AgentIdentity):
            if requested not in AGENT_ALLOWED_STATUSES:
                raise ForbiddenError(
                    f"Agents can only set status to: {_status_list(AGENT_ALLOWED_STATUSES)}",
                    allowed=[s.value for s in AGENT_ALLOWED_STATUSES],
                )
            if intent.trust_chain_id is None or intent.trust_chain_id != identity.trustchain_id:
                raise ForbiddenError("Agent does not own this intent")
            return
        if isinstance(identity, UserIdentity):
            if requested not in USER_ALLOWED_STATUSES:
                raise ForbiddenError(
                    f"Users can only set status to: {_status_list(USER_ALLOWED_STATUSES)}",
                    allowed=[s.value for s in USER_ALLOWED_STATUSES],
                )
            if intent.user_id.lower() != identity.wallet_address:
                raise ForbiddenError("User does not own this intent")
            return
        raise ForbiddenError("Authentication required")

    def update_status(
        self,
        intent_id: str,
        new_status: Any,
        identity: CallerIdentity,
        *,
        tx_hash: Optional[str] = None,
        note: Optional[str] = None,
        payment_signature_header: Optional[str] = None,
        payment_payload: Optional[dict[str, Any]] = None,
        settlement_receipt: Optional[X402SettlementReceipt] = None,
        now: Optional[int] = None,
    ) -> Intent:
        requested = IntentStatus.parse(new_status)
        current_time = int(now if now is not None else time.time())

        intent = self._load(intent_id)
        try:
            self._authorize(intent, requested, identity)
        except ForbiddenError as exc:
            logger.warning(
                "Intent %s: %s -> %s denied for %s: %s",
                intent_id,
                intent.status.value,
                requested.value,
                identity,
                exc,
            )
            raise

        if not is_legal_transition(intent.status, requested):
            logger.warning(
                "Intent %s: illegal transition %s -> %s requested by %s",
                intent_id,
                intent.status.value,
                requested.value,
                identity,
            )
            raise InvalidTransitionError(intent.status.value, requested.value)
        if intent.is_expired(current_time) and requested not in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                intent.status.value,
                requested.value,
                f"Intent expired at {intent.expires_at}",
            )

        patch = IntentPatch(
            status=requested,
            at=current_time,
            note=note,
            tx_hash=tx_hash,
            payment_signature_header=payment_signature_header,
            payment_payload=payment_payload,
            settlement_receipt=settlement_receipt,
        )
        updated = self.store.update_if_status(intent_id, intent.status, patch)
        if updated is None:
            logger.warning(
                "Intent %s: status changed before %s -> %s could be written",
                intent_id,
                intent.status.value,
                requested.value,
            )
            raise StatusConflictError(intent_id)

        logger.info(
            "Intent %s: %s -> %s (tx: %s)",
            intent_id,
            intent.status.value,
            requested.value,
            tx_hash,
        )
        return updated

    def expire_overdue(self, now: Optional[int] = None) -> int:
        """Move pending intents past their expiry to expired."""
        current = int(now if now is not None else time.time())
        expired = 0
        for intent in self.store.list_overdue(current):
            patch = IntentPatch(status=IntentStatus.EXPIRED, at=current, note="Intent expired")
            if self.store.update_if_status(intent.id, IntentStatus.PENDING, patch) is not None:
                expired += 1
        if expired:
            logger.info("Expired %d overdue intent(s)", expired)
        return expired
