"""Agent registration and management for wallet owners."""

from __future__ import annotations

import logging
from typing import Optional

from eth_keys import keys
from eth_keys.exceptions import ValidationError

from .errors import DuplicateMemberError, ForbiddenError, InvalidArgumentError, NotFoundError
from .members import MemberDirectory
from .models import TrustchainMember, UserIdentity, normalize_address
from .rate_limit import RateLimiter, RateLimitRule, enforce_rate_limit

logger = logging.getLogger(__name__)


DEFAULT_AGENT_LABEL = "Unnamed Agent"
MAX_LABEL_LENGTH = 100


def agent_key_to_address(agent_public_key: str) -> str:
    """Resolve an agent key to the address its signatures recover to.

    Accepts a 20-byte address, a 33-byte compressed or 65-byte uncompressed
    secp256k1 public key, or the raw 64-byte key body, all 0x-prefixed hex.
    """
    candidate = agent_public_key.strip().lower()
    hex_part = candidate[2:]
    if not candidate.startswith("0x") or not hex_part or any(
        ch not in "0123456789abcdef" for ch in hex_part
    ):
        raise InvalidArgumentError("agentPublicKey must be a hex-encoded string (0x-prefixed)")
    if len(hex_part) == 40:
        return normalize_address(candidate)
    if len(hex_part) % 2:
        raise InvalidArgumentError("agentPublicKey has an odd number of hex digits")

    raw = bytes.fromhex(hex_part)
    try:
        if len(raw) == 33:
            public_key = keys.PublicKey.from_compressed_bytes(raw)
        elif len(raw) == 65 and raw[0] == 0x04:
            public_key = keys.PublicKey(raw[1:])
        elif len(raw) == 64:
            public_key = keys.PublicKey(raw)
        else:
            raise InvalidArgumentError(f"Unsupported agentPublicKey length: {len(raw)} bytes")
    except (ValidationError, ValueError) as exc:
        if isinstance(exc, InvalidArgumentError):
            raise
        raise InvalidArgumentError(f"Invalid secp256k1 public key: {exc}") from exc
    return normalize_address(public_key.to_address())


class AgentRegistry:
    """Session-authenticated operations on a wallet's agents."""

    def __init__(
        self,
        members: MemberDirectory,
        limiter: Optional[RateLimiter] = None,
        register_rule: Optional[RateLimitRule] = None,
    ):
        self.members = members
        self.limiter = limiter
        self.register_rule = register_rule

    def register_agent(
        self,
        identity: UserIdentity,
        agent_public_key: str,
        label: Optional[str] = None,
        now: Optional[int] = None,
    ) -> TrustchainMember:
        address = agent_key_to_address(agent_public_key)
        if address == identity.wallet_address:
            raise InvalidArgumentError("Agent key must differ from the owning wallet")
        clean_label = (label or "").strip() or DEFAULT_AGENT_LABEL
        if len(clean_label) > MAX_LABEL_LENGTH:
            raise InvalidArgumentError(f"agentLabel must be at most {MAX_LABEL_LENGTH} characters")

        if self.limiter is not None and self.register_rule is not None:
            enforce_rate_limit(self.limiter, self.register_rule, identity.wallet_address, now=now)

        if self.members.find_active_by_address(address) is not None:
            raise DuplicateMemberError()
        member = self.members.register(identity.wallet_address, address, clean_label, now=now)
        logger.info(
            'Agent registered: %s "%s" for trustchain %s',
            member.id,
            member.label,
            member.trustchain_id,
        )
        return member

    def list_agents(self, identity: UserIdentity, trustchain_id: str) -> list[TrustchainMember]:
        normalized = normalize_address(trustchain_id)
        if normalized != identity.wallet_address:
            raise ForbiddenError("You can only list agents on your own trustchain")
        return self.members.list_by_trustchain(normalized)

    def get_agent(self, identity: UserIdentity, member_id: str) -> TrustchainMember:
        member = self.members.find_by_id(member_id)
        if member is None:
            raise NotFoundError("Agent not found")
        if member.trustchain_id != identity.wallet_address:
            raise ForbiddenError("You can only view your own agents")
        return member

    def revoke_agent(
        self,
        identity: UserIdentity,
        member_id: str,
        now: Optional[int] = None,
    ) -> TrustchainMember:
        member = self.members.find_by_id(member_id)
        if member is None:
            raise NotFoundError("Agent not found")
        if member.trustchain_id != identity.wallet_address:
            raise ForbiddenError("You can only revoke your own agents")
        revoked = self.members.revoke(member_id, now=now)
        if revoked is None:
            raise NotFoundError("Agent not found or already revoked")
        logger.info(
            "Agent revoked: %s (%s) on trustchain %s",
            revoked.id,
            revoked.label,
            revoked.trustchain_id,
        )
        return revoked
