"""
Wallet challenge-response authentication and sessions.

A wallet asks for a challenge, signs it, and trades the signature for a
session token. The artifact to sign is rebuilt at verification time from
stored challenge fields only; nothing signature-relevant is taken from the
client on the way back.

Two artifact formats are supported:

- personal_sign: "Welcome to agentintents.io\\n\\nNonce: <nonce>"
- typed_data: EIP-712 ``Authenticate`` struct binding wallet, nonce and
  validity window under a chain-specific domain
"""

from __future__ import annotations

import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from eth_account import Account
from eth_account.messages import SignableMessage, encode_defunct, encode_typed_data

from .auth_store import AuthStore
from .errors import InvalidArgumentError, InvalidChallengeError, UnauthorizedError
from .models import AuthChallenge, Session, UserIdentity, normalize_address

logger = logging.getLogger(__name__)


CHALLENGE_VALIDITY_SECONDS = 300
SESSION_VALIDITY_SECONDS = 7 * 24 * 60 * 60

AUTH_DOMAIN_NAME = "Agent Intents"
AUTH_DOMAIN_VERSION = "1"
AUTH_STATEMENT = "Sign in to Agent Intents"


class ChallengeMode(str, Enum):
    PERSONAL_SIGN = "personal_sign"
    TYPED_DATA = "typed_data"


def build_welcome_message(nonce: str) -> str:
    return f"Welcome to agentintents.io\n\nNonce: {nonce}"


def build_authenticate_typed_data(
    *,
    chain_id: int,
    wallet_address: str,
    nonce: str,
    issued_at: int,
    expires_at: int,
) -> dict[str, Any]:
    """EIP-712 payload for wallet sign-in."""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
            ],
            "Authenticate": [
                {"name": "wallet", "type": "address"},
                {"name": "nonce", "type": "string"},
                {"name": "issuedAt", "type": "uint256"},
                {"name": "expiresAt", "type": "uint256"},
                {"name": "statement", "type": "string"},
            ],
        },
        "primaryType": "Authenticate",
        "domain": {
            "name": AUTH_DOMAIN_NAME,
            "version": AUTH_DOMAIN_VERSION,
            "chainId": int(chain_id),
        },
        "message": {
            "wallet": normalize_address(wallet_address),
            "nonce": nonce,
            "issuedAt": int(issued_at),
            "expiresAt": int(expires_at),
            "statement": AUTH_STATEMENT,
        },
    }


@dataclass
class IssuedChallenge:
    """What the wallet receives: the challenge reference and what to sign."""

    challenge_id: str
    nonce: str
    wallet_address: str
    issued_at: int
    expires_at: int
    message: Optional[str] = None
    typed_data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "challengeId": self.challenge_id,
            "nonce": self.nonce,
            "walletAddress": self.wallet_address,
            "issuedAt": self.issued_at,
            "expiresAt": self.expires_at,
        }
        if self.message is not None:
            payload["message"] = self.message
        if self.typed_data is not None:
            payload["typedData"] = self.typed_data
        return payload


@dataclass
class EstablishedSession:
    session_id: str
    wallet_address: str
    expires_at: int


class SessionChallengeManager:
    """Issues challenges, verifies signatures, and resolves sessions."""

    def __init__(
        self,
        store: AuthStore,
        mode: ChallengeMode = ChallengeMode.PERSONAL_SIGN,
        supported_chain_ids: Iterable[int] = (),
        challenge_ttl_seconds: int = CHALLENGE_VALIDITY_SECONDS,
        session_ttl_seconds: int = SESSION_VALIDITY_SECONDS,
    ):
        self.store = store
        self.mode = ChallengeMode(mode)
        self.supported_chain_ids = frozenset(int(c) for c in supported_chain_ids)
        self.challenge_ttl_seconds = challenge_ttl_seconds
        self.session_ttl_seconds = session_ttl_seconds

    def _resolve_chain_id(self, chain_id: Optional[int]) -> int:
        if self.mode is ChallengeMode.PERSONAL_SIGN:
            return 0
        if chain_id is None:
            raise InvalidArgumentError("chainId is required")
        if isinstance(chain_id, bool) or not isinstance(chain_id, int):
            raise InvalidArgumentError(f"Invalid chainId: {chain_id}")
        if self.supported_chain_ids and chain_id not in self.supported_chain_ids:
            raise InvalidArgumentError(f"Unsupported chain: {chain_id}")
        return chain_id

    def issue_challenge(
        self,
        wallet_address: str,
        chain_id: Optional[int] = None,
        now: Optional[int] = None,
    ) -> IssuedChallenge:
        wallet = normalize_address(wallet_address)
        resolved_chain = self._resolve_chain_id(chain_id)
        issued_at = int(now if now is not None else time.time())
        challenge = AuthChallenge(
            id=str(uuid.uuid4()),
            wallet_address=wallet,
            nonce=secrets.token_hex(16),
            chain_id=resolved_chain,
            issued_at=issued_at,
            expires_at=issued_at + self.challenge_ttl_seconds,
        )
        self.store.save_challenge(challenge)
        logger.info("Challenge %s issued for %s", challenge.id, wallet)

        issued = IssuedChallenge(
            challenge_id=challenge.id,
            nonce=challenge.nonce,
            wallet_address=wallet,
            issued_at=challenge.issued_at,
            expires_at=challenge.expires_at,
        )
        if self.mode is ChallengeMode.TYPED_DATA:
            issued.typed_data = self.typed_data_for(challenge)
        else:
            issued.message = build_welcome_message(challenge.nonce)
        return issued

    def typed_data_for(self, challenge: AuthChallenge) -> dict[str, Any]:
        return build_authenticate_typed_data(
            chain_id=challenge.chain_id,
            wallet_address=challenge.wallet_address,
            nonce=challenge.nonce,
            issued_at=challenge.issued_at,
            expires_at=challenge.expires_at,
        )

    def signable_for(self, challenge: AuthChallenge) -> SignableMessage:
        """Rebuild the exact artifact the wallet should have signed."""
        if self.mode is ChallengeMode.TYPED_DATA:
            return encode_typed_data(full_message=self.typed_data_for(challenge))
        return encode_defunct(text=build_welcome_message(challenge.nonce))

    def verify_and_establish_session(
        self,
        challenge_id: str,
        signature: str,
        now: Optional[int] = None,
    ) -> EstablishedSession:
        current = int(now if now is not None else time.time())
        challenge = self.store.get_challenge(challenge_id)
        if challenge is None or not challenge.is_usable(current):
            logger.warning(
                "Challenge %s rejected: %s",
                challenge_id,
                "not found" if challenge is None else "used or expired",
            )
            raise InvalidChallengeError()

        try:
            hex_part = signature[2:] if signature.lower().startswith("0x") else signature
            recovered = Account.recover_message(
                self.signable_for(challenge),
                signature=bytes.fromhex(hex_part),
            )
        except Exception as exc:
            logger.warning("Challenge %s signature recovery failed: %s", challenge_id, exc)
            raise UnauthorizedError("Invalid signature") from exc

        if normalize_address(recovered) != challenge.wallet_address:
            logger.warning(
                "Challenge %s signed by %s, expected %s",
                challenge_id,
                recovered,
                challenge.wallet_address,
            )
            raise UnauthorizedError("Signature does not match wallet")

        session = Session(
            id=secrets.token_urlsafe(32),
            wallet_address=challenge.wallet_address,
            created_at=current,
            expires_at=current + self.session_ttl_seconds,
        )
        self.store.consume_challenge_and_create_session(challenge.id, session, current)
        logger.info("Session established for %s (expires %d)", session.wallet_address, session.expires_at)
        return EstablishedSession(
            session_id=session.id,
            wallet_address=session.wallet_address,
            expires_at=session.expires_at,
        )

    def require_session(
        self,
        session_token: Optional[str],
        now: Optional[int] = None,
    ) -> UserIdentity:
        if not session_token:
            raise UnauthorizedError()
        current = int(now if now is not None else time.time())
        session = self.store.get_session(session_token)
        if session is None or not session.is_valid(current):
            raise UnauthorizedError()
        return UserIdentity(wallet_address=session.wallet_address)

    def revoke_session(self, session_token: Optional[str], now: Optional[int] = None) -> bool:
        if not session_token:
            return False
        current = int(now if now is not None else time.time())
        revoked = self.store.revoke_session(session_token, current)
        if revoked:
            logger.info("Session revoked")
        return revoked
