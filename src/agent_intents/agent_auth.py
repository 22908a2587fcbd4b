"""
AgentAuth request signatures.

Every agent API call carries

    Authorization: AgentAuth <timestamp>.<bodyHash>.<signature>

- timestamp: unix seconds, accepted within 300s of server time either way
- bodyHash: keccak256 of the raw request body ("0x" for GET/HEAD)
- signature: EIP-191 personal_sign of "<timestamp>.<bodyHash>"

The recovered signer must be an active registered member. Every failure
surfaces as the same AuthenticationFailedError; the specific cause is only
logged.
"""

from __future__ import annotations

import hmac
import logging
import re
import time
from typing import Optional, Protocol, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak

from .errors import AuthenticationFailedError, InvalidArgumentError
from .models import AgentIdentity, TrustchainMember, normalize_address

logger = logging.getLogger(__name__)


AGENT_AUTH_SCHEME = "AgentAuth"
MAX_TIMESTAMP_DRIFT_SECONDS = 300
BODYLESS_METHODS = frozenset({"GET", "HEAD"})
EMPTY_BODY_HASH = "0x"

_TIMESTAMP_RE = re.compile(r"^-?\d+$")


class MemberLookup(Protocol):
    def find_active_by_address(self, address: str) -> Optional[TrustchainMember]: ...


class AgentAuthRejection(Exception):
    """Internal rejection carrying the real cause; never leaves this module."""


def _to_bytes(body: Union[bytes, str, None]) -> bytes:
    if body is None:
        return b""
    if isinstance(body, str):
        return body.encode("utf-8")
    return bytes(body)


def compute_body_hash(raw_body: Union[bytes, str, None]) -> str:
    """keccak256 of the exact body bytes as 0x-hex."""
    return "0x" + keccak(_to_bytes(raw_body)).hex()


def build_signing_message(timestamp: Union[int, str], body_hash: str) -> str:
    return f"{timestamp}.{body_hash}"


def sign_agent_auth_header(
    private_key: str,
    *,
    method: str = "POST",
    body: Union[bytes, str, None] = None,
    timestamp: Optional[int] = None,
) -> str:
    """Build an Authorization header value for a request (agent side)."""
    ts = int(timestamp if timestamp is not None else time.time())
    if method.upper() in BODYLESS_METHODS:
        body_hash = EMPTY_BODY_HASH
    else:
        body_hash = compute_body_hash(body)
    message = build_signing_message(ts, body_hash)
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    signature = signed.signature.hex()
    if not signature.startswith("0x"):
        signature = "0x" + signature
    return f"{AGENT_AUTH_SCHEME} {message}.{signature}"


def has_agent_auth(authorization: Optional[str]) -> bool:
    """True if the header selects the AgentAuth path."""
    return bool(authorization) and authorization.startswith(f"{AGENT_AUTH_SCHEME} ")


def _recover_signer(message: str, signature: str) -> str:
    hex_part = signature[2:] if signature.lower().startswith("0x") else signature
    try:
        signature_bytes = bytes.fromhex(hex_part)
        return Account.recover_message(encode_defunct(text=message), signature=signature_bytes)
    except Exception as exc:
        raise AgentAuthRejection(f"Signature recovery failed: {exc}") from exc


class AgentAuthVerifier:
    """Stateless verifier for AgentAuth headers."""

    def __init__(
        self,
        members: MemberLookup,
        max_drift_seconds: int = MAX_TIMESTAMP_DRIFT_SECONDS,
    ):
        self.members = members
        self.max_drift_seconds = max_drift_seconds

    def verify(
        self,
        *,
        method: str,
        raw_body: Union[bytes, str, None],
        authorization: Optional[str],
        now: Optional[int] = None,
    ) -> AgentIdentity:
        member = self.authenticate(
            method=method, raw_body=raw_body, authorization=authorization, now=now
        )
        return AgentIdentity(member_id=member.id, trustchain_id=member.trustchain_id)

    def authenticate(
        self,
        *,
        method: str,
        raw_body: Union[bytes, str, None],
        authorization: Optional[str],
        now: Optional[int] = None,
    ) -> TrustchainMember:
        """Verify the header and return the matching active member."""
        current = int(now if now is not None else time.time())
        try:
            return self._check(method, _to_bytes(raw_body), authorization, current)
        except AgentAuthRejection as rejection:
            logger.warning("AgentAuth rejected: %s", rejection)
            raise AuthenticationFailedError(reason=str(rejection)) from None

    def _check(
        self,
        method: str,
        raw_body: bytes,
        authorization: Optional[str],
        now: int,
    ) -> TrustchainMember:
        if not authorization:
            raise AgentAuthRejection("Missing Authorization header")
        prefix = f"{AGENT_AUTH_SCHEME} "
        if not authorization.startswith(prefix):
            raise AgentAuthRejection("Invalid authorization scheme, expected AgentAuth")

        parts = authorization[len(prefix):].split(".")
        if len(parts) < 3:
            raise AgentAuthRejection("Malformed AgentAuth header")
        timestamp, body_hash = parts[0], parts[1]
        signature = ".".join(parts[2:])

        if not _TIMESTAMP_RE.match(timestamp):
            raise AgentAuthRejection(f"Invalid timestamp: {timestamp!r}")
        drift = abs(now - int(timestamp))
        if drift > self.max_drift_seconds:
            raise AgentAuthRejection(f"Timestamp outside allowed drift ({drift}s)")

        if method.upper() not in BODYLESS_METHODS:
            expected = compute_body_hash(raw_body)
            if not hmac.compare_digest(body_hash.lower().encode(), expected.encode()):
                raise AgentAuthRejection("Body hash mismatch")

        recovered = _recover_signer(build_signing_message(timestamp, body_hash), signature)
        try:
            address = normalize_address(recovered)
        except InvalidArgumentError as exc:
            raise AgentAuthRejection(f"Recovered address is not valid: {recovered}") from exc

        member = self.members.find_active_by_address(address)
        if member is None:
            raise AgentAuthRejection(f"Agent {address} not registered or revoked")
        return member
