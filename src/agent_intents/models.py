"""
Domain records for agents, wallet authentication, and intents.

Records are plain dataclasses. Wire form is camelCase JSON; optional
fields that are unset are omitted from intent payloads so a redacted
secret is absent rather than null.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional, Union

from .errors import InvalidArgumentError


_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def normalize_address(address: str) -> str:
    """Normalize Ethereum addresses to lower-case hex."""
    if not isinstance(address, str):
        raise InvalidArgumentError(f"Invalid Ethereum address: {address!r}")
    candidate = address.strip()
    if candidate.startswith(("0X", "0x")):
        candidate = "0x" + candidate[2:]
    if not _ADDRESS_RE.match(candidate):
        raise InvalidArgumentError(f"Invalid Ethereum address: {address}")
    return "0x" + candidate[2:].lower()


def normalize_amount(amount: Any) -> str:
    """Validate a positive decimal amount and return it as a string."""
    if isinstance(amount, (bool, float)):
        raise InvalidArgumentError("amount must be a decimal string")
    try:
        parsed = Decimal(str(amount).strip())
    except InvalidOperation:
        raise InvalidArgumentError(f"Invalid amount: {amount}") from None
    if not parsed.is_finite() or parsed <= 0:
        raise InvalidArgumentError(f"amount must be > 0: {amount}")
    return str(amount).strip()


def _compact(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _require_mapping(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise InvalidArgumentError(f"{name} must be an object")
    return value


class IntentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    BROADCASTING = "broadcasting"
    AUTHORIZED = "authorized"
    EXECUTING = "executing"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"

    @classmethod
    def parse(cls, value: Any) -> "IntentStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidArgumentError(f"Invalid status: {value}") from None


TERMINAL_STATUSES = frozenset(
    {
        IntentStatus.CONFIRMED,
        IntentStatus.REJECTED,
        IntentStatus.FAILED,
        IntentStatus.EXPIRED,
    }
)


class Urgency(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AgentIdentity:
    """Caller authenticated by an AgentAuth header."""

    member_id: str
    trustchain_id: str


@dataclass(frozen=True)
class UserIdentity:
    """Caller authenticated by a wallet session."""

    wallet_address: str


CallerIdentity = Union[AgentIdentity, UserIdentity]


@dataclass
class TrustchainMember:
    """A registered agent key scoped to an owning wallet."""

    id: str
    trustchain_id: str
    public_key_address: str
    label: str
    created_at: int
    revoked_at: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "trustchainId": self.trustchain_id,
            "publicKeyAddress": self.public_key_address,
            "label": self.label,
            "createdAt": self.created_at,
            "revokedAt": self.revoked_at,
        }


@dataclass
class AuthChallenge:
    id: str
    wallet_address: str
    nonce: str
    chain_id: int
    issued_at: int
    expires_at: int
    used_at: Optional[int] = None

    def is_usable(self, now: int) -> bool:
        return self.used_at is None and now < self.expires_at


@dataclass
class Session:
    id: str
    wallet_address: str
    created_at: int
    expires_at: int
    revoked_at: Optional[int] = None

    def is_valid(self, now: int) -> bool:
        return self.revoked_at is None and self.expires_at > now


# ---------------------------------------------------------------------------
# x402 payment details
# ---------------------------------------------------------------------------


@dataclass
class X402Resource:
    url: str
    description: Optional[str] = None
    mime_type: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {"url": self.url, "description": self.description, "mimeType": self.mime_type}
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "X402Resource":
        return cls(
            url=str(data["url"]),
            description=data.get("description"),
            mime_type=data.get("mimeType"),
        )


@dataclass
class X402Accepted:
    """Payment terms the resource server accepted."""

    network: str
    asset: str
    amount: str
    pay_to: str
    scheme: str = "exact"
    max_timeout_seconds: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "scheme": self.scheme,
                "network": self.network,
                "asset": self.asset,
                "amount": self.amount,
                "payTo": self.pay_to,
                "maxTimeoutSeconds": self.max_timeout_seconds,
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "X402Accepted":
        timeout = data.get("maxTimeoutSeconds")
        return cls(
            scheme=str(data.get("scheme", "exact")),
            network=str(data["network"]),
            asset=str(data["asset"]),
            amount=str(data["amount"]),
            pay_to=str(data["payTo"]),
            max_timeout_seconds=int(timeout) if timeout is not None else None,
        )


@dataclass
class X402SettlementReceipt:
    tx_hash: str
    network: str
    payer: Optional[str] = None
    settled_at: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "txHash": self.tx_hash,
                "network": self.network,
                "payer": self.payer,
                "settledAt": self.settled_at,
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "X402SettlementReceipt":
        settled_at = data.get("settledAt")
        return cls(
            tx_hash=str(data["txHash"]),
            network=str(data["network"]),
            payer=data.get("payer"),
            settled_at=int(settled_at) if settled_at is not None else None,
        )


@dataclass
class X402Details:
    """x402 sub-object of an intent.

    ``payment_signature_header`` and ``payment_payload`` are secrets: they
    authorize an EIP-3009 transfer and are only ever returned to the owning
    agent. Everything else is public.
    """

    resource: Optional[X402Resource] = None
    accepted: Optional[X402Accepted] = None
    payment_signature_header: Optional[str] = None
    payment_payload: Optional[dict[str, Any]] = None
    settlement_receipt: Optional[X402SettlementReceipt] = None

    @property
    def has_secrets(self) -> bool:
        return self.payment_signature_header is not None or self.payment_payload is not None

    def redacted(self) -> "X402Details":
        """Copy keeping only the public fields."""
        return X402Details(
            resource=copy.deepcopy(self.resource),
            accepted=copy.deepcopy(self.accepted),
            settlement_receipt=copy.deepcopy(self.settlement_receipt),
        )

    def merged(
        self,
        *,
        payment_signature_header: Optional[str] = None,
        payment_payload: Optional[dict[str, Any]] = None,
        settlement_receipt: Optional[X402SettlementReceipt] = None,
    ) -> "X402Details":
        """Copy with supplied payment fields set; unsupplied ones are kept."""
        merged = copy.deepcopy(self)
        if payment_signature_header is not None:
            merged.payment_signature_header = payment_signature_header
        if payment_payload is not None:
            merged.payment_payload = copy.deepcopy(payment_payload)
        if settlement_receipt is not None:
            merged.settlement_receipt = copy.deepcopy(settlement_receipt)
        return merged

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "resource": self.resource.to_dict() if self.resource else None,
                "accepted": self.accepted.to_dict() if self.accepted else None,
                "paymentSignatureHeader": self.payment_signature_header,
                "paymentPayload": copy.deepcopy(self.payment_payload),
                "settlementReceipt": (
                    self.settlement_receipt.to_dict() if self.settlement_receipt else None
                ),
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "X402Details":
        data = _require_mapping(data, "x402")
        resource = data.get("resource")
        accepted = data.get("accepted")
        receipt = data.get("settlementReceipt")
        payload = data.get("paymentPayload")
        if resource is not None:
            _require_mapping(resource, "x402.resource")
        if accepted is not None:
            _require_mapping(accepted, "x402.accepted")
        if receipt is not None:
            _require_mapping(receipt, "x402.settlementReceipt")
        if payload is not None:
            _require_mapping(payload, "x402.paymentPayload")
        return cls(
            resource=X402Resource.from_dict(resource) if resource else None,
            accepted=X402Accepted.from_dict(accepted) if accepted else None,
            payment_signature_header=data.get("paymentSignatureHeader"),
            payment_payload=dict(payload) if payload is not None else None,
            settlement_receipt=X402SettlementReceipt.from_dict(receipt) if receipt else None,
        )


# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------


@dataclass
class TransferDetails:
    token: str
    amount: str
    recipient: str
    chain_id: int
    type: str = "transfer"
    memo: Optional[str] = None
    x402: Optional[X402Details] = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "type": self.type,
                "token": self.token,
                "amount": self.amount,
                "recipient": self.recipient,
                "chainId": self.chain_id,
                "memo": self.memo,
                "x402": self.x402.to_dict() if self.x402 else None,
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TransferDetails":
        """Parse and normalize transfer details; raises InvalidArgumentError."""
        try:
            token = str(data["token"]).strip()
            amount = data["amount"]
            recipient = data["recipient"]
            chain_id = data["chainId"]
        except KeyError as exc:
            raise InvalidArgumentError(f"Missing transfer field: {exc.args[0]}") from None
        if not token:
            raise InvalidArgumentError("token must not be empty")
        if isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id <= 0:
            raise InvalidArgumentError(f"Invalid chainId: {chain_id}")
        x402 = data.get("x402")
        if x402 is not None:
            _require_mapping(x402, "x402")
        try:
            parsed_x402 = X402Details.from_dict(x402) if x402 else None
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidArgumentError(f"Invalid x402 details: {exc}") from None
        return cls(
            type=str(data.get("type", "transfer")),
            token=token,
            amount=normalize_amount(amount),
            recipient=normalize_address(recipient),
            chain_id=chain_id,
            memo=data.get("memo"),
            x402=parsed_x402,
        )


@dataclass
class StatusHistoryEntry:
    status: IntentStatus
    at: int
    note: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _compact({"status": self.status.value, "at": self.at, "note": self.note})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StatusHistoryEntry":
        return cls(
            status=IntentStatus(data["status"]),
            at=int(data["at"]),
            note=data.get("note"),
        )


@dataclass
class Intent:
    """A proposed transfer awaiting human authorization."""

    id: str
    user_id: str
    agent_id: str
    agent_name: str
    details: TransferDetails
    status: IntentStatus
    status_history: list[StatusHistoryEntry]
    created_at: int
    expires_at: int
    urgency: str = Urgency.NORMAL.value
    trust_chain_id: Optional[str] = None
    created_by_member_id: Optional[str] = None
    tx_hash: Optional[str] = None

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "id": self.id,
                "userId": self.user_id,
                "agentId": self.agent_id,
                "agentName": self.agent_name,
                "details": self.details.to_dict(),
                "urgency": self.urgency,
                "status": self.status.value,
                "statusHistory": [entry.to_dict() for entry in self.status_history],
                "createdAt": self.created_at,
                "expiresAt": self.expires_at,
                "trustChainId": self.trust_chain_id,
                "createdByMemberId": self.created_by_member_id,
                "txHash": self.tx_hash,
            }
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Intent":
        return cls(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            agent_id=str(data["agentId"]),
            agent_name=str(data.get("agentName", data["agentId"])),
            details=TransferDetails.from_dict(data["details"]),
            urgency=str(data.get("urgency", Urgency.NORMAL.value)),
            status=IntentStatus(data["status"]),
            status_history=[StatusHistoryEntry.from_dict(e) for e in data.get("statusHistory", [])],
            created_at=int(data["createdAt"]),
            expires_at=int(data["expiresAt"]),
            trust_chain_id=data.get("trustChainId"),
            created_by_member_id=data.get("createdByMemberId"),
            tx_hash=data.get("txHash"),
        )


@dataclass
class IntentPatch:
    """One status transition, applied atomically by the intent store."""

    status: IntentStatus
    at: int
    note: Optional[str] = None
    tx_hash: Optional[str] = None
    payment_signature_header: Optional[str] = None
    payment_payload: Optional[dict[str, Any]] = None
    settlement_receipt: Optional[X402SettlementReceipt] = None

    @property
    def has_payment_fields(self) -> bool:
        return (
            self.payment_signature_header is not None
            or self.payment_payload is not None
            or self.settlement_receipt is not None
        )

    def apply_to(self, intent: Intent) -> Intent:
        """Return a new intent with this transition applied."""
        updated = copy.deepcopy(intent)
        updated.status = self.status
        updated.status_history.append(StatusHistoryEntry(self.status, self.at, self.note))
        if self.tx_hash is not None:
            updated.tx_hash = self.tx_hash
        if self.has_payment_fields:
            base = updated.details.x402 or X402Details()
            updated.details.x402 = base.merged(
                payment_signature_header=self.payment_signature_header,
                payment_payload=self.payment_payload,
                settlement_receipt=self.settlement_receipt,
            )
        return updated
