"""Request bodies accepted by the HTTP API."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ChallengeBody(_Body):
    wallet_address: str = Field(..., alias="walletAddress")
    chain_id: Optional[int] = Field(None, alias="chainId")


class VerifyBody(_Body):
    challenge_id: str = Field(..., alias="challengeId")
    signature: str


class CreateIntentBody(_Body):
    agent_id: str = Field(..., alias="agentId")
    agent_name: Optional[str] = Field(None, alias="agentName")
    details: dict[str, Any]
    urgency: str = "normal"
    expires_in_minutes: Optional[int] = Field(None, alias="expiresInMinutes")
    user_id: Optional[str] = Field(None, alias="userId")


class SettlementReceiptBody(_Body):
    tx_hash: str = Field(..., alias="txHash")
    network: str
    payer: Optional[str] = None
    settled_at: Optional[int] = Field(None, alias="settledAt")


class UpdateStatusBody(_Body):
    status: str
    tx_hash: Optional[str] = Field(None, alias="txHash")
    note: Optional[str] = None
    payment_signature_header: Optional[str] = Field(None, alias="paymentSignatureHeader")
    payment_payload: Optional[dict[str, Any]] = Field(None, alias="paymentPayload")
    settlement_receipt: Optional[SettlementReceiptBody] = Field(None, alias="settlementReceipt")


class RegisterAgentBody(_Body):
    agent_public_key: str = Field(..., alias="agentPublicKey")
    agent_label: Optional[str] = Field(None, alias="agentLabel")


class RevokeAgentBody(_Body):
    member_id: str = Field(..., alias="memberId")
