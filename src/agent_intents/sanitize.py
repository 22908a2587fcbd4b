"""Redaction of payment secrets before intents leave the service."""

from __future__ import annotations

import copy
from typing import Optional

from .models import AgentIdentity, CallerIdentity, Intent


def is_owning_agent(intent: Intent, identity: Optional[CallerIdentity]) -> bool:
    return (
        isinstance(identity, AgentIdentity)
        and intent.trust_chain_id is not None
        and intent.trust_chain_id == identity.trustchain_id
    )


def sanitize_intent(intent: Intent, identity: Optional[CallerIdentity]) -> Intent:
    """Return the intent as ``identity`` may see it.

    The owning agent gets the input back as is. Everyone else gets a deep
    copy whose x402 details keep only the public fields. The input is never
    mutated.
    """
    if is_owning_agent(intent, identity):
        return intent
    redacted = copy.deepcopy(intent)
    if redacted.details.x402 is not None:
        redacted.details.x402 = redacted.details.x402.redacted()
    return redacted
