"""
HTTP API for Agent Intents (FastAPI).

Agents authenticate every call with an AgentAuth header; wallet users
authenticate with the ``ai_session`` cookie obtained from the challenge
flow. A request uses exactly one of the two, chosen by whether the
Authorization header starts with "AgentAuth ".

Bodies are read raw first so the AgentAuth body hash covers the exact bytes
received, then validated with pydantic.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Type, TypeVar

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from .agent_auth import AgentAuthVerifier, has_agent_auth
from .agents import AgentRegistry
from .auth_store import AuthStore
from .challenge import SessionChallengeManager
from .config import Settings
from .db import Database
from .errors import (
    AgentIntentsError,
    ForbiddenError,
    InvalidArgumentError,
    RateLimitedError,
    ServiceUnavailableError,
)
from .intent_store import IntentStore
from .intents import CreateIntentRequest, IntentStateMachine
from .members import MemberDirectory
from .models import CallerIdentity, TransferDetails, UserIdentity, X402SettlementReceipt
from .rate_limit import SqliteRateLimiter
from .sanitize import sanitize_intent
from .schemas import (
    ChallengeBody,
    CreateIntentBody,
    RegisterAgentBody,
    RevokeAgentBody,
    UpdateStatusBody,
    VerifyBody,
)

logger = logging.getLogger(__name__)

BodyT = TypeVar("BodyT", bound=BaseModel)


@dataclass
class Services:
    """Everything a request handler needs, built once per app."""

    settings: Settings
    database: Database
    members: MemberDirectory
    verifier: AgentAuthVerifier
    sessions: SessionChallengeManager
    intents: IntentStateMachine
    agents: AgentRegistry

    @classmethod
    def build(cls, settings: Settings, database: Database) -> "Services":
        members = MemberDirectory(database)
        limiter = SqliteRateLimiter(database)
        return cls(
            settings=settings,
            database=database,
            members=members,
            verifier=AgentAuthVerifier(members),
            sessions=SessionChallengeManager(
                AuthStore(database),
                mode=settings.auth_mode,
                supported_chain_ids=settings.supported_chain_ids,
            ),
            intents=IntentStateMachine(
                IntentStore(database),
                supported_chain_ids=settings.supported_chain_ids,
                limiter=limiter,
                create_rule=settings.intent_rule,
                allow_demo_intents=settings.allow_demo_intents,
            ),
            agents=AgentRegistry(members, limiter=limiter, register_rule=settings.register_rule),
        )


def _services(request: Request) -> Services:
    return request.app.state.services


def _ok(**payload: Any) -> dict[str, Any]:
    return {"success": True, **payload}


async def _read_body(request: Request, model: Type[BodyT]) -> tuple[bytes, BodyT]:
    raw = await request.body()
    try:
        data = json.loads(raw or b"{}")
    except ValueError:
        raise InvalidArgumentError("Request body must be valid JSON") from None
    if not isinstance(data, dict):
        raise InvalidArgumentError("Request body must be a JSON object")
    try:
        return raw, model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise InvalidArgumentError(f"Invalid {field}: {first.get('msg')}") from None


async def _session_identity(request: Request) -> UserIdentity:
    services = _services(request)
    token = request.cookies.get(services.settings.cookie_name)
    return await run_in_threadpool(services.sessions.require_session, token)


async def _caller_identity(request: Request, raw_body: bytes) -> CallerIdentity:
    """Resolve the caller by AgentAuth header or session cookie, never both."""
    services = _services(request)
    authorization = request.headers.get("authorization")
    if has_agent_auth(authorization):
        return await run_in_threadpool(
            services.verifier.verify,
            method=request.method,
            raw_body=raw_body,
            authorization=authorization,
        )
    return await _session_identity(request)


router = APIRouter(prefix="/api")


# -- wallet auth ------------------------------------------------------------


@router.post("/auth/challenge")
async def issue_challenge(request: Request):
    _, body = await _read_body(request, ChallengeBody)
    issued = await run_in_threadpool(
        _services(request).sessions.issue_challenge, body.wallet_address, body.chain_id
    )
    return _ok(**issued.to_dict())


@router.post("/auth/verify")
async def verify_challenge(request: Request):
    services = _services(request)
    _, body = await _read_body(request, VerifyBody)
    session = await run_in_threadpool(
        services.sessions.verify_and_establish_session, body.challenge_id, body.signature
    )
    response = JSONResponse(
        _ok(walletAddress=session.wallet_address, expiresAt=session.expires_at)
    )
    response.set_cookie(
        key=services.settings.cookie_name,
        value=session.session_id,
        max_age=max(0, session.expires_at - int(time.time())),
        path="/",
        httponly=True,
        samesite="lax",
        secure=services.settings.is_production,
    )
    return response


@router.post("/auth/logout")
async def logout(request: Request):
    services = _services(request)
    token = request.cookies.get(services.settings.cookie_name)
    await run_in_threadpool(services.sessions.revoke_session, token)
    response = JSONResponse(_ok())
    response.delete_cookie(
        key=services.settings.cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=services.settings.is_production,
    )
    return response


@router.get("/me")
async def me(request: Request):
    identity = await _session_identity(request)
    return _ok(walletAddress=identity.wallet_address)


# -- intents ----------------------------------------------------------------


@router.post("/intents", status_code=201)
async def create_intent(request: Request):
    services = _services(request)
    raw = await request.body()
    identity = None
    authorization = request.headers.get("authorization")
    if has_agent_auth(authorization):
        identity = await run_in_threadpool(
            services.verifier.verify,
            method=request.method,
            raw_body=raw,
            authorization=authorization,
        )
    _, body = await _read_body(request, CreateIntentBody)
    create_request = CreateIntentRequest(
        agent_id=body.agent_id,
        agent_name=body.agent_name,
        details=TransferDetails.from_dict(body.details),
        urgency=body.urgency,
        expires_in_minutes=body.expires_in_minutes,
        user_id=body.user_id,
    )
    intent = await run_in_threadpool(services.intents.create_intent, identity, create_request)
    return _ok(intent=intent.to_dict())


@router.get("/intents/{intent_id}")
async def get_intent(intent_id: str, request: Request):
    identity = await _caller_identity(request, await request.body())
    intent = await run_in_threadpool(_services(request).intents.get_intent, intent_id, identity)
    return _ok(intent=intent.to_dict())


@router.patch("/intents/{intent_id}/status")
async def update_intent_status(intent_id: str, request: Request):
    services = _services(request)
    identity = await _caller_identity(request, await request.body())
    _, body = await _read_body(request, UpdateStatusBody)
    receipt = None
    if body.settlement_receipt is not None:
        receipt = X402SettlementReceipt(
            tx_hash=body.settlement_receipt.tx_hash,
            network=body.settlement_receipt.network,
            payer=body.settlement_receipt.payer,
            settled_at=body.settlement_receipt.settled_at,
        )
    updated = await run_in_threadpool(
        services.intents.update_status,
        intent_id,
        body.status,
        identity,
        tx_hash=body.tx_hash,
        note=body.note,
        payment_signature_header=body.payment_signature_header,
        payment_payload=body.payment_payload,
        settlement_receipt=receipt,
    )
    return _ok(intent=sanitize_intent(updated, identity).to_dict())


@router.get("/users/{user_id}/intents")
async def list_user_intents(
    user_id: str,
    request: Request,
    status: Optional[str] = None,
    limit: int = 50,
):
    identity = await _session_identity(request)
    intents = await run_in_threadpool(
        _services(request).intents.list_user_intents, identity, user_id, status, limit
    )
    return _ok(intents=[intent.to_dict() for intent in intents], count=len(intents))


# -- agents -----------------------------------------------------------------


@router.post("/agents/register", status_code=201)
async def register_agent(request: Request):
    identity = await _session_identity(request)
    _, body = await _read_body(request, RegisterAgentBody)
    member = await run_in_threadpool(
        _services(request).agents.register_agent,
        identity,
        body.agent_public_key,
        body.agent_label,
    )
    return _ok(member=member.to_dict())


@router.get("/agents")
async def list_agents(request: Request, trustchain_id: str = Query(..., alias="trustchainId")):
    identity = await _session_identity(request)
    members = await run_in_threadpool(_services(request).agents.list_agents, identity, trustchain_id)
    return _ok(agents=[member.to_dict() for member in members])


@router.get("/agents/{member_id}")
async def get_agent(member_id: str, request: Request):
    identity = await _session_identity(request)
    member = await run_in_threadpool(_services(request).agents.get_agent, identity, member_id)
    return _ok(member=member.to_dict())


@router.delete("/agents/{member_id}")
async def delete_agent(member_id: str, request: Request):
    identity = await _session_identity(request)
    member = await run_in_threadpool(_services(request).agents.revoke_agent, identity, member_id)
    return _ok(member=member.to_dict())


@router.post("/agents/revoke")
async def revoke_agent(request: Request):
    identity = await _session_identity(request)
    _, body = await _read_body(request, RevokeAgentBody)
    member = await run_in_threadpool(
        _services(request).agents.revoke_agent, identity, body.member_id
    )
    return _ok(member=member.to_dict())


# -- health -----------------------------------------------------------------


@router.get("/health")
async def health(request: Request):
    try:
        await run_in_threadpool(_services(request).database.ping)
    except Exception as exc:
        logger.error("Health check failed: %s", exc)
        raise ServiceUnavailableError("Database unavailable") from exc
    return _ok(status="ok")


async def _handle_domain_error(request: Request, exc: AgentIntentsError) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": str(exc)}
    headers = {}
    if isinstance(exc, ForbiddenError) and exc.allowed:
        body["allowed"] = list(exc.allowed)
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())) or "request"
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"Invalid {field}: {first.get('msg', 'invalid')}"},
    )


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """Build the API application with its services on ``app.state``."""
    from . import __version__

    settings = settings or Settings.from_env()
    database = database or Database(settings.db_path)

    app = FastAPI(title="Agent Intents", version=__version__)
    app.state.settings = settings
    app.state.services = Services.build(settings, database)
    app.add_exception_handler(AgentIntentsError, _handle_domain_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.include_router(router)
    return app
