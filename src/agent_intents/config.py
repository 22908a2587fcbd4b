"""Runtime settings loaded from AGENT_INTENTS_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .challenge import ChallengeMode
from .errors import InvalidArgumentError
from .rate_limit import RateLimitRule

DEFAULT_HOME = Path.home() / ".agent-intents"
DEFAULT_DB_NAME = "agent_intents.sqlite3"
DEFAULT_SUPPORTED_CHAINS = (1, 8453, 84532, 11155111)

SESSION_COOKIE_NAME = "ai_session"

INTENT_RATE_WINDOW_SECONDS = 60
REGISTER_RATE_WINDOW_SECONDS = 3600

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise InvalidArgumentError(f"{name} must be a boolean, got {raw!r}")


def _parse_positive_int(name: str, raw: str) -> int:
    try:
        value = int(raw.strip())
    except ValueError:
        raise InvalidArgumentError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise InvalidArgumentError(f"{name} must be > 0, got {value}")
    return value


def _parse_chains(raw: str) -> tuple[int, ...]:
    chains = []
    for part in raw.split(","):
        if part.strip():
            chains.append(_parse_positive_int("AGENT_INTENTS_SUPPORTED_CHAINS", part))
    if not chains:
        raise InvalidArgumentError("AGENT_INTENTS_SUPPORTED_CHAINS must list at least one chain id")
    return tuple(chains)


@dataclass
class Settings:
    home: Path = DEFAULT_HOME
    db_path: Path = DEFAULT_HOME / DEFAULT_DB_NAME
    environment: str = "development"
    auth_mode: ChallengeMode = ChallengeMode.PERSONAL_SIGN
    supported_chain_ids: tuple[int, ...] = DEFAULT_SUPPORTED_CHAINS
    allow_demo_intents: bool = False
    intent_rate_limit: int = 30
    register_rate_limit: int = 10
    log_level: str = "INFO"
    cookie_name: str = SESSION_COOKIE_NAME

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def intent_rule(self) -> RateLimitRule:
        return RateLimitRule("intent_create", self.intent_rate_limit, INTENT_RATE_WINDOW_SECONDS)

    @property
    def register_rule(self) -> RateLimitRule:
        return RateLimitRule("agent_register", self.register_rate_limit, REGISTER_RATE_WINDOW_SECONDS)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        home = Path(env.get("AGENT_INTENTS_HOME") or DEFAULT_HOME).expanduser()
        db_override = env.get("AGENT_INTENTS_DB_PATH")
        db_path = Path(db_override).expanduser() if db_override else home / DEFAULT_DB_NAME

        mode_raw = env.get("AGENT_INTENTS_AUTH_MODE", ChallengeMode.PERSONAL_SIGN.value).strip()
        try:
            auth_mode = ChallengeMode(mode_raw)
        except ValueError:
            raise InvalidArgumentError(
                f"AGENT_INTENTS_AUTH_MODE must be personal_sign or typed_data, got {mode_raw!r}"
            ) from None

        log_level = env.get("AGENT_INTENTS_LOG_LEVEL", "INFO").strip().upper()
        if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise InvalidArgumentError(f"AGENT_INTENTS_LOG_LEVEL is not a log level: {log_level!r}")

        return cls(
            home=home,
            db_path=db_path,
            environment=env.get("AGENT_INTENTS_ENV", "development").strip().lower(),
            auth_mode=auth_mode,
            supported_chain_ids=_parse_chains(
                env.get("AGENT_INTENTS_SUPPORTED_CHAINS", ",".join(map(str, DEFAULT_SUPPORTED_CHAINS)))
            ),
            allow_demo_intents=_parse_bool(
                "AGENT_INTENTS_ALLOW_DEMO_INTENTS", env.get("AGENT_INTENTS_ALLOW_DEMO_INTENTS", "false")
            ),
            intent_rate_limit=_parse_positive_int(
                "AGENT_INTENTS_INTENT_RATE_LIMIT", env.get("AGENT_INTENTS_INTENT_RATE_LIMIT", "30")
            ),
            register_rate_limit=_parse_positive_int(
                "AGENT_INTENTS_REGISTER_RATE_LIMIT", env.get("AGENT_INTENTS_REGISTER_RATE_LIMIT", "10")
            ),
            log_level=log_level,
        )
