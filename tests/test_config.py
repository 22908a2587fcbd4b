"""Tests for environment-driven settings."""

from pathlib import Path

import pytest

from agent_intents.challenge import ChallengeMode
from agent_intents.config import Settings
from agent_intents.errors import InvalidArgumentError


def test_defaults():
    settings = Settings.from_env({})

    assert settings.home == Path.home() / ".agent-intents"
    assert settings.db_path == settings.home / "agent_intents.sqlite3"
    assert settings.auth_mode is ChallengeMode.PERSONAL_SIGN
    assert settings.supported_chain_ids == (1, 8453, 84532, 11155111)
    assert not settings.allow_demo_intents
    assert not settings.is_production
    assert settings.intent_rule.limit == 30
    assert settings.intent_rule.window_seconds == 60
    assert settings.register_rule.limit == 10
    assert settings.register_rule.window_seconds == 3600


def test_overrides(tmp_path):
    settings = Settings.from_env(
        {
            "AGENT_INTENTS_HOME": str(tmp_path),
            "AGENT_INTENTS_ENV": "Production",
            "AGENT_INTENTS_AUTH_MODE": "typed_data",
            "AGENT_INTENTS_SUPPORTED_CHAINS": "8453, 84532",
            "AGENT_INTENTS_ALLOW_DEMO_INTENTS": "yes",
            "AGENT_INTENTS_INTENT_RATE_LIMIT": "5",
            "AGENT_INTENTS_LOG_LEVEL": "debug",
        }
    )

    assert settings.db_path == tmp_path / "agent_intents.sqlite3"
    assert settings.is_production
    assert settings.auth_mode is ChallengeMode.TYPED_DATA
    assert settings.supported_chain_ids == (8453, 84532)
    assert settings.allow_demo_intents
    assert settings.intent_rule.limit == 5
    assert settings.log_level == "DEBUG"


def test_explicit_db_path_wins(tmp_path):
    db_path = tmp_path / "elsewhere.sqlite3"
    settings = Settings.from_env({"AGENT_INTENTS_HOME": "/unused", "AGENT_INTENTS_DB_PATH": str(db_path)})
    assert settings.db_path == db_path


@pytest.mark.parametrize(
    "name, value",
    [
        ("AGENT_INTENTS_AUTH_MODE", "oauth"),
        ("AGENT_INTENTS_SUPPORTED_CHAINS", ",,"),
        ("AGENT_INTENTS_SUPPORTED_CHAINS", "1,base"),
        ("AGENT_INTENTS_ALLOW_DEMO_INTENTS", "maybe"),
        ("AGENT_INTENTS_INTENT_RATE_LIMIT", "0"),
        ("AGENT_INTENTS_REGISTER_RATE_LIMIT", "ten"),
        ("AGENT_INTENTS_LOG_LEVEL", "LOUD"),
    ],
)
def test_invalid_values_rejected(name, value):
    with pytest.raises(InvalidArgumentError):
        Settings.from_env({name: value})
