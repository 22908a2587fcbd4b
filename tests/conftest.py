"""Shared fixtures: a private SQLite database per test."""

import pytest

from agent_intents.db import Database
from agent_intents.members import MemberDirectory


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "agent_intents.sqlite3")


@pytest.fixture
def members(db):
    return MemberDirectory(db)
