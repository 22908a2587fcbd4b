"""Tests for the member directory and agent registry."""

import pytest
from eth_account import Account
from eth_keys import keys

from agent_intents.agents import AgentRegistry, agent_key_to_address
from agent_intents.errors import (
    DuplicateMemberError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    RateLimitedError,
)
from agent_intents.models import UserIdentity
from agent_intents.rate_limit import RateLimitRule, SqliteRateLimiter


NOW = 1_700_000_000


def _public_key(acct):
    return keys.PrivateKey(bytes(acct.key)).public_key


class TestMemberDirectory:
    def test_register_and_lookup(self, members):
        owner = Account.create()
        agent = Account.create()

        member = members.register(owner.address, agent.address, "Agent", now=NOW)

        assert member.trustchain_id == owner.address.lower()
        assert member.public_key_address == agent.address.lower()
        assert members.find_active_by_address(agent.address) == member
        assert members.find_active_by_address(agent.address.upper().replace("0X", "0x")) == member
        assert members.find_by_id(member.id) == member

    def test_duplicate_active_key_rejected(self, members):
        agent = Account.create()
        members.register(Account.create().address, agent.address, "First", now=NOW)

        with pytest.raises(DuplicateMemberError):
            members.register(Account.create().address, agent.address, "Second", now=NOW)

    def test_key_can_be_registered_again_after_revocation(self, members):
        owner = Account.create()
        agent = Account.create()
        first = members.register(owner.address, agent.address, "First", now=NOW)
        members.revoke(first.id, now=NOW + 1)

        second = members.register(owner.address, agent.address, "Second", now=NOW + 2)

        assert members.find_active_by_address(agent.address) == second
        assert members.find_by_id(first.id).revoked_at == NOW + 1

    def test_revoke_is_one_way(self, members):
        member = members.register(Account.create().address, Account.create().address, "A", now=NOW)

        revoked = members.revoke(member.id, now=NOW + 5)

        assert revoked.revoked_at == NOW + 5
        assert not revoked.is_active
        assert members.revoke(member.id, now=NOW + 6) is None
        assert members.revoke("missing", now=NOW) is None
        assert members.find_active_by_address(member.public_key_address) is None

    def test_find_active_by_invalid_address(self, members):
        assert members.find_active_by_address("not-an-address") is None

    def test_list_by_trustchain_newest_first(self, members):
        owner = Account.create()
        older = members.register(owner.address, Account.create().address, "Old", now=NOW)
        newer = members.register(owner.address, Account.create().address, "New", now=NOW + 1)
        members.register(Account.create().address, Account.create().address, "Other", now=NOW)

        assert [m.id for m in members.list_by_trustchain(owner.address)] == [newer.id, older.id]


class TestAgentKeyToAddress:
    def test_address_passthrough(self):
        acct = Account.create()
        assert agent_key_to_address(acct.address) == acct.address.lower()

    def test_compressed_public_key(self):
        acct = Account.create()
        compressed = "0x" + _public_key(acct).to_compressed_bytes().hex()
        assert agent_key_to_address(compressed) == acct.address.lower()

    def test_uncompressed_public_key(self):
        acct = Account.create()
        raw = _public_key(acct).to_bytes()
        assert agent_key_to_address("0x04" + raw.hex()) == acct.address.lower()
        assert agent_key_to_address("0x" + raw.hex()) == acct.address.lower()

    @pytest.mark.parametrize(
        "value",
        ["", "0x", "deadbeef", "0xnothex", "0x123", "0x" + "00" * 10, "0x05" + "11" * 64],
    )
    def test_rejects_malformed_keys(self, value):
        with pytest.raises(InvalidArgumentError):
            agent_key_to_address(value)


class TestAgentRegistry:
    def _registry(self, db, members, limit=10):
        return AgentRegistry(
            members,
            limiter=SqliteRateLimiter(db),
            register_rule=RateLimitRule("agent_register", limit, 3600),
        )

    def test_register_uses_session_wallet_as_trustchain(self, db, members):
        owner = UserIdentity(Account.create().address.lower())
        agent = Account.create()

        member = self._registry(db, members).register_agent(owner, agent.address, now=NOW)

        assert member.trustchain_id == owner.wallet_address
        assert member.label == "Unnamed Agent"

    def test_register_rejects_owner_wallet_and_duplicates(self, db, members):
        owner = UserIdentity(Account.create().address.lower())
        agent = Account.create()
        registry = self._registry(db, members)
        registry.register_agent(owner, agent.address, "Bot", now=NOW)

        with pytest.raises(InvalidArgumentError):
            registry.register_agent(owner, owner.wallet_address, now=NOW)
        with pytest.raises(DuplicateMemberError):
            registry.register_agent(owner, agent.address, now=NOW)

    def test_register_is_rate_limited(self, db, members):
        owner = UserIdentity(Account.create().address.lower())
        registry = self._registry(db, members, limit=2)
        registry.register_agent(owner, Account.create().address, now=NOW)
        registry.register_agent(owner, Account.create().address, now=NOW)

        with pytest.raises(RateLimitedError):
            registry.register_agent(owner, Account.create().address, now=NOW)

    def test_list_get_and_revoke_scoped_to_owner(self, db, members):
        owner = UserIdentity(Account.create().address.lower())
        stranger = UserIdentity(Account.create().address.lower())
        registry = self._registry(db, members)
        member = registry.register_agent(owner, Account.create().address, "Bot", now=NOW)

        assert registry.list_agents(owner, owner.wallet_address) == [member]
        assert registry.get_agent(owner, member.id) == member
        with pytest.raises(ForbiddenError):
            registry.list_agents(stranger, owner.wallet_address)
        with pytest.raises(ForbiddenError):
            registry.get_agent(stranger, member.id)
        with pytest.raises(ForbiddenError):
            registry.revoke_agent(stranger, member.id, now=NOW)

        revoked = registry.revoke_agent(owner, member.id, now=NOW + 1)
        assert revoked.revoked_at == NOW + 1
        with pytest.raises(NotFoundError, match="Agent not found or already revoked"):
            registry.revoke_agent(owner, member.id, now=NOW + 2)
        with pytest.raises(NotFoundError):
            registry.get_agent(owner, "missing")
