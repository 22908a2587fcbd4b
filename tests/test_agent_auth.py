"""Tests for AgentAuth header verification."""

import logging

import pytest
from eth_account import Account

from agent_intents.agent_auth import (
    AgentAuthVerifier,
    compute_body_hash,
    has_agent_auth,
    sign_agent_auth_header,
)
from agent_intents.errors import AuthenticationFailedError
from agent_intents.models import AgentIdentity


NOW = 1_700_000_000
BODY = b'{"agentId":"agent-1","details":{"amount":"5","token":"USDC"}}'


@pytest.fixture
def owner():
    return Account.create()


@pytest.fixture
def agent(owner, members):
    acct = Account.create()
    member = members.register(owner.address, acct.address, "Test Agent", now=NOW)
    return acct, member


def _verify(members, header, *, method="POST", body=BODY, now=NOW):
    return AgentAuthVerifier(members).verify(
        method=method, raw_body=body, authorization=header, now=now
    )


class TestHeaderHelpers:
    def test_body_hash_is_keccak_of_raw_bytes(self):
        assert compute_body_hash(b"") == (
            "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        )
        assert compute_body_hash("abc") == compute_body_hash(b"abc")

    def test_has_agent_auth(self):
        assert has_agent_auth("AgentAuth 1.0x.0xsig")
        assert not has_agent_auth("Bearer token")
        assert not has_agent_auth(None)
        assert not has_agent_auth("AgentAuth")

    def test_get_header_uses_empty_body_hash(self, agent):
        acct, _ = agent
        header = sign_agent_auth_header(acct.key.hex(), method="GET", timestamp=NOW)
        assert header.startswith(f"AgentAuth {NOW}.0x.0x")

    def test_default_method_signs_body_hash(self, agent):
        acct, _ = agent
        header = sign_agent_auth_header(acct.key.hex(), body=BODY, timestamp=NOW)
        assert header.startswith(f"AgentAuth {NOW}.{compute_body_hash(BODY)}.0x")


class TestAgentAuthVerifier:
    def test_valid_post_header(self, members, agent):
        acct, member = agent
        header = sign_agent_auth_header(acct.key.hex(), method="POST", body=BODY, timestamp=NOW)

        identity = _verify(members, header)

        assert identity == AgentIdentity(member_id=member.id, trustchain_id=member.trustchain_id)

    def test_valid_get_header_ignores_body(self, members, agent):
        acct, member = agent
        header = sign_agent_auth_header(acct.key.hex(), method="GET", timestamp=NOW)

        identity = _verify(members, header, method="GET", body=b"")

        assert identity.member_id == member.id

    @pytest.mark.parametrize("offset", [0, 299, 300, -299, -300])
    def test_timestamp_within_window_accepted(self, members, agent, offset):
        acct, member = agent
        header = sign_agent_auth_header(acct.key.hex(), body=BODY, timestamp=NOW - offset)

        assert _verify(members, header).member_id == member.id

    @pytest.mark.parametrize("offset", [301, -301, 3600])
    def test_timestamp_outside_window_rejected(self, members, agent, offset):
        acct, _ = agent
        header = sign_agent_auth_header(acct.key.hex(), body=BODY, timestamp=NOW - offset)

        with pytest.raises(AuthenticationFailedError):
            _verify(members, header)

    def test_replayed_header_rejected_after_window(self, members, agent):
        acct, _ = agent
        header = sign_agent_auth_header(acct.key.hex(), body=BODY, timestamp=NOW)

        _verify(members, header, now=NOW + 300)
        with pytest.raises(AuthenticationFailedError):
            _verify(members, header, now=NOW + 301)

    def test_body_substitution_rejected(self, members, agent):
        acct, _ = agent
        header = sign_agent_auth_header(acct.key.hex(), body=BODY, timestamp=NOW)
        tampered = BODY.replace(b'"5"', b'"6"')

        with pytest.raises(AuthenticationFailedError) as exc_info:
            _verify(members, header, body=tampered)
        assert exc_info.value.reason == "Body hash mismatch"

    def test_reserialized_body_rejected(self, members, agent):
        acct, _ = agent
        header = sign_agent_auth_header(acct.key.hex(), body=BODY, timestamp=NOW)
        reserialized = BODY.replace(b",", b", ")

        with pytest.raises(AuthenticationFailedError):
            _verify(members, header, body=reserialized)

    def test_unregistered_signer_rejected(self, members, agent):
        stranger = Account.create()
        header = sign_agent_auth_header(stranger.key.hex(), body=BODY, timestamp=NOW)

        with pytest.raises(AuthenticationFailedError) as exc_info:
            _verify(members, header)
        assert "not registered" in exc_info.value.reason

    def test_revoked_member_rejected(self, members, agent):
        acct, member = agent
        header = sign_agent_auth_header(acct.key.hex(), body=BODY, timestamp=NOW)
        members.revoke(member.id, now=NOW)

        with pytest.raises(AuthenticationFailedError):
            _verify(members, header)

    def test_extra_dot_segment_is_part_of_signature(self, members, agent):
        acct, _ = agent
        header = sign_agent_auth_header(acct.key.hex(), body=BODY, timestamp=NOW)

        with pytest.raises(AuthenticationFailedError) as exc_info:
            _verify(members, header + ".extra")
        assert "Signature recovery failed" in exc_info.value.reason

    @pytest.mark.parametrize(
        "header",
        [
            None,
            "",
            "Bearer abc",
            "AgentAuth",
            "AgentAuth 1700000000.0x",
            "AgentAuth soon.0x.0xdeadbeef",
            "AgentAuth 1700000000.0x.nothex",
        ],
    )
    def test_malformed_headers_rejected(self, members, agent, header):
        with pytest.raises(AuthenticationFailedError):
            _verify(members, header, method="GET", body=b"")

    def test_failures_are_indistinguishable_to_caller(self, members, agent):
        acct, member = agent
        stranger = Account.create()
        good = sign_agent_auth_header(acct.key.hex(), body=BODY, timestamp=NOW)
        cases = [
            ("Bearer abc", BODY, NOW),
            (good, BODY, NOW + 301),
            (good, BODY + b" ", NOW),
            (sign_agent_auth_header(stranger.key.hex(), body=BODY, timestamp=NOW), BODY, NOW),
        ]

        messages = set()
        reasons = set()
        for header, body, now in cases:
            with pytest.raises(AuthenticationFailedError) as exc_info:
                _verify(members, header, body=body, now=now)
            messages.add(str(exc_info.value))
            reasons.add(exc_info.value.reason)

        assert messages == {"Authentication failed"}
        assert len(reasons) == len(cases)

    def test_rejection_cause_is_logged(self, members, agent, caplog):
        acct, _ = agent
        header = sign_agent_auth_header(acct.key.hex(), body=BODY, timestamp=NOW)

        with caplog.at_level(logging.WARNING, logger="agent_intents.agent_auth"):
            with pytest.raises(AuthenticationFailedError):
                _verify(members, header, body=b"{}")

        assert "Body hash mismatch" in caplog.text
