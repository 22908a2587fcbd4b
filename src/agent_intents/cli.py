"""
Agent Intents CLI.

Commands:
    agent-intents serve            Run the HTTP API
    agent-intents sign-header      Build an AgentAuth header for a request
    agent-intents agents list      List agents on a trustchain
    agent-intents agents revoke    Revoke an agent key
    agent-intents expire-intents   Expire overdue pending intents
    agent-intents purge-auth       Delete expired challenges and sessions
"""

from __future__ import annotations

import logging
import subprocess
import sys
import time
from pathlib import Path
from typing import Optional

import click
from click.core import ParameterSource
from eth_keys import keys
from eth_utils import decode_hex

from . import __version__
from .agent_auth import sign_agent_auth_header
from .auth_store import AuthStore
from .config import Settings
from .db import Database
from .errors import AgentIntentsError
from .intent_store import IntentStore
from .intents import IntentStateMachine
from .members import MemberDirectory
from .models import normalize_address


# ── Helpers ───────────────────────────────────────────────────────

def _settings() -> Settings:
    try:
        return Settings.from_env()
    except AgentIntentsError as exc:
        click.echo(f"❌ Invalid configuration: {exc}", err=True)
        sys.exit(1)


def _database(settings: Settings) -> Database:
    return Database(settings.db_path)


def _read_op_reference(reference: str) -> str:
    result = subprocess.run(["op", "read", reference], capture_output=True, text=True, timeout=10)
    if result.returncode != 0:
        raise RuntimeError(f"1Password could not read {reference}: {result.stderr.strip()}")
    return result.stdout.strip()


def _load_agent_key(key_input: str) -> str:
    """Agent private key as 0x-hex, from raw hex or an op:// reference."""
    secret = key_input.strip()
    if secret.startswith("op://"):
        secret = _read_op_reference(secret)
    return keys.PrivateKey(decode_hex(secret)).to_hex()


def _format_ts(ts: Optional[int]) -> str:
    if ts is None:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(ts))


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=__version__)
def main():
    """Agent Intents: human-approved transfers proposed by AI agents."""
    pass


@main.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind (default: 127.0.0.1)")
@click.option("--port", type=int, default=8000, help="Port to listen on (default: 8000)")
def serve(host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    from .api import create_app

    settings = _settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(settings)
    click.echo(f"🚀 Agent Intents API on http://{host}:{port}")
    click.echo(f"   Database:  {settings.db_path}")
    click.echo(f"   Auth mode: {settings.auth_mode.value}")
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())


@main.command("sign-header")
@click.option("--agent-key", prompt=True, hide_input=True,
              help="Agent private key hex or op:// reference")
@click.option(
    "--unsafe-allow-key-arg",
    is_flag=True,
    default=False,
    help="Allow passing --agent-key via argv (unsafe; can leak in shell/process history).",
)
@click.option("--method", default="POST", help="HTTP method of the request (default: POST)")
@click.option("--body", default=None, help="Exact request body to sign")
@click.option("--body-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="Read the exact request body from a file")
@click.option("--timestamp", type=int, default=None, help="Unix timestamp override (default: now)")
def sign_header(
    agent_key: str,
    unsafe_allow_key_arg: bool,
    method: str,
    body: Optional[str],
    body_file: Optional[Path],
    timestamp: Optional[int],
):
    """Print an AgentAuth Authorization header value for one request."""
    ctx = click.get_current_context(silent=True)
    key_from_argv = (
        ctx is not None
        and ctx.get_parameter_source("agent_key") == ParameterSource.COMMANDLINE
    )
    if key_from_argv and not unsafe_allow_key_arg:
        click.echo(
            "❌ Refusing --agent-key from argv. Re-run with prompt input or pass "
            "--unsafe-allow-key-arg to acknowledge the risk.",
            err=True,
        )
        sys.exit(1)
    if body is not None and body_file is not None:
        click.echo("❌ Pass either --body or --body-file, not both", err=True)
        sys.exit(1)

    try:
        private_key = _load_agent_key(agent_key)
    except Exception as exc:
        click.echo(f"❌ Failed to load agent key: {exc}", err=True)
        sys.exit(1)

    raw_body = body_file.read_bytes() if body_file is not None else body
    header = sign_agent_auth_header(
        private_key,
        method=method.upper(),
        body=raw_body,
        timestamp=timestamp,
    )
    click.echo(header)


@main.group("agents")
def agents_group():
    """Inspect and revoke registered agents (local admin)."""
    pass


@agents_group.command("list")
@click.option("--trustchain", required=True, help="Owning wallet address")
@click.option("--include-revoked", is_flag=True, help="Include revoked agents")
def agents_list(trustchain: str, include_revoked: bool):
    """List agents registered on a trustchain."""
    try:
        trustchain_id = normalize_address(trustchain)
    except AgentIntentsError as exc:
        click.echo(f"❌ {exc}", err=True)
        sys.exit(1)

    members = MemberDirectory(_database(_settings())).list_by_trustchain(trustchain_id)
    if not include_revoked:
        members = [m for m in members if m.is_active]
    if not members:
        click.echo("No agents found")
        return

    for member in members:
        click.echo(f"\n{member.id}")
        click.echo(f"  Label:   {member.label}")
        click.echo(f"  Address: {member.public_key_address}")
        click.echo(f"  Created: {_format_ts(member.created_at)}")
        if member.revoked_at is not None:
            click.echo(f"  Revoked: {_format_ts(member.revoked_at)}")


@agents_group.command("revoke")
@click.option("--id", "member_id", required=True, help="Member id of the agent")
def agents_revoke(member_id: str):
    """Revoke an agent key; its AgentAuth headers stop verifying."""
    revoked = MemberDirectory(_database(_settings())).revoke(member_id)
    if revoked is None:
        click.echo(f"❌ Agent not found or already revoked: {member_id}", err=True)
        sys.exit(1)
    click.echo(f"✓ Agent revoked: {revoked.id} ({revoked.label})")
    click.echo(f"  Address: {revoked.public_key_address}")


@main.command("expire-intents")
def expire_intents():
    """Move pending intents past their expiry to expired."""
    machine = IntentStateMachine(IntentStore(_database(_settings())))
    count = machine.expire_overdue()
    click.echo(f"✓ Expired {count} intent(s)")


@main.command("purge-auth")
def purge_auth():
    """Delete expired challenges and sessions."""
    removed = AuthStore(_database(_settings())).purge_expired(int(time.time()))
    click.echo(f"✓ Purged {removed} expired challenge/session record(s)")


if __name__ == "__main__":
    main()
