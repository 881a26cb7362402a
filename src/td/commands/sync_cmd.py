"""td sync / td auth - sync with a remote server."""

from __future__ import annotations

from datetime import timedelta

import click

from td import features, syncconfig
from td.cli import TDContext, pass_ctx
from td.errors import InvalidInput
from td.models import now_utc
from td.sync.client import SyncClient
from td.sync.engine import connect
from td.sync.events import count_pending


def _require_sync_cli(ctx: TDContext) -> None:
    if not features.is_enabled(ctx.find_root(), features.SYNC_CLI.name):
        raise InvalidInput("sync commands are disabled. Enable with "
                           "'td feature set sync_cli true' or TD_FEATURE_SYNC_CLI=1")


@click.group("sync", invoke_without_command=True)
@click.option("--push", "push_only", is_flag=True, help="Only push local changes")
@click.option("--pull", "pull_only", is_flag=True, help="Only pull remote changes")
@click.pass_context
def sync_cmd(click_ctx: click.Context, push_only: bool, pull_only: bool) -> None:
    """Push local changes and pull remote ones."""
    ctx = click_ctx.find_object(TDContext)
    _require_sync_cli(ctx)
    if click_ctx.invoked_subcommand is not None:
        return
    ctx.ensure_initialized()
    assert ctx.store is not None

    engine = connect(ctx.store, ctx.find_root(), ctx.session_id)
    try:
        if push_only:
            out = {"push": engine.push().to_dict()}
        elif pull_only:
            out = {"pull": engine.pull().to_dict()}
        else:
            out = engine.sync()
    finally:
        engine.client.close()
    if engine.store is not ctx.store:
        ctx.store = engine.store
        ctx.mutator = None

    if ctx.json_output:
        ctx.output(out)
        return
    boot = out.get("bootstrap") or {}
    if boot.get("bootstrapped"):
        click.echo(f"BOOTSTRAPPED from snapshot at seq {boot['server_seq']}")
    if "push" in out:
        p = out["push"]
        click.echo(f"PUSHED {p['acked']}/{p['pushed']}"
                   + (f" ({len(p['rejected'])} rejected)" if p["rejected"] else ""))
    if "pull" in out:
        p = out["pull"]
        click.echo(f"PULLED {p['applied']}/{p['received']}"
                   + (f" ({p['conflicts']} conflicts)" if p["conflicts"] else ""))


@sync_cmd.command("status")
@pass_ctx
def sync_status(ctx: TDContext) -> None:
    """Show link state and pending counts."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    state = ctx.store.get_sync_state() or {}
    data = {
        "project_id": state.get("project_id") or "",
        "last_pushed_action_id": state.get("last_pushed_action_id") or 0,
        "last_pulled_server_seq": state.get("last_pulled_server_seq") or 0,
        "last_sync_at": state.get("last_sync_at") or "",
        "unsynced_actions": count_pending(ctx.store),
        "pending_events": ctx.store.count_pending_events(),
        "authenticated": syncconfig.is_authenticated(),
    }
    if ctx.json_output:
        ctx.output(data)
        return
    if not data["project_id"]:
        click.echo("Not linked to a sync project.")
    else:
        click.echo(f"Project:     {data['project_id']}")
        click.echo(f"Last sync:   {data['last_sync_at'] or 'never'}")
        click.echo(f"Pulled seq:  {data['last_pulled_server_seq']}")
    click.echo(f"Unsynced:    {data['unsynced_actions']}")
    click.echo(f"Buffered:    {data['pending_events']}")
    click.echo(f"Logged in:   {'yes' if data['authenticated'] else 'no'}")


@sync_cmd.command("link")
@click.argument("project_id")
@pass_ctx
def sync_link(ctx: TDContext, project_id: str) -> None:
    """Link this project to a remote project id."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    ctx.store.set_sync_project(project_id)
    ctx.echo(f"LINKED {project_id}")


@sync_cmd.command("unlink")
@pass_ctx
def sync_unlink(ctx: TDContext) -> None:
    """Forget the remote project link."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    ctx.store.clear_sync_state()
    ctx.echo("UNLINKED")


@sync_cmd.command("conflicts")
@click.option("--limit", "-n", default=20, type=int, help="Max records")
@click.option("--since", default=None, type=int, help="Only the last N hours")
@pass_ctx
def sync_conflicts(ctx: TDContext, limit: int, since: int | None) -> None:
    """Show remote values that lost a field merge."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    cutoff = now_utc() - timedelta(hours=since) if since else None
    conflicts = ctx.store.get_recent_conflicts(limit, since=cutoff)
    if ctx.json_output:
        ctx.output([c.to_dict() for c in conflicts])
        return
    if not conflicts:
        click.echo("No conflicts.")
        return
    for c in conflicts:
        click.echo(f"seq {c.server_seq} {c.entity_type}/{c.entity_id}.{c.field}: "
                   f"kept {c.local_value!r}, dropped {c.remote_value!r}")


@sync_cmd.command("history")
@click.option("--limit", "-n", default=20, type=int, help="Max entries")
@pass_ctx
def sync_history(ctx: TDContext, limit: int) -> None:
    """Show recent push and pull activity."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    entries = ctx.store.get_sync_history_tail(limit)
    if ctx.json_output:
        ctx.output([e.to_dict() for e in entries])
        return
    for e in entries:
        click.echo(f"{e.direction:<4} seq {e.server_seq:<6} {e.action_type:<12} "
                   f"{e.entity_type}/{e.entity_id}")


# --- Auth ---

@click.group("auth")
@pass_ctx
def auth(ctx: TDContext) -> None:
    """Manage sync server credentials."""
    _require_sync_cli(ctx)


@auth.command("login")
@click.option("--api-key", required=True, envvar="TD_AUTH_KEY", help="API key")
@click.option("--url", default=None, help="Sync server URL")
@click.option("--email", default="", help="Account email")
@click.option("--no-verify", is_flag=True, help="Skip the server health check")
@pass_ctx
def auth_login(ctx: TDContext, api_key: str, url: str | None, email: str,
               no_verify: bool) -> None:
    """Store an API key for the sync server."""
    server_url = url or syncconfig.load_sync_config().url
    device = syncconfig.device_id()
    if not no_verify:
        with SyncClient(server_url, api_key, device) as client:
            client.health()
    creds = syncconfig.load_credentials()
    creds.api_key = api_key
    creds.server_url = server_url
    creds.email = email or creds.email
    creds.device_id = device
    syncconfig.save_credentials(creds)
    ctx.echo(f"LOGGED IN to {server_url}")


@auth.command("logout")
@pass_ctx
def auth_logout(ctx: TDContext) -> None:
    """Forget the stored API key."""
    if syncconfig.clear_credentials():
        ctx.echo("LOGGED OUT")
    else:
        ctx.echo("Not logged in.")


@auth.command("status")
@pass_ctx
def auth_status(ctx: TDContext) -> None:
    """Show stored credentials (key masked)."""
    creds = syncconfig.load_credentials()
    if ctx.json_output:
        ctx.output({"authenticated": bool(creds.api_key), **creds.to_dict()})
        return
    if not creds.api_key:
        click.echo("Not logged in.")
        return
    click.echo(f"Logged in to {creds.server_url or syncconfig.load_sync_config().url}")
    if creds.email:
        click.echo(f"Email:  {creds.email}")
    click.echo(f"Device: {creds.device_id}")
