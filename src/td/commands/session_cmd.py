"""td session - show, name or rotate the current session."""

from __future__ import annotations

import click

from td import config, session
from td.cli import TDContext, pass_ctx


@click.command("session")
@click.argument("name", required=False)
@click.option("--new", "force_new", is_flag=True, help="Start a fresh session for this context")
@click.option("--list", "list_all", is_flag=True, help="List known sessions")
@pass_ctx
def session_cmd(ctx: TDContext, name: str | None, force_new: bool, list_all: bool) -> None:
    """Show the current session, or name it with NAME."""
    ctx.ensure_initialized()
    root = ctx.find_root()

    if list_all:
        sessions = session.list_sessions(root)
        if ctx.json_output:
            ctx.output([s.to_dict() for s in sessions])
            return
        for s in sessions:
            marker = "*" if s.id == ctx.session_id else " "
            branch = f" [{s.branch}]" if s.branch else ""
            click.echo(f"{marker} {s.display()}{branch}")
        return

    if force_new:
        ctx.session = session.get_or_create(root, force_new=True)
        ctx.echo(f"NEW SESSION {ctx.session.id}")
    if name:
        ctx.session = session.set_name(root, name)
        config.set_session_name(root, name)
        ctx.echo(f"SESSION NAMED {ctx.session.display()}")

    assert ctx.session is not None
    if ctx.json_output:
        ctx.output(ctx.session.to_dict())
    elif not name and not force_new:
        click.echo(f"Session: {ctx.session.display()}")
        if ctx.session.branch:
            click.echo(f"Branch:  {ctx.session.branch}")
        if ctx.session.previous_session_id:
            click.echo(f"Previous: {ctx.session.previous_session_id}")
