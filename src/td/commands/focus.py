"""td focus/unfocus - the issue this project is working on."""

from __future__ import annotations

import click

from td import config
from td.cli import TDContext, pass_ctx


@click.command("focus")
@click.argument("issue_id", required=False, default="")
@pass_ctx
def focus(ctx: TDContext, issue_id: str) -> None:
    """Set the focused issue, or show it when no ID is given."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.root is not None

    if not issue_id:
        current = config.get_focus(ctx.root)
        if ctx.json_output:
            ctx.output({"focused_issue_id": current})
        else:
            click.echo(current or "No focused issue.")
        return

    full_id = ctx.resolve_issue_id(issue_id)
    config.set_focus(ctx.root, full_id)
    if ctx.json_output:
        ctx.output({"focused_issue_id": full_id})
    else:
        click.echo(f"FOCUSED {full_id}")


@click.command("unfocus")
@pass_ctx
def unfocus(ctx: TDContext) -> None:
    """Clear the focused issue."""
    ctx.ensure_initialized()
    assert ctx.root is not None
    config.clear_focus(ctx.root)
    if ctx.json_output:
        ctx.output({"focused_issue_id": ""})
    else:
        click.echo("UNFOCUSED")
