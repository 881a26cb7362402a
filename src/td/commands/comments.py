"""td comments/comment - issue comments."""

from __future__ import annotations

import click

from td.cli import TDContext, pass_ctx
from td.utils import format_time_ago


@click.command("comments")
@click.argument("issue_id")
@pass_ctx
def comments(ctx: TDContext, issue_id: str) -> None:
    """List comments on an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    items = ctx.store.get_comments(full_id)

    if ctx.json_output:
        ctx.output([c.to_dict() for c in items])
        return
    if not items:
        click.echo(f"No comments on {full_id}.")
        return
    for c in items:
        click.echo(f"{c.id} {c.session_id} ({format_time_ago(c.created_at)}): {c.text}")


@click.command("comment")
@click.argument("issue_id")
@click.argument("text", nargs=-1, required=False)
@click.option("--delete", "delete_id", default="", help="Delete a comment by ID")
@pass_ctx
def comment_add(ctx: TDContext, issue_id: str, text: tuple[str, ...], delete_id: str) -> None:
    """Add a comment to an issue (or delete one with --delete)."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)

    if delete_id:
        removed = ops.delete_comment(delete_id)
        if ctx.json_output:
            ctx.output(removed.to_dict())
        else:
            click.echo(f"DELETED {removed.id}")
        return

    c = ops.add_comment(full_id, " ".join(text))
    if ctx.json_output:
        ctx.output(c.to_dict())
    else:
        click.echo(f"COMMENTED {full_id} ({c.id})")
