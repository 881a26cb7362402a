"""td delete/restore - soft delete and restore issues."""

from __future__ import annotations

import click

from td import config
from td.cli import TDContext, pass_ctx


@click.command("delete")
@click.argument("issue_ids", nargs=-1, required=True)
@pass_ctx
def delete(ctx: TDContext, issue_ids: tuple[str, ...]) -> None:
    """Soft-delete one or more issues."""
    ops = ctx.ops()
    assert ctx.root is not None

    deleted = []
    for partial_id in issue_ids:
        full_id = ctx.resolve_issue_id(partial_id)
        ops.delete(full_id)
        config.clear_focus_if(ctx.root, full_id)
        deleted.append(full_id)
        if not ctx.json_output:
            click.echo(f"DELETED {full_id}")

    if ctx.json_output:
        ctx.output({"deleted": deleted})


@click.command("restore")
@click.argument("issue_ids", nargs=-1, required=True)
@pass_ctx
def restore(ctx: TDContext, issue_ids: tuple[str, ...]) -> None:
    """Restore soft-deleted issues."""
    ops = ctx.ops()

    restored = []
    for partial_id in issue_ids:
        full_id = ctx.resolve_issue_id(partial_id)
        ops.restore(full_id)
        restored.append(full_id)
        if not ctx.json_output:
            click.echo(f"RESTORED {full_id}")

    if ctx.json_output:
        ctx.output({"restored": restored})
