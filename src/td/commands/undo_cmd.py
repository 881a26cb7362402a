"""td undo - revert this session's most recent operations."""

from __future__ import annotations

import click

from td.cli import TDContext, pass_ctx
from td.undo import undo


@click.command("undo")
@click.option("-n", "count", default=1, type=click.IntRange(min=1),
              help="Number of operations to undo")
@pass_ctx
def undo_cmd(ctx: TDContext, count: int) -> None:
    """Undo the last operation (or the last N) of the current session."""
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.mutator is not None

    result = undo(ctx.store, ctx.mutator, count)
    if ctx.json_output:
        ctx.output({"undone": [a.to_dict() for a in result.undone],
                    "written": [a.to_dict() for a in result.written]})
        return
    for action in result.undone:
        click.echo(f"UNDONE {action.action_type} {action.entity_type} {action.entity_id}")
