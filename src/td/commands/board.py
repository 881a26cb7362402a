"""td board - query-backed boards with manual ordering."""

from __future__ import annotations

import click

from td.boards import BoardOperations
from td.cli import TDContext, pass_ctx
from td.models import Status


def _ops(ctx: TDContext) -> BoardOperations:
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.mutator is not None
    return BoardOperations(ctx.store, ctx.mutator)


@click.group("board")
def board() -> None:
    """Manage boards."""


@board.command("list")
@pass_ctx
def board_list(ctx: TDContext) -> None:
    """List boards."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    boards = ctx.store.list_boards()

    if ctx.json_output:
        ctx.output([b.to_dict() for b in boards])
        return
    for b in boards:
        suffix = " (built-in)" if b.is_builtin else ""
        click.echo(f"{b.id:<16} {b.name}{suffix}  {b.query or '(all issues)'}")


@board.command("create")
@click.argument("name")
@click.option("--query", "-q", "tdq", default="", help="TDQ expression selecting issues")
@pass_ctx
def board_create(ctx: TDContext, name: str, tdq: str) -> None:
    """Create a board."""
    b = _ops(ctx).create(name, tdq)
    if ctx.json_output:
        ctx.output(b.to_dict())
    else:
        click.echo(f"CREATED {b.id}")


@board.command("update")
@click.argument("ref")
@click.option("--name", default=None, help="New name")
@click.option("--query", "-q", "tdq", default=None, help="New TDQ expression")
@pass_ctx
def board_update(ctx: TDContext, ref: str, name: str | None, tdq: str | None) -> None:
    """Rename a board or change its query."""
    b = _ops(ctx).update(ref, name=name, query=tdq)
    if ctx.json_output:
        ctx.output(b.to_dict())
    else:
        click.echo(f"UPDATED {b.id}")


@board.command("delete")
@click.argument("ref")
@pass_ctx
def board_delete(ctx: TDContext, ref: str) -> None:
    """Delete a board and its positions."""
    b = _ops(ctx).delete(ref)
    if ctx.json_output:
        ctx.output(b.to_dict())
    else:
        click.echo(f"DELETED {b.id}")


@board.command("move")
@click.argument("ref")
@click.argument("issue_id")
@click.argument("position", type=int)
@pass_ctx
def board_move(ctx: TDContext, ref: str, issue_id: str, position: int) -> None:
    """Place an issue at a 1-based position on a board."""
    ops = _ops(ctx)
    pos = ops.set_position(ref, ctx.resolve_issue_id(issue_id), position)
    if ctx.json_output:
        ctx.output(pos.to_row())
    else:
        click.echo(f"POSITIONED {pos.issue_id} at {position}")


@board.command("unposition")
@click.argument("ref")
@click.argument("issue_id")
@pass_ctx
def board_unposition(ctx: TDContext, ref: str, issue_id: str) -> None:
    """Remove an issue's manual position."""
    ops = _ops(ctx)
    pos = ops.unposition(ref, ctx.resolve_issue_id(issue_id))
    if ctx.json_output:
        ctx.output(pos.to_row())
    else:
        click.echo(f"UNPOSITIONED {pos.issue_id}")


@board.command("show")
@click.argument("ref")
@click.option("--status", "-s", multiple=True, help="Only these statuses")
@pass_ctx
def board_show(ctx: TDContext, ref: str, status: tuple[str, ...]) -> None:
    """Show a board: positioned issues first, then the rest."""
    ops = _ops(ctx)
    statuses = [Status.normalize(s) for s in status] or None
    b, views = ops.show(ref, ctx.session_id, statuses)

    if ctx.json_output:
        ctx.output({"board": b.to_dict(), "issues": [v.to_dict() for v in views]})
        return
    click.echo(f"{b.name}  [{b.query or 'all issues'}]")
    if not views:
        click.echo("  No issues.")
        return
    for v in views:
        marker = f"{v.position:>8}" if v.has_position else " " * 8
        click.echo(f"{marker}  {v.issue.id} [{v.issue.status}] {v.issue.priority} {v.issue.title}")
