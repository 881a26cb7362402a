"""td start/unstart/review/approve/reject/close/block/unblock/reopen - status transitions."""

from __future__ import annotations

import click

from td import config
from td.cli import TDContext, pass_ctx
from td.operations import TransitionResult


def report(ctx: TDContext, result: TransitionResult, line: str) -> None:
    """Print the stable result line, then warnings and cascades."""
    if ctx.json_output:
        ctx.output(result.to_dict())
        return
    click.echo(line)
    for warning in result.warnings:
        click.echo(f"WARNING: {warning}", err=True)
    if result.cascaded:
        ctx.echo(f"  cascaded: {', '.join(result.cascaded)}")
    if result.parents:
        ctx.echo(f"  parents: {', '.join(result.parents)}")
    if result.unblocked:
        ctx.echo(f"  unblocked: {', '.join(result.unblocked)}")


def _clear_focus(ctx: TDContext, result: TransitionResult) -> None:
    assert ctx.root is not None
    for issue_id in [result.issue.id, *result.cascaded]:
        config.clear_focus_if(ctx.root, issue_id)


@click.command("start")
@click.argument("issue_id")
@click.option("--force", is_flag=True, help="Start even if dependencies are open")
@click.option("--reason", "-r", default="", help="Log message")
@pass_ctx
def start(ctx: TDContext, issue_id: str, force: bool, reason: str) -> None:
    """Begin work on an issue (open/blocked -> in_progress)."""
    ops = ctx.ops()
    assert ctx.root is not None
    full_id = ctx.resolve_issue_id(issue_id)
    result = ops.start(full_id, force=force, reason=reason, git_state=ctx.git_state())
    config.set_focus(ctx.root, full_id)
    report(ctx, result, f"STARTED {full_id} (session: {ctx.session_id})")


@click.command("unstart")
@click.argument("issue_id")
@click.option("--reason", "-r", default="", help="Log message")
@pass_ctx
def unstart(ctx: TDContext, issue_id: str, reason: str) -> None:
    """Return an in-progress issue to open."""
    ops = ctx.ops()
    assert ctx.root is not None
    full_id = ctx.resolve_issue_id(issue_id)
    result = ops.unstart(full_id, reason=reason)
    config.clear_focus_if(ctx.root, full_id)
    report(ctx, result, f"UNSTARTED {full_id}")


@click.command("review")
@click.argument("issue_id")
@click.option("--reason", "-r", default="", help="Log message")
@pass_ctx
def review(ctx: TDContext, issue_id: str, reason: str) -> None:
    """Submit an issue for review (requires a handoff)."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)
    result = ops.review(full_id, reason=reason)
    _clear_focus(ctx, result)
    report(ctx, result, f"REVIEW REQUESTED {full_id} (session: {ctx.session_id})")


@click.command("approve")
@click.argument("issue_id")
@click.option("--reason", "-r", default="", help="Log message")
@pass_ctx
def approve(ctx: TDContext, issue_id: str, reason: str) -> None:
    """Approve an issue in review; the reviewer must differ from the implementer."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)
    result = ops.approve(full_id, reason=reason)
    _clear_focus(ctx, result)
    report(ctx, result, f"APPROVED {full_id} (reviewer: {ctx.session_id})")


@click.command("reject")
@click.argument("issue_id")
@click.option("--reason", "-r", default="", help="Why the issue is sent back")
@pass_ctx
def reject(ctx: TDContext, issue_id: str, reason: str) -> None:
    """Send an issue in review back to in_progress."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)
    result = ops.reject(full_id, reason=reason)
    report(ctx, result, f"REJECTED {full_id} → in_progress")


@click.command("close")
@click.argument("issue_id")
@click.option("--reason", "-r", default="", help="Close reason")
@pass_ctx
def close(ctx: TDContext, issue_id: str, reason: str) -> None:
    """Close an issue directly."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)
    result = ops.close(full_id, reason=reason)
    _clear_focus(ctx, result)
    report(ctx, result, f"CLOSED {full_id}")


@click.command("block")
@click.argument("issue_id")
@click.option("--reason", "-r", default="", help="What blocks the issue")
@pass_ctx
def block(ctx: TDContext, issue_id: str, reason: str) -> None:
    """Mark an issue blocked."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)
    report(ctx, ops.block(full_id, reason=reason), f"BLOCKED {full_id}")


@click.command("unblock")
@click.argument("issue_id")
@click.option("--reason", "-r", default="", help="Log message")
@pass_ctx
def unblock(ctx: TDContext, issue_id: str, reason: str) -> None:
    """Return a blocked issue to open."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)
    report(ctx, ops.unblock(full_id, reason=reason), f"UNBLOCKED {full_id}")


@click.command("reopen")
@click.argument("issue_id")
@click.option("--reason", "-r", default="", help="Log message")
@pass_ctx
def reopen(ctx: TDContext, issue_id: str, reason: str) -> None:
    """Reopen a closed or in-review issue."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)
    report(ctx, ops.reopen(full_id, reason=reason), f"REOPENED {full_id}")
