"""td ws - work sessions spanning several issues."""

from __future__ import annotations

import click

from td import config
from td.cli import TDContext, pass_ctx
from td.models import LogType
from td.worksessions import WorkSessionOperations


def _ops(ctx: TDContext) -> WorkSessionOperations:
    return WorkSessionOperations(ctx.ops())


def _active(ctx: TDContext) -> str:
    return config.get_active_work_session(ctx.find_root())


@click.group("ws")
def ws() -> None:
    """Manage work sessions."""


@ws.command("start")
@click.argument("name")
@pass_ctx
def ws_start(ctx: TDContext, name: str) -> None:
    """Start a work session and make it active."""
    ops = _ops(ctx)
    session = ops.start(name, _active(ctx), ctx.git_state())
    config.set_active_work_session(ctx.find_root(), session.id)
    if ctx.json_output:
        ctx.output(session.to_dict())
    else:
        click.echo(f"WORK SESSION STARTED {session.id} ({session.name})")


@ws.command("tag")
@click.argument("issue_ids", nargs=-1, required=True)
@click.option("--no-start", is_flag=True, help="Do not start open issues")
@pass_ctx
def ws_tag(ctx: TDContext, issue_ids: tuple[str, ...], no_start: bool) -> None:
    """Tag issues to the active work session."""
    ops = _ops(ctx)
    resolved = [ctx.resolve_issue_id(i) for i in issue_ids]
    result = ops.tag(_active(ctx), resolved, auto_start=not no_start,
                     git_state=ctx.git_state())
    for warning in result.warnings:
        click.echo(f"WARNING: {warning}", err=True)
    if ctx.json_output:
        ctx.output({"tagged": result.tagged, "started": result.started,
                    "warnings": result.warnings})
        return
    for issue_id in result.tagged:
        suffix = " (started)" if issue_id in result.started else ""
        click.echo(f"TAGGED {issue_id}{suffix}")


@ws.command("untag")
@click.argument("issue_ids", nargs=-1, required=True)
@pass_ctx
def ws_untag(ctx: TDContext, issue_ids: tuple[str, ...]) -> None:
    """Remove issues from the active work session."""
    ops = _ops(ctx)
    resolved = [ctx.resolve_issue_id(i) for i in issue_ids]
    removed = ops.untag(_active(ctx), resolved)
    if ctx.json_output:
        ctx.output({"untagged": removed})
        return
    for issue_id in removed:
        click.echo(f"UNTAGGED {issue_id}")


@ws.command("log")
@click.argument("message")
@click.option("--type", "-t", "log_type", default=LogType.PROGRESS,
              type=click.Choice(LogType.ORDER, case_sensitive=False), help="Log type")
@click.option("--only", default=None, help="Log to this issue only")
@pass_ctx
def ws_log(ctx: TDContext, message: str, log_type: str, only: str | None) -> None:
    """Log progress to every issue in the active work session."""
    ops = _ops(ctx)
    only_id = ctx.resolve_issue_id(only) if only else ""
    logs = ops.log(_active(ctx), message, log_type.lower(), only_id)
    if ctx.json_output:
        ctx.output([entry.to_dict() for entry in logs])
        return
    for entry in logs:
        if entry.issue_id:
            click.echo(f"LOGGED {entry.issue_id}")


@ws.command("end")
@pass_ctx
def ws_end(ctx: TDContext) -> None:
    """End the active work session."""
    ops = _ops(ctx)
    session = ops.end(_active(ctx), ctx.git_state())
    config.set_active_work_session(ctx.find_root(), "")
    if ctx.json_output:
        ctx.output(session.to_dict())
    else:
        click.echo(f"WORK SESSION ENDED {session.id}")


@ws.command("current")
@pass_ctx
def ws_current(ctx: TDContext) -> None:
    """Show the active work session."""
    summary = _ops(ctx).current(_active(ctx))
    if ctx.json_output:
        ctx.output(summary.to_dict() if summary else {})
        return
    if summary is None:
        click.echo("No active work session.")
        return
    _print_summary(summary)


@ws.command("list")
@click.option("--limit", "-n", default=20, type=int, help="Max sessions to show")
@pass_ctx
def ws_list(ctx: TDContext, limit: int) -> None:
    """List recent work sessions."""
    sessions = _ops(ctx).list_sessions(limit)
    if ctx.json_output:
        ctx.output([s.to_dict() for s in sessions])
        return
    if not sessions:
        click.echo("No work sessions.")
        return
    active = _active(ctx)
    for s in sessions:
        state = "active" if s.active else "ended"
        marker = "*" if s.id == active else " "
        click.echo(f"{marker} {s.id} {s.name} ({state})")


@ws.command("show")
@click.argument("ws_id")
@pass_ctx
def ws_show(ctx: TDContext, ws_id: str) -> None:
    """Show a work session with its issues and logs."""
    summary = _ops(ctx).show(ws_id)
    if ctx.json_output:
        ctx.output(summary.to_dict())
        return
    _print_summary(summary)


def _print_summary(summary) -> None:
    s = summary.session
    click.echo(f"{s.id}: {s.name} ({'active' if s.active else 'ended'})")
    if summary.issues:
        click.echo("\nIssues:")
        for issue in summary.issues:
            click.echo(f"  {issue.id} [{issue.status}] {issue.title}")
    if summary.logs:
        click.echo("\nLogs:")
        for entry in summary.logs:
            target = entry.issue_id or "(session)"
            click.echo(f"  [{entry.type}] {target}: {entry.message}")
