"""td context / status / usage - briefings for resuming work."""

from __future__ import annotations

import click

from td import config, context_builder
from td.cli import TDContext, pass_ctx
from td.models import Status


def _build(ctx: TDContext, log_limit: int = context_builder.DEFAULT_RECENT_LOGS,
           open_limit: int = context_builder.DEFAULT_OPEN_LIMIT) -> context_builder.Context:
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.session is not None
    root = ctx.find_root()
    return context_builder.build(
        ctx.store, ctx.session_id,
        focused_id=config.get_focus(root),
        session_name=ctx.session.name,
        work_session=config.get_active_work_session(root),
        log_limit=log_limit, open_limit=open_limit,
    )


@click.command("context")
@click.option("--logs", "log_limit", default=context_builder.DEFAULT_RECENT_LOGS, type=int,
              help="Recent logs to include")
@click.option("--open", "open_limit", default=context_builder.DEFAULT_OPEN_LIMIT, type=int,
              help="Open issues to include")
@pass_ctx
def context(ctx: TDContext, log_limit: int, open_limit: int) -> None:
    """Briefing for the current session: focus, handoff, logs and queues."""
    briefing = _build(ctx, log_limit, open_limit)
    if ctx.json_output:
        ctx.output(briefing.to_dict())
    else:
        click.echo(context_builder.render(briefing))


@click.command("status")
@pass_ctx
def status(ctx: TDContext) -> None:
    """Focused issue and issue counts."""
    briefing = _build(ctx)
    if ctx.json_output:
        ctx.output({
            "session": ctx.session.to_dict() if ctx.session else {},
            "focused": briefing.focused.to_dict() if briefing.focused else None,
            "work_session": briefing.work_session,
            "counts": briefing.counts,
        })
        return
    assert ctx.session is not None
    click.echo(f"Session: {ctx.session.display()}")
    if briefing.focused is not None:
        f = briefing.focused
        click.echo(f"Focused: {f.id} [{f.status}] {f.title}")
    else:
        click.echo("Focused: (none)")
    if briefing.work_session:
        click.echo(f"Work session: {briefing.work_session}")
    click.echo(", ".join(f"{briefing.counts.get(s, 0)} {s}" for s in Status.ORDER))


@click.command("usage")
@pass_ctx
def usage(ctx: TDContext) -> None:
    """Agent-oriented summary: briefing plus the commands to use next."""
    briefing = _build(ctx)
    hints = []
    if briefing.focused is not None:
        hints.append(f"td log \"...\"            # record progress on {briefing.focused.id}")
        hints.append(f"td handoff {briefing.focused.id}        # before ending the session")
    elif briefing.open_issues:
        hints.append(f"td start {briefing.open_issues[0].id}           # begin the top open issue")
    if briefing.reviewable:
        hints.append(f"td approve {briefing.reviewable[0].id}         # review another session's work")
    hints.append("td list -q \"status = open\"   # find more work")

    if ctx.json_output:
        data = briefing.to_dict()
        data["next"] = hints
        ctx.output(data)
        return
    click.echo(context_builder.render(briefing))
    click.echo("")
    click.echo("NEXT:")
    for hint in hints:
        click.echo(f"  {hint}")
