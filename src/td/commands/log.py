"""td log - record a progress log entry."""

from __future__ import annotations

import click

from td import config
from td.cli import TDContext, pass_ctx
from td.errors import InvalidInput
from td.models import LogType
from td.worksessions import WorkSessionOperations


@click.command("log")
@click.argument("args", nargs=-1, required=True)
@click.option("--type", "-t", "log_type", default=LogType.PROGRESS,
              type=click.Choice(LogType.ORDER, case_sensitive=False), help="Log type")
@click.option("--blocker", is_flag=True, help="Shorthand for --type blocker")
@click.option("--decision", is_flag=True, help="Shorthand for --type decision")
@pass_ctx
def log(ctx: TDContext, args: tuple[str, ...], log_type: str, blocker: bool,
        decision: bool) -> None:
    """Log progress: td log [ISSUE_ID] MESSAGE.

    Without an issue the entry goes to every issue of the active work
    session, or else to the focused issue.
    """
    ops = ctx.ops()
    assert ctx.store is not None and ctx.root is not None
    if blocker:
        log_type = LogType.BLOCKER
    elif decision:
        log_type = LogType.DECISION
    log_type = log_type.lower()

    if len(args) > 1:
        issue_id, message = ctx.resolve_issue_id(args[0]), " ".join(args[1:])
    else:
        issue_id, message = "", args[0]

    cfg = config.ProjectConfig.load(ctx.root)
    if issue_id:
        logs = [ops.add_log(issue_id, message, log_type)]
    elif cfg.active_work_session:
        logs = WorkSessionOperations(ops).log(cfg.active_work_session, message, log_type)
    elif cfg.focused_issue_id:
        logs = [ops.add_log(cfg.focused_issue_id, message, log_type)]
    else:
        raise InvalidInput("no issue given and no focused issue. Use 'td log ID MESSAGE'")

    if ctx.json_output:
        ctx.output([entry.to_dict() for entry in logs])
        return
    for entry in logs:
        if entry.issue_id:
            click.echo(f"LOGGED {entry.issue_id}")
