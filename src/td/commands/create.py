"""td create - create a new issue."""

from __future__ import annotations

import click

from td.cli import TDContext, pass_ctx
from td.errors import InvalidInput
from td.models import IssueType, Priority, parse_timestamp
from td.session import current_branch


def check_title(ctx: TDContext, title: str) -> str:
    """Enforce the project's title length bounds."""
    assert ctx.config is not None
    title = title.strip()
    low, high = ctx.config.title_min_length, ctx.config.title_max_length
    if len(title) < low:
        raise InvalidInput(f"title too short ({len(title)} chars, minimum {low})")
    if high and len(title) > high:
        raise InvalidInput(f"title too long ({len(title)} chars, maximum {high})")
    return title


def parse_date(value: str, option: str):
    if not value:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise InvalidInput(f"invalid {option} date: {value}")
    return parsed


@click.command("create")
@click.argument("title", required=False, default="")
@click.option("--title", "-t", "title_opt", default="", help="Issue title")
@click.option("--type", "issue_type", default=IssueType.TASK,
              type=click.Choice(IssueType.ORDER, case_sensitive=False), help="Issue type")
@click.option("--priority", "-p", default=Priority.P2, help="Priority (P0-P4)")
@click.option("--description", "-d", default="", help="Issue description")
@click.option("--acceptance", default="", help="Acceptance criteria")
@click.option("--labels", "-l", multiple=True, help="Labels (repeatable or comma-separated)")
@click.option("--parent", default="", help="Parent issue ID")
@click.option("--points", default=0, type=int, help="Story points (Fibonacci)")
@click.option("--sprint", default="", help="Sprint name")
@click.option("--minor", is_flag=True, help="Minor change: the implementer may approve it")
@click.option("--depends-on", multiple=True, help="Issues that block this one")
@click.option("--blocks", multiple=True, help="Issues this one blocks")
@click.option("--due", default="", help="Due date (RFC3339 or YYYY-MM-DD)")
@click.option("--defer", default="", help="Defer until date")
@pass_ctx
def create(ctx: TDContext, title: str, title_opt: str, issue_type: str, priority: str,
           description: str, acceptance: str, labels: tuple[str, ...], parent: str,
           points: int, sprint: str, minor: bool, depends_on: tuple[str, ...],
           blocks: tuple[str, ...], due: str, defer: str) -> None:
    """Create a new issue."""
    ops = ctx.ops()
    assert ctx.store is not None and ctx.root is not None

    title = check_title(ctx, title_opt or title)
    issue = ops.create(
        title,
        type=issue_type,
        priority=priority,
        description=description,
        acceptance=acceptance,
        labels=labels,
        parent_id=ctx.resolve_issue_id(parent) if parent else "",
        points=points,
        minor=minor,
        sprint=sprint,
        due_at=parse_date(due, "due"),
        defer_at=parse_date(defer, "defer"),
        created_branch=current_branch(ctx.root),
        depends_on=[ctx.resolve_issue_id(d) for d in depends_on],
        blocks=[ctx.resolve_issue_id(b) for b in blocks],
    )

    if ctx.json_output:
        ctx.output(issue.to_dict())
    else:
        click.echo(f"CREATED {issue.id}")
