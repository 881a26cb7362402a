"""td list - list issues."""

from __future__ import annotations

import click

from td.cli import TDContext, pass_ctx
from td.models import IssueFilter, Priority, Status
from td.query import ExecuteOptions, execute
from td.utils import format_issue_row


@click.command("list")
@click.option("--query", "-q", "tdq", default="", help="TDQ expression")
@click.option("--status", "-s", multiple=True, help="Filter by status (repeatable)")
@click.option("--type", "issue_type", multiple=True, help="Filter by issue type")
@click.option("--priority", "-p", default=None, help="Filter by priority")
@click.option("--label", "-l", multiple=True, help="Filter by label (AND)")
@click.option("--parent", default=None, help="Children of this issue")
@click.option("--mine", is_flag=True, help="Only issues implemented by this session")
@click.option("--reviewable", is_flag=True, help="Only issues this session can review")
@click.option("--search", default="", help="Text search in title and description")
@click.option("--all", "show_all", is_flag=True, help="Include closed issues")
@click.option("--deleted", is_flag=True, help="Only deleted issues")
@click.option("--sort", "sort_by", default="priority",
              type=click.Choice(["priority", "created", "updated", "closed", "id",
                                 "title", "status", "points"]),
              help="Sort field")
@click.option("--reverse", "-r", is_flag=True, help="Reverse sort order")
@click.option("--limit", default=0, type=int, help="Max issues to show")
@click.option("--long", "-L", "long_format", is_flag=True, help="Long format with extra fields")
@pass_ctx
def list_cmd(ctx: TDContext, tdq: str, status: tuple[str, ...], issue_type: tuple[str, ...],
             priority: str | None, label: tuple[str, ...], parent: str | None, mine: bool,
             reviewable: bool, search: str, show_all: bool, deleted: bool, sort_by: str,
             reverse: bool, limit: int, long_format: bool) -> None:
    """List issues with filters or a TDQ query."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    if tdq:
        issues = execute(ctx.store, tdq, ctx.session_id,
                         ExecuteOptions(sort_by=sort_by, sort_desc=reverse, limit=limit))
    elif reviewable:
        issues = ctx.store.get_reviewable_issues(ctx.session_id)
    else:
        f = IssueFilter(sort=sort_by, descending=reverse, limit=limit, search=search)
        if status:
            f.status = [Status.normalize(s) for s in status]
        elif not show_all and not deleted:
            f.status = [s for s in Status.ORDER if s != Status.CLOSED]
        f.type = [t.lower() for t in issue_type]
        if priority:
            f.priority = Priority.normalize(priority)
        f.labels = list(label)
        if parent:
            f.parent_id = ctx.resolve_issue_id(parent)
        if mine:
            f.implementer = ctx.session_id
        f.only_deleted = deleted
        issues = ctx.store.list_issues(f)

    if ctx.json_output:
        ctx.output([i.to_dict() for i in issues])
        return

    if not issues:
        click.echo("No issues found.")
        return

    for issue in issues:
        click.echo(format_issue_row(issue, long_format=long_format))
