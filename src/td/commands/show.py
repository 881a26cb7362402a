"""td show - display issue details."""

from __future__ import annotations

import click

from td.cli import TDContext, pass_ctx
from td.errors import NotFound
from td.utils import format_time_ago


@click.command("show")
@click.argument("issue_id")
@click.option("--logs", "log_limit", default=10, type=int, help="Number of logs to show")
@pass_ctx
def show(ctx: TDContext, issue_id: str, log_limit: int) -> None:
    """Show detailed view of an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    full_id = ctx.resolve_issue_id(issue_id)
    issue = ctx.store.get_issue(full_id, include_deleted=True)
    if issue is None:
        raise NotFound(f"issue not found: {issue_id}")

    logs = ctx.store.get_logs(full_id, limit=log_limit)
    handoff = ctx.store.get_latest_handoff(full_id)
    files = ctx.store.get_linked_files(full_id)
    depends_on = ctx.store.get_dependency_ids(full_id)
    blocks = ctx.store.get_blocked_by_ids(full_id)
    comments = ctx.store.get_comments(full_id)
    children = ctx.store.get_children(full_id)

    if ctx.json_output:
        data = issue.to_dict()
        data["logs"] = [log.to_dict() for log in logs]
        data["handoff"] = handoff.to_dict() if handoff else None
        data["files"] = [f.to_row() for f in files]
        data["depends_on"] = depends_on
        data["blocks"] = blocks
        data["comments"] = [c.to_dict() for c in comments]
        data["children"] = [c.id for c in children]
        ctx.output(data)
        return

    click.echo(f"{issue.id}: {issue.title}")
    click.echo(f"  Status:   {issue.status}" + ("  (deleted)" if issue.deleted_at else ""))
    click.echo(f"  Type:     {issue.type}")
    click.echo(f"  Priority: {issue.priority}")
    if issue.points:
        click.echo(f"  Points:   {issue.points}")
    if issue.labels:
        click.echo(f"  Labels:   {', '.join(issue.labels)}")
    if issue.parent_id:
        click.echo(f"  Parent:   {issue.parent_id}")
    if issue.sprint:
        click.echo(f"  Sprint:   {issue.sprint}")
    if issue.implementer_session:
        click.echo(f"  Implementer: {issue.implementer_session}")
    if issue.reviewer_session:
        click.echo(f"  Reviewer:    {issue.reviewer_session}")
    click.echo(f"  Created:  {format_time_ago(issue.created_at)}")
    click.echo(f"  Updated:  {format_time_ago(issue.updated_at)}")
    if issue.closed_at:
        click.echo(f"  Closed:   {format_time_ago(issue.closed_at)}")

    if issue.description:
        click.echo("\n  Description:")
        for line in issue.description.split("\n"):
            click.echo(f"    {line}")
    if issue.acceptance:
        click.echo("\n  Acceptance:")
        for line in issue.acceptance.split("\n"):
            click.echo(f"    {line}")

    if depends_on:
        click.echo(f"\n  Blocked by: {', '.join(depends_on)}")
    if blocks:
        click.echo(f"  Blocks:     {', '.join(blocks)}")
    if children:
        click.echo("\n  Children:")
        for child in children:
            click.echo(f"    {child.id} [{child.status}] {child.title}")

    if files:
        click.echo("\n  Files:")
        for f in files:
            click.echo(f"    {f.file_path} ({f.role})")

    if handoff is not None:
        click.echo(f"\n  Handoff ({format_time_ago(handoff.timestamp)}, {handoff.session_id}):")
        for label, items in (("Done", handoff.done), ("Remaining", handoff.remaining),
                             ("Decisions", handoff.decisions),
                             ("Uncertain", handoff.uncertain)):
            for item in items:
                click.echo(f"    {label}: {item}")

    if logs:
        click.echo("\n  Logs:")
        for log in logs:
            click.echo(f"    [{format_time_ago(log.timestamp)}] ({log.type}) {log.message}")

    if comments:
        click.echo("\n  Comments:")
        for c in comments:
            click.echo(f"    {c.id} {c.session_id} ({format_time_ago(c.created_at)}): {c.text}")
