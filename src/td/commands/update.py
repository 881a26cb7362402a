"""td update - change issue fields."""

from __future__ import annotations

from typing import Any

import click

from td.cli import TDContext, pass_ctx
from td.commands.create import check_title, parse_date
from td.errors import InvalidInput


@click.command("update")
@click.argument("issue_id")
@click.option("--title", "-t", default=None, help="New title")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--acceptance", default=None, help="New acceptance criteria")
@click.option("--type", "issue_type", default=None, help="New type")
@click.option("--priority", "-p", default=None, help="New priority")
@click.option("--points", default=None, type=int, help="New story points")
@click.option("--labels", default=None, help="Replace labels (comma-separated)")
@click.option("--add-label", multiple=True, help="Add a label")
@click.option("--remove-label", multiple=True, help="Remove a label")
@click.option("--parent", default=None, help="New parent issue ID ('' to clear)")
@click.option("--sprint", default=None, help="New sprint")
@click.option("--minor/--no-minor", default=None, help="Mark as minor")
@click.option("--due", default=None, help="Due date")
@click.option("--defer", default=None, help="Defer until date")
@pass_ctx
def update(ctx: TDContext, issue_id: str, title: str | None, description: str | None,
           acceptance: str | None, issue_type: str | None, priority: str | None,
           points: int | None, labels: str | None, add_label: tuple[str, ...],
           remove_label: tuple[str, ...], parent: str | None, sprint: str | None,
           minor: bool | None, due: str | None, defer: str | None) -> None:
    """Update fields of an issue."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)

    changes: dict[str, Any] = {}
    if title is not None:
        changes["title"] = check_title(ctx, title)
    for key, value in (("description", description), ("acceptance", acceptance),
                       ("type", issue_type), ("priority", priority), ("points", points),
                       ("labels", labels), ("sprint", sprint), ("minor", minor)):
        if value is not None:
            changes[key] = value
    if parent is not None:
        changes["parent_id"] = ctx.resolve_issue_id(parent) if parent else ""
    if due is not None:
        changes["due_at"] = parse_date(due, "due")
    if defer is not None:
        changes["defer_at"] = parse_date(defer, "defer")
    if not changes and not add_label and not remove_label:
        raise InvalidInput("nothing to update")

    issue = ops.update(full_id, changes, add_labels=add_label, remove_labels=remove_label)

    if ctx.json_output:
        ctx.output(issue.to_dict())
    else:
        click.echo(f"UPDATED {issue.id}")
