"""td dep - manage dependencies."""

from __future__ import annotations

import click

from td.cli import TDContext, pass_ctx


@click.group("dep")
def dep() -> None:
    """Manage issue dependencies."""


@dep.command("add")
@click.argument("issue_id")
@click.argument("depends_on_id")
@pass_ctx
def dep_add(ctx: TDContext, issue_id: str, depends_on_id: str) -> None:
    """Add a dependency: ISSUE_ID is blocked by DEPENDS_ON_ID."""
    ops = ctx.ops()
    full_issue = ctx.resolve_issue_id(issue_id)
    full_depends = ctx.resolve_issue_id(depends_on_id)

    added = ops.add_dependency(full_issue, full_depends)

    if ctx.json_output:
        ctx.output({"issue_id": full_issue, "depends_on_id": full_depends,
                    "added": added is not None})
    elif added is None:
        click.echo(f"{full_issue} already depends on {full_depends}")
    else:
        click.echo(f"ADDED DEPENDENCY {full_issue} -> {full_depends}")


@dep.command("remove")
@click.argument("issue_id")
@click.argument("depends_on_id")
@pass_ctx
def dep_remove(ctx: TDContext, issue_id: str, depends_on_id: str) -> None:
    """Remove a dependency."""
    ops = ctx.ops()
    full_issue = ctx.resolve_issue_id(issue_id)
    full_depends = ctx.resolve_issue_id(depends_on_id)

    ops.remove_dependency(full_issue, full_depends)

    if ctx.json_output:
        ctx.output({"issue_id": full_issue, "depends_on_id": full_depends, "removed": True})
    else:
        click.echo(f"REMOVED DEPENDENCY {full_issue} -> {full_depends}")


@dep.command("list")
@click.argument("issue_id")
@pass_ctx
def dep_list(ctx: TDContext, issue_id: str) -> None:
    """Show what an issue depends on and what it blocks."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_issue_id(issue_id)

    depends_on = ctx.store.get_issues_by_ids(ctx.store.get_dependency_ids(full_id))
    blocks = ctx.store.get_issues_by_ids(ctx.store.get_blocked_by_ids(full_id))

    if ctx.json_output:
        ctx.output({"issue_id": full_id,
                    "depends_on": [i.to_dict() for i in depends_on],
                    "blocks": [i.to_dict() for i in blocks]})
        return

    click.echo(f"{full_id} depends on:")
    for i in depends_on:
        click.echo(f"  {i.id} [{i.status}] {i.title}")
    if not depends_on:
        click.echo("  (none)")
    click.echo(f"{full_id} blocks:")
    for i in blocks:
        click.echo(f"  {i.id} [{i.status}] {i.title}")
    if not blocks:
        click.echo("  (none)")
