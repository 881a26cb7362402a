"""td query - run a TDQ expression."""

from __future__ import annotations

import click

from td.cli import TDContext, pass_ctx
from td.query import ExecuteOptions, execute
from td.utils import format_issue_row


@click.command("query")
@click.argument("expression")
@click.option("--limit", default=0, type=int, help="Max issues to return")
@click.option("--include-deleted", is_flag=True, help="Include soft-deleted issues")
@click.option("--long", "-L", "long_format", is_flag=True, help="Long format with extra fields")
@pass_ctx
def query(ctx: TDContext, expression: str, limit: int, include_deleted: bool,
          long_format: bool) -> None:
    """Run a TDQ query, e.g. td query "status = open AND priority <= P1"."""
    ctx.ensure_initialized()
    assert ctx.store is not None

    issues = execute(ctx.store, expression, ctx.session_id,
                     ExecuteOptions(limit=limit, include_deleted=include_deleted))

    if ctx.json_output:
        ctx.output([i.to_dict() for i in issues])
        return
    if not issues:
        click.echo("No issues found.")
        return
    for issue in issues:
        click.echo(format_issue_row(issue, long_format=long_format))
    ctx.echo(f"\n{len(issues)} issue(s)")
