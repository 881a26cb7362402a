"""td link/unlink/files - files linked to issues."""

from __future__ import annotations

import os

import click

from td.cli import TDContext, pass_ctx
from td.models import FileRole


def _relative(ctx: TDContext, path: str) -> str:
    root = ctx.find_root()
    absolute = os.path.abspath(path)
    if absolute.startswith(root + os.sep):
        return os.path.relpath(absolute, root)
    return path


@click.command("link")
@click.argument("issue_id")
@click.argument("paths", nargs=-1, required=True)
@click.option("--role", default=FileRole.IMPLEMENTATION,
              type=click.Choice(FileRole.ORDER), help="File role")
@pass_ctx
def link(ctx: TDContext, issue_id: str, paths: tuple[str, ...], role: str) -> None:
    """Link files to an issue."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)
    git = ctx.git_state()

    linked = []
    for path in paths:
        f = ops.link_file(full_id, _relative(ctx, path), role=role,
                          sha=git.commit_sha if git else "")
        linked.append(f.to_row())
        if not ctx.json_output:
            click.echo(f"LINKED {f.file_path} -> {full_id}")

    if ctx.json_output:
        ctx.output(linked)


@click.command("unlink")
@click.argument("issue_id")
@click.argument("paths", nargs=-1, required=True)
@pass_ctx
def unlink(ctx: TDContext, issue_id: str, paths: tuple[str, ...]) -> None:
    """Unlink files from an issue."""
    ops = ctx.ops()
    full_id = ctx.resolve_issue_id(issue_id)

    removed = []
    for path in paths:
        f = ops.unlink_file(full_id, _relative(ctx, path))
        removed.append(f.file_path)
        if not ctx.json_output:
            click.echo(f"UNLINKED {f.file_path} from {full_id}")

    if ctx.json_output:
        ctx.output({"unlinked": removed})


@click.command("files")
@click.argument("issue_id")
@pass_ctx
def files(ctx: TDContext, issue_id: str) -> None:
    """List files linked to an issue."""
    ctx.ensure_initialized()
    assert ctx.store is not None
    full_id = ctx.resolve_issue_id(issue_id)
    linked = ctx.store.get_linked_files(full_id)

    if ctx.json_output:
        ctx.output([f.to_row() for f in linked])
        return
    if not linked:
        click.echo(f"No files linked to {full_id}.")
        return
    for f in linked:
        click.echo(f"  {f.file_path} ({f.role})")
