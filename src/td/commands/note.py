"""td note - freeform project notes."""

from __future__ import annotations

import click

from td.cli import TDContext, pass_ctx
from td.notes import NoteOperations
from td.utils import format_time_ago, truncate


def _ops(ctx: TDContext) -> NoteOperations:
    ctx.ensure_initialized()
    assert ctx.store is not None and ctx.mutator is not None
    return NoteOperations(ctx.store, ctx.mutator)


def _done(ctx: TDContext, note, verb: str) -> None:
    if ctx.json_output:
        ctx.output(note.to_dict())
    else:
        click.echo(f"{verb} {note.id}")


@click.group("note")
def note() -> None:
    """Manage notes."""


@note.command("create")
@click.argument("title")
@click.option("--content", "-c", default="", help="Note body")
@pass_ctx
def note_create(ctx: TDContext, title: str, content: str) -> None:
    """Create a note."""
    _done(ctx, _ops(ctx).create(title, content), "CREATED")


@note.command("list")
@click.option("--all", "include_archived", is_flag=True, help="Include archived notes")
@click.option("--pinned", is_flag=True, help="Only pinned notes")
@click.option("--search", default="", help="Text search")
@pass_ctx
def note_list(ctx: TDContext, include_archived: bool, pinned: bool, search: str) -> None:
    """List notes."""
    notes = _ops(ctx).list_notes(include_archived, pinned, search)
    if ctx.json_output:
        ctx.output([n.to_dict() for n in notes])
        return
    if not notes:
        click.echo("No notes.")
        return
    for n in notes:
        flags = ("*" if n.pinned else " ") + ("A" if n.archived else " ")
        click.echo(f"{flags} {n.id} {truncate(n.title, 50)}  ({format_time_ago(n.updated_at)})")


@note.command("show")
@click.argument("note_id")
@pass_ctx
def note_show(ctx: TDContext, note_id: str) -> None:
    """Show a note."""
    n = _ops(ctx).show(note_id)
    if ctx.json_output:
        ctx.output(n.to_dict())
        return
    click.echo(f"{n.id}: {n.title}")
    if n.content:
        click.echo("")
        click.echo(n.content)


@note.command("edit")
@click.argument("note_id")
@click.option("--title", default=None, help="New title")
@click.option("--content", "-c", default=None, help="New body")
@pass_ctx
def note_edit(ctx: TDContext, note_id: str, title: str | None, content: str | None) -> None:
    """Edit a note."""
    _done(ctx, _ops(ctx).edit(note_id, title=title, content=content), "UPDATED")


@note.command("pin")
@click.argument("note_id")
@pass_ctx
def note_pin(ctx: TDContext, note_id: str) -> None:
    """Pin a note."""
    _done(ctx, _ops(ctx).set_pinned(note_id, True), "PINNED")


@note.command("unpin")
@click.argument("note_id")
@pass_ctx
def note_unpin(ctx: TDContext, note_id: str) -> None:
    """Unpin a note."""
    _done(ctx, _ops(ctx).set_pinned(note_id, False), "UNPINNED")


@note.command("archive")
@click.argument("note_id")
@pass_ctx
def note_archive(ctx: TDContext, note_id: str) -> None:
    """Archive a note."""
    _done(ctx, _ops(ctx).set_archived(note_id, True), "ARCHIVED")


@note.command("unarchive")
@click.argument("note_id")
@pass_ctx
def note_unarchive(ctx: TDContext, note_id: str) -> None:
    """Unarchive a note."""
    _done(ctx, _ops(ctx).set_archived(note_id, False), "UNARCHIVED")


@note.command("delete")
@click.argument("note_id")
@pass_ctx
def note_delete(ctx: TDContext, note_id: str) -> None:
    """Delete a note."""
    _done(ctx, _ops(ctx).delete(note_id), "DELETED")
