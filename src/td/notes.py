"""Freeform project notes."""

from __future__ import annotations

import logging
from typing import Optional

from td import ids
from td.errors import InvalidInput, NotFound
from td.models import ActionType, EntityKind, Note, now_utc
from td.mutations import Mutation, Mutator
from td.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class NoteOperations:
    def __init__(self, store: SQLiteStore, mutator: Mutator) -> None:
        self.store = store
        self.mutator = mutator

    def _require(self, note_id: str) -> Note:
        note = self.store.get_note(note_id)
        if note is None:
            raise NotFound(f"note not found: {note_id}")
        return note

    def _save(self, action_type: str, before: Note, after: Note) -> Note:
        if after.to_row() == before.to_row():
            return before
        ts = now_utc()
        after.updated_at = ts
        if action_type == ActionType.NOTE_DELETE:
            after.deleted_at = ts
        self.mutator.commit([Mutation(action_type, EntityKind.NOTE, after.id,
                                      before.to_row(), after.to_row())], timestamp=ts)
        return after

    def create(self, title: str, content: str = "") -> Note:
        title = title.strip()
        if not title:
            raise InvalidInput("note title is required")
        ts = now_utc()
        note = Note(id=ids.generate_note_id(), title=title, content=content,
                    created_at=ts, updated_at=ts)
        self.mutator.commit([Mutation(ActionType.NOTE_CREATE, EntityKind.NOTE, note.id,
                                      None, note.to_row())], timestamp=ts)
        logger.debug("created note %s", note.id)
        return note

    def list_notes(self, include_archived: bool = False, pinned_only: bool = False,
                   search: str = "") -> list[Note]:
        notes = self.store.list_notes(include_archived, pinned_only)
        if search:
            needle = search.lower()
            notes = [n for n in notes
                     if needle in n.title.lower() or needle in n.content.lower()]
        return notes

    def show(self, note_id: str) -> Note:
        return self._require(note_id)

    def edit(self, note_id: str, title: Optional[str] = None,
             content: Optional[str] = None) -> Note:
        note = self._require(note_id)
        after = Note.from_row(note.to_row())
        if title is not None:
            if not title.strip():
                raise InvalidInput("note title is required")
            after.title = title.strip()
        if content is not None:
            after.content = content
        return self._save(ActionType.NOTE_UPDATE, note, after)

    def set_pinned(self, note_id: str, pinned: bool) -> Note:
        note = self._require(note_id)
        after = Note.from_row(note.to_row())
        after.pinned = pinned
        return self._save(ActionType.NOTE_UPDATE, note, after)

    def set_archived(self, note_id: str, archived: bool) -> Note:
        note = self._require(note_id)
        after = Note.from_row(note.to_row())
        after.archived = archived
        return self._save(ActionType.NOTE_UPDATE, note, after)

    def delete(self, note_id: str) -> Note:
        note = self._require(note_id)
        after = Note.from_row(note.to_row())
        after.deleted_at = now_utc()
        return self._save(ActionType.NOTE_DELETE, note, after)
