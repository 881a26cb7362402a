"""Tests for the mutation layer and undo."""

import json

import pytest

from td.errors import DatabaseError, InvalidInput, NotFound
from td.models import ActionType, EntityKind, Status
from td.mutations import Mutation, Mutator
from td.undo import last_batches, undo


def _note_row(note_id: str, title: str) -> dict:
    return {"id": note_id, "title": title, "content": "", "pinned": 0, "archived": 0,
            "created_at": "2026-01-01T00:00:00.000000Z",
            "updated_at": "2026-01-01T00:00:00.000000Z", "deleted_at": None}


class TestMutator:
    def test_commit_writes_row_and_action(self, store, mutator):
        row = _note_row("nt-00000001", "First")
        actions = mutator.commit([Mutation(ActionType.NOTE_CREATE, EntityKind.NOTE,
                                           row["id"], None, row)])
        assert store.get_row("notes", "nt-00000001")["title"] == "First"
        assert len(actions) == 1
        assert actions[0].id > 0
        assert json.loads(actions[0].new_data) == row
        assert actions[0].previous_data == ""

    def test_commit_stamps_field_clocks(self, store, mutator):
        row = _note_row("nt-00000001", "First")
        mutator.commit([Mutation(ActionType.NOTE_CREATE, EntityKind.NOTE, row["id"], None, row)])
        clocks = store.get_field_clocks("notes", "nt-00000001")
        assert "title" in clocks
        assert clocks["title"][1] == ""

    def test_id_mismatch_rolls_back(self, store, mutator):
        good = _note_row("nt-00000001", "Good")
        bad = _note_row("nt-00000002", "Bad")
        with pytest.raises(DatabaseError):
            mutator.commit([
                Mutation(ActionType.NOTE_CREATE, EntityKind.NOTE, good["id"], None, good),
                Mutation(ActionType.NOTE_CREATE, EntityKind.NOTE, "nt-ffffffff", None, bad),
            ])
        assert store.get_row("notes", "nt-00000001") is None
        assert store.max_action_id() == 0

    def test_unknown_entity_type(self, mutator):
        with pytest.raises(InvalidInput):
            mutator.commit([Mutation("create", "spaceship", "x", None, {"id": "x"})])

    def test_listeners_receive_actions(self, mutator):
        seen = []
        mutator.subscribe(seen.extend)
        row = _note_row("nt-00000001", "Heard")
        mutator.commit([Mutation(ActionType.NOTE_CREATE, EntityKind.NOTE, row["id"], None, row)])
        assert [a.entity_id for a in seen] == ["nt-00000001"]

    def test_listener_failure_does_not_abort(self, store, mutator):
        def broken(actions):
            raise RuntimeError("listener down")

        mutator.subscribe(broken)
        row = _note_row("nt-00000001", "Still written")
        mutator.commit([Mutation(ActionType.NOTE_CREATE, EntityKind.NOTE, row["id"], None, row)])
        assert store.get_row("notes", "nt-00000001") is not None

    def test_empty_commit(self, mutator):
        assert mutator.commit([]) == []

    def test_changed_fields(self):
        m = Mutation(ActionType.UPDATE, EntityKind.ISSUE, "td-000001",
                     {"id": "td-000001", "title": "a", "status": "open"},
                     {"id": "td-000001", "title": "b", "status": "open"})
        assert m.changed_fields() == ["title"]


class TestUndo:
    def test_undo_create_soft_deletes(self, ops, store):
        issue = ops.create("Undo me")
        result = undo(store, ops.mutator)
        assert [a.entity_id for a in result.undone] == [issue.id]
        assert store.get_issue(issue.id) is None
        assert store.get_issue(issue.id, include_deleted=True) is not None

    def test_undo_transition_restores_status(self, ops, store):
        issue = ops.create("Start then undo")
        ops.start(issue.id)
        undo(store, ops.mutator)
        got = store.get_issue(issue.id)
        assert got.status == Status.OPEN
        assert got.implementer_session == ""
        assert store.get_logs(issue.id) == []

    def test_undo_twice_redoes(self, ops, store):
        issue = ops.create("Round trip")
        ops.update(issue.id, {"title": "Changed"})
        undo(store, ops.mutator)
        assert store.get_issue(issue.id).title == "Round trip"
        undo(store, ops.mutator)
        assert store.get_issue(issue.id).title == "Changed"

    def test_undo_n_batches(self, ops, store):
        a = ops.create("First")
        b = ops.create("Second")
        result = undo(store, ops.mutator, 2)
        assert {x.entity_id for x in result.undone} == {a.id, b.id}
        assert store.get_issue(a.id) is None
        assert store.get_issue(b.id) is None

    def test_undo_is_logged(self, ops, store):
        ops.create("Logged undo")
        before = store.max_action_id()
        result = undo(store, ops.mutator)
        assert store.max_action_id() == before + len(result.written)

    def test_undo_only_own_session(self, ops, other_ops, store):
        ops.create("Alice's issue")
        with pytest.raises(NotFound):
            undo(store, other_ops.mutator)

    def test_batch_groups_cascade(self, ops, store):
        epic = ops.create("Epic", type="epic")
        ops.create("Child", parent_id=epic.id)
        ops.close(epic.id)
        batch = last_batches(store, "ses_alice")[0]
        assert {a.entity_id for a in batch if a.entity_type == EntityKind.ISSUE} == {
            epic.id, store.get_children(epic.id)[0].id}
        undo(store, ops.mutator)
        assert store.get_issue(epic.id).status == Status.OPEN
        assert all(c.status == Status.OPEN for c in store.get_children(epic.id))

    def test_nothing_to_undo(self, store, mutator):
        with pytest.raises(NotFound):
            undo(store, mutator)

    def test_undo_dependency_removes_row(self, ops, store):
        a = ops.create("A")
        b = ops.create("B")
        ops.add_dependency(a.id, b.id)
        undo(store, ops.mutator)
        assert store.get_dependency_ids(a.id) == []

    def test_undo_delete_restores(self, ops, store):
        issue = ops.create("Deleted then undone")
        ops.delete(issue.id)
        undo(store, ops.mutator)
        assert store.get_issue(issue.id) is not None
