"""Tests for boards, notes and work sessions."""

import pytest

from td.boards import POSITION_GAP, BoardOperations, apply_positions, insert_key
from td.errors import Conflict, InvalidInput, NotFound, ValidationError
from td.models import ActionType, Status
from td.notes import NoteOperations
from td.undo import undo
from td.worksessions import WorkSessionOperations


@pytest.fixture
def boards(store, mutator):
    return BoardOperations(store, mutator)


@pytest.fixture
def notes(store, mutator):
    return NoteOperations(store, mutator)


@pytest.fixture
def ws(ops):
    return WorkSessionOperations(ops)


# --- Boards ---

class TestInsertKey:
    def test_append_to_empty(self):
        assert insert_key([], 1) == POSITION_GAP

    def test_append_after_last(self):
        assert insert_key([POSITION_GAP], 5) == 2 * POSITION_GAP

    def test_between_neighbours(self):
        assert insert_key([100, 200], 2) == 150

    def test_before_first(self):
        assert insert_key([100], 1) == 50

    def test_no_room(self):
        assert insert_key([10, 11], 2) is None


class TestBoards:
    def test_builtin_board_exists(self, store):
        names = [b.name for b in store.list_boards()]
        assert "All Issues" in names

    def test_create_and_resolve_by_name(self, boards, store):
        board = boards.create("Bugs", "type = bug")
        assert store.resolve_board("bugs").id == board.id
        assert board.id.startswith("bd-")

    def test_duplicate_name(self, boards):
        boards.create("Bugs")
        with pytest.raises(Conflict):
            boards.create("BUGS")

    def test_invalid_query_rejected(self, boards):
        with pytest.raises(ValidationError):
            boards.create("Broken", "flavour = mint")

    def test_builtin_is_read_only(self, boards):
        with pytest.raises(InvalidInput):
            boards.update("All Issues", name="Everything")
        with pytest.raises(InvalidInput):
            boards.delete("All Issues")

    def test_update_query(self, boards, store):
        board = boards.create("Mine")
        boards.update(board.id, query="priority <= P1")
        assert store.get_board(board.id).query == "priority <= P1"

    def test_show_orders_positioned_first(self, boards, ops):
        first = ops.create("First by priority", priority="P0")
        second = ops.create("Second by priority", priority="P2")
        board = boards.create("Ordered")
        boards.set_position(board.id, second.id, 1)
        _, views = boards.show(board.id)
        assert [v.issue.id for v in views] == [second.id, first.id]
        assert views[0].has_position
        assert not views[1].has_position

    def test_show_status_filter(self, boards, ops):
        open_issue = ops.create("Still open")
        started = ops.create("Started work")
        ops.start(started.id)
        board = boards.create("Filtered")
        _, views = boards.show(board.id, statuses=[Status.OPEN])
        assert [v.issue.id for v in views] == [open_issue.id]

    def test_move_between_positions(self, boards, ops):
        a, b, c = (ops.create(f"Positioned issue {n}") for n in "abc")
        board = boards.create("Manual")
        boards.set_position(board.id, a.id, 1)
        boards.set_position(board.id, b.id, 2)
        pos = boards.set_position(board.id, c.id, 2)
        assert POSITION_GAP < pos.position < 2 * POSITION_GAP

    def test_respace_when_no_gap(self, boards, ops, store):
        a, b, c = (ops.create(f"Tight issue {n}") for n in "abc")
        board = boards.create("Tight")
        boards.set_position(board.id, a.id, 1)
        boards.set_position(board.id, b.id, 2)
        for pos, key in zip(store.get_board_positions(board.id), (10, 11)):
            row = pos.to_row()
            row["position"] = key
            store.put_row("board_issue_positions", row)
        boards.set_position(board.id, c.id, 2)
        ordered = [p.issue_id for p in store.get_board_positions(board.id)]
        assert ordered == [a.id, c.id, b.id]

    def test_unposition(self, boards, ops, store):
        issue = ops.create("Pinned then freed")
        board = boards.create("Loose")
        boards.set_position(board.id, issue.id, 1)
        boards.unposition(board.id, issue.id)
        assert store.get_board_positions(board.id) == []
        with pytest.raises(NotFound):
            boards.unposition(board.id, issue.id)

    def test_delete_cascades_positions(self, boards, ops, store):
        issue = ops.create("On a doomed board")
        board = boards.create("Doomed")
        boards.set_position(board.id, issue.id, 1)
        boards.delete(board.id)
        assert store.get_board(board.id) is None
        assert store.get_board_positions(board.id) == []

    def test_positions_are_undoable(self, boards, ops, store, mutator):
        issue = ops.create("Undo my position")
        board = boards.create("Undoable")
        boards.set_position(board.id, issue.id, 1)
        result = undo(store, mutator)
        assert result.undone[0].action_type == ActionType.BOARD_SET_POSITION
        assert store.get_board_positions(board.id) == []

    def test_apply_positions_ignores_deleted(self, boards, ops, store):
        issue = ops.create("Freed issue")
        board = boards.create("Views")
        boards.set_position(board.id, issue.id, 1)
        pos = store.get_board_position(board.id, issue.id)
        pos.deleted_at = pos.added_at
        views = apply_positions(board.id, [issue], [pos])
        assert not views[0].has_position


# --- Notes ---

class TestNotes:
    def test_create_and_show(self, notes):
        note = notes.create("Release checklist", "tag, build, publish")
        assert notes.show(note.id).content == "tag, build, publish"

    def test_title_required(self, notes):
        with pytest.raises(InvalidInput):
            notes.create("  ")

    def test_pinned_first(self, notes):
        plain = notes.create("Plain note")
        pinned = notes.create("Pinned note")
        notes.set_pinned(pinned.id, True)
        assert [n.id for n in notes.list_notes()] == [pinned.id, plain.id]
        assert [n.id for n in notes.list_notes(pinned_only=True)] == [pinned.id]

    def test_archive_hides(self, notes):
        note = notes.create("Old idea")
        notes.set_archived(note.id, True)
        assert notes.list_notes() == []
        assert [n.id for n in notes.list_notes(include_archived=True)] == [note.id]

    def test_search(self, notes):
        notes.create("Deploy steps", "run the migration first")
        notes.create("Lunch order")
        found = notes.list_notes(search="MIGRATION")
        assert [n.title for n in found] == ["Deploy steps"]

    def test_unchanged_edit_writes_nothing(self, notes, store):
        note = notes.create("Stable")
        before = store.max_action_id()
        notes.edit(note.id, title="Stable")
        assert store.max_action_id() == before

    def test_delete(self, notes):
        note = notes.create("Temporary")
        notes.delete(note.id)
        with pytest.raises(NotFound):
            notes.show(note.id)


# --- Work sessions ---

class TestWorkSessions:
    def test_start_and_tag_auto_starts(self, ws, ops, store):
        session = ws.start("Login sprint")
        issue = ops.create("Tag me")
        result = ws.tag(session.id, [issue.id])
        assert result.tagged == [issue.id]
        assert result.started == [issue.id]
        assert store.get_issue(issue.id).status == Status.IN_PROGRESS
        assert store.get_work_session_issue_ids(session.id) == [issue.id]

    def test_tag_without_start(self, ws, ops, store):
        session = ws.start("Triage")
        issue = ops.create("Leave me open")
        result = ws.tag(session.id, [issue.id], auto_start=False)
        assert result.started == []
        assert store.get_issue(issue.id).status == Status.OPEN

    def test_tag_unknown_issue_warns(self, ws):
        session = ws.start("Warnings")
        result = ws.tag(session.id, ["td-ffffff"])
        assert result.tagged == []
        assert "not found" in result.warnings[0]

    def test_second_start_conflicts(self, ws):
        session = ws.start("First")
        with pytest.raises(Conflict):
            ws.start("Second", active_id=session.id)

    def test_log_fans_out(self, ws, ops, store):
        session = ws.start("Fan out")
        a = ops.create("Tagged one")
        b = ops.create("Tagged two")
        ws.tag(session.id, [a.id, b.id], auto_start=False)
        ws.log(session.id, "pairing on the parser")
        assert store.get_logs(a.id)[0].message == "pairing on the parser"
        assert store.get_logs(b.id)[0].message == "pairing on the parser"
        assert store.get_work_session_logs(session.id)

    def test_untag(self, ws, ops, store):
        session = ws.start("Untagging")
        issue = ops.create("Tagged then not")
        ws.tag(session.id, [issue.id], auto_start=False)
        assert ws.untag(session.id, [issue.id]) == [issue.id]
        assert store.get_work_session_issue_ids(session.id) == []
        with pytest.raises(NotFound):
            ws.untag(session.id, [issue.id])

    def test_end(self, ws):
        session = ws.start("Short lived")
        ended = ws.end(session.id)
        assert ended.ended_at is not None
        assert ws.current(session.id) is None
        with pytest.raises(InvalidInput):
            ws.log(session.id, "too late")

    def test_requires_active_session(self, ws):
        with pytest.raises(InvalidInput):
            ws.tag("", ["td-abc123"])

    def test_show(self, ws, ops):
        session = ws.start("Summary")
        issue = ops.create("Summarized issue")
        ws.tag(session.id, [issue.id], auto_start=False)
        summary = ws.show(session.id)
        assert [i.id for i in summary.issues] == [issue.id]
        assert summary.to_dict()["work_session"]["name"] == "Summary"
