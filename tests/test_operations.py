"""Tests for issue lifecycle operations."""

import json

import pytest

from td.errors import (
    CannotSelfApprove, HandoffRequired, InvalidInput, NotFound, ValidationError,
)
from td.gitstate import GitState
from td.models import ActionType, IssueType, LogType, Priority, Status


def _reviewable(ops, title="Reviewable issue"):
    issue = ops.create(title)
    ops.start(issue.id)
    ops.handoff(issue.id, done=["implemented"])
    ops.review(issue.id)
    return issue


class TestCreate:
    def test_defaults(self, ops, store):
        issue = ops.create("Add login form")
        got = store.get_issue(issue.id)
        assert got.status == Status.OPEN
        assert got.type == IssueType.TASK
        assert got.priority == Priority.P2
        assert got.creator_session == "ses_alice"
        assert issue.id.startswith("td-")

    def test_normalizes_enums(self, ops):
        issue = ops.create("Fix crash", type="BUG", priority="p1")
        assert issue.type == IssueType.BUG
        assert issue.priority == Priority.P1

    def test_rejects_bad_points(self, ops):
        with pytest.raises(InvalidInput):
            ops.create("Estimate me", points=4)

    def test_rejects_empty_title(self, ops):
        with pytest.raises(InvalidInput):
            ops.create("   ")

    def test_unknown_parent(self, ops):
        with pytest.raises(NotFound):
            ops.create("Orphan", parent_id="td-ffffff")

    def test_writes_action_log(self, ops, store):
        issue = ops.create("Logged create")
        actions = store.get_recent_actions(5, session_id="ses_alice")
        assert actions[0].action_type == ActionType.CREATE
        assert actions[0].entity_id == issue.id
        assert json.loads(actions[0].new_data)["title"] == "Logged create"

    def test_with_dependencies(self, ops, store):
        blocker = ops.create("Blocker")
        issue = ops.create("Depends", depends_on=[blocker.id])
        assert store.get_dependency_ids(issue.id) == [blocker.id]


class TestUpdate:
    def test_update_fields(self, ops, store):
        issue = ops.create("Original title")
        ops.update(issue.id, {"title": "New title", "priority": "P0"})
        got = store.get_issue(issue.id)
        assert got.title == "New title"
        assert got.priority == Priority.P0

    def test_labels(self, ops):
        issue = ops.create("Labels", labels=["a", "b"])
        after = ops.update(issue.id, {}, add_labels=["c"], remove_labels=["a"])
        assert after.labels == ["b", "c"]

    def test_unknown_field(self, ops):
        issue = ops.create("Field")
        with pytest.raises(InvalidInput):
            ops.update(issue.id, {"status": "closed"})

    def test_parent_cycle_rejected(self, ops):
        a = ops.create("A", type="epic")
        b = ops.create("B", parent_id=a.id)
        with pytest.raises(InvalidInput):
            ops.update(a.id, {"parent_id": b.id})

    def test_noop_update_writes_nothing(self, ops, store):
        issue = ops.create("Same")
        before = store.max_action_id()
        ops.update(issue.id, {"title": "Same"})
        assert store.max_action_id() == before


class TestReviewFlow:
    def test_self_approval_blocked(self, ops, other_ops, store):
        issue = _reviewable(ops)
        with pytest.raises(CannotSelfApprove):
            ops.approve(issue.id)
        assert store.get_issue(issue.id).status == Status.IN_REVIEW

        result = other_ops.approve(issue.id)
        got = store.get_issue(issue.id)
        assert got.status == Status.CLOSED
        assert got.reviewer_session == "ses_bob"
        assert got.closed_at is not None
        assert result.issue.status == Status.CLOSED

    def test_handoff_required(self, ops, store):
        issue = ops.create("No handoff yet")
        ops.start(issue.id)
        with pytest.raises(HandoffRequired):
            ops.review(issue.id)
        assert store.get_issue(issue.id).status == Status.IN_PROGRESS

    def test_minor_self_approve(self, ops, store):
        issue = ops.create("Typo fix", minor=True)
        ops.start(issue.id)
        ops.handoff(issue.id, done=["fixed"])
        ops.review(issue.id)
        ops.approve(issue.id)
        assert store.get_issue(issue.id).status == Status.CLOSED

    def test_reject_returns_to_in_progress(self, ops, other_ops, store):
        issue = _reviewable(ops)
        other_ops.reject(issue.id, "missing tests")
        assert store.get_issue(issue.id).status == Status.IN_PROGRESS
        assert store.get_logs(issue.id)[0].message == "Rejected: missing tests"

    def test_approve_requires_in_review(self, ops, other_ops):
        issue = ops.create("Still open")
        with pytest.raises(InvalidInput):
            other_ops.approve(issue.id)

    def test_start_records_implementer_and_log(self, ops, store):
        issue = ops.create("Start me")
        ops.start(issue.id, git_state=GitState("abc1234def", "main", 2))
        got = store.get_issue(issue.id)
        assert got.implementer_session == "ses_alice"
        assert store.get_logs(issue.id)[0].message == "Started work"
        snap = store.get_latest_snapshot(issue.id)
        assert snap.commit_sha == "abc1234def"
        assert snap.dirty_files == 2

    def test_dependency_warning_on_start(self, ops):
        blocker = ops.create("Blocker")
        issue = ops.create("Blocked by", depends_on=[blocker.id])
        result = ops.start(issue.id)
        assert any("unresolved" in w for w in result.warnings)


class TestBlocking:
    def test_block_and_unblock(self, ops, store):
        issue = ops.create("Waiting")
        ops.block(issue.id, "waiting on API")
        assert store.get_issue(issue.id).status == Status.BLOCKED
        assert store.get_logs(issue.id)[0].type == LogType.BLOCKER
        ops.unblock(issue.id)
        assert store.get_issue(issue.id).status == Status.OPEN

    def test_start_blocked_needs_force(self, ops, store):
        issue = ops.create("Stuck")
        ops.block(issue.id)
        with pytest.raises(ValidationError):
            ops.start(issue.id)
        ops.start(issue.id, force=True)
        assert store.get_issue(issue.id).status == Status.IN_PROGRESS

    def test_closing_dependency_auto_unblocks(self, ops, store):
        blocker = ops.create("Blocker")
        dependent = ops.create("Dependent", depends_on=[blocker.id])
        ops.block(dependent.id)
        result = ops.close(blocker.id)
        assert result.unblocked == [dependent.id]
        assert store.get_issue(dependent.id).status == Status.OPEN


class TestCascades:
    def test_close_epic_closes_children(self, ops, store):
        epic = ops.create("Epic", type="epic")
        child = ops.create("Child", parent_id=epic.id)
        result = ops.close(epic.id)
        assert result.cascaded == [child.id]
        assert store.get_issue(child.id).status == Status.CLOSED

    def test_closing_last_child_closes_epic(self, ops, store):
        epic = ops.create("Epic", type="epic")
        a = ops.create("A", parent_id=epic.id)
        b = ops.create("B", parent_id=epic.id)
        ops.close(a.id)
        assert store.get_issue(epic.id).status == Status.OPEN
        result = ops.close(b.id)
        assert result.parents == [epic.id]
        assert store.get_issue(epic.id).status == Status.CLOSED

    def test_review_cascades_to_children(self, ops, store):
        epic = ops.create("Epic", type="epic")
        child = ops.create("Child", parent_id=epic.id)
        ops.start(epic.id)
        ops.handoff(epic.id, done=["all of it"])
        result = ops.review(epic.id)
        assert child.id in result.cascaded
        assert store.get_issue(child.id).status == Status.IN_REVIEW

    def test_reopen(self, ops, store):
        issue = ops.create("Again")
        ops.close(issue.id)
        ops.reopen(issue.id)
        got = store.get_issue(issue.id)
        assert got.status == Status.OPEN
        assert got.closed_at is None


class TestRecords:
    def test_delete_and_restore(self, ops, store):
        issue = ops.create("Temporary")
        ops.delete(issue.id)
        assert store.get_issue(issue.id) is None
        assert store.get_issue(issue.id, include_deleted=True) is not None
        ops.restore(issue.id)
        assert store.get_issue(issue.id) is not None

    def test_restore_not_deleted(self, ops):
        issue = ops.create("Alive")
        with pytest.raises(InvalidInput):
            ops.restore(issue.id)

    def test_handoff_requires_content(self, ops):
        issue = ops.create("Empty handoff")
        with pytest.raises(InvalidInput):
            ops.handoff(issue.id)

    def test_latest_handoff(self, ops, store):
        issue = ops.create("Handoff")
        ops.handoff(issue.id, done=["a"], remaining=["b"], decisions=["c"], uncertain=["d"])
        h = store.get_latest_handoff(issue.id)
        assert (h.done, h.remaining, h.decisions, h.uncertain) == (["a"], ["b"], ["c"], ["d"])

    def test_comments(self, ops, store):
        issue = ops.create("Discuss")
        comment = ops.add_comment(issue.id, "looks good")
        assert [c.text for c in store.get_comments(issue.id)] == ["looks good"]
        ops.delete_comment(comment.id)
        assert store.get_comments(issue.id) == []
        with pytest.raises(NotFound):
            ops.delete_comment(comment.id)

    def test_dependency_cycle_rejected(self, ops):
        a = ops.create("A")
        b = ops.create("B")
        ops.add_dependency(a.id, b.id)
        assert ops.add_dependency(a.id, b.id) is None
        with pytest.raises(InvalidInput):
            ops.add_dependency(b.id, a.id)
        with pytest.raises(InvalidInput):
            ops.add_dependency(a.id, a.id)

    def test_remove_dependency(self, ops, store):
        a = ops.create("A")
        b = ops.create("B")
        ops.add_dependency(a.id, b.id)
        ops.remove_dependency(a.id, b.id)
        assert store.get_dependency_ids(a.id) == []

    def test_link_file_is_idempotent_by_path(self, ops, store):
        issue = ops.create("Files")
        first = ops.link_file(issue.id, "src/app.py")
        second = ops.link_file(issue.id, "src/app.py", role="test")
        assert first.id == second.id
        links = store.get_linked_files(issue.id)
        assert [(f.file_path, f.role) for f in links] == [("src/app.py", "test")]
        ops.unlink_file(issue.id, "src/app.py")
        assert store.get_linked_files(issue.id) == []

    def test_log_validation(self, ops):
        issue = ops.create("Logs")
        with pytest.raises(InvalidInput):
            ops.add_log(issue.id, "  ")
        with pytest.raises(InvalidInput):
            ops.add_log(issue.id, "msg", log_type="shout")
