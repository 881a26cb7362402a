"""Tests for the workflow state machine and its guards."""

import pytest

from td.models import Issue, IssueType, Status
from td.workflow import (
    ActionContext, StateMachine, TransitionContext, TransitionError, TransitionMode,
    WorkflowValidationError, transition_name, warnings,
)


def _ctx(from_status: str, to_status: str, **kwargs) -> TransitionContext:
    issue = kwargs.pop("issue", None) or Issue(id="td-abc123", status=from_status)
    return TransitionContext(issue=issue, from_status=from_status, to_status=to_status,
                             session_id=kwargs.pop("session_id", "ses_a"), **kwargs)


class TestTransitionTable:
    def test_allowed_from_open(self):
        sm = StateMachine()
        assert sm.allowed_transitions(Status.OPEN) == [
            Status.IN_PROGRESS, Status.BLOCKED, Status.IN_REVIEW, Status.CLOSED]

    def test_closed_only_reopens(self):
        assert StateMachine().allowed_transitions(Status.CLOSED) == [Status.OPEN]

    def test_missing_edge_raises_in_every_mode(self):
        for mode in (TransitionMode.LIBERAL, TransitionMode.ADVISORY, TransitionMode.STRICT):
            with pytest.raises(TransitionError):
                StateMachine(mode).validate(_ctx(Status.CLOSED, Status.IN_REVIEW))

    def test_nil_context(self):
        with pytest.raises(TransitionError):
            StateMachine().validate(None)

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            StateMachine("chaotic")

    def test_transition_names(self):
        assert transition_name(Status.IN_REVIEW, Status.CLOSED) == "approve"
        assert transition_name(Status.CLOSED, Status.OPEN) == "reopen"


class TestGuards:
    def test_self_approve_blocked_in_strict(self):
        issue = Issue(id="td-abc123", status=Status.IN_REVIEW, implementer_session="ses_a")
        with pytest.raises(WorkflowValidationError) as exc:
            StateMachine().validate(_ctx(Status.IN_REVIEW, Status.CLOSED, issue=issue))
        assert exc.value.guard_names == ["DifferentReviewerGuard"]

    def test_self_approve_allowed_for_minor(self):
        issue = Issue(id="td-abc123", status=Status.IN_REVIEW,
                      implementer_session="ses_a", minor=True)
        results = StateMachine().validate(_ctx(Status.IN_REVIEW, Status.CLOSED, issue=issue))
        assert all(r.passed for r in results)

    def test_admin_context_bypasses_reviewer_guard(self):
        issue = Issue(id="td-abc123", status=Status.IN_REVIEW, implementer_session="ses_a")
        StateMachine().validate(_ctx(Status.IN_REVIEW, Status.CLOSED, issue=issue,
                                     context=ActionContext.ADMIN))

    def test_was_involved_counts_as_implementer(self):
        issue = Issue(id="td-abc123", status=Status.IN_REVIEW, implementer_session="ses_x")
        with pytest.raises(WorkflowValidationError):
            StateMachine().validate(_ctx(Status.IN_REVIEW, Status.CLOSED, issue=issue,
                                         was_involved=True))

    def test_handoff_required_for_review(self):
        with pytest.raises(WorkflowValidationError) as exc:
            StateMachine().validate(_ctx(Status.IN_PROGRESS, Status.IN_REVIEW))
        assert exc.value.guard_names == ["HandoffRequiredGuard"]
        StateMachine().validate(_ctx(Status.IN_PROGRESS, Status.IN_REVIEW, has_handoff=True))

    def test_blocked_start_needs_force(self):
        with pytest.raises(WorkflowValidationError):
            StateMachine().validate(_ctx(Status.BLOCKED, Status.IN_PROGRESS))
        StateMachine().validate(_ctx(Status.BLOCKED, Status.IN_PROGRESS, force=True))

    def test_epic_with_open_children_cannot_close(self):
        epic = Issue(id="td-e00001", status=Status.OPEN, type=IssueType.EPIC)
        with pytest.raises(WorkflowValidationError):
            StateMachine().validate(_ctx(Status.OPEN, Status.CLOSED, issue=epic,
                                         open_child_count=2))

    def test_dependency_guard_only_warns(self):
        results = StateMachine().validate(_ctx(Status.OPEN, Status.IN_PROGRESS,
                                               open_dependency_count=1))
        assert warnings(results) == ["DependencyGuard: 1 unresolved dependencies"]


class TestModes:
    def test_liberal_runs_no_guards(self):
        assert StateMachine(TransitionMode.LIBERAL).validate(
            _ctx(Status.IN_PROGRESS, Status.IN_REVIEW)) == []

    def test_advisory_reports_without_raising(self):
        results = StateMachine(TransitionMode.ADVISORY).validate(
            _ctx(Status.IN_PROGRESS, Status.IN_REVIEW))
        assert [r.passed for r in results] == [False]

    def test_can_transition(self):
        sm = StateMachine()
        ok, _ = sm.can_transition(_ctx(Status.OPEN, Status.IN_PROGRESS))
        assert ok
        ok, _ = sm.can_transition(_ctx(Status.CLOSED, Status.CLOSED))
        assert not ok
