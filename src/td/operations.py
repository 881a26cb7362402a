"""Issue lifecycle operations.

Every operation loads the issue, computes the new state, validates status
changes with the workflow state machine and commits the resulting batch
(entity rows, automatic progress logs, cascades) through the ``Mutator``.
All rows of one operation share one timestamp, which is also how undo
recognises a batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from td import ids
from td.errors import (
    CannotSelfApprove, Conflict, HandoffRequired, InvalidInput, NotFound, TDError,
)
from td.gitstate import GitState
from td.models import (
    ActionType, Comment, EntityKind, FileRole, GitSnapshot, Handoff, Issue, IssueFile,
    IssueType, Log, LogType, Priority, SessionAction, Status, Dependency,
    is_valid_points, now_utc, split_labels,
)
from td.mutations import Mutation, Mutator
from td.storage.sqlite_store import SQLiteStore
from td.workflow import (
    ActionContext, StateMachine, TransitionContext, TransitionError, TransitionMode,
    WorkflowValidationError, warnings as guard_warnings,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "title", "description", "acceptance", "type", "priority", "points", "labels",
    "parent_id", "sprint", "minor", "defer_at", "due_at",
)


@dataclass
class TransitionResult:
    issue: Issue
    warnings: list[str] = field(default_factory=list)
    cascaded: list[str] = field(default_factory=list)
    parents: list[str] = field(default_factory=list)
    unblocked: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"issue": self.issue.to_dict()}
        for key in ("warnings", "cascaded", "parents", "unblocked"):
            value = getattr(self, key)
            if value:
                d[key] = list(value)
        return d


def copy_issue(issue: Issue) -> Issue:
    return Issue.from_row(issue.to_row())


def issue_mutation(action_type: str, before: Issue | None, after: Issue) -> Mutation:
    return Mutation(action_type, EntityKind.ISSUE, after.id,
                    before.to_row() if before else None, after.to_row())


class _Batch:
    """Mutations of one operation plus an overlay of issues changed so far."""

    def __init__(self, store: SQLiteStore, ts: datetime) -> None:
        self.store = store
        self.ts = ts
        self.mutations: list[Mutation] = []
        self.issues: dict[str, Issue] = {}
        self.history: list[tuple[str, str]] = []

    def get(self, issue_id: str) -> Issue | None:
        if issue_id in self.issues:
            return self.issues[issue_id]
        return self.store.get_issue(issue_id)

    def change(self, action_type: str, before: Issue, after: Issue) -> None:
        after.updated_at = self.ts
        self.mutations.append(issue_mutation(action_type, before, after))
        self.issues[after.id] = after

    def add(self, mutation: Mutation) -> None:
        self.mutations.append(mutation)


class IssueOperations:
    """Workflow-aware issue mutations for one session."""

    def __init__(self, store: SQLiteStore, mutator: Mutator,
                 mode: str = TransitionMode.STRICT,
                 context: str = ActionContext.CLI) -> None:
        self.store = store
        self.mutator = mutator
        self.session_id = mutator.session_id
        self.machine = StateMachine(mode)
        self.context = context

    # --- Helpers ---

    def _require(self, issue_id: str) -> Issue:
        issue = self.store.get_issue(issue_id)
        if issue is None:
            raise NotFound(f"issue not found: {issue_id}")
        return issue

    def _commit(self, batch: _Batch) -> None:
        history = list(batch.history)

        def record_history(store: SQLiteStore) -> None:
            for issue_id, action in history:
                store.add_session_history(issue_id, self.session_id, action)

        self.mutator.commit(batch.mutations, after_write=record_history,
                            timestamp=batch.ts)

    def _log(self, batch: _Batch, issue_id: str, message: str,
             log_type: str = LogType.PROGRESS, work_session_id: str = "") -> Log:
        log = Log(id=ids.generate_log_id(), issue_id=issue_id, session_id=self.session_id,
                  work_session_id=work_session_id, message=message, type=log_type,
                  timestamp=batch.ts)
        batch.add(Mutation(ActionType.LOG, EntityKind.LOG, log.id, None, log.to_row()))
        return log

    def _snapshot(self, batch: _Batch, issue_id: str, event: str,
                  git_state: GitState | None) -> str:
        if git_state is None:
            return ""
        snap = GitSnapshot(id=ids.generate_snapshot_id(), issue_id=issue_id, event=event,
                           commit_sha=git_state.commit_sha, branch=git_state.branch,
                           dirty_files=git_state.dirty_files, timestamp=batch.ts)
        batch.add(Mutation(ActionType.CREATE, EntityKind.GIT_SNAPSHOT, snap.id,
                           None, snap.to_row()))
        return snap.id

    def validate(self, issue: Issue, to_status: str, force: bool = False,
                 has_handoff: bool | None = None,
                 open_child_count: int | None = None) -> list[str]:
        """Run the workflow guards for one status change.

        Returns advisory warnings. Raises ``InvalidInput`` for an edge that is
        not in the graph, ``CannotSelfApprove`` or ``HandoffRequired`` when
        that guard alone blocks, and the aggregated ``ValidationError``
        otherwise.
        """
        if has_handoff is None:
            has_handoff = self.store.has_handoff(issue.id)
        if open_child_count is None:
            open_child_count = len([d for d in self.store.get_descendants(issue.id)
                                    if d.status != Status.CLOSED])
        ctx = TransitionContext(
            issue=issue,
            from_status=issue.status,
            to_status=to_status,
            session_id=self.session_id,
            force=force,
            minor=issue.minor,
            context=self.context,
            was_involved=self.store.was_session_involved(issue.id, self.session_id),
            has_handoff=has_handoff,
            open_child_count=open_child_count,
            open_dependency_count=self.store.count_open_dependencies(issue.id),
        )
        try:
            results = self.machine.validate(ctx)
        except TransitionError as e:
            raise InvalidInput(str(e)) from e
        except WorkflowValidationError as e:
            names = set(e.guard_names)
            if names == {"DifferentReviewerGuard"}:
                raise CannotSelfApprove(str(e)) from e
            if "HandoffRequiredGuard" in names:
                raise HandoffRequired(str(e)) from e
            raise
        return guard_warnings(results)

    # --- Create and update ---

    def create(self, title: str, type: str = IssueType.TASK, priority: str = Priority.P2,
               description: str = "", acceptance: str = "", labels: Iterable[str] = (),
               parent_id: str = "", points: int = 0, minor: bool = False, sprint: str = "",
               defer_at: datetime | None = None, due_at: datetime | None = None,
               created_branch: str = "", depends_on: Iterable[str] = (),
               blocks: Iterable[str] = ()) -> Issue:
        title = title.strip()
        if not title:
            raise InvalidInput("title is required")
        type = IssueType.normalize(type)
        if not IssueType.is_valid(type):
            raise InvalidInput(f"invalid type: {type}")
        priority = Priority.normalize(priority)
        if not Priority.is_valid(priority):
            raise InvalidInput(f"invalid priority: {priority}")
        if not is_valid_points(points):
            raise InvalidInput(f"invalid points: {points} (use 1,2,3,5,8,13,21)")
        if parent_id:
            self._require(parent_id)

        ts = now_utc()
        issue = Issue(
            id="", title=title, description=description, type=type, priority=priority,
            points=points, labels=split_labels(list(labels)), parent_id=parent_id,
            acceptance=acceptance, sprint=sprint, creator_session=self.session_id,
            created_at=ts, updated_at=ts, minor=minor, created_branch=created_branch,
            defer_at=defer_at, due_at=due_at,
        )
        issue.id = self._new_issue_id()

        batch = _Batch(self.store, ts)
        batch.add(issue_mutation(ActionType.CREATE, None, issue))
        batch.issues[issue.id] = issue
        batch.history.append((issue.id, SessionAction.CREATED))
        for dep in depends_on:
            self._dependency_mutation(batch, issue.id, self._require(dep).id)
        for blocked in blocks:
            self._dependency_mutation(batch, self._require(blocked).id, issue.id)
        self._commit(batch)
        logger.debug("created %s", issue.id)
        return issue

    def _new_issue_id(self) -> str:
        for _ in range(10):
            candidate = ids.generate_issue_id()
            if self.store.get_row("issues", candidate) is None:
                return candidate
        raise Conflict("could not generate a unique issue id")

    def update(self, issue_id: str, changes: dict[str, Any],
               add_labels: Iterable[str] = (), remove_labels: Iterable[str] = ()) -> Issue:
        issue = self._require(issue_id)
        after = copy_issue(issue)
        for key, value in changes.items():
            if key not in UPDATABLE_FIELDS:
                raise InvalidInput(f"field cannot be updated: {key}")
            if key == "title":
                value = str(value).strip()
                if not value:
                    raise InvalidInput("title is required")
            elif key == "type":
                value = IssueType.normalize(value)
                if not IssueType.is_valid(value):
                    raise InvalidInput(f"invalid type: {value}")
            elif key == "priority":
                value = Priority.normalize(value)
                if not Priority.is_valid(value):
                    raise InvalidInput(f"invalid priority: {value}")
            elif key == "points":
                value = int(value)
                if not is_valid_points(value):
                    raise InvalidInput(f"invalid points: {value} (use 1,2,3,5,8,13,21)")
            elif key == "labels":
                value = split_labels(value)
            elif key == "parent_id":
                value = value or ""
                if value:
                    self._require(value)
                    if self.store.would_create_parent_cycle(issue.id, value):
                        raise InvalidInput(
                            f"setting parent {value} on {issue.id} would create a cycle")
            elif key == "minor":
                value = bool(value)
            setattr(after, key, value)
        labels = list(after.labels)
        for label in split_labels(list(add_labels)):
            if label not in labels:
                labels.append(label)
        drop = set(split_labels(list(remove_labels)))
        after.labels = [label for label in labels if label not in drop]

        if after.to_row() == issue.to_row():
            return issue
        batch = _Batch(self.store, now_utc())
        batch.change(ActionType.UPDATE, issue, after)
        self._commit(batch)
        return after

    # --- Status transitions ---

    def start(self, issue_id: str, force: bool = False, reason: str = "",
              git_state: GitState | None = None) -> TransitionResult:
        issue = self._require(issue_id)
        warnings: list[str] = []
        if issue.status != Status.IN_PROGRESS:
            warnings = self.validate(issue, Status.IN_PROGRESS, force=force)
        batch = _Batch(self.store, now_utc())
        after = copy_issue(issue)
        after.status = Status.IN_PROGRESS
        after.implementer_session = self.session_id
        batch.change(ActionType.START, issue, after)
        self._log(batch, issue.id, reason or "Started work")
        self._snapshot(batch, issue.id, "start", git_state)
        batch.history.append((issue.id, SessionAction.STARTED))
        self._commit(batch)
        return TransitionResult(after, warnings)

    def unstart(self, issue_id: str, reason: str = "") -> TransitionResult:
        issue = self._require(issue_id)
        if issue.status != Status.IN_PROGRESS:
            raise InvalidInput(f"cannot unstart {issue.id}: status is {issue.status}")
        warnings = self.validate(issue, Status.OPEN)
        batch = _Batch(self.store, now_utc())
        after = copy_issue(issue)
        after.status = Status.OPEN
        after.implementer_session = ""
        batch.change(ActionType.UNSTART, issue, after)
        self._log(batch, issue.id, reason or "Unstarted (returned to open)")
        batch.history.append((issue.id, SessionAction.UNSTARTED))
        self._commit(batch)
        return TransitionResult(after, warnings)

    def review(self, issue_id: str, reason: str = "") -> TransitionResult:
        issue = self._require(issue_id)
        warnings = self.validate(issue, Status.IN_REVIEW)
        batch = _Batch(self.store, now_utc())
        after = copy_issue(issue)
        after.status = Status.IN_REVIEW
        if not after.implementer_session:
            after.implementer_session = self.session_id
        batch.change(ActionType.REVIEW, issue, after)
        self._log(batch, issue.id, reason or "Submitted for review")
        result = TransitionResult(after, warnings)

        for child in self.store.get_descendants(issue.id):
            if child.status not in (Status.OPEN, Status.IN_PROGRESS):
                continue
            try:
                # the parent's handoff covers its cascaded descendants
                self.validate(child, Status.IN_REVIEW, has_handoff=True)
            except TDError as e:
                result.warnings.append(f"skipped {child.id}: {e}")
                continue
            child_after = copy_issue(child)
            child_after.status = Status.IN_REVIEW
            if not child_after.implementer_session:
                child_after.implementer_session = self.session_id
            batch.change(ActionType.REVIEW, child, child_after)
            self._log(batch, child.id, f"Cascaded review from {issue.id}")
            result.cascaded.append(child.id)

        result.parents = self._cascade_up(batch, issue.id, Status.IN_REVIEW)
        self._commit(batch)
        return result

    def approve(self, issue_id: str, reason: str = "") -> TransitionResult:
        issue = self._require(issue_id)
        if issue.status != Status.IN_REVIEW:
            raise InvalidInput(
                f"cannot approve {issue.id}: status is {issue.status} (must be in_review)")
        return self._close(issue, ActionType.APPROVE, reason or "Approved")

    def close(self, issue_id: str, reason: str = "") -> TransitionResult:
        issue = self._require(issue_id)
        if issue.status == Status.CLOSED:
            raise InvalidInput(f"{issue.id} is already closed")
        return self._close(issue, ActionType.CLOSE,
                           f"Closed: {reason}" if reason else "Closed")

    def _close(self, issue: Issue, action_type: str, message: str) -> TransitionResult:
        descendants = self.store.get_descendants(issue.id)
        candidates = {d.id for d in descendants
                      if d.status not in (Status.CLOSED, Status.BLOCKED)}

        batch = _Batch(self.store, now_utc())
        result = TransitionResult(issue)
        closing: list[str] = []
        for child in descendants:
            if child.id not in candidates:
                continue
            remaining = len([d for d in self.store.get_descendants(child.id)
                             if d.status != Status.CLOSED and d.id not in candidates])
            try:
                result.warnings.extend(
                    self.validate(child, Status.CLOSED, open_child_count=remaining))
            except TDError as e:
                result.warnings.append(f"skipped {child.id}: {e}")
                continue
            closing.append(child.id)

        still_open = len([d for d in descendants
                          if d.status != Status.CLOSED and d.id not in closing])
        result.warnings[:0] = self.validate(issue, Status.CLOSED,
                                            open_child_count=still_open)

        after = copy_issue(issue)
        after.status = Status.CLOSED
        after.closed_at = batch.ts
        if action_type == ActionType.APPROVE:
            after.reviewer_session = self.session_id
            batch.history.append((issue.id, SessionAction.REVIEWED))
        batch.change(action_type, issue, after)
        self._log(batch, issue.id, message)
        result.issue = after

        by_id = {d.id: d for d in descendants}
        for child_id in closing:
            child = by_id[child_id]
            child_after = copy_issue(child)
            child_after.status = Status.CLOSED
            child_after.closed_at = batch.ts
            if action_type == ActionType.APPROVE:
                child_after.reviewer_session = self.session_id
            batch.change(action_type, child, child_after)
            self._log(batch, child.id, f"Cascaded {action_type} from {issue.id}")
            result.cascaded.append(child.id)

        result.parents = self._cascade_up(batch, issue.id, Status.CLOSED)
        for closed_id in [issue.id, *result.cascaded, *result.parents]:
            result.unblocked.extend(self._auto_unblock(batch, closed_id))
        self._commit(batch)
        return result

    def reject(self, issue_id: str, reason: str = "") -> TransitionResult:
        issue = self._require(issue_id)
        if issue.status != Status.IN_REVIEW:
            raise InvalidInput(
                f"cannot reject {issue.id}: status is {issue.status} (must be in_review)")
        warnings = self.validate(issue, Status.IN_PROGRESS)
        batch = _Batch(self.store, now_utc())
        after = copy_issue(issue)
        after.status = Status.IN_PROGRESS
        batch.change(ActionType.REJECT, issue, after)
        self._log(batch, issue.id, f"Rejected: {reason}" if reason else "Rejected")
        batch.history.append((issue.id, SessionAction.REVIEWED))
        self._commit(batch)
        return TransitionResult(after, warnings)

    def block(self, issue_id: str, reason: str = "") -> TransitionResult:
        issue = self._require(issue_id)
        warnings = self.validate(issue, Status.BLOCKED)
        batch = _Batch(self.store, now_utc())
        after = copy_issue(issue)
        after.status = Status.BLOCKED
        batch.change(ActionType.BLOCK, issue, after)
        self._log(batch, issue.id, reason or "Blocked", LogType.BLOCKER)
        self._commit(batch)
        return TransitionResult(after, warnings)

    def unblock(self, issue_id: str, reason: str = "") -> TransitionResult:
        issue = self._require(issue_id)
        if issue.status != Status.BLOCKED:
            raise InvalidInput(f"cannot unblock {issue.id}: status is {issue.status}")
        warnings = self.validate(issue, Status.OPEN)
        batch = _Batch(self.store, now_utc())
        after = copy_issue(issue)
        after.status = Status.OPEN
        batch.change(ActionType.UNBLOCK, issue, after)
        self._log(batch, issue.id, reason or "Unblocked")
        self._commit(batch)
        return TransitionResult(after, warnings)

    def reopen(self, issue_id: str, reason: str = "") -> TransitionResult:
        issue = self._require(issue_id)
        warnings = self.validate(issue, Status.OPEN)
        batch = _Batch(self.store, now_utc())
        after = copy_issue(issue)
        after.status = Status.OPEN
        after.closed_at = None
        batch.change(ActionType.REOPEN, issue, after)
        self._log(batch, issue.id, reason or "Reopened")
        self._commit(batch)
        return TransitionResult(after, warnings)

    # --- Cascades ---

    def _cascade_up(self, batch: _Batch, issue_id: str, target: str) -> list[str]:
        """Move epic ancestors to ``target`` once all their children reach it."""
        cascaded: list[str] = []
        current = batch.get(issue_id)
        seen = {issue_id}
        while current is not None and current.parent_id and current.parent_id not in seen:
            seen.add(current.parent_id)
            parent = batch.get(current.parent_id)
            if parent is None or parent.type != IssueType.EPIC:
                break
            if parent.status in (target, Status.CLOSED):
                break
            children = [batch.issues.get(c.id, c) for c in self.store.get_children(parent.id)]
            if not children:
                break
            if target == Status.IN_REVIEW:
                done = all(c.status in (Status.IN_REVIEW, Status.CLOSED) for c in children)
            else:
                done = all(c.status == Status.CLOSED for c in children)
            if not done or not self.machine.is_valid_transition(parent.status, target):
                break
            after = copy_issue(parent)
            after.status = target
            if target == Status.CLOSED:
                after.closed_at = batch.ts
            action = ActionType.CLOSE if target == Status.CLOSED else ActionType.REVIEW
            batch.change(action, parent, after)
            self._log(batch, parent.id, f"Auto-cascaded to {target} (all children complete)")
            cascaded.append(parent.id)
            current = after
        return cascaded

    def _auto_unblock(self, batch: _Batch, closed_id: str) -> list[str]:
        """Reopen blocked dependents whose dependencies are now all closed."""
        unblocked: list[str] = []
        for dep_id in self.store.get_blocked_by_ids(closed_id):
            dependent = batch.get(dep_id)
            if dependent is None or dependent.status != Status.BLOCKED:
                continue
            blockers = [batch.get(b) for b in self.store.get_dependency_ids(dep_id)]
            if any(b is None or b.status != Status.CLOSED for b in blockers):
                continue
            after = copy_issue(dependent)
            after.status = Status.OPEN
            batch.change(ActionType.UNBLOCK, dependent, after)
            self._log(batch, dep_id, f"Auto-unblocked (dependency {closed_id} closed)")
            unblocked.append(dep_id)
        return unblocked

    # --- Delete and restore ---

    def delete(self, issue_id: str) -> Issue:
        issue = self._require(issue_id)
        batch = _Batch(self.store, now_utc())
        after = copy_issue(issue)
        after.deleted_at = batch.ts
        batch.change(ActionType.DELETE, issue, after)
        self._commit(batch)
        return after

    def restore(self, issue_id: str) -> Issue:
        issue = self.store.get_issue(issue_id, include_deleted=True)
        if issue is None:
            raise NotFound(f"issue not found: {issue_id}")
        if issue.deleted_at is None:
            raise InvalidInput(f"{issue.id} is not deleted")
        batch = _Batch(self.store, now_utc())
        after = copy_issue(issue)
        after.deleted_at = None
        batch.change(ActionType.RESTORE, issue, after)
        self._commit(batch)
        return after

    # --- Records ---

    def add_log(self, issue_id: str, message: str, log_type: str = LogType.PROGRESS,
                work_session_id: str = "") -> Log:
        if not message.strip():
            raise InvalidInput("log message is required")
        if not LogType.is_valid(log_type):
            raise InvalidInput(f"invalid log type: {log_type}")
        if issue_id:
            self._require(issue_id)
        batch = _Batch(self.store, now_utc())
        log = self._log(batch, issue_id, message, log_type, work_session_id)
        self._commit(batch)
        return log

    def add_logs(self, issue_ids: list[str], message: str, log_type: str,
                 work_session_id: str) -> list[Log]:
        """One log per issue plus a work-session-level row, in one batch."""
        if not LogType.is_valid(log_type):
            raise InvalidInput(f"invalid log type: {log_type}")
        batch = _Batch(self.store, now_utc())
        logs = [self._log(batch, i, message, log_type, work_session_id) for i in issue_ids]
        logs.append(self._log(batch, "", message, log_type, work_session_id))
        self._commit(batch)
        return logs

    def handoff(self, issue_id: str, done: Iterable[str] = (), remaining: Iterable[str] = (),
                decisions: Iterable[str] = (), uncertain: Iterable[str] = (),
                git_state: GitState | None = None) -> Handoff:
        issue = self._require(issue_id)
        handoff = Handoff(id=ids.generate_handoff_id(), issue_id=issue.id,
                          session_id=self.session_id, done=list(done),
                          remaining=list(remaining), decisions=list(decisions),
                          uncertain=list(uncertain))
        if handoff.is_empty():
            raise InvalidInput(
                "handoff needs at least one of done, remaining, decisions or uncertain")
        batch = _Batch(self.store, now_utc())
        handoff.timestamp = batch.ts
        handoff.git_snapshot_id = self._snapshot(batch, issue.id, "handoff", git_state)
        batch.add(Mutation(ActionType.HANDOFF, EntityKind.HANDOFF, handoff.id,
                           None, handoff.to_row()))
        self._commit(batch)
        return handoff

    def add_comment(self, issue_id: str, text: str) -> Comment:
        issue = self._require(issue_id)
        if not text.strip():
            raise InvalidInput("comment text is required")
        batch = _Batch(self.store, now_utc())
        comment = Comment(id=ids.generate_comment_id(), issue_id=issue.id,
                          session_id=self.session_id, text=text, created_at=batch.ts)
        batch.add(Mutation(ActionType.COMMENT, EntityKind.COMMENT, comment.id,
                           None, comment.to_row()))
        self._commit(batch)
        return comment

    def delete_comment(self, comment_id: str) -> Comment:
        row = self.store.get_row("comments", comment_id)
        if row is None or row.get("deleted_at"):
            raise NotFound(f"comment not found: {comment_id}")
        batch = _Batch(self.store, now_utc())
        comment = Comment.from_row(row)
        comment.deleted_at = batch.ts
        batch.add(Mutation(ActionType.DELETE, EntityKind.COMMENT, comment_id,
                           row, comment.to_row()))
        self._commit(batch)
        return comment

    # --- Dependencies ---

    def _dependency_mutation(self, batch: _Batch, issue_id: str, depends_on_id: str) -> Dependency:
        dep = Dependency(id=ids.dependency_id(issue_id, depends_on_id),
                         issue_id=issue_id, depends_on_id=depends_on_id)
        batch.add(Mutation(ActionType.ADD_DEPENDENCY, EntityKind.DEPENDENCY, dep.id,
                           None, dep.to_row()))
        return dep

    def add_dependency(self, issue_id: str, depends_on_id: str) -> Optional[Dependency]:
        """Record that ``issue_id`` is blocked by ``depends_on_id``.

        Returns None when the edge already exists.
        """
        issue = self._require(issue_id)
        blocker = self._require(depends_on_id)
        if issue.id == blocker.id:
            raise InvalidInput(f"{issue.id} cannot depend on itself")
        if self.store.get_dependency(issue.id, blocker.id) is not None:
            return None
        if self.store.would_create_dependency_cycle(issue.id, blocker.id):
            raise InvalidInput(
                f"adding dependency {issue.id} -> {blocker.id} would create a cycle")
        batch = _Batch(self.store, now_utc())
        dep = self._dependency_mutation(batch, issue.id, blocker.id)
        self._commit(batch)
        return dep

    def remove_dependency(self, issue_id: str, depends_on_id: str) -> Dependency:
        dep = self.store.get_dependency(issue_id, depends_on_id)
        if dep is None:
            raise NotFound(f"{issue_id} does not depend on {depends_on_id}")
        batch = _Batch(self.store, now_utc())
        batch.add(Mutation(ActionType.REMOVE_DEPENDENCY, EntityKind.DEPENDENCY, dep.id,
                           dep.to_row(), None))
        self._commit(batch)
        return dep

    # --- Linked files ---

    def link_file(self, issue_id: str, file_path: str, role: str = FileRole.IMPLEMENTATION,
                  sha: str = "") -> IssueFile:
        issue = self._require(issue_id)
        if not FileRole.is_valid(role):
            raise InvalidInput(f"invalid file role: {role}")
        existing = self.store.get_file_link(issue.id, file_path)
        batch = _Batch(self.store, now_utc())
        link = IssueFile(id=ids.file_link_id(issue.id, file_path), issue_id=issue.id,
                         file_path=file_path, role=role, linked_sha=sha, linked_at=batch.ts)
        previous = existing.to_row() if existing else None
        if existing is not None:
            link.id = existing.id
        batch.add(Mutation(ActionType.LINK_FILE, EntityKind.FILE_LINK, link.id,
                           previous, link.to_row()))
        self._commit(batch)
        return link

    def unlink_file(self, issue_id: str, file_path: str) -> IssueFile:
        link = self.store.get_file_link(issue_id, file_path)
        if link is None:
            raise NotFound(f"{file_path} is not linked to {issue_id}")
        batch = _Batch(self.store, now_utc())
        batch.add(Mutation(ActionType.UNLINK_FILE, EntityKind.FILE_LINK, link.id,
                           link.to_row(), None))
        self._commit(batch)
        return link
