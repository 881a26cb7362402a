"""Work sessions: named groups of issues an agent works through together.

The active work session id lives in the project config; these operations
take it as an argument so they stay independent of the config file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from td import ids
from td.errors import Conflict, InvalidInput, NotFound, TDError
from td.gitstate import GitState
from td.models import (
    ActionType, EntityKind, Issue, Log, LogType, Status, WorkSession,
    format_timestamp, now_utc,
)
from td.mutations import Mutation
from td.operations import IssueOperations

logger = logging.getLogger(__name__)


@dataclass
class TagResult:
    tagged: list[str] = field(default_factory=list)
    started: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class WorkSessionSummary:
    session: WorkSession
    issues: list[Issue] = field(default_factory=list)
    logs: list[Log] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_session": self.session.to_dict(),
            "issues": [i.to_dict() for i in self.issues],
            "logs": [log.to_dict() for log in self.logs],
        }


def _tag_row(ws_id: str, issue_id: str, tagged_at: str | None) -> dict[str, Any]:
    return {
        "id": ids.work_session_issue_id(ws_id, issue_id),
        "work_session_id": ws_id,
        "issue_id": issue_id,
        "tagged_at": tagged_at,
    }


class WorkSessionOperations:
    """Work session changes, logged through the issue operations' mutator."""

    def __init__(self, issues: IssueOperations) -> None:
        self.issues = issues
        self.store = issues.store
        self.mutator = issues.mutator

    def _require(self, ws_id: str) -> WorkSession:
        ws = self.store.get_work_session(ws_id)
        if ws is None:
            raise NotFound(f"work session not found: {ws_id}")
        return ws

    def _require_active(self, ws_id: str) -> WorkSession:
        if not ws_id:
            raise InvalidInput("no active work session. Run 'td ws start <name>' first")
        ws = self._require(ws_id)
        if not ws.active:
            raise InvalidInput(f"work session {ws_id} has ended")
        return ws

    def start(self, name: str, active_id: str = "",
              git_state: GitState | None = None) -> WorkSession:
        name = name.strip()
        if not name:
            raise InvalidInput("work session name is required")
        if active_id:
            active = self.store.get_work_session(active_id)
            if active is not None and active.active:
                raise Conflict(f"work session already active: {active_id}")
        ts = now_utc()
        ws = WorkSession(id=ids.generate_work_session_id(), name=name,
                         session_id=self.mutator.session_id, started_at=ts,
                         start_sha=git_state.commit_sha if git_state else "")
        self.mutator.commit([Mutation(ActionType.WORK_SESSION_START, EntityKind.WORK_SESSION,
                                      ws.id, None, ws.to_row())], timestamp=ts)
        logger.debug("started work session %s (%s)", ws.id, name)
        return ws

    def tag(self, ws_id: str, issue_ids: list[str], auto_start: bool = True,
            git_state: GitState | None = None) -> TagResult:
        """Tag issues; open ones are started unless ``auto_start`` is off."""
        ws = self._require_active(ws_id)
        result = TagResult()
        ts = now_utc()
        mutations: list[Mutation] = []
        to_start: list[Issue] = []
        tagged = set(self.store.get_work_session_issue_ids(ws.id))
        for issue_id in issue_ids:
            issue = self.store.get_issue(issue_id)
            if issue is None:
                result.warnings.append(f"issue not found: {issue_id}")
                continue
            if issue.id not in tagged:
                row = _tag_row(ws.id, issue.id, format_timestamp(ts))
                mutations.append(Mutation(ActionType.WORK_SESSION_TAG,
                                          EntityKind.WORK_SESSION_ISSUE, row["id"], None, row))
                tagged.add(issue.id)
            result.tagged.append(issue.id)
            if auto_start and issue.status == Status.OPEN:
                to_start.append(issue)
        self.mutator.commit(mutations, timestamp=ts)

        for issue in to_start:
            try:
                self.issues.start(issue.id, reason="Started (via work session)",
                                  git_state=git_state)
            except TDError as e:
                result.warnings.append(f"cannot auto-start {issue.id}: {e}")
                continue
            result.started.append(issue.id)
        return result

    def untag(self, ws_id: str, issue_ids: list[str]) -> list[str]:
        ws = self._require_active(ws_id)
        ts = now_utc()
        mutations: list[Mutation] = []
        removed: list[str] = []
        for issue_id in issue_ids:
            row = self.store.get_row("work_session_issues",
                                     ids.work_session_issue_id(ws.id, issue_id))
            if row is None:
                raise NotFound(f"{issue_id} is not tagged to {ws.id}")
            mutations.append(Mutation(ActionType.WORK_SESSION_UNTAG,
                                      EntityKind.WORK_SESSION_ISSUE, row["id"], row, None))
            removed.append(issue_id)
        self.mutator.commit(mutations, timestamp=ts)
        return removed

    def log(self, ws_id: str, message: str, log_type: str = LogType.PROGRESS,
            only: str = "") -> list[Log]:
        """Log to every tagged issue plus one work-session-level row."""
        ws = self._require_active(ws_id)
        if not message.strip():
            raise InvalidInput("log message is required")
        if only:
            return [self.issues.add_log(only, message, log_type, ws.id)]
        return self.issues.add_logs(self.store.get_work_session_issue_ids(ws.id),
                                    message, log_type, ws.id)

    def end(self, ws_id: str, git_state: GitState | None = None) -> WorkSession:
        ws = self._require_active(ws_id)
        after = WorkSession.from_row(ws.to_row())
        ts = now_utc()
        after.ended_at = ts
        after.end_sha = git_state.commit_sha if git_state else ""
        self.mutator.commit([Mutation(ActionType.WORK_SESSION_END, EntityKind.WORK_SESSION,
                                      ws.id, ws.to_row(), after.to_row())], timestamp=ts)
        return after

    def list_sessions(self, limit: int = 20) -> list[WorkSession]:
        return self.store.list_work_sessions(limit)

    def show(self, ws_id: str) -> WorkSessionSummary:
        ws = self._require(ws_id)
        issue_ids = self.store.get_work_session_issue_ids(ws.id)
        issues = self.store.get_issues_by_ids(issue_ids)
        order = {issue_id: i for i, issue_id in enumerate(issue_ids)}
        issues.sort(key=lambda i: order.get(i.id, 0))
        return WorkSessionSummary(ws, issues, self.store.get_work_session_logs(ws.id))

    def current(self, ws_id: str) -> Optional[WorkSessionSummary]:
        if not ws_id:
            return None
        ws = self.store.get_work_session(ws_id)
        if ws is None or not ws.active:
            return None
        return self.show(ws.id)
