"""Storage interface (abstract base) for td."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any

from td.models import (
    ActionLog, Board, Comment, Dependency, Handoff, Issue, IssueFile, IssueFilter,
    Log, Note, WorkSession,
)


class Storage(ABC):
    """Abstract base class defining the store operations used by td."""

    @abstractmethod
    def path(self) -> str:
        """Return the database file path."""

    @abstractmethod
    def close(self) -> None:
        """Close the storage connection."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Context manager for one atomic unit of work; nests via savepoints."""

    # --- Generic rows ---

    @abstractmethod
    def get_row(self, table: str, row_id: str) -> dict[str, Any] | None:
        """Fetch one row by id as a plain dict, including soft-deleted rows."""

    @abstractmethod
    def put_row(self, table: str, row: dict[str, Any]) -> None:
        """Insert or replace a row; keys that are not columns are ignored."""

    @abstractmethod
    def delete_row(self, table: str, row_id: str) -> None:
        """Hard-delete one row by id."""

    # --- Issues ---

    @abstractmethod
    def create_issue(self, issue: Issue) -> Issue:
        """Insert a new issue, generating an id (with collision retry) if empty."""

    @abstractmethod
    def get_issue(self, issue_id: str, include_deleted: bool = False) -> Issue | None:
        """Get an issue by id. Soft-deleted issues only when include_deleted."""

    @abstractmethod
    def save_issue(self, issue: Issue) -> None:
        """Write every column of an existing issue."""

    @abstractmethod
    def list_issues(self, f: IssueFilter) -> list[Issue]:
        """List issues matching a simple filter."""

    @abstractmethod
    def query_issues(self, where: str, params: list[Any], order_by: str = "",
                     limit: int = 0, include_deleted: bool = False) -> list[Issue]:
        """Run a compiled TDQ predicate against the issues table."""

    @abstractmethod
    def resolve_id(self, partial: str) -> str | None:
        """Resolve an exact or unique-prefix issue id."""

    @abstractmethod
    def get_children(self, parent_id: str) -> list[Issue]:
        """Direct, non-deleted children of an issue."""

    # --- Records ---

    @abstractmethod
    def get_logs(self, issue_id: str, limit: int = 0) -> list[Log]:
        """Logs for an issue, newest first."""

    @abstractmethod
    def get_latest_handoff(self, issue_id: str) -> Handoff | None:
        """Most recent handoff for an issue."""

    @abstractmethod
    def get_comments(self, issue_id: str) -> list[Comment]:
        """Non-deleted comments for an issue, oldest first."""

    @abstractmethod
    def get_linked_files(self, issue_id: str) -> list[IssueFile]:
        """Files linked to an issue."""

    # --- Dependencies ---

    @abstractmethod
    def get_dependency_ids(self, issue_id: str) -> list[str]:
        """Ids of issues that ``issue_id`` depends on."""

    @abstractmethod
    def get_blocked_by_ids(self, issue_id: str) -> list[str]:
        """Ids of issues that depend on ``issue_id``."""

    @abstractmethod
    def get_dependency(self, issue_id: str, depends_on_id: str) -> Dependency | None:
        """The edge between two issues, if present."""

    # --- Work sessions, boards, notes ---

    @abstractmethod
    def get_work_session(self, ws_id: str) -> WorkSession | None:
        """Work session by id."""

    @abstractmethod
    def get_board(self, board_id: str) -> Board | None:
        """Non-deleted board by id."""

    @abstractmethod
    def get_note(self, note_id: str) -> Note | None:
        """Non-deleted note by id."""

    # --- Action log ---

    @abstractmethod
    def insert_action(self, action: ActionLog) -> int:
        """Append an action log row; returns its monotonic id."""

    @abstractmethod
    def get_last_actions(self, session_id: str, n: int = 1) -> list[ActionLog]:
        """Most recent not-undone actions of a session, newest first."""
