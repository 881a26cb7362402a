"""SQLite storage implementation for td."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Iterator

from td import ids
from td.errors import DatabaseError, NotFound
from td.models import (
    ActionLog, Board, BoardPosition, Comment, ConflictRecord, Dependency,
    GitSnapshot, Handoff, Issue, IssueFile, IssueFilter, Log, Note,
    SessionAction, Status, SyncHistoryEntry, WorkSession, format_timestamp,
    now_utc, parse_timestamp,
)
from td.storage.interface import Storage
from td.storage.migrations import get_schema_version, run_migrations

logger = logging.getLogger(__name__)

MAX_DESCENDANT_DEPTH = 100
ISSUE_INSERT_RETRIES = 10

# Local entity kind -> table
ENTITY_TABLES: dict[str, str] = {
    "issue": "issues",
    "log": "logs",
    "handoff": "handoffs",
    "comment": "comments",
    "dependency": "issue_dependencies",
    "file_link": "issue_files",
    "board": "boards",
    "board_position": "board_issue_positions",
    "work_session": "work_sessions",
    "work_session_issue": "work_session_issues",
    "note": "notes",
    "git_snapshot": "git_snapshots",
}

# Kinds whose delete is a deleted_at stamp rather than a row removal
SOFT_DELETE_KINDS = {"issue", "comment", "board", "board_position", "note"}

_SORT_COLUMNS = {
    "priority": "priority",
    "created": "created_at",
    "updated": "updated_at",
    "closed": "closed_at",
    "deleted": "deleted_at",
    "id": "id",
    "title": "title",
    "status": "status",
    "points": "points",
}


class SQLiteStore(Storage):
    """SQLite-based storage backend.

    The connection runs in autocommit mode; ``transaction()`` issues an
    explicit ``BEGIN IMMEDIATE`` and nests through savepoints. A re-entrant
    lock serializes use of the connection across threads (autosync runs its
    push from a timer thread).
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._lock = threading.RLock()
        self._depth = 0
        self._columns: dict[str, list[str]] = {}
        try:
            self._conn = sqlite3.connect(db_path, isolation_level=None,
                                         check_same_thread=False)
        except sqlite3.Error as e:
            raise DatabaseError(f"open {db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        applied = run_migrations(self._conn)
        if applied:
            logger.debug("schema migrated through version %d", applied[-1])

    def path(self) -> str:
        return self._db_path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def schema_version(self) -> int:
        with self._lock:
            return get_schema_version(self._conn)

    # --- Helpers ---

    def _all(self, sql: str, params: Any = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise DatabaseError(str(e)) from e

    def _one(self, sql: str, params: Any = ()) -> sqlite3.Row | None:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise DatabaseError(str(e)) from e

    def _exec(self, sql: str, params: Any = ()) -> sqlite3.Cursor:
        with self._lock:
            try:
                return self._conn.execute(sql, params)
            except sqlite3.Error as e:
                raise DatabaseError(str(e)) from e

    def _row_to_issue(self, row: sqlite3.Row) -> Issue:
        return Issue.from_row(dict(row))

    # --- Transactions ---

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth == 0:
                self._exec("BEGIN IMMEDIATE")
                name = None
            else:
                name = f"sp_{self._depth}"
                self._exec(f"SAVEPOINT {name}")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if name is None:
                    self._conn.execute("ROLLBACK")
                else:
                    self._conn.execute(f"ROLLBACK TO {name}")
                    self._conn.execute(f"RELEASE {name}")
                raise
            self._depth -= 1
            if name is None:
                self._exec("COMMIT")
            else:
                self._exec(f"RELEASE {name}")

    def run_in_transaction(self, fn: Any) -> Any:
        with self.transaction():
            return fn(self)

    # --- Generic rows ---

    def columns(self, table: str) -> list[str]:
        if table not in self._columns:
            self._columns[table] = [
                r[1] for r in self._all(f"PRAGMA table_info({table})")
            ]
        return self._columns[table]

    def get_row(self, table: str, row_id: str) -> dict[str, Any] | None:
        row = self._one(f"SELECT * FROM {table} WHERE id = ?", (row_id,))
        return dict(row) if row else None

    def put_row(self, table: str, row: dict[str, Any]) -> None:
        cols = [c for c in self.columns(table) if c in row]
        if not cols:
            raise DatabaseError(f"no known columns for {table}")
        placeholders = ",".join("?" * len(cols))
        values = [row[c] for c in cols]
        self._exec(
            f"INSERT OR REPLACE INTO {table} ({', '.join(cols)}) VALUES ({placeholders})",
            values,
        )

    def delete_row(self, table: str, row_id: str) -> None:
        self._exec(f"DELETE FROM {table} WHERE id = ?", (row_id,))

    def all_rows(self, table: str, include_deleted: bool = False) -> list[dict[str, Any]]:
        sql = f"SELECT * FROM {table}"
        if not include_deleted and "deleted_at" in self.columns(table):
            sql += " WHERE deleted_at IS NULL"
        return [dict(r) for r in self._all(sql + " ORDER BY rowid")]

    # --- Issue CRUD ---

    def create_issue(self, issue: Issue) -> Issue:
        generated = not issue.id
        for _ in range(ISSUE_INSERT_RETRIES):
            if generated:
                issue.id = ids.generate_issue_id()
            try:
                with self._lock:
                    row = issue.to_row()
                    cols = [c for c in self.columns("issues") if c in row]
                    self._conn.execute(
                        f"INSERT INTO issues ({', '.join(cols)}) "
                        f"VALUES ({','.join('?' * len(cols))})",
                        [row[c] for c in cols],
                    )
                return issue
            except sqlite3.IntegrityError as e:
                if not generated:
                    raise DatabaseError(f"issue {issue.id} already exists") from e
                logger.debug("issue id collision on %s, retrying", issue.id)
            except sqlite3.Error as e:
                raise DatabaseError(str(e)) from e
        raise DatabaseError("could not generate a unique issue id")

    def get_issue(self, issue_id: str, include_deleted: bool = False) -> Issue | None:
        sql = "SELECT * FROM issues WHERE id = ?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        row = self._one(sql, (issue_id,))
        return self._row_to_issue(row) if row else None

    def require_issue(self, issue_id: str, include_deleted: bool = False) -> Issue:
        issue = self.get_issue(issue_id, include_deleted)
        if issue is None:
            raise NotFound(f"issue not found: {issue_id}")
        return issue

    def save_issue(self, issue: Issue) -> None:
        self.put_row("issues", issue.to_row())

    def get_issues_by_ids(self, issue_ids: list[str],
                          include_deleted: bool = False) -> list[Issue]:
        if not issue_ids:
            return []
        placeholders = ",".join("?" * len(issue_ids))
        sql = f"SELECT * FROM issues WHERE id IN ({placeholders})"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        return [self._row_to_issue(r) for r in self._all(sql, list(issue_ids))]

    def _build_filter_sql(self, f: IssueFilter) -> tuple[str, list[Any]]:
        """Build WHERE clause from IssueFilter."""
        clauses: list[str] = []
        params: list[Any] = []

        if f.only_deleted:
            clauses.append("deleted_at IS NOT NULL")
        elif not f.include_deleted:
            clauses.append("deleted_at IS NULL")

        if f.status:
            clauses.append(f"status IN ({','.join('?' * len(f.status))})")
            params.extend(f.status)

        if f.type:
            clauses.append(f"type IN ({','.join('?' * len(f.type))})")
            params.extend(f.type)

        if f.priority:
            clauses.append("priority = ?")
            params.append(f.priority)

        for label in f.labels:
            clauses.append("(',' || labels || ',') LIKE ? ESCAPE '\\'")
            params.append(f"%,{escape_like(label)},%")

        if f.parent_id is not None:
            clauses.append("parent_id = ?")
            params.append(f.parent_id)

        if f.implementer is not None:
            clauses.append("implementer_session = ?")
            params.append(f.implementer)

        if f.reviewer is not None:
            clauses.append("reviewer_session = ?")
            params.append(f.reviewer)

        if f.search:
            pattern = f"%{escape_like(f.search)}%"
            clauses.append(
                "(id LIKE ? ESCAPE '\\' OR title LIKE ? ESCAPE '\\' "
                "OR description LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern, pattern])

        if f.ids:
            clauses.append(f"id IN ({','.join('?' * len(f.ids))})")
            params.extend(f.ids)

        return " AND ".join(clauses) or "1=1", params

    def list_issues(self, f: IssueFilter) -> list[Issue]:
        where, params = self._build_filter_sql(f)
        order = order_clause(f.sort, f.descending)
        sql = f"SELECT * FROM issues WHERE {where} ORDER BY {order}"
        if f.limit > 0:
            sql += f" LIMIT {int(f.limit)}"
        return [self._row_to_issue(r) for r in self._all(sql, params)]

    def query_issues(self, where: str, params: list[Any], order_by: str = "",
                     limit: int = 0, include_deleted: bool = False) -> list[Issue]:
        clauses = [f"({where})" if where else "1=1"]
        if not include_deleted:
            clauses.append("deleted_at IS NULL")
        sql = f"SELECT * FROM issues WHERE {' AND '.join(clauses)}"
        sql += f" ORDER BY {order_by or order_clause('priority', False)}"
        if limit > 0:
            sql += f" LIMIT {int(limit)}"
        return [self._row_to_issue(r) for r in self._all(sql, params)]

    def count_by_status(self) -> dict[str, int]:
        counts = {s: 0 for s in Status.ORDER}
        for row in self._all(
            "SELECT status, count(*) AS n FROM issues WHERE deleted_at IS NULL GROUP BY status"
        ):
            counts[row["status"]] = row["n"]
        return counts

    def resolve_id(self, partial: str) -> str | None:
        """Resolve a partial ID to a full ID (exact match, then unique prefix)."""
        partial = partial.strip()
        if not partial:
            return None
        candidates = [partial]
        normalized = ids.normalize_issue_id(partial)
        if normalized != partial:
            candidates.append(normalized)
        for candidate in candidates:
            row = self._one("SELECT id FROM issues WHERE id = ?", (candidate,))
            if row:
                return row["id"]
        for candidate in candidates:
            rows = self._all(
                "SELECT id FROM issues WHERE id LIKE ? ESCAPE '\\'",
                (f"{escape_like(candidate)}%",),
            )
            if len(rows) == 1:
                return rows[0]["id"]
        return None

    # --- Hierarchy ---

    def get_children(self, parent_id: str) -> list[Issue]:
        rows = self._all(
            "SELECT * FROM issues WHERE parent_id = ? AND deleted_at IS NULL "
            "ORDER BY created_at",
            (parent_id,),
        )
        return [self._row_to_issue(r) for r in rows]

    def get_descendants(self, root_id: str) -> list[Issue]:
        """Breadth-first descendants, bounded by MAX_DESCENDANT_DEPTH and cycle-safe."""
        result: list[Issue] = []
        seen = {root_id}
        frontier = [root_id]
        depth = 0
        while frontier and depth < MAX_DESCENDANT_DEPTH:
            next_frontier: list[str] = []
            for parent in frontier:
                for child in self.get_children(parent):
                    if child.id in seen:
                        continue
                    seen.add(child.id)
                    result.append(child)
                    next_frontier.append(child.id)
            frontier = next_frontier
            depth += 1
        return result

    def would_create_parent_cycle(self, issue_id: str, parent_id: str) -> bool:
        """True if making ``parent_id`` the parent of ``issue_id`` closes a loop."""
        if not parent_id:
            return False
        if issue_id == parent_id:
            return True
        row = self._one("""
            WITH RECURSIVE ancestors(id, depth) AS (
                SELECT ?, 0
                UNION ALL
                SELECT i.parent_id, a.depth + 1
                FROM ancestors a
                JOIN issues i ON i.id = a.id
                WHERE i.parent_id != '' AND a.depth < 100
            )
            SELECT 1 FROM ancestors WHERE id = ? LIMIT 1
        """, (parent_id, issue_id))
        return row is not None

    # --- Logs ---

    def get_logs(self, issue_id: str, limit: int = 0) -> list[Log]:
        sql = "SELECT * FROM logs WHERE issue_id = ? ORDER BY timestamp DESC, rowid DESC"
        if limit > 0:
            sql += f" LIMIT {int(limit)}"
        return [Log.from_row(dict(r)) for r in self._all(sql, (issue_id,))]

    def get_logs_for_issues(self, issue_ids: list[str]) -> dict[str, list[Log]]:
        result: dict[str, list[Log]] = {i: [] for i in issue_ids}
        if not issue_ids:
            return result
        placeholders = ",".join("?" * len(issue_ids))
        for r in self._all(
            f"SELECT * FROM logs WHERE issue_id IN ({placeholders}) ORDER BY timestamp",
            list(issue_ids),
        ):
            result.setdefault(r["issue_id"], []).append(Log.from_row(dict(r)))
        return result

    def get_recent_logs(self, limit: int = 10, session_id: str = "") -> list[Log]:
        if session_id:
            rows = self._all(
                "SELECT * FROM logs WHERE session_id = ? ORDER BY timestamp DESC LIMIT ?",
                (session_id, limit),
            )
        else:
            rows = self._all("SELECT * FROM logs ORDER BY timestamp DESC LIMIT ?", (limit,))
        return [Log.from_row(dict(r)) for r in rows]

    # --- Handoffs ---

    def get_latest_handoff(self, issue_id: str) -> Handoff | None:
        row = self._one(
            "SELECT * FROM handoffs WHERE issue_id = ? ORDER BY timestamp DESC, rowid DESC LIMIT 1",
            (issue_id,),
        )
        return Handoff.from_row(dict(row)) if row else None

    def get_handoffs(self, issue_id: str) -> list[Handoff]:
        rows = self._all(
            "SELECT * FROM handoffs WHERE issue_id = ? ORDER BY timestamp DESC, rowid DESC",
            (issue_id,),
        )
        return [Handoff.from_row(dict(r)) for r in rows]

    def has_handoff(self, issue_id: str) -> bool:
        return self._one("SELECT 1 FROM handoffs WHERE issue_id = ? LIMIT 1", (issue_id,)) is not None

    # --- Comments ---

    def get_comments(self, issue_id: str) -> list[Comment]:
        rows = self._all(
            "SELECT * FROM comments WHERE issue_id = ? AND deleted_at IS NULL ORDER BY created_at",
            (issue_id,),
        )
        return [Comment.from_row(dict(r)) for r in rows]

    # --- Linked files ---

    def get_linked_files(self, issue_id: str) -> list[IssueFile]:
        rows = self._all(
            "SELECT * FROM issue_files WHERE issue_id = ? ORDER BY role, file_path",
            (issue_id,),
        )
        return [IssueFile.from_row(dict(r)) for r in rows]

    def get_file_link(self, issue_id: str, file_path: str) -> IssueFile | None:
        row = self._one(
            "SELECT * FROM issue_files WHERE issue_id = ? AND file_path = ?",
            (issue_id, file_path),
        )
        return IssueFile.from_row(dict(row)) if row else None

    def get_file_ownership(self) -> list[tuple[str, str]]:
        """Distinct (file_path, implementer_session) pairs over linked files."""
        rows = self._all("""
            SELECT DISTINCT f.file_path, i.implementer_session
            FROM issue_files f
            JOIN issues i ON i.id = f.issue_id
            WHERE i.implementer_session != '' AND f.file_path != ''
              AND i.deleted_at IS NULL
        """)
        return [(r["file_path"], r["implementer_session"]) for r in rows]

    def count_issues_with_files(self) -> int:
        row = self._one("SELECT count(DISTINCT issue_id) AS n FROM issue_files WHERE file_path != ''")
        return row["n"] if row else 0

    # --- Dependencies ---

    def get_dependency_ids(self, issue_id: str) -> list[str]:
        rows = self._all(
            "SELECT depends_on_id FROM issue_dependencies WHERE issue_id = ? ORDER BY depends_on_id",
            (issue_id,),
        )
        return [r["depends_on_id"] for r in rows]

    def get_blocked_by_ids(self, issue_id: str) -> list[str]:
        rows = self._all(
            "SELECT issue_id FROM issue_dependencies WHERE depends_on_id = ? ORDER BY issue_id",
            (issue_id,),
        )
        return [r["issue_id"] for r in rows]

    def get_dependency(self, issue_id: str, depends_on_id: str) -> Dependency | None:
        row = self._one(
            "SELECT * FROM issue_dependencies WHERE issue_id = ? AND depends_on_id = ?",
            (issue_id, depends_on_id),
        )
        return Dependency.from_row(dict(row)) if row else None

    def get_all_dependencies(self) -> dict[str, list[str]]:
        result: dict[str, list[str]] = {}
        for r in self._all("SELECT issue_id, depends_on_id FROM issue_dependencies"):
            result.setdefault(r["issue_id"], []).append(r["depends_on_id"])
        return result

    def would_create_dependency_cycle(self, issue_id: str, depends_on_id: str) -> bool:
        """Check if adding issue_id -> depends_on_id would create a cycle.

        Walks the dependency graph from depends_on_id with a recursive CTE
        and checks whether it reaches issue_id.
        """
        if issue_id == depends_on_id:
            return True
        row = self._one("""
            WITH RECURSIVE reachable(id, depth) AS (
                SELECT ?, 0
                UNION
                SELECT d.depends_on_id, r.depth + 1
                FROM reachable r
                JOIN issue_dependencies d ON d.issue_id = r.id
                WHERE r.depth < 100
            )
            SELECT 1 FROM reachable WHERE id = ? LIMIT 1
        """, (depends_on_id, issue_id))
        return row is not None

    def count_open_dependencies(self, issue_id: str) -> int:
        row = self._one("""
            SELECT count(*) FROM issue_dependencies d
            JOIN issues i ON i.id = d.depends_on_id
            WHERE d.issue_id = ? AND i.status != 'closed' AND i.deleted_at IS NULL
        """, (issue_id,))
        return row[0] if row else 0

    def get_issue_ids_with_open_deps(self) -> set[str]:
        rows = self._all("""
            SELECT DISTINCT d.issue_id FROM issue_dependencies d
            JOIN issues i ON i.id = d.depends_on_id
            WHERE i.status != 'closed' AND i.deleted_at IS NULL
        """)
        return {r["issue_id"] for r in rows}

    # --- Session history ---

    def get_session_history(self, issue_id: str) -> list[dict[str, Any]]:
        rows = self._all(
            "SELECT * FROM issue_session_history WHERE issue_id = ? ORDER BY created_at",
            (issue_id,),
        )
        return [dict(r) for r in rows]

    def add_session_history(self, issue_id: str, session_id: str, action: str) -> None:
        self._exec(
            "INSERT INTO issue_session_history (id, issue_id, session_id, action, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            ("ish-" + os.urandom(4).hex(), issue_id, session_id, action,
             format_timestamp(now_utc())),
        )

    def was_session_involved(self, issue_id: str, session_id: str) -> bool:
        """The recorded implementer or any start/unstart history row counts as involvement."""
        if not session_id:
            return False
        row = self._one("""
            SELECT 1 FROM issue_session_history
            WHERE issue_id = ? AND session_id = ? AND action IN (?, ?)
            LIMIT 1
        """, (issue_id, session_id, SessionAction.STARTED, SessionAction.UNSTARTED))
        if row is not None:
            return True
        issue = self.get_issue(issue_id, include_deleted=True)
        return issue is not None and issue.implementer_session == session_id

    def get_reviewable_issues(self, session_id: str) -> list[Issue]:
        """In-review issues the given session did not implement."""
        rows = self._all("""
            SELECT * FROM issues i
            WHERE i.status = 'in_review' AND i.deleted_at IS NULL
              AND (i.implementer_session != ? OR i.minor = 1)
              AND (i.minor = 1 OR NOT EXISTS (
                  SELECT 1 FROM issue_session_history h
                  WHERE h.issue_id = i.id AND h.session_id = ?
                    AND h.action IN ('started', 'unstarted')
              ))
            ORDER BY i.priority, i.updated_at DESC
        """, (session_id, session_id))
        return [self._row_to_issue(r) for r in rows]

    def get_rejected_in_progress_ids(self) -> set[str]:
        """In-progress issues whose latest review outcome was a rejection."""
        rows = self._all("""
            SELECT DISTINCT i.id FROM issues i
            JOIN action_log a ON a.entity_id = i.id
            WHERE i.status = 'in_progress' AND i.deleted_at IS NULL
              AND a.entity_type = 'issue' AND a.action_type = 'reject' AND a.undone = 0
              AND NOT EXISTS (
                  SELECT 1 FROM action_log r
                  WHERE r.entity_id = i.id AND r.entity_type = 'issue'
                    AND r.action_type = 'review' AND r.undone = 0 AND r.id > a.id
              )
        """)
        return {r["id"] for r in rows}

    # --- Work sessions ---

    def get_work_session(self, ws_id: str) -> WorkSession | None:
        row = self._one("SELECT * FROM work_sessions WHERE id = ?", (ws_id,))
        return WorkSession.from_row(dict(row)) if row else None

    def list_work_sessions(self, limit: int = 20) -> list[WorkSession]:
        rows = self._all(
            "SELECT * FROM work_sessions ORDER BY started_at DESC LIMIT ?", (limit,)
        )
        return [WorkSession.from_row(dict(r)) for r in rows]

    def get_work_session_issue_ids(self, ws_id: str) -> list[str]:
        rows = self._all(
            "SELECT issue_id FROM work_session_issues WHERE work_session_id = ? ORDER BY tagged_at",
            (ws_id,),
        )
        return [r["issue_id"] for r in rows]

    def get_work_session_logs(self, ws_id: str, limit: int = 50) -> list[Log]:
        rows = self._all(
            "SELECT * FROM logs WHERE work_session_id = ? AND issue_id = '' "
            "ORDER BY timestamp DESC LIMIT ?",
            (ws_id, limit),
        )
        return [Log.from_row(dict(r)) for r in rows]

    # --- Git snapshots ---

    def get_latest_snapshot(self, issue_id: str) -> GitSnapshot | None:
        row = self._one(
            "SELECT * FROM git_snapshots WHERE issue_id = ? ORDER BY timestamp DESC LIMIT 1",
            (issue_id,),
        )
        return GitSnapshot.from_row(dict(row)) if row else None

    # --- Boards ---

    def get_board(self, board_id: str) -> Board | None:
        row = self._one(
            "SELECT * FROM boards WHERE id = ? AND deleted_at IS NULL", (board_id,)
        )
        return Board.from_row(dict(row)) if row else None

    def get_board_by_name(self, name: str) -> Board | None:
        row = self._one(
            "SELECT * FROM boards WHERE name = ? COLLATE NOCASE AND deleted_at IS NULL",
            (name,),
        )
        return Board.from_row(dict(row)) if row else None

    def resolve_board(self, ref: str) -> Board:
        board = self.get_board(ref) or self.get_board_by_name(ref)
        if board is None:
            raise NotFound(f"board not found: {ref}")
        return board

    def list_boards(self) -> list[Board]:
        rows = self._all(
            "SELECT * FROM boards WHERE deleted_at IS NULL ORDER BY is_builtin DESC, name"
        )
        return [Board.from_row(dict(r)) for r in rows]

    def get_board_positions(self, board_id: str) -> list[BoardPosition]:
        rows = self._all(
            "SELECT * FROM board_issue_positions WHERE board_id = ? AND deleted_at IS NULL "
            "ORDER BY position",
            (board_id,),
        )
        return [BoardPosition.from_row(dict(r)) for r in rows]

    def get_board_position(self, board_id: str, issue_id: str) -> BoardPosition | None:
        row = self._one(
            "SELECT * FROM board_issue_positions WHERE board_id = ? AND issue_id = ?",
            (board_id, issue_id),
        )
        return BoardPosition.from_row(dict(row)) if row else None

    def soft_delete_board_positions(self, board_id: str, deleted_at: str) -> int:
        cur = self._exec(
            "UPDATE board_issue_positions SET deleted_at = ? "
            "WHERE board_id = ? AND deleted_at IS NULL",
            (deleted_at, board_id),
        )
        return cur.rowcount

    # --- Notes ---

    def get_note(self, note_id: str) -> Note | None:
        row = self._one("SELECT * FROM notes WHERE id = ? AND deleted_at IS NULL", (note_id,))
        return Note.from_row(dict(row)) if row else None

    def list_notes(self, include_archived: bool = False, pinned_only: bool = False) -> list[Note]:
        clauses = ["deleted_at IS NULL"]
        if not include_archived:
            clauses.append("archived = 0")
        if pinned_only:
            clauses.append("pinned = 1")
        rows = self._all(
            f"SELECT * FROM notes WHERE {' AND '.join(clauses)} "
            "ORDER BY pinned DESC, updated_at DESC"
        )
        return [Note.from_row(dict(r)) for r in rows]

    # --- Action log ---

    def insert_action(self, action: ActionLog) -> int:
        cur = self._exec(
            "INSERT INTO action_log (session_id, action_type, entity_type, entity_id, "
            "previous_data, new_data, timestamp, undone) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (action.session_id, action.action_type, action.entity_type, action.entity_id,
             action.previous_data, action.new_data, format_timestamp(action.timestamp),
             1 if action.undone else 0),
        )
        action.id = cur.lastrowid
        return action.id

    def get_action(self, action_id: int) -> ActionLog | None:
        row = self._one("SELECT * FROM action_log WHERE id = ?", (action_id,))
        return ActionLog.from_row(dict(row)) if row else None

    def get_last_actions(self, session_id: str, n: int = 1) -> list[ActionLog]:
        rows = self._all(
            "SELECT * FROM action_log WHERE session_id = ? AND undone = 0 "
            "ORDER BY id DESC LIMIT ?",
            (session_id, n),
        )
        return [ActionLog.from_row(dict(r)) for r in rows]

    def get_actions_after(self, after_id: int, limit: int = 0) -> list[ActionLog]:
        sql = "SELECT * FROM action_log WHERE id > ? ORDER BY id"
        if limit > 0:
            sql += f" LIMIT {int(limit)}"
        return [ActionLog.from_row(dict(r)) for r in self._all(sql, (after_id,))]

    def get_recent_actions(self, limit: int = 20, session_id: str = "") -> list[ActionLog]:
        if session_id:
            rows = self._all(
                "SELECT * FROM action_log WHERE session_id = ? ORDER BY id DESC LIMIT ?",
                (session_id, limit),
            )
        else:
            rows = self._all("SELECT * FROM action_log ORDER BY id DESC LIMIT ?", (limit,))
        return [ActionLog.from_row(dict(r)) for r in rows]

    def mark_undone(self, action_id: int) -> None:
        self._exec("UPDATE action_log SET undone = 1 WHERE id = ?", (action_id,))

    def max_action_id(self) -> int:
        row = self._one("SELECT COALESCE(MAX(id), 0) FROM action_log")
        return row[0] if row else 0

    def get_unsynced_actions(self, limit: int = 0) -> list[ActionLog]:
        """Action rows not yet acknowledged by the sync server, in id order."""
        sql = "SELECT * FROM action_log WHERE synced_at IS NULL ORDER BY id"
        if limit > 0:
            sql += f" LIMIT {int(limit)}"
        return [ActionLog.from_row(dict(r)) for r in self._all(sql)]

    def count_unsynced_actions(self) -> int:
        row = self._one("SELECT count(*) FROM action_log WHERE synced_at IS NULL")
        return row[0] if row else 0

    def mark_action_synced(self, action_id: int, server_seq: int) -> None:
        self._exec(
            "UPDATE action_log SET synced_at = ?, server_seq = ? WHERE id = ?",
            (format_timestamp(now_utc()), server_seq, action_id),
        )

    def has_logged_action(self, entity_type: str, entity_id: str,
                          action_types: tuple[str, ...]) -> bool:
        placeholders = ",".join("?" * len(action_types))
        row = self._one(
            f"SELECT 1 FROM action_log WHERE entity_type = ? AND entity_id = ? "
            f"AND undone = 0 AND action_type IN ({placeholders}) LIMIT 1",
            (entity_type, entity_id, *action_types),
        )
        return row is not None

    # --- Sync state ---

    def get_sync_state(self) -> dict[str, Any] | None:
        row = self._one("SELECT * FROM sync_state LIMIT 1")
        return dict(row) if row else None

    def set_sync_project(self, project_id: str) -> None:
        with self.transaction():
            self._exec("DELETE FROM sync_state")
            self._exec(
                "INSERT INTO sync_state (project_id, last_pushed_action_id, "
                "last_pulled_server_seq, sync_disabled) VALUES (?, 0, 0, 0)",
                (project_id,),
            )

    def clear_sync_state(self) -> None:
        self._exec("DELETE FROM sync_state")

    def update_sync_pushed(self, last_action_id: int) -> None:
        self._exec(
            "UPDATE sync_state SET last_pushed_action_id = ?, last_sync_at = ?",
            (last_action_id, format_timestamp(now_utc())),
        )

    def update_sync_pulled(self, last_server_seq: int) -> None:
        self._exec(
            "UPDATE sync_state SET last_pulled_server_seq = ?, last_sync_at = ?",
            (last_server_seq, format_timestamp(now_utc())),
        )

    # --- Sync history ---

    def add_sync_history(self, entries: list[SyncHistoryEntry]) -> None:
        for e in entries:
            self._exec(
                "INSERT INTO sync_history (direction, action_type, entity_type, entity_id, "
                "server_seq, device_id, timestamp) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (e.direction, e.action_type, e.entity_type, e.entity_id, e.server_seq,
                 e.device_id, format_timestamp(e.timestamp)),
            )

    def get_sync_history_tail(self, limit: int = 20) -> list[SyncHistoryEntry]:
        rows = self._all(
            "SELECT * FROM (SELECT * FROM sync_history ORDER BY id DESC LIMIT ?) ORDER BY id",
            (limit,),
        )
        return [
            SyncHistoryEntry(
                id=r["id"], direction=r["direction"], action_type=r["action_type"],
                entity_type=r["entity_type"], entity_id=r["entity_id"],
                server_seq=r["server_seq"] or 0, device_id=r["device_id"] or "",
                timestamp=parse_timestamp(r["timestamp"]) or now_utc(),
            )
            for r in rows
        ]

    def prune_sync_history(self, max_rows: int) -> int:
        cur = self._exec(
            "DELETE FROM sync_history WHERE id NOT IN "
            "(SELECT id FROM sync_history ORDER BY id DESC LIMIT ?)",
            (max_rows,),
        )
        return cur.rowcount

    # --- Conflicts ---

    def add_conflict(self, c: ConflictRecord) -> None:
        self._exec(
            "INSERT INTO sync_conflicts (entity_type, entity_id, field, server_seq, "
            "local_data, remote_data, overwritten_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (c.entity_type, c.entity_id, c.field, c.server_seq,
             json.dumps(c.local_value, default=str), json.dumps(c.remote_value, default=str),
             format_timestamp(c.resolved_at)),
        )

    def get_recent_conflicts(self, limit: int = 20,
                             since: datetime | None = None) -> list[ConflictRecord]:
        params: list[Any] = []
        sql = "SELECT * FROM sync_conflicts"
        if since is not None:
            sql += " WHERE overwritten_at >= ?"
            params.append(format_timestamp(since))
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        result = []
        for r in self._all(sql, params):
            result.append(ConflictRecord(
                id=r["id"], entity_type=r["entity_type"], entity_id=r["entity_id"],
                field=r["field"] or "", server_seq=r["server_seq"] or 0,
                local_value=_json_or_raw(r["local_data"]),
                remote_value=_json_or_raw(r["remote_data"]),
                resolved_at=parse_timestamp(r["overwritten_at"]) or now_utc(),
            ))
        return result

    def prune_conflicts(self, max_age: timedelta, max_rows: int) -> int:
        cutoff = format_timestamp(now_utc() - max_age)
        removed = self._exec(
            "DELETE FROM sync_conflicts WHERE overwritten_at < ?", (cutoff,)
        ).rowcount
        removed += self._exec(
            "DELETE FROM sync_conflicts WHERE id NOT IN "
            "(SELECT id FROM sync_conflicts ORDER BY id DESC LIMIT ?)",
            (max_rows,),
        ).rowcount
        return removed

    # --- Field clocks ---

    def get_field_clocks(self, entity_type: str, entity_id: str) -> dict[str, tuple[str, str]]:
        rows = self._all(
            "SELECT field, timestamp, device_id FROM field_clocks "
            "WHERE entity_type = ? AND entity_id = ?",
            (entity_type, entity_id),
        )
        return {r["field"]: (r["timestamp"], r["device_id"]) for r in rows}

    def set_field_clock(self, entity_type: str, entity_id: str, field: str,
                        timestamp: str, device_id: str) -> None:
        self._exec(
            "INSERT OR REPLACE INTO field_clocks (entity_type, entity_id, field, timestamp, "
            "device_id) VALUES (?, ?, ?, ?, ?)",
            (entity_type, entity_id, field, timestamp, device_id),
        )

    # --- Applied events and pending buffer ---

    def is_event_applied(self, device_id: str, client_action_id: int) -> bool:
        row = self._one(
            "SELECT 1 FROM applied_events WHERE device_id = ? AND client_action_id = ?",
            (device_id, client_action_id),
        )
        return row is not None

    def mark_event_applied(self, device_id: str, client_action_id: int, server_seq: int) -> None:
        self._exec(
            "INSERT OR IGNORE INTO applied_events (device_id, client_action_id, server_seq, "
            "applied_at) VALUES (?, ?, ?, ?)",
            (device_id, client_action_id, server_seq, format_timestamp(now_utc())),
        )

    def add_pending_event(self, server_seq: int, entity_type: str, entity_id: str,
                          event: dict[str, Any]) -> None:
        self._exec(
            "INSERT INTO pending_events (server_seq, entity_type, entity_id, event, received_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (server_seq, entity_type, entity_id, json.dumps(event),
             format_timestamp(now_utc())),
        )

    def take_pending_events(self, entity_type: str, entity_id: str) -> list[dict[str, Any]]:
        rows = self._all(
            "SELECT id, event FROM pending_events WHERE entity_type = ? AND entity_id = ? "
            "ORDER BY server_seq",
            (entity_type, entity_id),
        )
        if rows:
            self._exec(
                "DELETE FROM pending_events WHERE entity_type = ? AND entity_id = ?",
                (entity_type, entity_id),
            )
        return [json.loads(r["event"]) for r in rows]

    def count_pending_events(self) -> int:
        row = self._one("SELECT count(*) FROM pending_events")
        return row[0] if row else 0


# --- Module helpers ---

def escape_like(s: str) -> str:
    """Escape LIKE wildcards for use with ESCAPE '\\'."""
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def order_clause(sort: str, descending: bool) -> str:
    column = _SORT_COLUMNS.get(sort, "priority")
    direction = "DESC" if descending else "ASC"
    if column == "priority":
        return f"priority {direction}, updated_at DESC"
    return f"{column} {direction}, id ASC"


def _json_or_raw(value: Any) -> Any:
    if value is None or value == "":
        return None
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return value


# --- Pool ---

_POOL: dict[str, SQLiteStore] = {}
_POOL_LOCK = threading.Lock()


def open_store(db_path: str) -> SQLiteStore:
    """Open (or reuse) the store for a database file.

    One store per resolved path per process, so callers that re-open often
    (embedded monitors, autosync) do not leak connections.
    """
    key = os.path.realpath(db_path)
    with _POOL_LOCK:
        store = _POOL.get(key)
        if store is None:
            os.makedirs(os.path.dirname(key), exist_ok=True)
            store = SQLiteStore(key)
            _POOL[key] = store
        return store


def close_store(db_path: str) -> None:
    key = os.path.realpath(db_path)
    with _POOL_LOCK:
        store = _POOL.pop(key, None)
    if store is not None:
        store.close()


def close_all_stores() -> None:
    with _POOL_LOCK:
        stores = list(_POOL.values())
        _POOL.clear()
    for store in stores:
        store.close()
