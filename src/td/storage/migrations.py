"""Schema migration runner.

Each migration runs in its own ``BEGIN IMMEDIATE`` transaction together with
the ``schema_version`` bump, so a failing migration leaves the database as
it was before that step.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from td import ids
from td.errors import DatabaseError
from td.storage.schema import MIGRATIONS, SCHEMA_VERSION, split_statements

logger = logging.getLogger(__name__)


def get_schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute(
        "SELECT count(*) FROM sqlite_master WHERE type='table' AND name='schema_info'"
    ).fetchone()
    if row[0] == 0:
        return 0
    row = conn.execute(
        "SELECT value FROM schema_info WHERE key = 'schema_version'"
    ).fetchone()
    if row is None:
        return 0
    try:
        return int(row[0])
    except (TypeError, ValueError):
        return 0


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO schema_info (key, value) VALUES ('schema_version', ?)",
        (str(version),),
    )


def run_migrations(conn: sqlite3.Connection) -> list[int]:
    """Apply pending migrations; returns the versions that ran.

    The connection must be in autocommit mode (isolation_level=None).
    """
    current = get_schema_version(conn)
    if current > SCHEMA_VERSION:
        raise DatabaseError(
            f"database schema version {current} is newer than supported ({SCHEMA_VERSION})"
        )
    applied: list[int] = []
    for version, description, body in MIGRATIONS:
        if version <= current:
            continue
        conn.execute("BEGIN IMMEDIATE")
        try:
            if body.startswith("python:"):
                PYTHON_STEPS[body[len("python:"):]](conn)
            else:
                for stmt in split_statements(body):
                    _execute_idempotent(conn, stmt)
            _set_schema_version(conn, version)
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            conn.execute("ROLLBACK")
            raise DatabaseError(f"migration {version} ({description}) failed: {e}") from e
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        logger.info("applied migration %d: %s", version, description)
        applied.append(version)
    return applied


def _execute_idempotent(conn: sqlite3.Connection, stmt: str) -> None:
    """Execute one statement; ADD COLUMN of an existing column is skipped."""
    if "ADD COLUMN" in stmt.upper():
        parts = stmt.split()
        table = parts[2]
        column = parts[5]
        if column in table_columns(conn, table):
            return
    conn.execute(stmt)


def table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def _column_type(conn: sqlite3.Connection, table: str, column: str) -> str:
    for row in conn.execute(f"PRAGMA table_info({table})").fetchall():
        if row[1] == column:
            return (row[2] or "").upper()
    return ""


# --- Text primary key migration ---

def _rebuild_with_text_id(conn: sqlite3.Connection, table: str,
                          make_id: Callable[[sqlite3.Row], str],
                          extra_sql: list[str]) -> dict[str, str]:
    """Recreate ``table`` with a TEXT id, returning old-id to new-id mapping."""
    if _column_type(conn, table, "id") != "INTEGER":
        return {}
    info = conn.execute(f"PRAGMA table_info({table})").fetchall()
    cols = [row[1] for row in info]
    defs = []
    for row in info:
        name, col_type, notnull, default = row[1], row[2], row[3], row[4]
        if name == "id":
            defs.append("id TEXT PRIMARY KEY")
            continue
        d = f"{name} {col_type}"
        if notnull:
            d += " NOT NULL"
        if default is not None:
            d += f" DEFAULT {default}"
        defs.append(d)
    conn.execute(f"CREATE TABLE {table}_new ({', '.join(defs)})")

    mapping: dict[str, str] = {}
    prev_factory = conn.row_factory
    conn.row_factory = sqlite3.Row
    try:
        rows = conn.execute(f"SELECT * FROM {table} ORDER BY id").fetchall()
    finally:
        conn.row_factory = prev_factory
    placeholders = ",".join("?" * len(cols))
    for row in rows:
        new_id = make_id(row)
        mapping[str(row["id"])] = new_id
        values = [new_id if c == "id" else row[c] for c in cols]
        conn.execute(
            f"INSERT INTO {table}_new ({', '.join(cols)}) VALUES ({placeholders})",
            values,
        )
    conn.execute(f"DROP TABLE {table}")
    conn.execute(f"ALTER TABLE {table}_new RENAME TO {table}")
    for stmt in extra_sql:
        conn.execute(stmt)
    return mapping


def _add_id_column(conn: sqlite3.Connection, table: str,
                   make_id: Callable[[sqlite3.Row], str], key_cols: list[str]) -> None:
    if "id" not in table_columns(conn, table):
        conn.execute(f"ALTER TABLE {table} ADD COLUMN id TEXT")
    prev_factory = conn.row_factory
    conn.row_factory = sqlite3.Row
    try:
        rows = conn.execute(
            f"SELECT * FROM {table} WHERE id IS NULL OR id = ''"
        ).fetchall()
    finally:
        conn.row_factory = prev_factory
    where = " AND ".join(f"{c} = ?" for c in key_cols)
    for row in rows:
        conn.execute(
            f"UPDATE {table} SET id = ? WHERE {where}",
            [make_id(row)] + [row[c] for c in key_cols],
        )
    conn.execute(f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_id ON {table}(id)")


def _remap_action_log(conn: sqlite3.Connection, entity_type: str,
                      mapping: dict[str, str]) -> None:
    for old, new in mapping.items():
        conn.execute(
            "UPDATE action_log SET entity_id = ? WHERE entity_type = ? AND entity_id = ?",
            (new, entity_type, old),
        )


def migrate_text_ids(conn: sqlite3.Connection) -> None:
    """Rewrite integer record ids to prefixed text ids; safe to re-run."""
    def hex_id(prefix: str) -> Callable[[sqlite3.Row], str]:
        return lambda row: f"{prefix}{int(row['id']):08x}"

    mapping = _rebuild_with_text_id(conn, "logs", hex_id(ids.LOG_PREFIX), [
        "CREATE INDEX IF NOT EXISTS idx_logs_issue ON logs(issue_id)",
        "CREATE INDEX IF NOT EXISTS idx_logs_timestamp ON logs(timestamp)",
        "CREATE INDEX IF NOT EXISTS idx_logs_work_session ON logs(work_session_id)",
    ])
    _remap_action_log(conn, "log", mapping)

    mapping = _rebuild_with_text_id(conn, "handoffs", hex_id(ids.HANDOFF_PREFIX), [
        "CREATE INDEX IF NOT EXISTS idx_handoffs_issue ON handoffs(issue_id)",
        "CREATE INDEX IF NOT EXISTS idx_handoffs_timestamp ON handoffs(timestamp)",
    ])
    _remap_action_log(conn, "handoff", mapping)

    mapping = _rebuild_with_text_id(conn, "comments", hex_id(ids.COMMENT_PREFIX), [
        "CREATE INDEX IF NOT EXISTS idx_comments_issue ON comments(issue_id)",
    ])
    _remap_action_log(conn, "comment", mapping)

    snap_map = _rebuild_with_text_id(conn, "git_snapshots", hex_id(ids.GIT_SNAPSHOT_PREFIX), [
        "CREATE INDEX IF NOT EXISTS idx_git_snapshots_issue ON git_snapshots(issue_id)",
    ])
    for old, new in snap_map.items():
        conn.execute("UPDATE handoffs SET git_snapshot_id = ? WHERE git_snapshot_id = ?",
                     (new, old))

    mapping = _rebuild_with_text_id(
        conn, "issue_files",
        lambda row: ids.file_link_id(row["issue_id"], row["file_path"]),
        [
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_issue_files_unique "
            "ON issue_files(issue_id, file_path)",
            "CREATE INDEX IF NOT EXISTS idx_issue_files_issue ON issue_files(issue_id)",
        ],
    )
    _remap_action_log(conn, "file_link", mapping)

    _add_id_column(
        conn, "issue_dependencies",
        lambda row: ids.dependency_id(row["issue_id"], row["depends_on_id"],
                                      row["relation_type"] or "depends_on"),
        ["issue_id", "depends_on_id"],
    )
    _add_id_column(
        conn, "work_session_issues",
        lambda row: ids.work_session_issue_id(row["work_session_id"], row["issue_id"]),
        ["work_session_id", "issue_id"],
    )
    _add_id_column(
        conn, "board_issue_positions",
        lambda row: ids.board_position_id(row["board_id"], row["issue_id"]),
        ["board_id", "issue_id"],
    )


PYTHON_STEPS: dict[str, Callable[[sqlite3.Connection], None]] = {
    "text_ids": migrate_text_ids,
}
