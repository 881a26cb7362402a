"""SQLite schema history for the td issue store.

The schema is built entirely from the migration list: a fresh database runs
every migration from version 1, an existing one only those above its
recorded ``schema_version``. Each entry is either SQL text or the name of a
Python step in ``td.storage.migrations``.
"""

SCHEMA_VERSION = 8

BASE_SCHEMA = """
CREATE TABLE IF NOT EXISTS issues (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT DEFAULT '',
    status TEXT NOT NULL DEFAULT 'open',
    type TEXT NOT NULL DEFAULT 'task',
    priority TEXT NOT NULL DEFAULT 'P2',
    points INTEGER DEFAULT 0,
    labels TEXT DEFAULT '',
    parent_id TEXT DEFAULT '',
    acceptance TEXT DEFAULT '',
    implementer_session TEXT DEFAULT '',
    reviewer_session TEXT DEFAULT '',
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    closed_at DATETIME,
    deleted_at DATETIME
);

CREATE TABLE IF NOT EXISTS logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id TEXT DEFAULT '',
    session_id TEXT NOT NULL,
    work_session_id TEXT DEFAULT '',
    message TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'progress',
    timestamp DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS handoffs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    done TEXT DEFAULT '[]',
    remaining TEXT DEFAULT '[]',
    decisions TEXT DEFAULT '[]',
    uncertain TEXT DEFAULT '[]',
    timestamp DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS git_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id TEXT NOT NULL,
    event TEXT NOT NULL,
    commit_sha TEXT NOT NULL,
    branch TEXT NOT NULL,
    dirty_files INTEGER DEFAULT 0,
    timestamp DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS issue_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id TEXT NOT NULL,
    file_path TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'implementation',
    linked_sha TEXT DEFAULT '',
    linked_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(issue_id, file_path)
);

CREATE TABLE IF NOT EXISTS issue_dependencies (
    issue_id TEXT NOT NULL,
    depends_on_id TEXT NOT NULL,
    relation_type TEXT NOT NULL DEFAULT 'depends_on',
    PRIMARY KEY (issue_id, depends_on_id)
);

CREATE TABLE IF NOT EXISTS work_sessions (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    session_id TEXT NOT NULL,
    started_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    ended_at DATETIME,
    start_sha TEXT DEFAULT '',
    end_sha TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS work_session_issues (
    work_session_id TEXT NOT NULL,
    issue_id TEXT NOT NULL,
    tagged_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (work_session_id, issue_id)
);

CREATE TABLE IF NOT EXISTS comments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    issue_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    text TEXT NOT NULL,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS schema_info (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_issues_status ON issues(status);
CREATE INDEX IF NOT EXISTS idx_issues_priority ON issues(priority);
CREATE INDEX IF NOT EXISTS idx_issues_type ON issues(type);
CREATE INDEX IF NOT EXISTS idx_issues_parent ON issues(parent_id);
CREATE INDEX IF NOT EXISTS idx_issues_deleted ON issues(deleted_at);
CREATE INDEX IF NOT EXISTS idx_logs_issue ON logs(issue_id);
CREATE INDEX IF NOT EXISTS idx_handoffs_issue ON handoffs(issue_id);
CREATE INDEX IF NOT EXISTS idx_issue_files_issue ON issue_files(issue_id);
CREATE INDEX IF NOT EXISTS idx_comments_issue ON comments(issue_id)
"""

ACTION_LOG = """
CREATE TABLE IF NOT EXISTS action_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    action_type TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    previous_data TEXT DEFAULT '',
    new_data TEXT DEFAULT '',
    timestamp DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    undone INTEGER DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_action_log_session ON action_log(session_id);
CREATE INDEX IF NOT EXISTS idx_action_log_timestamp ON action_log(timestamp)
"""

ISSUE_COLUMNS = """
ALTER TABLE issues ADD COLUMN minor INTEGER DEFAULT 0;
ALTER TABLE issues ADD COLUMN created_branch TEXT DEFAULT '';
ALTER TABLE issues ADD COLUMN creator_session TEXT DEFAULT '';
ALTER TABLE issues ADD COLUMN sprint TEXT DEFAULT '';
ALTER TABLE issues ADD COLUMN defer_at DATETIME;
ALTER TABLE issues ADD COLUMN due_at DATETIME;
ALTER TABLE handoffs ADD COLUMN git_snapshot_id TEXT DEFAULT ''
"""

SESSION_HISTORY = """
CREATE TABLE IF NOT EXISTS issue_session_history (
    id TEXT PRIMARY KEY,
    issue_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    action TEXT NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_ish_issue ON issue_session_history(issue_id);
CREATE INDEX IF NOT EXISTS idx_ish_session ON issue_session_history(session_id);
CREATE INDEX IF NOT EXISTS idx_handoffs_timestamp ON handoffs(timestamp);
CREATE INDEX IF NOT EXISTS idx_logs_timestamp ON logs(timestamp);
CREATE INDEX IF NOT EXISTS idx_issues_updated ON issues(updated_at)
"""

BOARDS = """
CREATE TABLE IF NOT EXISTS boards (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL COLLATE NOCASE UNIQUE,
    query TEXT NOT NULL DEFAULT '',
    is_builtin INTEGER NOT NULL DEFAULT 0,
    view_mode TEXT NOT NULL DEFAULT 'swimlanes',
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS board_issue_positions (
    board_id TEXT NOT NULL,
    issue_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    added_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (board_id, issue_id)
);
INSERT OR IGNORE INTO boards (id, name, query, is_builtin, view_mode, created_at, updated_at)
VALUES ('bd-all-issues', 'All Issues', '', 1, 'swimlanes',
        strftime('%Y-%m-%dT%H:%M:%fZ', 'now'), strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
"""

SYNC_TABLES = """
CREATE TABLE IF NOT EXISTS sync_state (
    project_id TEXT PRIMARY KEY,
    last_pushed_action_id INTEGER DEFAULT 0,
    last_pulled_server_seq INTEGER DEFAULT 0,
    last_sync_at DATETIME,
    sync_disabled INTEGER DEFAULT 0
);
ALTER TABLE action_log ADD COLUMN synced_at DATETIME;
ALTER TABLE action_log ADD COLUMN server_seq INTEGER;
CREATE TABLE IF NOT EXISTS sync_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    direction TEXT NOT NULL,
    action_type TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    server_seq INTEGER DEFAULT 0,
    device_id TEXT DEFAULT '',
    timestamp DATETIME NOT NULL
);
CREATE TABLE IF NOT EXISTS sync_conflicts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    field TEXT NOT NULL DEFAULT '',
    server_seq INTEGER DEFAULT 0,
    local_data TEXT DEFAULT '',
    remote_data TEXT DEFAULT '',
    overwritten_at DATETIME NOT NULL
);
CREATE TABLE IF NOT EXISTS field_clocks (
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    field TEXT NOT NULL,
    timestamp DATETIME NOT NULL,
    device_id TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (entity_type, entity_id, field)
);
CREATE TABLE IF NOT EXISTS applied_events (
    device_id TEXT NOT NULL,
    client_action_id INTEGER NOT NULL,
    server_seq INTEGER DEFAULT 0,
    applied_at DATETIME NOT NULL,
    PRIMARY KEY (device_id, client_action_id)
);
CREATE TABLE IF NOT EXISTS pending_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    server_seq INTEGER NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    event TEXT NOT NULL,
    received_at DATETIME NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_action_log_server_seq ON action_log(server_seq);
CREATE INDEX IF NOT EXISTS idx_sync_history_seq ON sync_history(server_seq);
CREATE INDEX IF NOT EXISTS idx_pending_entity ON pending_events(entity_type, entity_id)
"""

NOTES_AND_SOFT_DELETE = """
CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT DEFAULT '',
    pinned INTEGER DEFAULT 0,
    archived INTEGER DEFAULT 0,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL,
    deleted_at DATETIME
);
ALTER TABLE comments ADD COLUMN deleted_at DATETIME;
ALTER TABLE boards ADD COLUMN deleted_at DATETIME;
ALTER TABLE board_issue_positions ADD COLUMN deleted_at DATETIME;
CREATE INDEX IF NOT EXISTS idx_notes_deleted ON notes(deleted_at)
"""


# (version, description, SQL text or python step name)
MIGRATIONS: list[tuple[int, str, str]] = [
    (1, "base schema", BASE_SCHEMA),
    (2, "action log", ACTION_LOG),
    (3, "issue branch, creator, sprint, minor and scheduling columns", ISSUE_COLUMNS),
    (4, "issue session history and activity indexes", SESSION_HISTORY),
    (5, "boards and board positions", BOARDS),
    (6, "text primary keys for records and relations", "python:text_ids"),
    (7, "sync state, history, conflicts and field clocks", SYNC_TABLES),
    (8, "notes and soft delete columns", NOTES_AND_SOFT_DELETE),
]


def split_statements(sql: str) -> list[str]:
    """Split migration SQL into single statements for transactional execution."""
    return [s.strip() for s in sql.split(";\n") if s.strip()]
