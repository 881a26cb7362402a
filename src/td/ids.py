"""ID generation for td entities.

Two kinds of ids are produced:
1. Random ids (prefix + hex) for entities created once by one client:
   issues, logs, handoffs, comments, boards, notes, work sessions.
2. Deterministic ids (prefix + sha256(key)[:16]) for relation rows, so two
   clients that create the same relation independently agree on its id.
"""

from __future__ import annotations

import hashlib
import secrets

ISSUE_PREFIX = "td-"
WORK_SESSION_PREFIX = "ws-"
BOARD_PREFIX = "bd-"
LOG_PREFIX = "lg-"
HANDOFF_PREFIX = "ho-"
COMMENT_PREFIX = "cm-"
GIT_SNAPSHOT_PREFIX = "gs-"
NOTE_PREFIX = "nt-"
SESSION_PREFIX = "ses_"

DEPENDENCY_PREFIX = "dep_"
FILE_LINK_PREFIX = "ifl_"
BOARD_POSITION_PREFIX = "bip_"
WORK_SESSION_ISSUE_PREFIX = "wsi_"

BUILTIN_BOARD_ID = "bd-all-issues"
BUILTIN_BOARD_NAME = "All Issues"


def _random_hex(nbytes: int) -> str:
    return secrets.token_hex(nbytes)


def generate_issue_id() -> str:
    """Issue ids are td- plus 6 hex chars; callers retry on collision."""
    return ISSUE_PREFIX + _random_hex(3)


def generate_work_session_id() -> str:
    return WORK_SESSION_PREFIX + _random_hex(2)


def generate_board_id() -> str:
    return BOARD_PREFIX + _random_hex(4)


def generate_log_id() -> str:
    return LOG_PREFIX + _random_hex(4)


def generate_handoff_id() -> str:
    return HANDOFF_PREFIX + _random_hex(4)


def generate_comment_id() -> str:
    return COMMENT_PREFIX + _random_hex(4)


def generate_snapshot_id() -> str:
    return GIT_SNAPSHOT_PREFIX + _random_hex(4)


def generate_note_id() -> str:
    return NOTE_PREFIX + _random_hex(4)


def generate_session_id() -> str:
    return SESSION_PREFIX + _random_hex(3)


def generate_device_id() -> str:
    return _random_hex(16)


def _deterministic(prefix: str, *parts: str) -> str:
    key = "|".join(parts)
    return prefix + hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


def dependency_id(issue_id: str, depends_on_id: str, relation_type: str = "depends_on") -> str:
    return _deterministic(DEPENDENCY_PREFIX, issue_id, depends_on_id, relation_type)


def file_link_id(issue_id: str, file_path: str) -> str:
    return _deterministic(FILE_LINK_PREFIX, issue_id, file_path)


def board_position_id(board_id: str, issue_id: str) -> str:
    return _deterministic(BOARD_POSITION_PREFIX, board_id, issue_id)


def work_session_issue_id(work_session_id: str, issue_id: str) -> str:
    return _deterministic(WORK_SESSION_ISSUE_PREFIX, work_session_id, issue_id)


def normalize_issue_id(raw: str) -> str:
    """Accept ids typed with or without the td- prefix."""
    raw = raw.strip()
    if not raw:
        return raw
    if raw.startswith(ISSUE_PREFIX):
        return raw
    return ISSUE_PREFIX + raw
