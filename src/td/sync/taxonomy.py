"""Entity and action names on the sync wire.

The wire uses plural table names (``issues``, ``issue_dependencies``...).
Older clients sent singular or legacy names, so every known alias is
accepted on the way in.
"""

from __future__ import annotations

from typing import Any, Optional

from td.models import EntityKind

# canonical wire name -> local entity kind
WIRE_TYPES: dict[str, str] = {
    "issues": EntityKind.ISSUE,
    "logs": EntityKind.LOG,
    "handoffs": EntityKind.HANDOFF,
    "comments": EntityKind.COMMENT,
    "issue_dependencies": EntityKind.DEPENDENCY,
    "issue_files": EntityKind.FILE_LINK,
    "boards": EntityKind.BOARD,
    "board_issue_positions": EntityKind.BOARD_POSITION,
    "work_sessions": EntityKind.WORK_SESSION,
    "work_session_issues": EntityKind.WORK_SESSION_ISSUE,
    "notes": EntityKind.NOTE,
}

ALIASES: dict[str, str] = {
    "issue": "issues",
    "log": "logs",
    "handoff": "handoffs",
    "comment": "comments",
    "dependency": "issue_dependencies",
    "dependencies": "issue_dependencies",
    "file_link": "issue_files",
    "file_links": "issue_files",
    "board": "boards",
    "board_position": "board_issue_positions",
    "board_positions": "board_issue_positions",
    "work_session": "work_sessions",
    "work_session_issue": "work_session_issues",
    "note": "notes",
}

NOTES = "notes"

# wire action types
CREATE = "create"
UPDATE = "update"
DELETE = "delete"
SOFT_DELETE = "soft_delete"
RESTORE = "restore"
WIRE_ACTIONS = (CREATE, UPDATE, DELETE, SOFT_DELETE, RESTORE)


def normalize_entity_type(name: str) -> Optional[str]:
    """Canonical wire name for ``name``, or None when it is not synced."""
    key = (name or "").strip().lower()
    if key in WIRE_TYPES:
        return key
    return ALIASES.get(key)


def local_kind(wire_type: str) -> Optional[str]:
    canonical = normalize_entity_type(wire_type)
    return WIRE_TYPES.get(canonical) if canonical else None


def wire_action(previous: Optional[dict[str, Any]], new: Optional[dict[str, Any]]) -> str:
    """Wire action for an action-log row, derived from its before and after rows.

    Local deletes of soft-deletable entities carry the row with
    ``deleted_at`` set, so they go out as ``soft_delete``.
    """
    if new is None:
        return DELETE
    if previous is None:
        return CREATE
    if new.get("deleted_at") and not previous.get("deleted_at"):
        return SOFT_DELETE
    if previous.get("deleted_at") and not new.get("deleted_at"):
        return RESTORE
    return UPDATE
