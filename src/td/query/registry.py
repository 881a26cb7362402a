"""Static registry of TDQ fields, enum values and functions."""

from __future__ import annotations

from dataclasses import dataclass

from td.models import FileRole, IssueType, LogType, Priority, Status


class FieldKind:
    STRING = "string"
    ENUM = "enum"
    ORDINAL = "ordinal"
    NUMBER = "number"
    BOOL = "bool"
    DATE = "date"
    PREFIX = "prefix"


KNOWN_FIELDS: dict[str, str] = {
    "id": FieldKind.STRING,
    "title": FieldKind.STRING,
    "description": FieldKind.STRING,
    "status": FieldKind.ENUM,
    "type": FieldKind.ENUM,
    "priority": FieldKind.ORDINAL,
    "points": FieldKind.NUMBER,
    "labels": FieldKind.STRING,
    "parent": FieldKind.STRING,
    "epic": FieldKind.STRING,
    "implementer": FieldKind.STRING,
    "reviewer": FieldKind.STRING,
    "creator": FieldKind.STRING,
    "minor": FieldKind.BOOL,
    "branch": FieldKind.STRING,
    "sprint": FieldKind.STRING,
    "created": FieldKind.DATE,
    "updated": FieldKind.DATE,
    "closed": FieldKind.DATE,
    "defer": FieldKind.DATE,
    "due": FieldKind.DATE,
    # cross-entity prefixes
    "log": FieldKind.PREFIX,
    "comment": FieldKind.PREFIX,
    "handoff": FieldKind.PREFIX,
    "file": FieldKind.PREFIX,
    "dep": FieldKind.PREFIX,
}

CROSS_ENTITY_FIELDS: dict[str, dict[str, str]] = {
    "log": {
        "message": FieldKind.STRING,
        "type": FieldKind.ENUM,
        "timestamp": FieldKind.DATE,
        "session": FieldKind.STRING,
    },
    "comment": {
        "text": FieldKind.STRING,
        "created": FieldKind.DATE,
        "session": FieldKind.STRING,
    },
    "handoff": {
        "done": FieldKind.STRING,
        "remaining": FieldKind.STRING,
        "decisions": FieldKind.STRING,
        "uncertain": FieldKind.STRING,
        "timestamp": FieldKind.DATE,
    },
    "file": {
        "path": FieldKind.STRING,
        "role": FieldKind.ENUM,
    },
    "dep": {
        "blocks": FieldKind.STRING,
        "depends_on": FieldKind.STRING,
    },
    "epic": {
        "title": FieldKind.STRING,
        "status": FieldKind.ENUM,
        "priority": FieldKind.ORDINAL,
        "labels": FieldKind.STRING,
    },
}

ENUM_VALUES: dict[str, list[str]] = {
    "status": Status.ORDER,
    "type": IssueType.ORDER,
    "priority": Priority.ORDER,
    "log.type": LogType.ORDER,
    "file.role": FileRole.ORDER,
    "epic.status": Status.ORDER,
    "epic.priority": Priority.ORDER,
}

# Issue columns behind each plain field
COLUMNS: dict[str, str] = {
    "id": "id",
    "title": "title",
    "description": "description",
    "status": "status",
    "type": "type",
    "priority": "priority",
    "points": "points",
    "labels": "labels",
    "parent": "parent_id",
    "epic": "parent_id",
    "implementer": "implementer_session",
    "reviewer": "reviewer_session",
    "creator": "creator_session",
    "minor": "minor",
    "branch": "created_branch",
    "sprint": "sprint",
    "created": "created_at",
    "updated": "updated_at",
    "closed": "closed_at",
    "defer": "defer_at",
    "due": "due_at",
}

NULLABLE_COLUMNS = {"closed_at", "deleted_at", "defer_at", "due_at"}


@dataclass(frozen=True)
class FunctionSpec:
    min_args: int
    max_args: int  # -1 means unbounded
    help: str
    in_memory: bool = False


KNOWN_FUNCTIONS: dict[str, FunctionSpec] = {
    "has": FunctionSpec(1, 1, "has(field) - field is not empty"),
    "is": FunctionSpec(1, 1, "is(status) - shorthand for status check"),
    "any": FunctionSpec(2, -1, "any(field, v1, v2, ...) - field matches any value"),
    "all": FunctionSpec(2, -1, "all(field, v1, v2, ...) - field contains all values"),
    "none": FunctionSpec(2, -1, "none(field, v1, v2, ...) - field matches none"),
    "child_of": FunctionSpec(1, 1, "child_of(id) - direct children of issue"),
    "blocks": FunctionSpec(1, 1, "blocks(id) - issues that block the given id", True),
    "blocked_by": FunctionSpec(1, 1, "blocked_by(id) - issues blocked by the given id", True),
    "descendant_of": FunctionSpec(1, 1, "descendant_of(id) - all descendants (recursive)", True),
    "linked_to": FunctionSpec(1, 1, "linked_to(path) - issues linked to file path", True),
    "rework": FunctionSpec(0, 0, "rework() - issues rejected and awaiting rework", True),
    "is_ready": FunctionSpec(0, 0, "is_ready() - open with no open dependencies", True),
    "has_open_deps": FunctionSpec(0, 0, "has_open_deps() - at least one open dependency", True),
}


def split_field(name: str) -> tuple[str, str]:
    """``log.message`` -> (``log``, ``message``); plain fields get an empty sub-field."""
    base, _, sub = name.partition(".")
    return base, sub


def is_cross_entity(name: str) -> bool:
    base, sub = split_field(name)
    return bool(sub) and base in CROSS_ENTITY_FIELDS


def field_kind(name: str) -> str | None:
    base, sub = split_field(name)
    if sub:
        return CROSS_ENTITY_FIELDS.get(base, {}).get(sub)
    return KNOWN_FIELDS.get(base)


def canonical_enum(name: str, value: str) -> str | None:
    """Case-insensitive match of ``value`` against the enum for ``name``.

    Legacy synonyms (``high``, ``in-review``, ``story``) are accepted.
    """
    allowed = ENUM_VALUES.get(name)
    if allowed is None:
        return None
    for v in allowed:
        if v.lower() == value.lower():
            return v
    base = name.rsplit(".", 1)[-1]
    if base == "status":
        candidate = Status.normalize(value)
    elif base == "priority":
        candidate = Priority.normalize(value)
    elif base == "type":
        candidate = IssueType.normalize(value)
    else:
        return None
    return candidate if candidate in allowed else None
