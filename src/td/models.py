"""Core data models for td issues and their related records."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


# --- Status constants ---

class Status:
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    IN_REVIEW = "in_review"
    CLOSED = "closed"

    ORDER = [OPEN, IN_PROGRESS, BLOCKED, IN_REVIEW, CLOSED]
    _VALID = set(ORDER)

    @classmethod
    def is_valid(cls, s: str) -> bool:
        return s in cls._VALID

    @classmethod
    def normalize(cls, s: str) -> str:
        """Map alternate spellings (in-review, review, OPEN) to canonical form."""
        normalized = s.strip().lower().replace("-", "_")
        if normalized == "review":
            return cls.IN_REVIEW
        return normalized


# --- IssueType constants ---

class IssueType:
    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"

    ORDER = [BUG, FEATURE, TASK, EPIC, CHORE]
    _VALID = set(ORDER)

    @classmethod
    def is_valid(cls, t: str) -> bool:
        return t in cls._VALID

    @classmethod
    def normalize(cls, t: str) -> str:
        lower = t.strip().lower()
        if lower in ("story", "feat", "enhancement"):
            return cls.FEATURE
        return lower


# --- Priority constants ---

class Priority:
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"
    P4 = "P4"

    ORDER = [P0, P1, P2, P3, P4]
    _VALID = set(ORDER)

    _SYNONYMS = {
        "0": P0, "p0": P0, "critical": P0, "highest": P0,
        "1": P1, "p1": P1, "high": P1,
        "2": P2, "p2": P2, "medium": P2, "normal": P2, "default": P2,
        "3": P3, "p3": P3, "low": P3,
        "4": P4, "p4": P4, "lowest": P4, "none": P4,
    }

    @classmethod
    def is_valid(cls, p: str) -> bool:
        return p in cls._VALID

    @classmethod
    def normalize(cls, p: str) -> str:
        lower = str(p).strip().lower()
        return cls._SYNONYMS.get(lower, lower.upper())

    @classmethod
    def rank(cls, p: str) -> int:
        """Numeric rank of a priority (0 is most urgent), -1 when unknown."""
        try:
            return cls.ORDER.index(p)
        except ValueError:
            return -1


# --- LogType constants ---

class LogType:
    PROGRESS = "progress"
    BLOCKER = "blocker"
    DECISION = "decision"
    HYPOTHESIS = "hypothesis"
    TRIED = "tried"
    RESULT = "result"
    SECURITY = "security"
    ORCHESTRATION = "orchestration"

    ORDER = [PROGRESS, BLOCKER, DECISION, HYPOTHESIS, TRIED, RESULT,
             SECURITY, ORCHESTRATION]
    _VALID = set(ORDER)

    @classmethod
    def is_valid(cls, t: str) -> bool:
        return t in cls._VALID


# --- FileRole constants ---

class FileRole:
    IMPLEMENTATION = "implementation"
    TEST = "test"
    REFERENCE = "reference"
    CONFIG = "config"

    ORDER = [IMPLEMENTATION, TEST, REFERENCE, CONFIG]
    _VALID = set(ORDER)

    @classmethod
    def is_valid(cls, r: str) -> bool:
        return r in cls._VALID


# --- Session history actions ---

class SessionAction:
    CREATED = "created"
    STARTED = "started"
    UNSTARTED = "unstarted"
    REVIEWED = "reviewed"


# --- Action log types ---

class ActionType:
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"
    START = "start"
    UNSTART = "unstart"
    REVIEW = "review"
    APPROVE = "approve"
    REJECT = "reject"
    BLOCK = "block"
    UNBLOCK = "unblock"
    CLOSE = "close"
    REOPEN = "reopen"
    ADD_DEPENDENCY = "add_dependency"
    REMOVE_DEPENDENCY = "remove_dependency"
    LINK_FILE = "link_file"
    UNLINK_FILE = "unlink_file"
    LOG = "log"
    HANDOFF = "handoff"
    COMMENT = "comment"
    BOARD_CREATE = "board_create"
    BOARD_DELETE = "board_delete"
    BOARD_UPDATE = "board_update"
    BOARD_SET_POSITION = "board_set_position"
    BOARD_UNPOSITION = "board_unposition"
    WORK_SESSION_START = "work_session_start"
    WORK_SESSION_END = "work_session_end"
    WORK_SESSION_TAG = "work_session_tag"
    WORK_SESSION_UNTAG = "work_session_untag"
    NOTE_CREATE = "note_create"
    NOTE_UPDATE = "note_update"
    NOTE_DELETE = "note_delete"


# --- Entity kinds (local action log names) ---

class EntityKind:
    ISSUE = "issue"
    LOG = "log"
    HANDOFF = "handoff"
    COMMENT = "comment"
    DEPENDENCY = "dependency"
    FILE_LINK = "file_link"
    BOARD = "board"
    BOARD_POSITION = "board_position"
    WORK_SESSION = "work_session"
    WORK_SESSION_ISSUE = "work_session_issue"
    NOTE = "note"
    GIT_SNAPSHOT = "git_snapshot"


VALID_POINTS = (1, 2, 3, 5, 8, 13, 21)


def is_valid_points(p: int) -> bool:
    return p == 0 or p in VALID_POINTS


# --- Helper: timestamp handling ---

def parse_timestamp(s: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 timestamp string to an aware UTC datetime."""
    if s is None:
        return None
    if isinstance(s, datetime):
        return s if s.tzinfo else s.replace(tzinfo=timezone.utc)
    s = str(s).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        dt = None
        for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d"):
            try:
                dt = datetime.strptime(s, fmt)
                break
            except ValueError:
                continue
        if dt is None:
            raise ValueError(f"Cannot parse timestamp: {s}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: datetime | None) -> str | None:
    """Format a datetime as a fixed-width UTC string with a Z suffix.

    The fixed width keeps stored timestamps lexicographically ordered.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def now_utc() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def split_labels(value: Any) -> list[str]:
    """Normalize labels from a comma string or list into a unique ordered list."""
    if not value:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = [piece for v in value for piece in str(v).split(",")]
    seen: list[str] = []
    for p in parts:
        p = str(p).strip()
        if p and p not in seen:
            seen.append(p)
    return seen


def join_labels(labels: list[str]) -> str:
    return ",".join(split_labels(labels))


# --- Dataclasses ---

@dataclass
class Issue:
    id: str = ""
    title: str = ""
    description: str = ""
    status: str = Status.OPEN
    type: str = IssueType.TASK
    priority: str = Priority.P2
    points: int = 0
    labels: list[str] = field(default_factory=list)
    parent_id: str = ""
    acceptance: str = ""
    sprint: str = ""
    implementer_session: str = ""
    creator_session: str = ""
    reviewer_session: str = ""
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)
    closed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    minor: bool = False
    created_branch: str = ""
    defer_at: Optional[datetime] = None
    due_at: Optional[datetime] = None

    def to_row(self) -> dict[str, Any]:
        """Column-level representation, as stored and as carried in the action log."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "type": self.type,
            "priority": self.priority,
            "points": self.points,
            "labels": join_labels(self.labels),
            "parent_id": self.parent_id,
            "acceptance": self.acceptance,
            "sprint": self.sprint,
            "implementer_session": self.implementer_session,
            "creator_session": self.creator_session,
            "reviewer_session": self.reviewer_session,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "closed_at": format_timestamp(self.closed_at),
            "deleted_at": format_timestamp(self.deleted_at),
            "minor": 1 if self.minor else 0,
            "created_branch": self.created_branch,
            "defer_at": format_timestamp(self.defer_at),
            "due_at": format_timestamp(self.due_at),
        }

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "type": self.type,
            "priority": self.priority,
            "points": self.points,
            "implementer_session": self.implementer_session,
            "creator_session": self.creator_session,
            "reviewer_session": self.reviewer_session,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "minor": self.minor,
        }
        if self.description:
            d["description"] = self.description
        if self.labels:
            d["labels"] = list(self.labels)
        if self.parent_id:
            d["parent_id"] = self.parent_id
        if self.acceptance:
            d["acceptance"] = self.acceptance
        if self.sprint:
            d["sprint"] = self.sprint
        if self.closed_at:
            d["closed_at"] = format_timestamp(self.closed_at)
        if self.deleted_at:
            d["deleted_at"] = format_timestamp(self.deleted_at)
        if self.created_branch:
            d["created_branch"] = self.created_branch
        if self.defer_at:
            d["defer_at"] = format_timestamp(self.defer_at)
        if self.due_at:
            d["due_at"] = format_timestamp(self.due_at)
        return d

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> Issue:
        """Build an Issue from a row or dict; missing columns take defaults."""
        return cls(
            id=d.get("id") or "",
            title=d.get("title") or "",
            description=d.get("description") or "",
            status=d.get("status") or Status.OPEN,
            type=d.get("type") or IssueType.TASK,
            priority=d.get("priority") or Priority.P2,
            points=int(d.get("points") or 0),
            labels=split_labels(d.get("labels")),
            parent_id=d.get("parent_id") or "",
            acceptance=d.get("acceptance") or "",
            sprint=d.get("sprint") or "",
            implementer_session=d.get("implementer_session") or "",
            creator_session=d.get("creator_session") or "",
            reviewer_session=d.get("reviewer_session") or "",
            created_at=parse_timestamp(d.get("created_at")) or now_utc(),
            updated_at=parse_timestamp(d.get("updated_at")) or now_utc(),
            closed_at=parse_timestamp(d.get("closed_at")),
            deleted_at=parse_timestamp(d.get("deleted_at")),
            minor=bool(d.get("minor") or False),
            created_branch=d.get("created_branch") or "",
            defer_at=parse_timestamp(d.get("defer_at")),
            due_at=parse_timestamp(d.get("due_at")),
        )

    from_dict = from_row


@dataclass
class Log:
    id: str = ""
    issue_id: str = ""
    session_id: str = ""
    work_session_id: str = ""
    message: str = ""
    type: str = LogType.PROGRESS
    timestamp: datetime = field(default_factory=now_utc)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "session_id": self.session_id,
            "work_session_id": self.work_session_id,
            "message": self.message,
            "type": self.type,
            "timestamp": format_timestamp(self.timestamp),
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.to_row()
        if not self.work_session_id:
            del d["work_session_id"]
        return d

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> Log:
        return cls(
            id=d.get("id") or "",
            issue_id=d.get("issue_id") or "",
            session_id=d.get("session_id") or "",
            work_session_id=d.get("work_session_id") or "",
            message=d.get("message") or "",
            type=d.get("type") or LogType.PROGRESS,
            timestamp=parse_timestamp(d.get("timestamp")) or now_utc(),
        )


@dataclass
class Handoff:
    id: str = ""
    issue_id: str = ""
    session_id: str = ""
    done: list[str] = field(default_factory=list)
    remaining: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    uncertain: list[str] = field(default_factory=list)
    git_snapshot_id: str = ""
    timestamp: datetime = field(default_factory=now_utc)

    def is_empty(self) -> bool:
        return not (self.done or self.remaining or self.decisions or self.uncertain)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "session_id": self.session_id,
            "done": json.dumps(self.done),
            "remaining": json.dumps(self.remaining),
            "decisions": json.dumps(self.decisions),
            "uncertain": json.dumps(self.uncertain),
            "git_snapshot_id": self.git_snapshot_id,
            "timestamp": format_timestamp(self.timestamp),
        }

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "issue_id": self.issue_id,
            "session_id": self.session_id,
            "timestamp": format_timestamp(self.timestamp),
        }
        for key in ("done", "remaining", "decisions", "uncertain"):
            items = getattr(self, key)
            if items:
                d[key] = list(items)
        if self.git_snapshot_id:
            d["git_snapshot_id"] = self.git_snapshot_id
        return d

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> Handoff:

        def items(key: str) -> list[str]:
            raw = d.get(key)
            if not raw:
                return []
            if isinstance(raw, list):
                return [str(x) for x in raw]
            try:
                value = json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                return [str(raw)]
            return [str(x) for x in value] if isinstance(value, list) else [str(value)]

        return cls(
            id=d.get("id") or "",
            issue_id=d.get("issue_id") or "",
            session_id=d.get("session_id") or "",
            done=items("done"),
            remaining=items("remaining"),
            decisions=items("decisions"),
            uncertain=items("uncertain"),
            git_snapshot_id=d.get("git_snapshot_id") or "",
            timestamp=parse_timestamp(d.get("timestamp")) or now_utc(),
        )


@dataclass
class Comment:
    id: str = ""
    issue_id: str = ""
    session_id: str = ""
    text: str = ""
    created_at: datetime = field(default_factory=now_utc)
    deleted_at: Optional[datetime] = None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "session_id": self.session_id,
            "text": self.text,
            "created_at": format_timestamp(self.created_at),
            "deleted_at": format_timestamp(self.deleted_at),
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.to_row()
        if not self.deleted_at:
            del d["deleted_at"]
        return d

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> Comment:
        return cls(
            id=d.get("id") or "",
            issue_id=d.get("issue_id") or "",
            session_id=d.get("session_id") or "",
            text=d.get("text") or "",
            created_at=parse_timestamp(d.get("created_at")) or now_utc(),
            deleted_at=parse_timestamp(d.get("deleted_at")),
        )


@dataclass
class IssueFile:
    id: str = ""
    issue_id: str = ""
    file_path: str = ""
    role: str = FileRole.IMPLEMENTATION
    linked_sha: str = ""
    linked_at: datetime = field(default_factory=now_utc)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "file_path": self.file_path,
            "role": self.role,
            "linked_sha": self.linked_sha,
            "linked_at": format_timestamp(self.linked_at),
        }

    to_dict = to_row

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> IssueFile:
        return cls(
            id=d.get("id") or "",
            issue_id=d.get("issue_id") or "",
            file_path=d.get("file_path") or "",
            role=d.get("role") or FileRole.IMPLEMENTATION,
            linked_sha=d.get("linked_sha") or "",
            linked_at=parse_timestamp(d.get("linked_at")) or now_utc(),
        )


@dataclass
class Dependency:
    """Directed edge: ``issue_id`` is blocked by ``depends_on_id``."""
    id: str = ""
    issue_id: str = ""
    depends_on_id: str = ""
    relation_type: str = "depends_on"

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "depends_on_id": self.depends_on_id,
            "relation_type": self.relation_type,
        }

    to_dict = to_row

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> Dependency:
        return cls(
            id=d.get("id") or "",
            issue_id=d.get("issue_id") or "",
            depends_on_id=d.get("depends_on_id") or "",
            relation_type=d.get("relation_type") or "depends_on",
        )


@dataclass
class WorkSession:
    id: str = ""
    name: str = ""
    session_id: str = ""
    started_at: datetime = field(default_factory=now_utc)
    ended_at: Optional[datetime] = None
    start_sha: str = ""
    end_sha: str = ""

    @property
    def active(self) -> bool:
        return self.ended_at is None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "session_id": self.session_id,
            "started_at": format_timestamp(self.started_at),
            "ended_at": format_timestamp(self.ended_at),
            "start_sha": self.start_sha,
            "end_sha": self.end_sha,
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.to_row()
        d["active"] = self.active
        return d

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> WorkSession:
        return cls(
            id=d.get("id") or "",
            name=d.get("name") or "",
            session_id=d.get("session_id") or "",
            started_at=parse_timestamp(d.get("started_at")) or now_utc(),
            ended_at=parse_timestamp(d.get("ended_at")),
            start_sha=d.get("start_sha") or "",
            end_sha=d.get("end_sha") or "",
        )


@dataclass
class GitSnapshot:
    id: str = ""
    issue_id: str = ""
    event: str = ""
    commit_sha: str = ""
    branch: str = ""
    dirty_files: int = 0
    timestamp: datetime = field(default_factory=now_utc)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "event": self.event,
            "commit_sha": self.commit_sha,
            "branch": self.branch,
            "dirty_files": self.dirty_files,
            "timestamp": format_timestamp(self.timestamp),
        }

    to_dict = to_row

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> GitSnapshot:
        return cls(
            id=d.get("id") or "",
            issue_id=d.get("issue_id") or "",
            event=d.get("event") or "",
            commit_sha=d.get("commit_sha") or "",
            branch=d.get("branch") or "",
            dirty_files=int(d.get("dirty_files") or 0),
            timestamp=parse_timestamp(d.get("timestamp")) or now_utc(),
        )


@dataclass
class Board:
    id: str = ""
    name: str = ""
    query: str = ""
    is_builtin: bool = False
    view_mode: str = "swimlanes"
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)
    deleted_at: Optional[datetime] = None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "query": self.query,
            "is_builtin": 1 if self.is_builtin else 0,
            "view_mode": self.view_mode,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "deleted_at": format_timestamp(self.deleted_at),
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.to_row()
        d["is_builtin"] = self.is_builtin
        if not self.deleted_at:
            del d["deleted_at"]
        return d

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> Board:
        return cls(
            id=d.get("id") or "",
            name=d.get("name") or "",
            query=d.get("query") or "",
            is_builtin=bool(d.get("is_builtin") or False),
            view_mode=d.get("view_mode") or "swimlanes",
            created_at=parse_timestamp(d.get("created_at")) or now_utc(),
            updated_at=parse_timestamp(d.get("updated_at")) or now_utc(),
            deleted_at=parse_timestamp(d.get("deleted_at")),
        )


@dataclass
class BoardPosition:
    id: str = ""
    board_id: str = ""
    issue_id: str = ""
    position: int = 0
    added_at: datetime = field(default_factory=now_utc)
    deleted_at: Optional[datetime] = None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "board_id": self.board_id,
            "issue_id": self.issue_id,
            "position": self.position,
            "added_at": format_timestamp(self.added_at),
            "deleted_at": format_timestamp(self.deleted_at),
        }

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> BoardPosition:
        return cls(
            id=d.get("id") or "",
            board_id=d.get("board_id") or "",
            issue_id=d.get("issue_id") or "",
            position=int(d.get("position") or 0),
            added_at=parse_timestamp(d.get("added_at")) or now_utc(),
            deleted_at=parse_timestamp(d.get("deleted_at")),
        )


@dataclass
class BoardIssueView:
    board_id: str
    issue: Issue
    position: int = 0
    has_position: bool = False

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "board_id": self.board_id,
            "has_position": self.has_position,
            "issue": self.issue.to_dict(),
        }
        if self.has_position:
            d["position"] = self.position
        return d


@dataclass
class Note:
    id: str = ""
    title: str = ""
    content: str = ""
    pinned: bool = False
    archived: bool = False
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)
    deleted_at: Optional[datetime] = None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "pinned": 1 if self.pinned else 0,
            "archived": 1 if self.archived else 0,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "deleted_at": format_timestamp(self.deleted_at),
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.to_row()
        d["pinned"] = self.pinned
        d["archived"] = self.archived
        if not self.deleted_at:
            del d["deleted_at"]
        return d

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> Note:
        return cls(
            id=d.get("id") or "",
            title=d.get("title") or "",
            content=d.get("content") or "",
            pinned=bool(d.get("pinned") or False),
            archived=bool(d.get("archived") or False),
            created_at=parse_timestamp(d.get("created_at")) or now_utc(),
            updated_at=parse_timestamp(d.get("updated_at")) or now_utc(),
            deleted_at=parse_timestamp(d.get("deleted_at")),
        )


@dataclass
class ActionLog:
    id: int = 0
    session_id: str = ""
    action_type: str = ""
    entity_type: str = ""
    entity_id: str = ""
    previous_data: str = ""
    new_data: str = ""
    timestamp: datetime = field(default_factory=now_utc)
    undone: bool = False
    synced_at: Optional[datetime] = None
    server_seq: Optional[int] = None

    def previous(self) -> dict[str, Any] | None:
        return json.loads(self.previous_data) if self.previous_data else None

    def new(self) -> dict[str, Any] | None:
        return json.loads(self.new_data) if self.new_data else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "action_type": self.action_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "previous_data": self.previous_data,
            "new_data": self.new_data,
            "timestamp": format_timestamp(self.timestamp),
            "undone": self.undone,
        }

    @classmethod
    def from_row(cls, d: dict[str, Any]) -> ActionLog:
        return cls(
            id=int(d.get("id") or 0),
            session_id=d.get("session_id") or "",
            action_type=d.get("action_type") or "",
            entity_type=d.get("entity_type") or "",
            entity_id=d.get("entity_id") or "",
            previous_data=d.get("previous_data") or "",
            new_data=d.get("new_data") or "",
            timestamp=parse_timestamp(d.get("timestamp")) or now_utc(),
            undone=bool(d.get("undone") or False),
            synced_at=parse_timestamp(d.get("synced_at")),
            server_seq=d.get("server_seq"),
        )


@dataclass
class SyncHistoryEntry:
    id: int = 0
    direction: str = ""
    action_type: str = ""
    entity_type: str = ""
    entity_id: str = ""
    server_seq: int = 0
    device_id: str = ""
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "direction": self.direction,
            "action_type": self.action_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "server_seq": self.server_seq,
            "device_id": self.device_id,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass
class ConflictRecord:
    """A remote field value that lost against a newer local write."""
    id: int = 0
    resolved_at: datetime = field(default_factory=now_utc)
    entity_type: str = ""
    entity_id: str = ""
    field: str = ""
    local_value: Any = None
    remote_value: Any = None
    server_seq: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "field": self.field,
            "local_value": self.local_value,
            "remote_value": self.remote_value,
            "server_seq": self.server_seq,
            "resolved_at": format_timestamp(self.resolved_at),
        }


@dataclass
class IssueFilter:
    """Simple list filter used by list commands and the context builder."""
    status: list[str] = field(default_factory=list)
    type: list[str] = field(default_factory=list)
    priority: Optional[str] = None
    labels: list[str] = field(default_factory=list)
    parent_id: Optional[str] = None
    implementer: Optional[str] = None
    reviewer: Optional[str] = None
    search: str = ""
    ids: list[str] = field(default_factory=list)
    include_deleted: bool = False
    only_deleted: bool = False
    sort: str = "priority"
    descending: bool = False
    limit: int = 0
