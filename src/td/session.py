"""Session identity.

A session is one agent or terminal working in the project. It is found by
a fingerprint built from the git branch, the nearest known agent process in
the ancestry, the agent runtime environment and the terminal. Sessions are
cached in ``.todos/session`` keyed by a hash of that fingerprint, so the
same agent on the same branch keeps its session id across invocations.

``TD_SESSION_ID`` bypasses all of this and is used as the session id.
"""

from __future__ import annotations

import fcntl
import functools
import hashlib
import json
import logging
import os
import subprocess
import tempfile
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from td import gitstate, ids
from td.models import format_timestamp, now_utc
from td.workdir import TODOS_DIR

logger = logging.getLogger(__name__)

SESSION_FILE = "session"
DEFAULT_BRANCH = "default"
MAX_ANCESTRY_DEPTH = 15

AGENT_PATTERNS = {
    "claude": "claude-code",
    "cursor": "cursor",
    "codex": "codex",
    "windsurf": "windsurf",
    "zed": "zed",
    "aider": "aider",
    "copilot": "copilot",
    "gemini": "gemini",
}

AGENT_ENV_VARS = (
    "CLAUDE_CODE_SSE_PORT",
    "CLAUDE_SESSION_ID",
    "ANTHROPIC_SESSION_ID",
    "AI_SESSION_ID",
    "CURSOR_SESSION_ID",
    "COPILOT_SESSION_ID",
)

TERMINAL_ENV_VARS = (
    "TERM_SESSION_ID",
    "WINDOWID",
    "TMUX_PANE",
    "STY",
    "KONSOLE_DBUS_SESSION",
    "GNOME_TERMINAL_SCREEN",
    "SSH_TTY",
)


@dataclass
class Session:
    id: str
    name: str = ""
    branch: str = ""
    agent_type: str = ""
    agent_pid: int = 0
    context_id: str = ""
    previous_session_id: str = ""
    started_at: str = ""
    last_activity: str = ""
    is_new: bool = False

    def display(self) -> str:
        return f"{self.id} ({self.name})" if self.name else self.id

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        del d["is_new"]
        return {k: v for k, v in d.items() if v not in ("", 0) or k == "id"}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Session:
        return cls(
            id=d.get("id") or "",
            name=d.get("name") or "",
            branch=d.get("branch") or "",
            agent_type=d.get("agent_type") or "",
            agent_pid=int(d.get("agent_pid") or 0),
            context_id=d.get("context_id") or "",
            previous_session_id=d.get("previous_session_id") or "",
            started_at=d.get("started_at") or "",
            last_activity=d.get("last_activity") or "",
        )


@dataclass
class Fingerprint:
    agent_type: str
    pid: int = 0
    components: list[str] = field(default_factory=list)

    def key(self, branch: str) -> str:
        raw = "|".join([branch, self.agent_type, str(self.pid), *self.components])
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


# --- Fingerprint ---

def _process_info(pid: int) -> Optional[tuple[str, int]]:
    try:
        result = subprocess.run(["ps", "-o", "ppid=,comm=", "-p", str(pid)],
                                capture_output=True, text=True, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        return None
    parts = result.stdout.strip().split(None, 1)
    if result.returncode != 0 or len(parts) < 2:
        return None
    try:
        return parts[1], int(parts[0])
    except ValueError:
        return None


@functools.lru_cache(maxsize=1)
def agent_ancestor() -> tuple[str, int]:
    """Nearest ancestor process that looks like a coding agent.

    Walks at most MAX_ANCESTRY_DEPTH parents; memoized for the process.
    """
    pid = os.getppid()
    for _ in range(MAX_ANCESTRY_DEPTH):
        info = _process_info(pid)
        if info is None:
            break
        name, ppid = info
        lowered = name.lower()
        for pattern, agent in AGENT_PATTERNS.items():
            if pattern in lowered:
                return agent, pid
        if ppid <= 1:
            break
        pid = ppid
    return "unknown", 0


def _tty() -> str:
    try:
        return os.ttyname(0)
    except OSError:
        return ""


def context_id() -> str:
    """Audit string for the runtime this session was created in."""
    for var in AGENT_ENV_VARS:
        if os.environ.get(var):
            return f"ai:{os.environ[var]}"
    for var in TERMINAL_ENV_VARS:
        if os.environ.get(var):
            return f"term:{var}={os.environ[var]}"
    tty = _tty()
    if tty:
        return f"proc:ppid={os.getppid()} tty={tty}"
    return f"proc:ppid={os.getppid()}"


def fingerprint() -> Fingerprint:
    if os.environ.get("CURSOR_AGENT"):
        return Fingerprint("cursor", os.getppid())
    env = [f"{v}={os.environ[v]}" for v in AGENT_ENV_VARS if os.environ.get(v)]
    agent, pid = agent_ancestor()
    if agent != "unknown":
        return Fingerprint(agent, pid, env)
    terminal = [f"{v}={os.environ[v]}" for v in TERMINAL_ENV_VARS if os.environ.get(v)]
    if env or terminal:
        return Fingerprint("terminal", 0, env + terminal)
    return Fingerprint("unknown", 0, [_tty()])


def current_branch(root: str) -> str:
    state = gitstate.capture(root)
    if state is None:
        return DEFAULT_BRANCH
    if not state.branch or state.branch == "HEAD":
        return f"detached-{state.commit_sha[:8]}" if len(state.commit_sha) >= 8 \
            else DEFAULT_BRANCH
    return state.branch


# --- Cache file ---

def _session_path(root: str) -> str:
    return os.path.join(root, TODOS_DIR, SESSION_FILE)


def _load(root: str) -> dict[str, Any]:
    path = _session_path(root)
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return {"sessions": {}}
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("ignoring unreadable session cache %s: %s", path, e)
        return {"sessions": {}}
    if not isinstance(data, dict) or not isinstance(data.get("sessions"), dict):
        return {"sessions": {}}
    return data


def _update(root: str, key: str, change: Any) -> Session:
    """Apply ``change(existing) -> Session`` to one cache entry under a lock."""
    directory = os.path.join(root, TODOS_DIR)
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, SESSION_FILE + ".lock"), "a+") as lock:
        fcntl.flock(lock.fileno(), fcntl.LOCK_EX)
        try:
            data = _load(root)
            existing = data["sessions"].get(key)
            sess = change(Session.from_dict(existing) if existing else None)
            data["sessions"][key] = sess.to_dict()
            fd, tmp = tempfile.mkstemp(prefix="session-", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, _session_path(root))
        finally:
            fcntl.flock(lock.fileno(), fcntl.LOCK_UN)
    return sess


# --- Public API ---

def get_or_create(root: str, force_new: bool = False) -> Session:
    """The current session, creating (or with ``force_new`` replacing) it."""
    explicit = os.environ.get("TD_SESSION_ID", "").strip()
    if explicit and not force_new:
        return Session(id=explicit, agent_type="explicit", context_id=f"explicit:{explicit}")

    branch = current_branch(root)
    fp = fingerprint()
    key = fp.key(branch) if not explicit else "explicit:" + explicit
    now = format_timestamp(now_utc()) or ""

    def change(existing: Optional[Session]) -> Session:
        if existing is not None and not force_new:
            existing.last_activity = now
            return existing
        sess = Session(id=ids.generate_session_id(), branch=branch,
                       agent_type=fp.agent_type, agent_pid=fp.pid, context_id=context_id(),
                       previous_session_id=existing.id if existing else "",
                       started_at=now, last_activity=now, is_new=True)
        return sess

    return _update(root, key, change)


def set_name(root: str, name: str) -> Session:
    sess = get_or_create(root)
    if sess.agent_type == "explicit":
        sess.name = name
        return sess
    branch = current_branch(root)
    key = fingerprint().key(branch)

    def change(existing: Optional[Session]) -> Session:
        target = existing or sess
        target.name = name
        return target

    return _update(root, key, change)


def list_sessions(root: str) -> list[Session]:
    sessions = [Session.from_dict(d) for d in _load(root)["sessions"].values()]
    sessions.sort(key=lambda s: s.last_activity or s.started_at, reverse=True)
    return sessions
