"""Per-project configuration in ``.todos/config.json``.

Every write takes an exclusive ``flock`` on ``config.json.lock``, re-reads
the file inside the lock, applies the change and atomically replaces the
file (temp file in the same directory, then ``os.replace``).
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Iterator

from td.errors import InvalidInput
from td.workdir import TODOS_DIR
from td.workflow import TransitionMode

logger = logging.getLogger(__name__)

CONFIG_JSON = "config.json"
LOCK_FILE = "config.json.lock"

DEFAULT_TITLE_MIN_LENGTH = 15
DEFAULT_TITLE_MAX_LENGTH = 100


@dataclass
class ProjectConfig:
    focused_issue_id: str = ""
    active_work_session: str = ""
    pane_heights: list[float] = field(default_factory=list)
    search_query: str = ""
    sort_mode: str = ""
    type_filter: str = ""
    include_closed: bool = False
    feature_flags: dict[str, bool] = field(default_factory=dict)
    title_min_length: int = DEFAULT_TITLE_MIN_LENGTH
    title_max_length: int = DEFAULT_TITLE_MAX_LENGTH
    session_name: str = ""
    workflow_mode: str = TransitionMode.STRICT
    webhook_url: str = ""
    webhook_secret: str = ""

    @classmethod
    def load(cls, root: str) -> ProjectConfig:
        """Load config.json; a missing file gives the defaults."""
        path = config_path(root)
        cfg = cls()
        if not os.path.exists(path):
            return cfg
        with open(path) as f:
            try:
                data = json.load(f) or {}
            except json.JSONDecodeError as e:
                raise InvalidInput(f"invalid config file {path}: {e}") from e
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key in known and value is not None:
                setattr(cfg, key, value)
        return cfg

    def save(self, root: str) -> None:
        """Atomic write; callers hold the config lock."""
        path = config_path(root)
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix="config-", suffix=".json.tmp", dir=directory)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(asdict(self), f, indent=2)
                f.write("\n")
            os.replace(tmp, path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        if d["webhook_secret"]:
            d["webhook_secret"] = "********"
        return d


def config_path(root: str) -> str:
    return os.path.join(root, TODOS_DIR, CONFIG_JSON)


@contextmanager
def config_lock(root: str) -> Iterator[None]:
    lock_path = os.path.join(root, TODOS_DIR, LOCK_FILE)
    os.makedirs(os.path.dirname(lock_path), exist_ok=True)
    with open(lock_path, "a+") as f:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def update(root: str, change: Callable[[ProjectConfig], None]) -> ProjectConfig:
    """Read-modify-write the config under the lock."""
    with config_lock(root):
        cfg = ProjectConfig.load(root)
        change(cfg)
        cfg.save(root)
    return cfg


# --- Helpers ---

def get_focus(root: str) -> str:
    return ProjectConfig.load(root).focused_issue_id


def set_focus(root: str, issue_id: str) -> None:
    update(root, lambda c: setattr(c, "focused_issue_id", issue_id))


def clear_focus(root: str) -> None:
    set_focus(root, "")


def clear_focus_if(root: str, issue_id: str) -> bool:
    """Clear the focus when it points at ``issue_id``."""
    cleared = False

    def change(c: ProjectConfig) -> None:
        nonlocal cleared
        if c.focused_issue_id == issue_id:
            c.focused_issue_id = ""
            cleared = True

    update(root, change)
    return cleared


def get_active_work_session(root: str) -> str:
    return ProjectConfig.load(root).active_work_session


def set_active_work_session(root: str, ws_id: str) -> None:
    update(root, lambda c: setattr(c, "active_work_session", ws_id))


def set_feature_flag(root: str, name: str, enabled: bool) -> None:
    def change(c: ProjectConfig) -> None:
        c.feature_flags[name] = enabled

    update(root, change)


def unset_feature_flag(root: str, name: str) -> None:
    update(root, lambda c: c.feature_flags.pop(name, None))


def set_session_name(root: str, name: str) -> None:
    update(root, lambda c: setattr(c, "session_name", name))


def set_webhook(root: str, url: str, secret: str = "") -> None:
    def change(c: ProjectConfig) -> None:
        c.webhook_url = url
        c.webhook_secret = secret

    update(root, change)


def set_workflow_mode(root: str, mode: str) -> None:
    if not TransitionMode.is_valid(mode):
        raise InvalidInput(f"invalid workflow mode: {mode} (use liberal, advisory or strict)")
    update(root, lambda c: setattr(c, "workflow_mode", mode))
