"""Project root resolution.

The root is the directory that holds ``.todos/``. A ``.td-root`` file (one
line, absolute or relative path) redirects it, which is how a git worktree
shares the main checkout's database.
"""

from __future__ import annotations

import logging
import os

from td import gitstate

logger = logging.getLogger(__name__)

TD_ROOT_FILE = ".td-root"
TODOS_DIR = ".todos"
DB_NAME = "issues.db"


def read_td_root(directory: str) -> str | None:
    try:
        with open(os.path.join(directory, TD_ROOT_FILE)) as f:
            content = f.read().strip()
    except OSError:
        return None
    if not content:
        return None
    line = content.splitlines()[0].strip()
    if not os.path.isabs(line):
        line = os.path.join(directory, line)
    return os.path.normpath(line)


def has_todos_dir(directory: str) -> bool:
    return os.path.isdir(os.path.join(directory, TODOS_DIR))


def _marked(directory: str) -> str | None:
    resolved = read_td_root(directory)
    if resolved is not None:
        return resolved
    if has_todos_dir(directory):
        return directory
    return None


def main_worktree(directory: str, top: str) -> str | None:
    """Root of the main worktree when ``directory`` is in an external one."""
    common = gitstate.common_dir(directory)
    if not common:
        return None
    if not os.path.isabs(common):
        common = os.path.join(directory, common)
    root = os.path.dirname(os.path.normpath(common))
    if root == top:
        return None
    return root


def resolve_base_dir(base_dir: str) -> str:
    """Resolve the project root for ``base_dir``.

    Checks, in order: ``.td-root`` or ``.todos`` in the directory itself,
    then in the git top-level, then in the main worktree of an external
    worktree. With no marker anywhere the directory is returned unchanged.
    """
    if not base_dir:
        return base_dir
    base_dir = os.path.normpath(base_dir)

    found = _marked(base_dir)
    if found is not None:
        return found

    top = gitstate.toplevel(base_dir)
    if not top:
        return base_dir
    top = os.path.normpath(top)
    found = _marked(top)
    if found is not None:
        return found

    main = main_worktree(base_dir, top)
    if main:
        found = _marked(main)
        if found is not None:
            logger.debug("resolved %s to main worktree %s", base_dir, found)
            return found
    return base_dir


def start_dir() -> str:
    """Directory resolution starts from: TD_WORK_DIR, else the cwd."""
    return os.environ.get("TD_WORK_DIR") or os.getcwd()


def todos_dir(root: str) -> str:
    return os.path.join(root, TODOS_DIR)


def db_path(root: str) -> str:
    return os.path.join(root, TODOS_DIR, DB_NAME)
