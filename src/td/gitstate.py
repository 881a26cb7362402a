"""Git state capture for start and handoff snapshots."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class GitState:
    commit_sha: str
    branch: str
    dirty_files: int


def _git(args: list[str], cwd: str | None = None) -> str | None:
    try:
        result = subprocess.run(
            ["git", *args], cwd=cwd, capture_output=True, text=True, timeout=5
        )
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def current_branch(cwd: str | None = None) -> str:
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd) or ""


def toplevel(cwd: str | None = None) -> str | None:
    return _git(["rev-parse", "--show-toplevel"], cwd)


def common_dir(cwd: str | None = None) -> str | None:
    return _git(["rev-parse", "--path-format=absolute", "--git-common-dir"], cwd)


def capture(cwd: str | None = None) -> GitState | None:
    """Current commit, branch and dirty file count; None outside a git repo."""
    sha = _git(["rev-parse", "HEAD"], cwd)
    if not sha:
        return None
    status = _git(["status", "--porcelain"], cwd) or ""
    dirty = len([line for line in status.splitlines() if line.strip()])
    state = GitState(commit_sha=sha, branch=current_branch(cwd), dirty_files=dirty)
    logger.debug("git state: %s on %s (%d dirty)", sha[:8], state.branch, dirty)
    return state
