"""Feature flags.

Resolution order for a flag: ``TD_DISABLE_EXPERIMENTAL`` (forces off),
``TD_FEATURE_<NAME>``, the ``TD_DISABLE_FEATURES`` list, the
``TD_ENABLE_FEATURES`` list, the project config ``feature_flags`` map, and
finally the registry default. Resolved values are cached for the process;
``reset()`` clears the cache.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass

from td.config import ProjectConfig
from td.utils import parse_bool


@dataclass(frozen=True)
class Feature:
    name: str
    default: bool
    description: str


SYNC_CLI = Feature("sync_cli", False, "Enable sync/auth CLI commands for end users")
SYNC_AUTOSYNC = Feature("sync_autosync", False, "Enable background autosync hooks")
SYNC_MONITOR_PROMPT = Feature("sync_monitor_prompt", False, "Enable monitor sync setup prompt")
SYNC_NOTES = Feature("sync_notes", False, "Enable sync transport for notes entities")

ALL_FEATURES = [SYNC_AUTOSYNC, SYNC_CLI, SYNC_MONITOR_PROMPT, SYNC_NOTES]
_DEFAULTS = {f.name: f.default for f in ALL_FEATURES}

SOURCE_ENV = "env"
SOURCE_CONFIG = "config"
SOURCE_DEFAULT = "default"

_cache: dict[tuple[str, str], tuple[bool, str]] = {}
_cache_lock = threading.Lock()


def normalize_name(name: str) -> str:
    return name.strip().lower()


def is_known(name: str) -> bool:
    return normalize_name(name) in _DEFAULTS


def list_all() -> list[Feature]:
    return sorted(ALL_FEATURES, key=lambda f: f.name)


def env_key(name: str) -> str:
    return "TD_FEATURE_" + "".join(
        ch if ch.isalnum() else "_" for ch in name.strip().upper())


def _in_list(raw: str | None, name: str) -> bool:
    if not raw:
        return False
    return any(normalize_name(item) == name for item in raw.split(","))


def env_override(name: str) -> bool | None:
    if parse_bool(os.environ.get("TD_DISABLE_EXPERIMENTAL")):
        return False
    explicit = parse_bool(os.environ.get(env_key(name)))
    if explicit is not None:
        return explicit
    if _in_list(os.environ.get("TD_DISABLE_FEATURES"), name):
        return False
    if _in_list(os.environ.get("TD_ENABLE_FEATURES"), name):
        return True
    return None


def resolve(root: str, name: str) -> tuple[bool, str]:
    """Resolved state of a flag and where it came from."""
    canonical = normalize_name(name)
    key = (root or "", canonical)
    with _cache_lock:
        if key in _cache:
            return _cache[key]

    enabled = env_override(canonical)
    if enabled is not None:
        result = (enabled, SOURCE_ENV)
    else:
        result = (_DEFAULTS.get(canonical, False), SOURCE_DEFAULT)
        if root:
            flags = ProjectConfig.load(root).feature_flags
            if canonical in flags:
                result = (bool(flags[canonical]), SOURCE_CONFIG)

    with _cache_lock:
        _cache[key] = result
    return result


def is_enabled(root: str, name: str) -> bool:
    return resolve(root, name)[0]


def reset() -> None:
    """Forget cached resolutions (after a config write, and in tests)."""
    with _cache_lock:
        _cache.clear()
