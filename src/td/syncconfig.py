"""User-scope sync settings and credentials.

``$XDG_CONFIG_HOME/td/config.json`` holds the ``sync`` section and
``auth.json`` next to it holds the API key and device id (mode 0600).
Environment variables override the file values.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Optional

from td import ids
from td.errors import InvalidInput
from td.utils import parse_bool, parse_duration

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:8080"
DEFAULT_SNAPSHOT_THRESHOLD = 100
DEFAULT_DEBOUNCE = "3s"
DEFAULT_INTERVAL = "5m"

CONFIG_FILE = "config.json"
AUTH_FILE = "auth.json"


def config_dir() -> str:
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(base, "td")


@dataclass
class AutoSyncConfig:
    enabled: bool = True
    on_start: bool = True
    debounce: str = DEFAULT_DEBOUNCE
    interval: str = DEFAULT_INTERVAL
    pull: bool = True


@dataclass
class SyncConfig:
    url: str = DEFAULT_URL
    enabled: bool = False
    snapshot_threshold: int = DEFAULT_SNAPSHOT_THRESHOLD
    auto: AutoSyncConfig = field(default_factory=AutoSyncConfig)

    def debounce(self) -> timedelta:
        return parse_duration(self.auto.debounce) or parse_duration(DEFAULT_DEBOUNCE)

    def interval(self) -> timedelta:
        return parse_duration(self.auto.interval) or parse_duration(DEFAULT_INTERVAL)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _read_json(path: str) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        raise InvalidInput(f"invalid config file {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def _write_json(path: str, data: dict[str, Any], mode: int = 0o644) -> None:
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".td-", suffix=".tmp", dir=directory)
    try:
        os.fchmod(fd, mode)
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def load_sync_config() -> SyncConfig:
    """File values with ``TD_SYNC_*`` overrides applied."""
    raw = _read_json(os.path.join(config_dir(), CONFIG_FILE)).get("sync") or {}
    cfg = SyncConfig()
    cfg.url = raw.get("url") or cfg.url
    cfg.enabled = bool(raw.get("enabled", cfg.enabled))
    cfg.snapshot_threshold = int(raw.get("snapshot_threshold") or cfg.snapshot_threshold)
    auto = raw.get("auto") or {}
    for key in ("enabled", "on_start", "pull"):
        if key in auto:
            setattr(cfg.auto, key, bool(auto[key]))
    for key in ("debounce", "interval"):
        if auto.get(key):
            setattr(cfg.auto, key, str(auto[key]))

    env = os.environ
    if env.get("TD_SYNC_URL"):
        cfg.url = env["TD_SYNC_URL"]
    if env.get("TD_SYNC_SNAPSHOT_THRESHOLD"):
        try:
            cfg.snapshot_threshold = int(env["TD_SYNC_SNAPSHOT_THRESHOLD"])
        except ValueError:
            logger.warning("ignoring invalid TD_SYNC_SNAPSHOT_THRESHOLD=%s",
                           env["TD_SYNC_SNAPSHOT_THRESHOLD"])
    for var, attr in (("TD_SYNC_AUTO", "enabled"), ("TD_SYNC_AUTO_START", "on_start"),
                      ("TD_SYNC_AUTO_PULL", "pull")):
        value = parse_bool(env.get(var))
        if value is not None:
            setattr(cfg.auto, attr, value)
    for var, attr in (("TD_SYNC_AUTO_DEBOUNCE", "debounce"),
                      ("TD_SYNC_AUTO_INTERVAL", "interval")):
        if env.get(var):
            if parse_duration(env[var]) is None:
                logger.warning("ignoring invalid %s=%s", var, env[var])
            else:
                setattr(cfg.auto, attr, env[var])
    return cfg


def save_sync_config(cfg: SyncConfig) -> None:
    path = os.path.join(config_dir(), CONFIG_FILE)
    data = _read_json(path)
    data["sync"] = cfg.to_dict()
    _write_json(path, data)


# --- Credentials ---

@dataclass
class Credentials:
    api_key: str = ""
    user_id: str = ""
    email: str = ""
    server_url: str = ""
    device_id: str = ""
    expires_at: str = ""

    def to_dict(self, mask: bool = True) -> dict[str, Any]:
        d = asdict(self)
        if mask and self.api_key:
            d["api_key"] = self.api_key[:4] + "..." if len(self.api_key) > 8 else "****"
        return d


def auth_path() -> str:
    return os.path.join(config_dir(), AUTH_FILE)


def load_credentials() -> Credentials:
    data = _read_json(auth_path())
    creds = Credentials(**{k: str(v) for k, v in data.items()
                           if k in Credentials.__dataclass_fields__ and v is not None})
    if os.environ.get("TD_AUTH_KEY"):
        creds.api_key = os.environ["TD_AUTH_KEY"]
    return creds


def save_credentials(creds: Credentials) -> None:
    _write_json(auth_path(), creds.to_dict(mask=False), mode=0o600)


def clear_credentials() -> bool:
    """Drop the API key but keep the device id."""
    path = auth_path()
    if not os.path.exists(path):
        return False
    creds = load_credentials()
    save_credentials(Credentials(device_id=creds.device_id))
    return True


def device_id() -> str:
    """Stable device id, created on first use."""
    creds = Credentials(**{k: str(v) for k, v in _read_json(auth_path()).items()
                           if k in Credentials.__dataclass_fields__ and v is not None})
    if not creds.device_id:
        creds.device_id = ids.generate_device_id()
        save_credentials(creds)
        logger.info("created device id %s", creds.device_id)
    return creds.device_id


def is_authenticated(creds: Optional[Credentials] = None) -> bool:
    creds = creds or load_credentials()
    return bool(creds.api_key)
