"""Sync rounds: bootstrap, push and pull for one linked project."""

from __future__ import annotations

import logging
import os
import shutil
import sqlite3
import tempfile
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

import httpx

from td import features, syncconfig
from td.errors import DatabaseError, InvalidInput, SyncAPIError, TDError, Unauthorized
from td.models import SyncHistoryEntry, now_utc
from td.storage.migrations import get_schema_version
from td.storage.schema import SCHEMA_VERSION
from td.storage.sqlite_store import SQLiteStore, close_store, open_store
from td.sync import backfill, taxonomy
from td.sync.client import SQLITE_HEADER, SyncClient
from td.sync.events import EntityFilter, count_pending, pending_events, settle_local_only
from td.sync.merge import Merger

logger = logging.getLogger(__name__)

PUSH_BATCH = 500
PULL_LIMIT = 1000
HISTORY_MAX_ROWS = 1000
CONFLICT_MAX_AGE = timedelta(days=30)
CONFLICT_MAX_ROWS = 1000
BACKUP_SUFFIX = ".pre-snapshot-backup"


@dataclass
class PushResult:
    pushed: int = 0
    acked: int = 0
    rejected: list[dict[str, Any]] = field(default_factory=list)
    backfilled: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"pushed": self.pushed, "acked": self.acked,
                "rejected": self.rejected, "backfilled": self.backfilled}


@dataclass
class PullResult:
    received: int = 0
    applied: int = 0
    skipped: int = 0
    buffered: int = 0
    conflicts: int = 0
    failed: list[tuple[int, str]] = field(default_factory=list)
    last_server_seq: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"received": self.received, "applied": self.applied, "skipped": self.skipped,
                "buffered": self.buffered, "conflicts": self.conflicts,
                "failed": [{"server_seq": s, "reason": r} for s, r in self.failed],
                "last_server_seq": self.last_server_seq}


@dataclass
class BootstrapResult:
    bootstrapped: bool = False
    server_seq: int = 0
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"bootstrapped": self.bootstrapped, "server_seq": self.server_seq,
                "reason": self.reason}


def notes_filter(sync_notes: bool) -> Optional[EntityFilter]:
    """Entity filter that drops notes unless note sync is enabled."""
    if sync_notes:
        return None
    return lambda entity_type: taxonomy.normalize_entity_type(entity_type) != taxonomy.NOTES


class SyncEngine:
    """Runs sync rounds against one server for one store."""

    def __init__(self, store: SQLiteStore, client: SyncClient, device_id: str,
                 session_id: str, project_id: str,
                 allow: Optional[EntityFilter] = None,
                 snapshot_threshold: int = 100) -> None:
        self.store = store
        self.client = client
        self.device_id = device_id
        self.session_id = session_id
        self.project_id = project_id
        self.allow = allow
        self.snapshot_threshold = snapshot_threshold

    def _cursor(self) -> int:
        state = self.store.get_sync_state() or {}
        return int(state.get("last_pulled_server_seq") or 0)

    # --- Push ---

    def push(self) -> PushResult:
        result = PushResult()
        if self._cursor() == 0:
            result.backfilled = backfill.backfill(self.store, self.session_id)
        settle_local_only(self.store)
        events = pending_events(self.store, self.device_id, self.allow)
        last_acked = 0
        for start in range(0, len(events), PUSH_BATCH):
            batch = events[start:start + PUSH_BATCH]
            resp = self.client.push(self.project_id, self.session_id, batch)
            result.pushed += len(batch)
            by_id = {e.client_action_id: e for e in batch}
            acks = list(resp.acks)
            for rej in resp.rejected:
                # already stored by the server on an earlier, unacknowledged push
                if rej.get("reason") == "duplicate" and rej.get("server_seq"):
                    acks.append((int(rej["client_action_id"]), int(rej["server_seq"])))
                else:
                    result.rejected.append(rej)
                    logger.warning("sync: push rejected action %s: %s",
                                   rej.get("client_action_id"), rej.get("reason"))
            history = []
            with self.store.transaction():
                for action_id, seq in acks:
                    self.store.mark_action_synced(action_id, seq)
                    last_acked = max(last_acked, action_id)
                    event = by_id.get(action_id)
                    if event is not None:
                        history.append(SyncHistoryEntry(
                            direction="push", action_type=event.action_type,
                            entity_type=event.entity_type, entity_id=event.entity_id,
                            server_seq=seq, device_id=self.device_id, timestamp=now_utc(),
                        ))
                self.store.add_sync_history(history)
                if last_acked:
                    self.store.update_sync_pushed(last_acked)
            result.acked += len(acks)
        if events:
            logger.info("sync: pushed %d event(s), %d acknowledged", result.pushed, result.acked)
        return result

    # --- Pull ---

    def pull(self) -> PullResult:
        result = PullResult(last_server_seq=self._cursor())
        merger = Merger(self.store, self.device_id, self.allow)
        while True:
            page = self.client.pull(self.project_id, result.last_server_seq,
                                    limit=PULL_LIMIT, exclude_client=self.device_id)
            result.received += len(page.events)
            with self.store.transaction():
                applied = merger.apply_all(page.events)
                for conflict in applied.conflicts:
                    self.store.add_conflict(conflict)
                self.store.add_sync_history([
                    SyncHistoryEntry(
                        direction="pull", action_type=e.action_type,
                        entity_type=e.entity_type, entity_id=e.entity_id,
                        server_seq=e.server_seq, device_id=e.device_id, timestamp=now_utc(),
                    )
                    for e in page.events
                ])
                seq = max(page.last_server_seq, applied.last_seq, result.last_server_seq)
                if seq > result.last_server_seq:
                    self.store.update_sync_pulled(seq)
                    result.last_server_seq = seq
            result.applied += applied.applied
            result.skipped += applied.skipped
            result.buffered += applied.buffered
            result.conflicts += len(applied.conflicts)
            result.failed.extend(applied.failed)
            if not page.has_more or not page.events:
                break
        with self.store.transaction():
            self.store.prune_conflicts(CONFLICT_MAX_AGE, CONFLICT_MAX_ROWS)
            self.store.prune_sync_history(HISTORY_MAX_ROWS)
        if result.received:
            logger.info("sync: pulled %d event(s), applied %d, %d conflict(s)",
                        result.received, result.applied, result.conflicts)
        return result

    # --- Bootstrap ---

    def bootstrap(self) -> BootstrapResult:
        """Replace the local database with a server snapshot when far behind.

        On success ``self.store`` is the freshly opened replacement store.
        """
        if count_pending(self.store):
            return BootstrapResult(reason="local changes pending")
        cursor = self._cursor()
        status = self.client.status(self.project_id)
        server_seq = int(status.get("last_server_seq") or 0)
        if server_seq - cursor < self.snapshot_threshold:
            return BootstrapResult(reason="within threshold")
        snap = self.client.snapshot(self.project_id)
        if snap is None:
            return BootstrapResult(reason="no snapshot available")
        if not snap.data.startswith(SQLITE_HEADER):
            raise SyncAPIError(200, "snapshot is not a SQLite database")

        db_path = self.store.path()
        directory = os.path.dirname(db_path)
        fd, tmp = tempfile.mkstemp(prefix=".snapshot-", suffix=".db", dir=directory)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(snap.data)
            version = _snapshot_schema_version(tmp)
            if version > SCHEMA_VERSION:
                raise DatabaseError(
                    f"snapshot schema version {version} is newer than supported "
                    f"({SCHEMA_VERSION})")
            close_store(db_path)
            _backup(db_path)
            for suffix in ("-wal", "-shm"):
                if os.path.exists(db_path + suffix):
                    os.remove(db_path + suffix)
            os.replace(tmp, db_path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        self.store = open_store(db_path)
        self.store.set_sync_project(self.project_id)
        self.store.update_sync_pulled(snap.seq)
        logger.info("sync: bootstrapped from snapshot at seq %d", snap.seq)
        return BootstrapResult(bootstrapped=True, server_seq=snap.seq)

    # --- Full round ---

    def sync(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        try:
            out["bootstrap"] = self.bootstrap().to_dict()
        except TDError as e:
            logger.warning("sync: bootstrap failed, continuing with incremental pull: %s", e)
            out["bootstrap"] = BootstrapResult(reason=str(e)).to_dict()
        out["push"] = self.push().to_dict()
        out["pull"] = self.pull().to_dict()
        return out


def _snapshot_schema_version(path: str) -> int:
    try:
        conn = sqlite3.connect(path)
    except sqlite3.Error as e:
        raise DatabaseError(f"open snapshot: {e}") from e
    try:
        return get_schema_version(conn)
    except sqlite3.Error as e:
        raise DatabaseError(f"read snapshot schema version: {e}") from e
    finally:
        conn.close()


def _backup(db_path: str) -> None:
    if not os.path.exists(db_path):
        return
    shutil.copyfile(db_path, db_path + BACKUP_SUFFIX)


def connect(store: SQLiteStore, root: str, session_id: str,
            transport: Optional[httpx.BaseTransport] = None) -> SyncEngine:
    """Engine for the project linked in ``store``, using the saved credentials."""
    cfg = syncconfig.load_sync_config()
    creds = syncconfig.load_credentials()
    if not creds.api_key:
        raise Unauthorized("not logged in. Run 'td auth login' first")
    state = store.get_sync_state() or {}
    project_id = state.get("project_id") or ""
    if not project_id:
        raise InvalidInput("project is not linked. Run 'td sync link <project>' first")
    url = os.environ.get("TD_SYNC_URL") or creds.server_url or cfg.url
    client = SyncClient(url, creds.api_key, syncconfig.device_id(), transport=transport)
    allow = notes_filter(features.is_enabled(root, features.SYNC_NOTES.name))
    return SyncEngine(store, client, client.device_id, session_id, project_id,
                      allow=allow, snapshot_threshold=cfg.snapshot_threshold)
