"""Applying remote events with per-field last-writer-wins.

Every local write stamps a field clock ``(timestamp, device)`` for each
changed column; local writes use device ``""``, which stands for this
device. A remote value replaces the local one only when its clock is
newer, with ties broken by device id. Rejected remote values are kept as
conflict records.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from td.models import ConflictRecord, now_utc, parse_timestamp
from td.storage.sqlite_store import SQLiteStore
from td.sync import taxonomy
from td.sync.events import EntityFilter, SyncEvent

logger = logging.getLogger(__name__)

# Columns whose losing remote value is not worth a conflict record
UNTRACKED_CONFLICT_FIELDS = {"updated_at"}


@dataclass
class ApplyResult:
    applied: int = 0
    skipped: int = 0
    buffered: int = 0
    conflicts: list[ConflictRecord] = field(default_factory=list)
    failed: list[tuple[int, str]] = field(default_factory=list)
    last_seq: int = 0


def _clock_key(timestamp: Any, device: str) -> tuple:
    ts = parse_timestamp(timestamp) if timestamp else None
    return (ts.timestamp() if ts else 0.0, device)


def _row_clock(row: dict[str, Any]) -> Any:
    for key in ("updated_at", "timestamp", "created_at"):
        if row.get(key):
            return row[key]
    return None


def remote_wins(local_clock: Optional[tuple[str, str]], row: dict[str, Any],
                remote_ts: str, remote_device: str, own_device: str) -> bool:
    """True when a remote write at ``(remote_ts, remote_device)`` beats the local value."""
    if local_clock is not None:
        local_ts, local_device = local_clock
    else:
        local_ts, local_device = _row_clock(row), ""
    if local_ts is None:
        return True
    local = _clock_key(local_ts, local_device or own_device)
    return _clock_key(remote_ts, remote_device) > local


def _normalize(table: str, key: str, value: Any) -> Any:
    if isinstance(value, list):
        if table == "issues" and key == "labels":
            return ",".join(str(v) for v in value)
        return json.dumps(value)
    if isinstance(value, bool):
        return 1 if value else 0
    return value


class Merger:
    """Applies pulled events to one store."""

    def __init__(self, store: SQLiteStore, own_device: str,
                 allow: Optional[EntityFilter] = None) -> None:
        self.store = store
        self.own_device = own_device
        self.allow = allow

    def apply_all(self, events: list[SyncEvent]) -> ApplyResult:
        result = ApplyResult()
        for event in sorted(events, key=lambda e: e.server_seq):
            self.apply(event, result)
            result.last_seq = max(result.last_seq, event.server_seq)
        return result

    def apply(self, event: SyncEvent, result: ApplyResult) -> None:
        table = taxonomy.normalize_entity_type(event.entity_type)
        if table is None:
            result.failed.append((event.server_seq, f"unknown entity type: {event.entity_type}"))
            logger.warning("sync: unknown entity type %r at seq %d",
                           event.entity_type, event.server_seq)
            return
        if self.allow is not None and not self.allow(table):
            result.skipped += 1
            return
        if not event.entity_id:
            result.failed.append((event.server_seq, "empty entity id"))
            return
        if event.device_id and self.store.is_event_applied(event.device_id,
                                                           event.client_action_id):
            result.skipped += 1
            return

        action = event.action_type
        if action in (taxonomy.CREATE, taxonomy.UPDATE):
            outcome = self._upsert(table, event, result)
        elif action == taxonomy.DELETE:
            outcome = self._delete(table, event)
        elif action == taxonomy.SOFT_DELETE:
            outcome = self._soft_delete(table, event)
        elif action == taxonomy.RESTORE:
            outcome = self._restore(table, event)
        else:
            result.failed.append((event.server_seq, f"unknown action type: {action}"))
            return

        if outcome == "buffered":
            result.buffered += 1
            return
        if event.device_id:
            self.store.mark_event_applied(event.device_id, event.client_action_id,
                                          event.server_seq)
        if outcome == "skipped":
            result.skipped += 1
        else:
            result.applied += 1

    # --- Actions ---

    def _upsert(self, table: str, event: SyncEvent, result: ApplyResult) -> str:
        new = event.new_data
        if new is None:
            result.failed.append((event.server_seq, "create/update without new_data"))
            return "skipped"
        existing = self.store.get_row(table, event.entity_id)
        if existing is None:
            if event.action_type == taxonomy.UPDATE:
                self.store.add_pending_event(event.server_seq, table, event.entity_id,
                                             _event_dict(event))
                logger.debug("sync: buffered update for missing %s %s", table, event.entity_id)
                return "buffered"
            if table == "issue_dependencies" and self._would_cycle(new, event, result):
                return "skipped"
            self._insert(table, event, new)
            for pending in self.store.take_pending_events(table, event.entity_id):
                self.apply(_event_from_dict(pending), result)
            return "applied"
        self._merge_fields(table, event, existing, new, result)
        return "applied"

    def _would_cycle(self, new: dict[str, Any], event: SyncEvent, result: ApplyResult) -> bool:
        issue_id = new.get("issue_id") or ""
        depends_on = new.get("depends_on_id") or ""
        if not issue_id or not depends_on:
            return False
        if not self.store.would_create_dependency_cycle(issue_id, depends_on):
            return False
        logger.warning("sync: skipped dependency %s -> %s (cycle) at seq %d",
                       issue_id, depends_on, event.server_seq)
        result.conflicts.append(ConflictRecord(
            entity_type="issue_dependencies", entity_id=event.entity_id, field="depends_on_id",
            local_value=None, remote_value=new, server_seq=event.server_seq,
            resolved_at=now_utc(),
        ))
        return True

    def _insert(self, table: str, event: SyncEvent, new: dict[str, Any]) -> None:
        columns = set(self.store.columns(table))
        row = {k: _normalize(table, k, v) for k, v in new.items() if k in columns}
        row["id"] = event.entity_id
        self.store.put_row(table, row)
        ts = event.timestamp()
        for key in row:
            if key != "id":
                self.store.set_field_clock(table, event.entity_id, key, ts, event.device_id)

    def _changed_fields(self, event: SyncEvent, new: dict[str, Any]) -> dict[str, Any]:
        previous = event.previous_data
        if event.action_type == taxonomy.UPDATE and previous is not None:
            return {k: v for k, v in new.items()
                    if k != "id" and (k not in previous or previous[k] != v)}
        # no diff base: a missing or null field is not a request to clear it
        return {k: v for k, v in new.items() if k != "id" and v is not None}

    def _merge_fields(self, table: str, event: SyncEvent, existing: dict[str, Any],
                      new: dict[str, Any], result: ApplyResult) -> None:
        columns = set(self.store.columns(table))
        clocks = self.store.get_field_clocks(table, event.entity_id)
        ts = event.timestamp()
        merged = dict(existing)
        accepted: list[str] = []
        for key, value in self._changed_fields(event, new).items():
            if key not in columns:
                continue
            value = _normalize(table, key, value)
            if existing.get(key) == value:
                continue
            if remote_wins(clocks.get(key), existing, ts, event.device_id, self.own_device):
                merged[key] = value
                accepted.append(key)
            elif key not in UNTRACKED_CONFLICT_FIELDS:
                result.conflicts.append(ConflictRecord(
                    entity_type=table, entity_id=event.entity_id, field=key,
                    local_value=existing.get(key), remote_value=value,
                    server_seq=event.server_seq, resolved_at=now_utc(),
                ))
        if not accepted:
            return
        self.store.put_row(table, merged)
        for key in accepted:
            self.store.set_field_clock(table, event.entity_id, key, ts, event.device_id)

    def _delete(self, table: str, event: SyncEvent) -> str:
        self.store.take_pending_events(table, event.entity_id)
        if self.store.get_row(table, event.entity_id) is None:
            return "skipped"
        if table == "boards":
            self.store.soft_delete_board_positions(event.entity_id, event.timestamp())
        self.store.delete_row(table, event.entity_id)
        return "applied"

    def _soft_delete(self, table: str, event: SyncEvent) -> str:
        self.store.take_pending_events(table, event.entity_id)
        existing = self.store.get_row(table, event.entity_id)
        if existing is None:
            return "skipped"
        if "deleted_at" not in self.store.columns(table):
            self.store.delete_row(table, event.entity_id)
            return "applied"
        ts = event.timestamp()
        clocks = self.store.get_field_clocks(table, event.entity_id)
        if not remote_wins(clocks.get("deleted_at"), existing, ts, event.device_id,
                           self.own_device):
            return "skipped"
        new = event.new_data or {}
        row = dict(existing)
        row["deleted_at"] = new.get("deleted_at") or ts
        if "updated_at" in row:
            row["updated_at"] = new.get("updated_at") or ts
        self.store.put_row(table, row)
        self.store.set_field_clock(table, event.entity_id, "deleted_at", ts, event.device_id)
        if table == "boards":
            self.store.soft_delete_board_positions(event.entity_id, row["deleted_at"])
        return "applied"

    def _restore(self, table: str, event: SyncEvent) -> str:
        existing = self.store.get_row(table, event.entity_id)
        ts = event.timestamp()
        if existing is None:
            new = event.new_data
            if new is None:
                return "skipped"
            self._insert(table, event, new)
            return "applied"
        if "deleted_at" not in self.store.columns(table):
            return "skipped"
        row = dict(existing)
        row["deleted_at"] = None
        if "updated_at" in row:
            row["updated_at"] = ts
        self.store.put_row(table, row)
        self.store.set_field_clock(table, event.entity_id, "deleted_at", ts, event.device_id)
        return "applied"


def _event_dict(event: SyncEvent) -> dict[str, Any]:
    d = event.to_wire()
    d.update(device_id=event.device_id, session_id=event.session_id,
             server_seq=event.server_seq)
    return d


def _event_from_dict(d: dict[str, Any]) -> SyncEvent:
    return SyncEvent.from_wire(d)
