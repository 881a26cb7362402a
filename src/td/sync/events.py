"""Sync events: the wire form of action-log rows."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from td.models import ActionLog, format_timestamp, now_utc, parse_timestamp
from td.storage.sqlite_store import SQLiteStore
from td.sync import taxonomy

logger = logging.getLogger(__name__)

PAYLOAD_SCHEMA_VERSION = 1

EntityFilter = Callable[[str], bool]


@dataclass
class SyncEvent:
    client_action_id: int
    action_type: str
    entity_type: str
    entity_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    client_timestamp: str = ""
    device_id: str = ""
    session_id: str = ""
    server_seq: int = 0

    @property
    def new_data(self) -> Optional[dict[str, Any]]:
        data = self.payload.get("new_data")
        return data if isinstance(data, dict) and data else None

    @property
    def previous_data(self) -> Optional[dict[str, Any]]:
        data = self.payload.get("previous_data")
        return data if isinstance(data, dict) and data else None

    def timestamp(self) -> str:
        """Client timestamp in the store's fixed-width format."""
        return format_timestamp(parse_timestamp(self.client_timestamp) or now_utc()) or ""

    def to_wire(self) -> dict[str, Any]:
        return {
            "client_action_id": self.client_action_id,
            "action_type": self.action_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "payload": self.payload,
            "client_timestamp": self.client_timestamp,
        }

    @classmethod
    def from_wire(cls, d: dict[str, Any]) -> SyncEvent:
        payload = d.get("payload") or {}
        if not isinstance(payload, dict):
            payload = {}
        return cls(
            client_action_id=int(d.get("client_action_id") or 0),
            action_type=d.get("action_type") or "",
            entity_type=d.get("entity_type") or "",
            entity_id=d.get("entity_id") or "",
            payload=payload,
            client_timestamp=d.get("client_timestamp") or "",
            device_id=d.get("device_id") or "",
            session_id=d.get("session_id") or "",
            server_seq=int(d.get("server_seq") or 0),
        )


def from_action(action: ActionLog, device_id: str) -> Optional[SyncEvent]:
    """Wire event for one action-log row; None when its entity is not synced."""
    wire_type = taxonomy.normalize_entity_type(action.entity_type)
    if wire_type is None:
        return None
    previous = action.previous()
    new = action.new()
    return SyncEvent(
        client_action_id=action.id,
        action_type=taxonomy.wire_action(previous, new),
        entity_type=wire_type,
        entity_id=action.entity_id,
        payload={
            "schema_version": PAYLOAD_SCHEMA_VERSION,
            "new_data": new or {},
            "previous_data": previous or {},
        },
        client_timestamp=format_timestamp(action.timestamp) or "",
        device_id=device_id,
        session_id=action.session_id,
    )


def is_local_only(action: ActionLog) -> bool:
    """Undone rows and rows for entities that never leave this device."""
    return action.undone or taxonomy.normalize_entity_type(action.entity_type) is None


def count_pending(store: SQLiteStore) -> int:
    """Unsynced rows that still need a push, feature-gated ones included."""
    return len([a for a in store.get_unsynced_actions() if not is_local_only(a)])


def settle_local_only(store: SQLiteStore) -> int:
    """Mark unsynced local-only rows synced (server_seq 0) so they stop counting as pending."""
    ids = [a.id for a in store.get_unsynced_actions() if is_local_only(a)]
    if ids:
        with store.transaction():
            for action_id in ids:
                store.mark_action_synced(action_id, 0)
        logger.debug("sync: settled %d local-only action(s)", len(ids))
    return len(ids)


def pending_events(store: SQLiteStore, device_id: str,
                   allow: Optional[EntityFilter] = None) -> list[SyncEvent]:
    """Unsynced action-log rows with a wire form, as events in action order."""
    events: list[SyncEvent] = []
    for action in store.get_unsynced_actions():
        if is_local_only(action):
            continue
        event = from_action(action, device_id)
        if event is None:
            continue
        if allow is not None and not allow(event.entity_type):
            logger.debug("sync: skipping feature-gated %s %s",
                         event.entity_type, event.entity_id)
            continue
        events.append(event)
    return events
