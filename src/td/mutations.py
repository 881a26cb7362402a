"""Mutation layer: the single write path for entity changes.

A ``Mutation`` names one entity change with its full before and after row.
``Mutator.commit`` writes a batch of them together with their action log
rows in one transaction and, once committed, hands the new action log rows
to every subscribed listener (autosync, webhook buffer).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from td.errors import DatabaseError, InvalidInput
from td.models import ActionLog, format_timestamp, now_utc
from td.storage.sqlite_store import ENTITY_TABLES, SQLiteStore

logger = logging.getLogger(__name__)

Listener = Callable[[list[ActionLog]], None]


@dataclass
class Mutation:
    """One entity change.

    ``previous`` is None for a create; ``new`` is None for a hard delete.
    Soft deletes carry the full row with ``deleted_at`` set.
    """
    action_type: str
    entity_type: str
    entity_id: str
    previous: Optional[dict[str, Any]] = None
    new: Optional[dict[str, Any]] = None

    @property
    def table(self) -> str:
        try:
            return ENTITY_TABLES[self.entity_type]
        except KeyError:
            raise InvalidInput(f"unknown entity type: {self.entity_type}") from None

    def changed_fields(self) -> list[str]:
        if self.new is None:
            return []
        if self.previous is None:
            return [k for k in self.new if k != "id"]
        return [k for k, v in self.new.items()
                if k != "id" and self.previous.get(k) != v]


class Mutator:
    """Applies mutations for one session."""

    def __init__(self, store: SQLiteStore, session_id: str) -> None:
        self.store = store
        self.session_id = session_id
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def commit(self, mutations: list[Mutation],
               after_write: Callable[[SQLiteStore], None] | None = None,
               timestamp: datetime | None = None) -> list[ActionLog]:
        """Write entity rows and action log rows atomically.

        ``after_write`` runs inside the same transaction, after the entity
        writes, for bookkeeping rows that are not themselves logged.
        """
        if not mutations:
            return []
        ts = timestamp or now_utc()
        actions: list[ActionLog] = []
        with self.store.transaction():
            for m in mutations:
                self._apply(m, ts)
                action = ActionLog(
                    session_id=self.session_id,
                    action_type=m.action_type,
                    entity_type=m.entity_type,
                    entity_id=m.entity_id,
                    previous_data=_encode(m.previous),
                    new_data=_encode(m.new),
                    timestamp=ts,
                )
                self.store.insert_action(action)
                actions.append(action)
            if after_write is not None:
                after_write(self.store)
        logger.debug("committed %d mutation(s) for session %s",
                     len(actions), self.session_id)
        self._emit(actions)
        return actions

    def commit_one(self, mutation: Mutation,
                   after_write: Callable[[SQLiteStore], None] | None = None) -> ActionLog:
        return self.commit([mutation], after_write)[0]

    def _apply(self, m: Mutation, ts: datetime) -> None:
        table = m.table
        if m.new is None:
            self.store.delete_row(table, m.entity_id)
        else:
            if m.new.get("id") != m.entity_id:
                raise DatabaseError(
                    f"mutation id mismatch: {m.entity_id} vs {m.new.get('id')}")
            self.store.put_row(table, m.new)
        stamp = format_timestamp(ts)
        for f in m.changed_fields():
            self.store.set_field_clock(table, m.entity_id, f, stamp, "")

    def _emit(self, actions: list[ActionLog]) -> None:
        for listener in self._listeners:
            try:
                listener(actions)
            except Exception as e:
                logger.warning("change listener failed: %s", e)


def _encode(data: dict[str, Any] | None) -> str:
    if data is None:
        return ""
    return json.dumps(data, sort_keys=True, default=str)
