"""Synthetic create actions for rows that predate the action log.

Databases created before every write went through the mutation layer
hold issues and relation rows that never produced an action-log entry,
so a first push would leave them out. Before the first pull, each such
row gets a create action so it is pushed like any other write.
"""

from __future__ import annotations

import json
import logging

from td.models import ActionLog, ActionType, EntityKind, now_utc, parse_timestamp
from td.storage.sqlite_store import ENTITY_TABLES, SQLiteStore

logger = logging.getLogger(__name__)

# entity kind -> action types that count as its creation
CREATE_ACTIONS: dict[str, tuple[str, ...]] = {
    EntityKind.ISSUE: (ActionType.CREATE,),
    EntityKind.DEPENDENCY: (ActionType.ADD_DEPENDENCY,),
    EntityKind.FILE_LINK: (ActionType.LINK_FILE,),
    EntityKind.BOARD_POSITION: (ActionType.BOARD_SET_POSITION,),
}


def backfill(store: SQLiteStore, session_id: str) -> int:
    """Log a create for every live row without one. Returns the number added."""
    added = 0
    with store.transaction():
        for kind, action_types in CREATE_ACTIONS.items():
            table = ENTITY_TABLES[kind]
            for row in store.all_rows(table):
                if kind == EntityKind.BOARD_POSITION and _on_builtin_board(store, row):
                    continue
                if store.has_logged_action(kind, row["id"], action_types):
                    continue
                store.insert_action(ActionLog(
                    session_id=session_id,
                    action_type=action_types[0],
                    entity_type=kind,
                    entity_id=row["id"],
                    previous_data="",
                    new_data=json.dumps(row, sort_keys=True, default=str),
                    timestamp=parse_timestamp(row.get("created_at")) or now_utc(),
                ))
                added += 1
    if added:
        logger.info("sync: backfilled %d create action(s)", added)
    return added


def _on_builtin_board(store: SQLiteStore, row: dict) -> bool:
    board = store.get_board(row.get("board_id") or "")
    return board is not None and board.is_builtin
