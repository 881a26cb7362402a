"""Undo of the current session's most recent action batches.

Undo never deletes or edits action log rows. It writes the inverse of each
row of a batch as new mutations (which are logged like any other change)
and marks the original rows undone in the same transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import groupby

from td.errors import NotFound
from td.models import ActionLog, ActionType, format_timestamp, now_utc
from td.mutations import Mutation, Mutator
from td.storage.sqlite_store import SOFT_DELETE_KINDS, SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class UndoResult:
    undone: list[ActionLog] = field(default_factory=list)
    written: list[ActionLog] = field(default_factory=list)


def last_batches(store: SQLiteStore, session_id: str, n: int = 1) -> list[list[ActionLog]]:
    """The session's ``n`` most recent not-undone batches, newest first.

    A batch is every action row one operation committed; rows of a batch
    share their timestamp.
    """
    actions = store.get_last_actions(session_id, max(n, 1) * 200)
    batches: list[list[ActionLog]] = []
    for _, rows in groupby(actions, key=lambda a: format_timestamp(a.timestamp)):
        batches.append(list(rows))
        if len(batches) == n:
            break
    return batches


def inverse(action: ActionLog) -> Mutation:
    """The mutation that reverts one action log row."""
    previous = action.previous()
    new = action.new()
    if previous is None:
        if new is not None and action.entity_type in SOFT_DELETE_KINDS:
            table_row = dict(new)
            table_row["deleted_at"] = format_timestamp(now_utc())
            return Mutation(ActionType.DELETE, action.entity_type, action.entity_id,
                            new, table_row)
        return Mutation(ActionType.DELETE, action.entity_type, action.entity_id, new, None)
    if new is None:
        return Mutation(ActionType.RESTORE, action.entity_type, action.entity_id,
                        None, previous)
    if action.action_type in (ActionType.DELETE, ActionType.BOARD_DELETE,
                              ActionType.NOTE_DELETE):
        return Mutation(ActionType.RESTORE, action.entity_type, action.entity_id,
                        new, previous)
    return Mutation(ActionType.UPDATE, action.entity_type, action.entity_id, new, previous)


def undo(store: SQLiteStore, mutator: Mutator, n: int = 1) -> UndoResult:
    """Revert the session's last ``n`` batches."""
    batches = last_batches(store, mutator.session_id, n)
    if not batches:
        raise NotFound(f"no actions to undo in session {mutator.session_id}")
    result = UndoResult()
    for batch in batches:
        # newest row first so cascades unwind before their cause
        rows = sorted(batch, key=lambda a: a.id, reverse=True)
        mutations = [inverse(a) for a in rows]

        def mark(s: SQLiteStore, rows: list[ActionLog] = rows) -> None:
            for a in rows:
                s.mark_undone(a.id)

        result.written.extend(mutator.commit(mutations, after_write=mark))
        result.undone.extend(rows)
        logger.debug("undid batch of %d action(s)", len(rows))
    return result
