"""Boards: named TDQ queries with optional manual ordering.

Positions are sparse integer sort keys. Moving an issue to a visual slot
picks a key halfway between its neighbours; when two neighbours have no
room left between them, every positioned issue on the board is re-spaced
in the same batch.
"""

from __future__ import annotations

import logging
from typing import Optional

from td import ids
from td.errors import Conflict, InvalidInput, NotFound
from td.models import (
    ActionType, Board, BoardIssueView, BoardPosition, EntityKind, Issue, now_utc,
)
from td.mutations import Mutation, Mutator
from td.query import ExecuteOptions, execute, parse_query
from td.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

POSITION_GAP = 65536


def _board_mutation(action_type: str, before: Board | None, after: Board) -> Mutation:
    return Mutation(action_type, EntityKind.BOARD, after.id,
                    before.to_row() if before else None, after.to_row())


class BoardOperations:
    """Logged board changes for one session."""

    def __init__(self, store: SQLiteStore, mutator: Mutator) -> None:
        self.store = store
        self.mutator = mutator

    def _validate_query(self, query: str) -> str:
        query = query.strip()
        if query:
            parse_query(query)
        return query

    def _check_name(self, name: str, board_id: str = "") -> str:
        name = name.strip()
        if not name:
            raise InvalidInput("board name is required")
        existing = self.store.get_board_by_name(name)
        if existing is not None and existing.id != board_id:
            raise Conflict(f"board already exists: {name}")
        return name

    def create(self, name: str, query: str = "") -> Board:
        name = self._check_name(name)
        query = self._validate_query(query)
        ts = now_utc()
        board = Board(id=ids.generate_board_id(), name=name, query=query,
                      created_at=ts, updated_at=ts)
        self.mutator.commit([_board_mutation(ActionType.BOARD_CREATE, None, board)],
                            timestamp=ts)
        logger.debug("created board %s (%s)", board.id, name)
        return board

    def update(self, ref: str, name: Optional[str] = None,
               query: Optional[str] = None) -> Board:
        board = self.store.resolve_board(ref)
        if board.is_builtin:
            raise InvalidInput(f"cannot edit built-in board: {board.name}")
        after = Board.from_row(board.to_row())
        if name is not None:
            after.name = self._check_name(name, board.id)
        if query is not None:
            after.query = self._validate_query(query)
        if after.to_row() == board.to_row():
            return board
        ts = now_utc()
        after.updated_at = ts
        self.mutator.commit([_board_mutation(ActionType.BOARD_UPDATE, board, after)],
                            timestamp=ts)
        return after

    def delete(self, ref: str) -> Board:
        """Soft-delete a board and its positions in one batch."""
        board = self.store.resolve_board(ref)
        if board.is_builtin:
            raise InvalidInput(f"cannot delete built-in board: {board.name}")
        ts = now_utc()
        after = Board.from_row(board.to_row())
        after.deleted_at = ts
        mutations = [_board_mutation(ActionType.BOARD_DELETE, board, after)]
        for pos in self.store.get_board_positions(board.id):
            gone = BoardPosition.from_row(pos.to_row())
            gone.deleted_at = ts
            mutations.append(Mutation(ActionType.BOARD_UNPOSITION, EntityKind.BOARD_POSITION,
                                      pos.id, pos.to_row(), gone.to_row()))
        self.mutator.commit(mutations, timestamp=ts)
        return after

    # --- Positions ---

    def set_position(self, ref: str, issue_id: str, slot: int) -> BoardPosition:
        """Place an issue at a 1-based visual slot among positioned issues."""
        if slot < 1:
            raise InvalidInput("position must be a positive integer")
        board = self.store.resolve_board(ref)
        issue = self.store.get_issue(issue_id)
        if issue is None:
            raise NotFound(f"issue not found: {issue_id}")

        ts = now_utc()
        others = [p for p in self.store.get_board_positions(board.id)
                  if p.issue_id != issue.id]
        mutations: list[Mutation] = []
        key = insert_key([p.position for p in others], slot)
        if key is None:
            for i, pos in enumerate(others, start=1):
                moved = BoardPosition.from_row(pos.to_row())
                moved.position = i * POSITION_GAP
                if moved.position != pos.position:
                    mutations.append(Mutation(ActionType.BOARD_SET_POSITION,
                                              EntityKind.BOARD_POSITION, pos.id,
                                              pos.to_row(), moved.to_row()))
                    pos.position = moved.position
            key = insert_key([p.position for p in others], slot)
            logger.debug("re-spaced %d position(s) on board %s", len(mutations), board.id)
        assert key is not None

        existing = self.store.get_board_position(board.id, issue.id)
        position = BoardPosition(id=ids.board_position_id(board.id, issue.id),
                                 board_id=board.id, issue_id=issue.id,
                                 position=key, added_at=ts)
        mutations.append(Mutation(ActionType.BOARD_SET_POSITION, EntityKind.BOARD_POSITION,
                                  position.id, existing.to_row() if existing else None,
                                  position.to_row()))
        self.mutator.commit(mutations, timestamp=ts)
        return position

    def unposition(self, ref: str, issue_id: str) -> BoardPosition:
        board = self.store.resolve_board(ref)
        pos = self.store.get_board_position(board.id, issue_id)
        if pos is None or pos.deleted_at is not None:
            raise NotFound(f"issue {issue_id} is not positioned on {board.name}")
        gone = BoardPosition.from_row(pos.to_row())
        gone.deleted_at = now_utc()
        self.mutator.commit([Mutation(ActionType.BOARD_UNPOSITION, EntityKind.BOARD_POSITION,
                                      pos.id, pos.to_row(), gone.to_row())],
                            timestamp=gone.deleted_at)
        return gone

    # --- Reading ---

    def show(self, ref: str, session_id: str = "",
             statuses: Optional[list[str]] = None) -> tuple[Board, list[BoardIssueView]]:
        board = self.store.resolve_board(ref)
        issues = execute(self.store, board.query, session_id,
                         ExecuteOptions(sort_by="priority"))
        if statuses:
            issues = [i for i in issues if i.status in statuses]
        return board, apply_positions(board.id, issues,
                                      self.store.get_board_positions(board.id))


def insert_key(keys: list[int], slot: int) -> Optional[int]:
    """Sort key for a new entry at 1-based ``slot`` within sorted ``keys``.

    Returns None when the neighbours leave no integer gap.
    """
    keys = sorted(keys)
    index = min(slot, len(keys) + 1) - 1
    lower = keys[index - 1] if index > 0 else 0
    if index >= len(keys):
        return lower + POSITION_GAP
    upper = keys[index]
    if upper - lower < 2:
        return None
    return lower + (upper - lower) // 2


def apply_positions(board_id: str, issues: list[Issue],
                    positions: list[BoardPosition]) -> list[BoardIssueView]:
    """Positioned issues first by position, then the rest in query order."""
    by_issue = {p.issue_id: p.position for p in positions if p.deleted_at is None}
    positioned: list[BoardIssueView] = []
    rest: list[BoardIssueView] = []
    for issue in issues:
        if issue.id in by_issue:
            positioned.append(BoardIssueView(board_id, issue, by_issue[issue.id], True))
        else:
            rest.append(BoardIssueView(board_id, issue))
    positioned.sort(key=lambda v: v.position)
    return positioned + rest
