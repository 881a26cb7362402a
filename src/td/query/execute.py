"""Run TDQ queries against a store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from td.errors import ExecutionError
from td.models import Issue, IssueFilter, IssueType, Status, format_timestamp, now_utc
from td.query import ast
from td.query.evaluator import EvalContext, Row, compile_query
from td.query.parser import parse
from td.query.registry import split_field
from td.query.validator import validate
from td.storage.sqlite_store import MAX_DESCENDANT_DEPTH, SQLiteStore, order_clause

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 10000


@dataclass
class ExecuteOptions:
    limit: int = 0
    sort_by: str = "priority"
    sort_desc: bool = False
    include_deleted: bool = False
    max_results: int = DEFAULT_MAX_RESULTS


def parse_query(text: str) -> ast.Query:
    """Parse and validate; raises ParseError or ValidationError."""
    return validate(parse(text))


def execute(store: SQLiteStore, text: str, session_id: str = "",
            options: Optional[ExecuteOptions] = None,
            now: Optional[datetime] = None) -> list[Issue]:
    """Parse, validate and run a query, returning matching issues in order.

    Exact queries run entirely in SQL. Anything else fetches at most
    ``max_results`` rows using the SQL half as a prefilter, then applies the
    matcher in memory. The query's own sort clause overrides the options.
    """
    options = options or ExecuteOptions()
    query = parse_query(text)
    ctx = EvalContext(session_id=session_id, now=now or now_utc())
    ctx.resolver = StoreResolver(store, ctx.now)
    compiled = compile_query(query, ctx)

    sort_by, sort_desc = options.sort_by, options.sort_desc
    if query.sort is not None:
        sort_by, sort_desc = query.sort.field, query.sort.descending
    order = order_clause(sort_by, sort_desc)

    if compiled.exact:
        return store.query_issues(compiled.sql or "", compiled.params, order,
                                  limit=options.limit,
                                  include_deleted=options.include_deleted)

    cap = options.max_results if options.max_results > 0 else DEFAULT_MAX_RESULTS
    candidates = store.query_issues(compiled.sql or "", compiled.params, order,
                                    limit=cap, include_deleted=options.include_deleted)
    if len(candidates) >= cap:
        logger.warning("query fetched the %d row cap; results may be incomplete", cap)
    results: list[Issue] = []
    for issue in candidates:
        if compiled.match(issue.to_row()):
            results.append(issue)
            if options.limit and len(results) >= options.limit:
                break
    return results


def quick_search(store: SQLiteStore, text: str, limit: int = 0) -> list[Issue]:
    """Plain text search over id, title and description."""
    return store.list_issues(IssueFilter(search=text, limit=limit))


# --- Cross-entity matching ---

def match_value(field_value: str, op: str, value: Any) -> bool:
    """Compare one related-record value; equality is case-insensitive."""
    if isinstance(value, ast.SpecialValue):
        empty = field_value == ""
        return empty if op == ast.OP_EQ else (not empty if op == ast.OP_NEQ else False)
    if isinstance(value, tuple):
        hit = any(match_value(field_value, ast.OP_EQ, v) for v in value)
        return hit if op == ast.OP_EQ else (not hit if op == ast.OP_NEQ else False)

    text = "" if value is None else str(value)
    lowered, target = field_value.lower(), text.lower()
    if op == ast.OP_EQ:
        return lowered == target or (_is_date_prefix(text) and field_value.startswith(text))
    if op == ast.OP_NEQ:
        return not (lowered == target or (_is_date_prefix(text) and field_value.startswith(text)))
    if op == ast.OP_CONTAINS:
        return target in lowered
    if op == ast.OP_NOT_CONTAINS:
        return target not in lowered
    if not field_value:
        return False
    if op == ast.OP_LT:
        return field_value < text
    if op == ast.OP_GT:
        return field_value > text
    if op == ast.OP_LTE:
        return field_value <= text
    if op == ast.OP_GTE:
        return field_value >= text
    return False


def _is_date_prefix(text: str) -> bool:
    return len(text) >= 10 and text[4:5] == "-" and text[7:8] == "-"


class StoreResolver:
    """Answers cross-entity conditions with store lookups, cached per query."""

    def __init__(self, store: SQLiteStore, now: datetime) -> None:
        self.store = store
        self.now = now
        self._rework: Optional[set[str]] = None
        self._open_deps: Optional[set[str]] = None
        self._parents: dict[str, Optional[Issue]] = {}

    # --- Prefetched sets ---

    def rework_ids(self) -> set[str]:
        if self._rework is None:
            self._rework = self.store.get_rejected_in_progress_ids()
        return self._rework

    def open_dep_ids(self) -> set[str]:
        if self._open_deps is None:
            self._open_deps = self.store.get_issue_ids_with_open_deps()
        return self._open_deps

    def _issue(self, issue_id: str) -> Optional[Issue]:
        if issue_id not in self._parents:
            self._parents[issue_id] = self.store.get_issue(issue_id)
        return self._parents[issue_id]

    # --- Fields ---

    def match_field(self, row: Row, field: str, op: str, value: Any) -> bool:
        base, sub = split_field(field)
        issue_id = row["id"]

        if base == "log":
            attrs = {"message": "message", "type": "type", "session": "session_id",
                     "timestamp": "timestamp"}
            return any(match_value(_attr(log, attrs[sub]), op, value)
                       for log in self.store.get_logs(issue_id))
        if base == "comment":
            attrs = {"text": "text", "session": "session_id", "created": "created_at"}
            return any(match_value(_attr(c, attrs[sub]), op, value)
                       for c in self.store.get_comments(issue_id))
        if base == "handoff":
            handoff = self.store.get_latest_handoff(issue_id)
            if handoff is None:
                return False
            if sub == "timestamp":
                return match_value(_attr(handoff, "timestamp"), op, value)
            return match_value(" ".join(getattr(handoff, sub)), op, value)
        if base == "file":
            attrs = {"path": "file_path", "role": "role"}
            return any(match_value(_attr(f, attrs[sub]), op, value)
                       for f in self.store.get_linked_files(issue_id))
        if base == "dep":
            if sub == "blocks":
                related = self.store.get_blocked_by_ids(issue_id)
            else:
                related = self.store.get_dependency_ids(issue_id)
            return any(match_value(r, op, value) for r in related)
        if base == "epic":
            return self._match_epic(row, sub, op, value)
        raise ExecutionError(f"unknown field: {field}")

    def _match_epic(self, row: Row, sub: str, op: str, value: Any) -> bool:
        """Match against every epic on the parent chain, nearest first."""
        current = row.get("parent_id") or ""
        visited: set[str] = set()
        depth = 0
        while current and current not in visited and depth < MAX_DESCENDANT_DEPTH:
            visited.add(current)
            depth += 1
            parent = self._issue(current)
            if parent is None:
                break
            if parent.type == IssueType.EPIC:
                if sub == "labels":
                    field_value = ",".join(parent.labels)
                else:
                    field_value = str(getattr(parent, sub))
                if match_value(field_value, op, value):
                    return True
            current = parent.parent_id
        return False

    # --- Functions ---

    def match_function(self, row: Row, name: str, args: list[Any]) -> bool:
        issue_id = row["id"]
        if name == "rework":
            return issue_id in self.rework_ids()
        if name == "has_open_deps":
            return issue_id in self.open_dep_ids()
        if name == "is_ready":
            if row.get("status") != Status.OPEN or issue_id in self.open_dep_ids():
                return False
            defer_at = row.get("defer_at")
            return not defer_at or defer_at <= format_timestamp(self.now)

        target = "" if not args else str(args[0])
        if name == "blocks":
            return issue_id in self.store.get_dependency_ids(target)
        if name == "blocked_by":
            return target in self.store.get_dependency_ids(issue_id)
        if name == "linked_to":
            return any(target in f.file_path for f in self.store.get_linked_files(issue_id))
        if name == "descendant_of":
            return target in self.ancestors(issue_id, row.get("parent_id") or "")
        raise ExecutionError(f"unknown function: {name}")

    def ancestors(self, issue_id: str, parent_id: str) -> list[str]:
        """The parent chain of an issue, nearest first.

        Raises ExecutionError when the chain revisits an issue or runs past
        the maximum depth, so a corrupted parent cycle cannot loop.
        """
        chain: list[str] = []
        seen = {issue_id}
        current = parent_id
        while current:
            if current in seen or len(chain) >= MAX_DESCENDANT_DEPTH:
                raise ExecutionError(
                    f"descendant_of: max depth {MAX_DESCENDANT_DEPTH} exceeded (possible cycle)")
            seen.add(current)
            chain.append(current)
            parent = self._issue(current)
            if parent is None:
                break
            current = parent.parent_id
        return chain


def _attr(obj: Any, name: str) -> str:
    value = getattr(obj, name, "")
    if isinstance(value, datetime):
        return format_timestamp(value) or ""
    return "" if value is None else str(value)
