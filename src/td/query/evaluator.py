"""TDQ evaluation: one walk over the AST yields both SQL and a row matcher.

``compile_query`` returns a ``Compiled`` whose ``sql`` is a condition every
matching row satisfies. When ``exact`` is true the SQL alone decides the
query; otherwise the matcher must run over the fetched rows. Branches that
contain in-memory-only leaves (cross-entity fields, graph functions) carry
no SQL of their own, so they are decided purely by the matcher.

Matchers receive issue rows in their stored form (``Issue.to_row()``), so
both halves compare the same values.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional, Protocol

from td.errors import ExecutionError
from td.ids import normalize_issue_id
from td.models import now_utc
from td.query import ast
from td.query.registry import (
    COLUMNS, KNOWN_FUNCTIONS, NULLABLE_COLUMNS, FieldKind, field_kind, is_cross_entity,
)
from td.storage.sqlite_store import escape_like

Row = dict[str, Any]
Matcher = Callable[[Row], bool]

_NOT_NULL_COLUMNS = {"id", "title", "status", "type", "priority", "created_at", "updated_at"}
_NUMERIC_COLUMNS = {"points", "minor"}
_ESCAPE = " ESCAPE '\\'"
_ID_ARG_FUNCTIONS = {"child_of", "blocks", "blocked_by", "descendant_of"}


class CrossEntityResolver(Protocol):
    def match_field(self, row: Row, field: str, op: str, value: Any) -> bool: ...

    def match_function(self, row: Row, name: str, args: list[Any]) -> bool: ...


@dataclass
class EvalContext:
    session_id: str = ""
    now: datetime = field(default_factory=now_utc)
    resolver: Optional[CrossEntityResolver] = None


@dataclass
class Compiled:
    sql: Optional[str]
    params: list[Any]
    exact: bool
    match: Matcher


def _always(row: Row) -> bool:
    return True


TRUE = Compiled(None, [], True, _always)


# --- Dates ---

def _add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def resolve_date(value: ast.DateValue, now: datetime) -> str:
    """Resolve a date literal to ``YYYY-MM-DD`` (or a full time for hour offsets)."""
    raw = value.raw
    if not value.relative:
        return raw
    today = now.date()
    if raw == "today":
        return today.isoformat()
    if raw == "yesterday":
        return (today - timedelta(days=1)).isoformat()
    if raw == "this_week":
        return (today - timedelta(days=today.weekday())).isoformat()
    if raw == "last_week":
        return (today - timedelta(days=today.weekday() + 7)).isoformat()
    if raw == "this_month":
        return today.replace(day=1).isoformat()
    if raw == "last_month":
        return _add_months(today.replace(day=1), -1).isoformat()

    unit = raw[-1]
    try:
        n = int(raw[:-1])
    except ValueError:
        return raw
    if unit == "d":
        return (today + timedelta(days=n)).isoformat()
    if unit == "w":
        return (today + timedelta(weeks=n)).isoformat()
    if unit == "m":
        return _add_months(today, n).isoformat()
    if unit == "h":
        return (now + timedelta(hours=n)).strftime("%Y-%m-%dT%H:%M:%S")
    return raw


def _next_day(day: str) -> str:
    return (date.fromisoformat(day) + timedelta(days=1)).isoformat()


def _is_day(value: Any) -> bool:
    if not isinstance(value, str) or len(value) != 10:
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


# --- Value helpers ---

def _text(v: Any) -> str:
    if v is None:
        return ""
    return str(v)


def _coerce(column_value: Any, value: Any) -> Any:
    """Convert a query value to the Python type of the column value."""
    if isinstance(column_value, int) and isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return value
    if isinstance(column_value, str) and isinstance(value, int):
        return str(value)
    return value


def _compare(a: Any, op: str, b: Any) -> bool:
    b = _coerce(a, b)
    try:
        if op == ast.OP_LT:
            return a < b
        if op == ast.OP_GT:
            return a > b
        if op == ast.OP_LTE:
            return a <= b
        if op == ast.OP_GTE:
            return a >= b
    except TypeError:
        return False
    return False


def _label_list(v: Any) -> list[str]:
    return [part.strip().lower() for part in _text(v).split(",") if part.strip()]


class Evaluator:
    """Compiles a validated query tree against an evaluation context."""

    def __init__(self, ctx: EvalContext) -> None:
        self.ctx = ctx

    def resolve(self, value: Any) -> Any:
        if value is ast.ME or (isinstance(value, ast.SpecialValue) and value.kind == "me"):
            return self.ctx.session_id
        if isinstance(value, ast.DateValue):
            return resolve_date(value, self.ctx.now)
        if isinstance(value, ast.ListValue):
            return tuple(self.resolve(v) for v in value.values)
        return value

    def compile(self, node: Optional[ast.Node]) -> Compiled:
        if node is None:
            return TRUE
        if isinstance(node, ast.BinaryExpr):
            left = self.compile(node.left)
            right = self.compile(node.right)
            if node.op == ast.AND:
                return _and(left, right)
            return _or(left, right)
        if isinstance(node, ast.UnaryExpr):
            return _not(self.compile(node.expr))
        if isinstance(node, ast.FieldExpr):
            return self._field(node)
        if isinstance(node, ast.FunctionCall):
            return self._function(node)
        if isinstance(node, ast.TextSearch):
            return self._text_search(node.text)
        raise ExecutionError(f"unsupported query node: {type(node).__name__}")

    # --- Leaves ---

    def _resolver(self) -> CrossEntityResolver:
        if self.ctx.resolver is None:
            raise ExecutionError("cross-entity condition needs a store")
        return self.ctx.resolver

    def _field(self, node: ast.FieldExpr) -> Compiled:
        name = node.field
        if is_cross_entity(name):
            value = self.resolve(node.value)
            op = node.op

            def cross(row: Row) -> bool:
                return self._resolver().match_field(row, name, op, value)
            return Compiled(None, [], False, cross)

        column = COLUMNS.get(name, name)
        kind = field_kind(name)
        value = self.resolve(node.value)

        if node.op == ast.OP_EQ:
            return self._equals(column, kind, value)
        if node.op == ast.OP_NEQ:
            return _not(self._equals(column, kind, value))
        if node.op == ast.OP_CONTAINS:
            return self._contains(column, value)
        if node.op == ast.OP_NOT_CONTAINS:
            return _not(self._contains(column, value))
        return self._ordering(column, kind, node.op, value)

    def _column_expr(self, column: str) -> tuple[str, Any]:
        """SQL expression for a column and the Python default standing in for NULL."""
        if column in _NOT_NULL_COLUMNS or column in NULLABLE_COLUMNS:
            return column, None
        if column in _NUMERIC_COLUMNS:
            return f"COALESCE({column}, 0)", 0
        return f"COALESCE({column}, '')", ""

    def _equals(self, column: str, kind: Optional[str], value: Any) -> Compiled:
        if isinstance(value, ast.SpecialValue):
            if value.kind == "null":
                return Compiled(f"{column} IS NULL", [], True,
                                lambda row: row.get(column) is None)
            return Compiled(f"({column} IS NULL OR {column} = '')", [], True,
                            lambda row: row.get(column) in (None, ""))

        expr, default = self._column_expr(column)

        def get(row: Row) -> Any:
            v = row.get(column)
            return default if v is None else v

        if isinstance(value, tuple):
            if not value:
                return Compiled("0", [], True, lambda row: False)
            placeholders = ", ".join("?" for _ in value)

            def in_list(row: Row) -> bool:
                v = get(row)
                return v is not None and any(v == _coerce(v, item) for item in value)
            if column in NULLABLE_COLUMNS:
                return Compiled(f"({column} IS NOT NULL AND {column} IN ({placeholders}))",
                                list(value), True, in_list)
            return Compiled(f"{expr} IN ({placeholders})", list(value), True, in_list)

        if kind == FieldKind.DATE and isinstance(value, str):
            n = len(value)

            def same_day(row: Row) -> bool:
                v = row.get(column)
                return v is not None and str(v)[:n] == value
            if column in NULLABLE_COLUMNS:
                sql = f"({column} IS NOT NULL AND substr({column}, 1, {n}) = ?)"
            else:
                sql = f"substr({column}, 1, {n}) = ?"
            return Compiled(sql, [value], True, same_day)

        def equals(row: Row) -> bool:
            v = get(row)
            return v is not None and v == _coerce(v, value)
        if column in NULLABLE_COLUMNS:
            return Compiled(f"({column} IS NOT NULL AND {column} = ?)", [value], True, equals)
        return Compiled(f"{expr} = ?", [value], True, equals)

    def _contains(self, column: str, value: Any) -> Compiled:
        needle = _text(value)
        if column == "labels":
            lowered = needle.lower()
            return Compiled(
                "(',' || COALESCE(labels, '') || ',') LIKE ?" + _ESCAPE,
                [f"%,{escape_like(needle)},%"], True,
                lambda row: lowered in _label_list(row.get("labels")),
            )
        lowered = needle.lower()
        return Compiled(
            f"COALESCE({column}, '') LIKE ?" + _ESCAPE,
            [f"%{escape_like(needle)}%"], True,
            lambda row: lowered in _text(row.get(column)).lower(),
        )

    def _ordering(self, column: str, kind: Optional[str], op: str, value: Any) -> Compiled:
        if isinstance(value, (ast.SpecialValue, tuple)):
            return Compiled("0", [], True, lambda row: False)

        if kind == FieldKind.DATE and _is_day(value) and op in (ast.OP_GT, ast.OP_LTE):
            # whole-day semantics: "> day" starts the next day, "<= day" ends it
            value = _next_day(value)
            op = ast.OP_GTE if op == ast.OP_GT else ast.OP_LT

        expr, default = self._column_expr(column)

        def ordered(row: Row) -> bool:
            v = row.get(column)
            if v is None:
                v = default
            if v is None:
                return False
            return _compare(v, op, value)

        if column in NULLABLE_COLUMNS:
            return Compiled(f"({column} IS NOT NULL AND {column} {op} ?)", [value], True, ordered)
        return Compiled(f"{expr} {op} ?", [value], True, ordered)

    def _text_search(self, text: str) -> Compiled:
        pattern = f"%{escape_like(text)}%"
        lowered = text.lower()
        sql = ("(id LIKE ?{e} OR title LIKE ?{e} OR COALESCE(description, '') LIKE ?{e})"
               .format(e=_ESCAPE))

        def search(row: Row) -> bool:
            return any(lowered in _text(row.get(c)).lower()
                       for c in ("id", "title", "description"))
        return Compiled(sql, [pattern, pattern, pattern], True, search)

    def _function(self, node: ast.FunctionCall) -> Compiled:
        name = node.name
        args = [self.resolve(a) for a in node.args]
        if name in _ID_ARG_FUNCTIONS and args and isinstance(args[0], str):
            args[0] = normalize_issue_id(args[0])

        spec = KNOWN_FUNCTIONS.get(name)
        if spec is None:
            raise ExecutionError(f"unknown function: {name}")
        if spec.in_memory:
            def call(row: Row) -> bool:
                return self._resolver().match_function(row, name, args)
            return Compiled(None, [], False, call)

        if name == "has":
            column = COLUMNS.get(_text(args[0]), _text(args[0]))
            if column in _NUMERIC_COLUMNS:
                return Compiled(f"COALESCE({column}, 0) != 0", [], True,
                                lambda row: bool(row.get(column)))
            return Compiled(f"({column} IS NOT NULL AND {column} != '')", [], True,
                            lambda row: row.get(column) not in (None, ""))
        if name == "is":
            return self._equals("status", FieldKind.ENUM, args[0])
        if name == "child_of":
            return self._equals("parent_id", FieldKind.STRING, args[0])

        field_name = _text(node.args[0])
        values = node.args[1:]
        if name == "any":
            if field_name == "labels":
                return _any_of([self._field(ast.FieldExpr(field_name, ast.OP_CONTAINS, v))
                                for v in values])
            return self._field(ast.FieldExpr(field_name, ast.OP_EQ, ast.ListValue(tuple(values))))
        parts = [self._field(ast.FieldExpr(field_name, ast.OP_CONTAINS, v)) for v in values]
        if name == "all":
            result = parts[0]
            for part in parts[1:]:
                result = _and(result, part)
            return result
        return _not(_any_of(parts))


# --- Composition ---

def _and(left: Compiled, right: Compiled) -> Compiled:
    sqls = [c for c in (left, right) if c.sql is not None]
    if len(sqls) == 2:
        sql: Optional[str] = f"({left.sql} AND {right.sql})"
        params = left.params + right.params
    elif sqls:
        sql, params = sqls[0].sql, list(sqls[0].params)
    else:
        sql, params = None, []
    lm, rm = left.match, right.match
    return Compiled(sql, params, left.exact and right.exact,
                    lambda row: lm(row) and rm(row))


def _or(left: Compiled, right: Compiled) -> Compiled:
    if left.sql is not None and right.sql is not None:
        sql: Optional[str] = f"({left.sql} OR {right.sql})"
        params = left.params + right.params
    else:
        sql, params = None, []
    lm, rm = left.match, right.match
    return Compiled(sql, params, left.exact and right.exact,
                    lambda row: lm(row) or rm(row))


def _not(inner: Compiled) -> Compiled:
    m = inner.match
    if inner.exact and inner.sql is not None:
        return Compiled(f"NOT ({inner.sql})", list(inner.params), True, lambda row: not m(row))
    return Compiled(None, [], False, lambda row: not m(row))


def _any_of(parts: list[Compiled]) -> Compiled:
    result = parts[0]
    for part in parts[1:]:
        result = _or(result, part)
    return result


def compile_query(query: ast.Query, ctx: EvalContext) -> Compiled:
    return Evaluator(ctx).compile(query.root)


def has_in_memory_conditions(query: ast.Query) -> bool:
    for node in ast.walk(query.root):
        if isinstance(node, ast.FieldExpr) and is_cross_entity(node.field):
            return True
        if isinstance(node, ast.FunctionCall):
            spec = KNOWN_FUNCTIONS.get(node.name)
            if spec is not None and spec.in_memory:
                return True
    return False
