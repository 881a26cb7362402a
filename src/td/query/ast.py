"""TDQ syntax tree.

Values inside field expressions and function calls are plain ``str`` and
``int`` for identifiers, quoted text and numbers, or one of ``DateValue``,
``SpecialValue`` and ``ListValue``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from td.query.lexer import NAMED_DATES, SORT_FIELDS

AND = "AND"
OR = "OR"
NOT = "NOT"

OP_EQ = "="
OP_NEQ = "!="
OP_LT = "<"
OP_GT = ">"
OP_LTE = "<="
OP_GTE = ">="
OP_CONTAINS = "~"
OP_NOT_CONTAINS = "!~"

ORDERING_OPS = (OP_LT, OP_GT, OP_LTE, OP_GTE)

# binding strength of the boolean operators, loosest first
PRECEDENCE = {OR: 1, AND: 2}


@dataclass(frozen=True)
class DateValue:
    raw: str
    relative: bool = False

    def __str__(self) -> str:
        return self.raw


@dataclass(frozen=True)
class SpecialValue:
    kind: str  # me, empty, null

    def __str__(self) -> str:
        return {"me": "@me", "empty": "EMPTY", "null": "NULL"}.get(self.kind, self.kind)


ME = SpecialValue("me")
EMPTY = SpecialValue("empty")
NULL = SpecialValue("null")


@dataclass(frozen=True)
class ListValue:
    values: tuple = ()

    def __str__(self) -> str:
        return "(" + ", ".join(format_value(v) for v in self.values) + ")"


Value = Union[str, int, DateValue, SpecialValue, ListValue]


@dataclass
class BinaryExpr:
    op: str
    left: Node
    right: Node

    def __str__(self) -> str:
        return f"{self._operand(self.left)} {self.op} {self._operand(self.right)}"

    def _operand(self, node: Node) -> str:
        if isinstance(node, BinaryExpr) and PRECEDENCE[node.op] < PRECEDENCE[self.op]:
            return f"({node})"
        return str(node)


@dataclass
class UnaryExpr:
    op: str
    expr: Node

    def __str__(self) -> str:
        if isinstance(self.expr, BinaryExpr):
            return f"{self.op} ({self.expr})"
        return f"{self.op} {self.expr}"


@dataclass
class FieldExpr:
    field: str
    op: str
    value: Any

    def __str__(self) -> str:
        return f"{self.field} {self.op} {format_value(self.value)}"


@dataclass
class FunctionCall:
    name: str
    args: list = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.name}({', '.join(format_value(a, bare=True) for a in self.args)})"


@dataclass
class TextSearch:
    text: str

    def __str__(self) -> str:
        return quote(self.text)


Node = Union[BinaryExpr, UnaryExpr, FieldExpr, FunctionCall, TextSearch]


@dataclass
class SortClause:
    field: str
    descending: bool = False

    @property
    def column(self) -> str:
        return SORT_FIELDS[self.field]

    def __str__(self) -> str:
        return f"sort:{'-' if self.descending else ''}{self.field}"


@dataclass
class Query:
    root: Optional[Node] = None
    raw: str = ""
    sort: Optional[SortClause] = None

    def __str__(self) -> str:
        parts = []
        if self.root is not None:
            parts.append(str(self.root))
        if self.sort is not None:
            parts.append(str(self.sort))
        return " ".join(parts)


# --- Formatting ---

_BARE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*(\.[A-Za-z_][A-Za-z0-9_-]*)*$")
_RESERVED = {"and", "or", "not", "empty", "null", "sort", *NAMED_DATES}


def quote(text: str) -> str:
    escaped = (text.replace("\\", "\\\\").replace('"', '\\"')
               .replace("\n", "\\n").replace("\t", "\\t"))
    return f'"{escaped}"'


def format_value(value: Any, bare: bool = False) -> str:
    """Render a value so that it lexes back to the same value.

    With ``bare`` set, identifier-shaped strings (function arguments such as
    field names and statuses) are left unquoted.
    """
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        if bare and _BARE.match(value) and value.lower() not in _RESERVED:
            return value
        return quote(value)
    return str(value)


def walk(node: Optional[Node]):
    """Yield every node of a tree, parents before children, without recursion."""
    stack = [node] if node is not None else []
    while stack:
        n = stack.pop()
        yield n
        if isinstance(n, BinaryExpr):
            stack.append(n.right)
            stack.append(n.left)
        elif isinstance(n, UnaryExpr):
            stack.append(n.expr)
