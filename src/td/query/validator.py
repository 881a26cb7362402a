"""Semantic validation of a parsed TDQ query.

Validation rewrites enum values to their canonical spelling in place and
collects every problem before raising a single ``ValidationError``.
"""

from __future__ import annotations

from typing import Any

from td.errors import ValidationError
from td.query import ast
from td.query.registry import (
    ENUM_VALUES, KNOWN_FIELDS, KNOWN_FUNCTIONS, FieldKind, canonical_enum,
    field_kind,
)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def validate(query: ast.Query) -> ast.Query:
    errors: list[str] = []
    for node in ast.walk(query.root):
        if isinstance(node, ast.FieldExpr):
            _check_field(node, errors)
        elif isinstance(node, ast.FunctionCall):
            _check_function(node, errors)
    if errors:
        raise ValidationError(errors)
    return query


def _check_field(node: ast.FieldExpr, errors: list[str]) -> None:
    kind = field_kind(node.field)
    if kind is None or kind == FieldKind.PREFIX:
        errors.append(f"unknown field: {node.field}")
        return
    if isinstance(node.value, ast.ListValue) and node.op not in (ast.OP_EQ, ast.OP_NEQ):
        errors.append(f"operator {node.op} does not accept a list value")
        return

    if node.field in ENUM_VALUES:
        node.value = _normalize_enum(node.field, node.value, errors)
    elif kind == FieldKind.BOOL:
        node.value = _normalize_bool(node.field, node.value, errors)
    elif kind == FieldKind.NUMBER and isinstance(node.value, str):
        try:
            node.value = int(node.value)
        except ValueError:
            errors.append(f"invalid value for {node.field}: {node.value!r} (expected a number)")


def _normalize_enum(name: str, value: Any, errors: list[str]) -> Any:
    if isinstance(value, ast.ListValue):
        return ast.ListValue(tuple(_normalize_enum(name, v, errors) for v in value.values))
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return value
    canonical = canonical_enum(name, value)
    if canonical is None:
        errors.append(f'invalid value for {name}: "{value}" '
                      f"(expected one of: {', '.join(ENUM_VALUES[name])})")
        return value
    return canonical


def _normalize_bool(name: str, value: Any, errors: list[str]) -> Any:
    if isinstance(value, ast.SpecialValue):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return 1
    if text in _FALSE:
        return 0
    errors.append(f'invalid value for {name}: "{value}" (expected true or false)')
    return value


def _check_function(node: ast.FunctionCall, errors: list[str]) -> None:
    spec = KNOWN_FUNCTIONS.get(node.name)
    if spec is None:
        errors.append(f"unknown function: {node.name}")
        return

    argc = len(node.args)
    if argc < spec.min_args:
        errors.append(f"function {node.name} requires at least {spec.min_args} "
                      f"argument(s), got {argc}")
        return
    if spec.max_args >= 0 and argc > spec.max_args:
        errors.append(f"function {node.name} accepts at most {spec.max_args} "
                      f"argument(s), got {argc}")
        return

    if node.name == "is":
        node.args[0] = _normalize_enum("status", _as_text(node.args[0]), errors)
    elif node.name in ("has", "any", "all", "none"):
        name = _as_text(node.args[0])
        if not isinstance(name, str) or name not in KNOWN_FIELDS \
                or KNOWN_FIELDS[name] == FieldKind.PREFIX:
            errors.append(f"unknown field: {node.args[0]}")
            return
        if name in ENUM_VALUES:
            node.args[1:] = [_normalize_enum(name, _as_text(a), errors) for a in node.args[1:]]


def _as_text(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value
