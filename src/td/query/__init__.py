"""TDQ: the td issue query language."""

from td.query.execute import ExecuteOptions, execute, parse_query
from td.query.parser import parse

__all__ = ["ExecuteOptions", "execute", "parse", "parse_query"]
