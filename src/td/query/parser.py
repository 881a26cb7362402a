"""TDQ recursive-descent parser.

Precedence, lowest first: OR, AND (explicit or implicit by juxtaposition),
NOT, primary. Parenthesised groups and value lists count toward the
nesting limit.
"""

from __future__ import annotations

from typing import Any

from td.errors import ParseError
from td.query import ast
from td.query.lexer import NAMED_DATES, Token, TokenType, tokenize

MAX_QUERY_DEPTH = 50

_OPERATORS = {
    TokenType.EQ: ast.OP_EQ,
    TokenType.NEQ: ast.OP_NEQ,
    TokenType.LT: ast.OP_LT,
    TokenType.GT: ast.OP_GT,
    TokenType.LTE: ast.OP_LTE,
    TokenType.GTE: ast.OP_GTE,
    TokenType.CONTAINS: ast.OP_CONTAINS,
    TokenType.NOT_CONTAINS: ast.OP_NOT_CONTAINS,
}

_EXPRESSION_START = (TokenType.IDENT, TokenType.STRING, TokenType.LPAREN, TokenType.NOT)


def is_relative_date(raw: str) -> bool:
    if not raw:
        return False
    if raw in NAMED_DATES:
        return True
    return raw[0] in "+-" or raw[-1] in "dwmh"


def parse(text: str) -> ast.Query:
    """Parse a query string. An empty string yields a query with no root."""
    text = text.strip()
    if not text:
        return ast.Query(root=None, raw=text)

    sort = None
    tokens: list[Token] = []
    for tok in tokenize(text):
        if tok.type == TokenType.SORT:
            if sort is not None:
                raise ParseError("multiple sort clauses not allowed",
                                 line=tok.line, column=tok.column)
            descending = tok.value.startswith("-")
            sort = ast.SortClause(field=tok.value.lstrip("-"), descending=descending)
        else:
            tokens.append(tok)

    parser = Parser(tokens)
    if parser.at_end():
        return ast.Query(root=None, raw=text, sort=sort)
    root = parser.parse_or()
    if not parser.at_end():
        tok = parser.current()
        raise ParseError("unexpected token after expression", line=tok.line,
                         column=tok.column)
    return ast.Query(root=root, raw=text, sort=sort)


class Parser:
    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    # --- Token helpers ---

    def current(self) -> Token:
        if self.pos >= len(self.tokens):
            return Token(TokenType.EOF, "")
        return self.tokens[self.pos]

    def advance(self) -> Token:
        tok = self.current()
        if not self.at_end():
            self.pos += 1
        return tok

    def check(self, type_: str) -> bool:
        return self.current().type == type_

    def match(self, type_: str) -> bool:
        if self.check(type_):
            self.advance()
            return True
        return False

    def at_end(self) -> bool:
        return self.check(TokenType.EOF)

    def _fail(self, message: str, expected: str = "") -> ParseError:
        tok = self.current()
        return ParseError(message, line=tok.line, column=tok.column,
                          expected=expected, got=tok.describe())

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_QUERY_DEPTH:
            raise self._fail(f"query exceeds maximum nesting depth of {MAX_QUERY_DEPTH}")

    # --- Grammar ---

    def parse_or(self) -> ast.Node:
        left = self.parse_and()
        while self.match(TokenType.OR):
            left = ast.BinaryExpr(ast.OR, left, self.parse_and())
        return left

    def parse_and(self) -> ast.Node:
        left = self.parse_unary()
        while True:
            if self.match(TokenType.AND):
                left = ast.BinaryExpr(ast.AND, left, self.parse_unary())
            elif not self.at_end() and self.current().type in _EXPRESSION_START:
                left = ast.BinaryExpr(ast.AND, left, self.parse_unary())
            else:
                return left

    def parse_unary(self) -> ast.Node:
        negations = 0
        while self.match(TokenType.NOT):
            negations += 1
        node = self.parse_primary()
        for _ in range(negations):
            node = ast.UnaryExpr(ast.NOT, node)
        return node

    def parse_primary(self) -> ast.Node:
        if self.match(TokenType.LPAREN):
            self._enter()
            expr = self.parse_or()
            self.depth -= 1
            if not self.match(TokenType.RPAREN):
                raise self._fail("missing closing parenthesis", expected=")")
            return expr
        if self.check(TokenType.IDENT):
            return self.parse_ident_expr()
        if self.check(TokenType.STRING):
            return ast.TextSearch(self.advance().value)
        raise self._fail("unexpected token", expected="field, function, or quoted text")

    def parse_ident_expr(self) -> ast.Node:
        name = self.advance().value
        if self.check(TokenType.LPAREN):
            return self.parse_function_call(name)

        field = name
        while self.match(TokenType.DOT):
            if not self.check(TokenType.IDENT):
                raise self._fail("expected field name after '.'", expected="identifier")
            field += "." + self.advance().value

        op = _OPERATORS.get(self.current().type)
        if op is None:
            return ast.TextSearch(field)
        self.advance()
        return ast.FieldExpr(field, op, self.parse_value())

    def parse_function_call(self, name: str) -> ast.FunctionCall:
        self.advance()  # '('
        args: list[Any] = []
        if self.match(TokenType.RPAREN):
            return ast.FunctionCall(name, args)
        while True:
            args.append(self.parse_function_arg())
            if not self.match(TokenType.COMMA):
                break
        if not self.match(TokenType.RPAREN):
            raise self._fail("missing closing parenthesis in function call", expected=")")
        return ast.FunctionCall(name, args)

    def parse_function_arg(self) -> Any:
        tok = self.current()
        if tok.type == TokenType.IDENT:
            self.advance()
            value = tok.value
            while self.match(TokenType.DOT):
                if not self.check(TokenType.IDENT):
                    break
                value += "." + self.advance().value
            return value
        if tok.type == TokenType.LPAREN:
            raise self._fail("invalid function argument",
                             expected="identifier, string, number, or special value")
        return self._scalar(tok, "invalid function argument",
                            "identifier, string, number, or special value")

    def parse_value(self) -> Any:
        tok = self.current()
        if tok.type == TokenType.IDENT:
            self.advance()
            return tok.value
        if tok.type == TokenType.LPAREN:
            return self.parse_list_value()
        return self._scalar(tok, "expected value",
                            "identifier, string, number, date, or special value")

    def parse_list_value(self) -> ast.ListValue:
        self.advance()  # '('
        self._enter()
        values: list[Any] = []
        if not self.match(TokenType.RPAREN):
            while True:
                values.append(self.parse_value())
                if not self.match(TokenType.COMMA):
                    break
            if not self.match(TokenType.RPAREN):
                raise self._fail("missing closing parenthesis in list", expected=")")
        self.depth -= 1
        return ast.ListValue(tuple(values))

    def _scalar(self, tok: Token, message: str, expected: str) -> Any:
        if tok.type == TokenType.STRING:
            self.advance()
            return tok.value
        if tok.type == TokenType.NUMBER:
            try:
                number = int(tok.value)
            except ValueError:
                raise self._fail(f"invalid number: {tok.value}", expected="valid integer") from None
            self.advance()
            return number
        if tok.type == TokenType.DATE:
            self.advance()
            return ast.DateValue(tok.value, is_relative_date(tok.value))
        if tok.type == TokenType.AT_ME:
            self.advance()
            return ast.ME
        if tok.type == TokenType.EMPTY:
            self.advance()
            return ast.EMPTY
        if tok.type == TokenType.NULL:
            self.advance()
            return ast.NULL
        raise self._fail(message, expected=expected)
