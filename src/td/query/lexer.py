"""TDQ lexer: turns a query string into a flat token list."""

from __future__ import annotations

from dataclasses import dataclass

from td.errors import ParseError


class TokenType:
    EOF = "EOF"
    IDENT = "IDENT"
    STRING = "STRING"
    NUMBER = "NUMBER"
    DATE = "DATE"
    EQ = "="
    NEQ = "!="
    LT = "<"
    GT = ">"
    LTE = "<="
    GTE = ">="
    CONTAINS = "~"
    NOT_CONTAINS = "!~"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    LPAREN = "("
    RPAREN = ")"
    COMMA = ","
    DOT = "."
    AT_ME = "@me"
    EMPTY = "EMPTY"
    NULL = "NULL"
    SORT = "SORT"

    OPERATORS = (EQ, NEQ, LT, GT, LTE, GTE, CONTAINS, NOT_CONTAINS)


@dataclass
class Token:
    type: str
    value: str
    pos: int = 0
    line: int = 1
    column: int = 1

    def describe(self) -> str:
        if self.type == TokenType.EOF:
            return "EOF"
        if self.type in (TokenType.IDENT, TokenType.STRING, TokenType.NUMBER, TokenType.DATE):
            return f"{self.type} {self.value!r}"
        return repr(self.value or self.type)


SORT_FIELDS = {
    "created": "created_at",
    "updated": "updated_at",
    "closed": "closed_at",
    "deleted": "deleted_at",
    "priority": "priority",
    "id": "id",
    "title": "title",
    "status": "status",
    "points": "points",
}

NAMED_DATES = ("today", "yesterday", "this_week", "last_week", "this_month", "last_month")

_KEYWORDS = {
    "AND": TokenType.AND,
    "OR": TokenType.OR,
    "NOT": TokenType.NOT,
    "EMPTY": TokenType.EMPTY,
    "NULL": TokenType.NULL,
}

_SINGLE = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    ",": TokenType.COMMA,
    ".": TokenType.DOT,
    "~": TokenType.CONTAINS,
    "=": TokenType.EQ,
}

_DOUBLE = {
    "!=": TokenType.NEQ,
    "!~": TokenType.NOT_CONTAINS,
    "<=": TokenType.LTE,
    ">=": TokenType.GTE,
    "&&": TokenType.AND,
    "||": TokenType.OR,
}

_TRAILING = {
    "<": TokenType.LT,
    ">": TokenType.GT,
    "!": TokenType.NOT,
    ":": TokenType.EQ,  # legacy field:value
}

_SHELL_ESCAPED = "!<>=~"
_DATE_UNITS = "dwmh"


def is_ident_start(ch: str) -> bool:
    return ("a" <= ch <= "z") or ("A" <= ch <= "Z") or ch == "_"


def is_ident_char(ch: str) -> bool:
    return is_ident_start(ch) or ch.isdigit() or ch == "-"


class Lexer:
    """Single-pass scanner with line/column tracking."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> list[Token]:
        tokens: list[Token] = []
        while True:
            tok = self._next()
            tokens.append(tok)
            if tok.type == TokenType.EOF:
                return tokens

    # --- Scanning helpers ---

    def _peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.text[i] if i < len(self.text) else ""

    def _advance(self) -> None:
        if self.pos < len(self.text):
            if self.text[self.pos] == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
            self.pos += 1

    def _error(self, message: str, line: int, column: int) -> ParseError:
        return ParseError(message, line=line, column=column)

    def _token(self, type_: str, value: str, start: tuple[int, int, int]) -> Token:
        return Token(type_, value, start[0], start[1], start[2])

    def _next(self) -> Token:
        while self._peek() and self._peek().isspace():
            self._advance()
        if self.pos >= len(self.text):
            return Token(TokenType.EOF, "", self.pos, self.line, self.column)

        # agents escape operators for the shell (\! \< ...)
        if self._peek() == "\\" and self._peek(1) and self._peek(1) in _SHELL_ESCAPED:
            self._advance()

        start = (self.pos, self.line, self.column)
        ch = self._peek()

        if ch in _SINGLE:
            self._advance()
            return self._token(_SINGLE[ch], ch, start)

        two = self.text[self.pos:self.pos + 2]
        if two in _DOUBLE:
            self._advance()
            self._advance()
            return self._token(_DOUBLE[two], two, start)

        if ch in _TRAILING:
            self._advance()
            return self._token(_TRAILING[ch], ch, start)

        if ch in ("'", '"'):
            return self._scan_string(ch, start)
        if ch == "@":
            return self._scan_at(start)
        if ch == "-":
            if self._peek(1).isdigit():
                return self._scan_relative(start)
            self._advance()
            return self._token(TokenType.NOT, "-", start)
        if ch == "+":
            return self._scan_relative(start)
        if ch.isdigit():
            return self._scan_number_or_date(start)
        if is_ident_start(ch):
            return self._scan_ident(start)

        raise self._error(f"unexpected character: {ch!r}", start[1], start[2])

    def _scan_string(self, quote: str, start: tuple[int, int, int]) -> Token:
        self._advance()
        out: list[str] = []
        escapes = {"n": "\n", "t": "\t"}
        while self.pos < len(self.text):
            ch = self._peek()
            if ch == quote:
                self._advance()
                return self._token(TokenType.STRING, "".join(out), start)
            if ch == "\\" and self.pos + 1 < len(self.text):
                self._advance()
                esc = self._peek()
                out.append(escapes.get(esc, esc))
                self._advance()
                continue
            out.append(ch)
            self._advance()
        raise self._error("unterminated string", start[1], start[2])

    def _scan_at(self, start: tuple[int, int, int]) -> Token:
        self._advance()
        value = "@"
        while self._peek() and is_ident_char(self._peek()):
            value += self._peek()
            self._advance()
        if value == "@me":
            return self._token(TokenType.AT_ME, value, start)
        raise self._error(f"unknown special value: {value}", start[1], start[2])

    def _scan_relative(self, start: tuple[int, int, int]) -> Token:
        sign = self._peek()
        self._advance()
        value = sign
        while self._peek().isdigit():
            value += self._peek()
            self._advance()
        unit = self._peek()
        if unit and unit in _DATE_UNITS:
            self._advance()
            return self._token(TokenType.DATE, value + unit, start)
        if sign == "+":
            raise self._error(
                f"invalid relative date: {value} (expected d, w, m, or h suffix)",
                start[1], start[2])
        return self._token(TokenType.NUMBER, value, start)

    def _scan_number_or_date(self, start: tuple[int, int, int]) -> Token:
        value = ""
        while self._peek() and (self._peek().isdigit() or self._peek() == "-"):
            value += self._peek()
            self._advance()
        if len(value) == 10 and value[4] == "-" and value[7] == "-":
            return self._token(TokenType.DATE, value, start)
        unit = self._peek()
        if unit and unit in _DATE_UNITS:
            self._advance()
            return self._token(TokenType.DATE, value + unit, start)
        return self._token(TokenType.NUMBER, value, start)

    def _scan_ident(self, start: tuple[int, int, int]) -> Token:
        value = ""
        while self._peek() and is_ident_char(self._peek()):
            value += self._peek()
            self._advance()

        if value.lower() == "sort" and self._peek() == ":":
            return self._scan_sort(start)

        keyword = _KEYWORDS.get(value.upper())
        if keyword:
            return self._token(keyword, value, start)
        if value.lower() in NAMED_DATES:
            return self._token(TokenType.DATE, value.lower(), start)
        return self._token(TokenType.IDENT, value, start)

    def _scan_sort(self, start: tuple[int, int, int]) -> Token:
        self._advance()  # ':'
        prefix = ""
        if self._peek() == "-":
            prefix = "-"
            self._advance()
        if not self._peek() or not is_ident_start(self._peek()):
            raise self._error("sort: requires a field name", start[1], start[2])
        name = ""
        while self._peek() and is_ident_char(self._peek()):
            name += self._peek()
            self._advance()
        if name not in SORT_FIELDS:
            raise self._error(
                f"invalid sort field: {name} (valid: {', '.join(SORT_FIELDS)})",
                start[1], start[2])
        return self._token(TokenType.SORT, prefix + name, start)


def tokenize(text: str) -> list[Token]:
    return Lexer(text).tokenize()
