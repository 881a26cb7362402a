"""Error taxonomy for td.

Every error that reaches the CLI carries a stable ``code`` and an exit code.
Exit codes: 1 user error, 2 system error, 3 validation.
"""

from __future__ import annotations


class TDError(Exception):
    """Base class for all td errors."""

    code = "database_error"
    exit_code = 2

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class NotFound(TDError):
    code = "not_found"
    exit_code = 1


class InvalidInput(TDError):
    code = "invalid_input"
    exit_code = 1


class Conflict(TDError):
    code = "conflict"
    exit_code = 1


class CannotSelfApprove(TDError):
    code = "cannot_self_approve"
    exit_code = 3


class HandoffRequired(TDError):
    code = "handoff_required"
    exit_code = 3


class DatabaseError(TDError):
    code = "database_error"
    exit_code = 2


class ExecutionError(DatabaseError):
    """Query execution failed (database fault or bounded walk exceeded)."""


class ParseError(TDError):
    """TDQ parse error with position information."""

    code = "parse_error"
    exit_code = 3

    def __init__(self, message: str, line: int = 1, column: int = 1,
                 expected: str = "", got: str = "") -> None:
        self.line = line
        self.column = column
        self.expected = expected
        self.got = got
        self.detail = message
        text = f"parse error at line {line}, column {column}: {message}"
        if expected:
            text += f" (expected {expected}, got {got or 'EOF'})"
        super().__init__(text)


class ValidationError(TDError):
    """One or more collected validation failures."""

    code = "validation_error"
    exit_code = 3

    def __init__(self, errors: list[str] | str) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        if len(self.errors) == 1:
            text = self.errors[0]
        else:
            text = f"{len(self.errors)} validation errors: " + "; ".join(self.errors)
        super().__init__(text)


class Unauthorized(TDError):
    code = "unauthorized"
    exit_code = 2


class Forbidden(TDError):
    code = "forbidden"
    exit_code = 2


class SyncAPIError(TDError):
    """Non-2xx response or transport failure talking to the sync server."""

    code = "database_error"
    exit_code = 2

    def __init__(self, status_code: int, message: str, error_code: str = "") -> None:
        self.status_code = status_code
        self.error_code = error_code
        if status_code:
            text = f"sync API error ({status_code}): {message}"
        else:
            text = f"sync transport error: {message}"
        super().__init__(text)
