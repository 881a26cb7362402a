"""Utility functions for the td CLI."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from td.models import Issue, Status

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def parse_bool(s: str | None) -> bool | None:
    """Parse 1/true/yes/on and 0/false/no/off; None for anything else."""
    if s is None:
        return None
    value = s.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return None


def status_symbol(status: str) -> str:
    """Return a symbol for status display."""
    symbols = {
        Status.OPEN: " ",
        Status.IN_PROGRESS: ">",
        Status.BLOCKED: "!",
        Status.IN_REVIEW: "?",
        Status.CLOSED: "x",
    }
    return symbols.get(status, "?")


def format_time_ago(dt: datetime) -> str:
    """Format a datetime as a relative time string."""
    now = datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = now - dt
    seconds = int(delta.total_seconds())
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 30:
        return f"{days}d ago"
    months = days // 30
    if months < 12:
        return f"{months}mo ago"
    years = days // 365
    return f"{years}y ago"


def parse_duration(s: str) -> timedelta | None:
    """Parse a Go-style duration string (e.g., '3s', '5m', '1h30m', '2d')."""
    if not s:
        return None
    total_seconds = 0.0
    remaining = s.strip()

    m = re.match(r"(\d+)d", remaining)
    if m:
        total_seconds += int(m.group(1)) * 86400
        remaining = remaining[m.end():]

    m = re.match(r"(\d+)h", remaining)
    if m:
        total_seconds += int(m.group(1)) * 3600
        remaining = remaining[m.end():]

    m = re.match(r"(\d+)m(?!s)", remaining)
    if m:
        total_seconds += int(m.group(1)) * 60
        remaining = remaining[m.end():]

    m = re.match(r"(\d+)s", remaining)
    if m:
        total_seconds += int(m.group(1))
        remaining = remaining[m.end():]

    m = re.match(r"(\d+)ms", remaining)
    if m:
        total_seconds += int(m.group(1)) / 1000
        remaining = remaining[m.end():]

    if remaining or total_seconds == 0:
        return None
    return timedelta(seconds=total_seconds)


def truncate(s: str, max_len: int = 60) -> str:
    """Truncate a string with ellipsis."""
    if len(s) <= max_len:
        return s
    return s[:max_len - 3] + "..."


def format_issue_row(issue: Issue, long_format: bool = False) -> str:
    """Format an issue as a single-line row for list display."""
    sym = status_symbol(issue.status)
    age = format_time_ago(issue.created_at)
    title = truncate(issue.title, 50)

    if long_format:
        labels = ",".join(issue.labels) or "-"
        return (f"[{sym}] {issue.id:<10} {issue.priority} {issue.type:<8} "
                f"{issue.status:<11} {labels:<15} {title}  ({age})")
    return f"[{sym}] {issue.id:<10} {issue.priority} {title}  ({age})"
