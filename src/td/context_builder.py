"""Read-only context snapshots for agents starting or resuming work.

Everything is read fresh from the store on each call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from td.models import GitSnapshot, Handoff, Issue, IssueFilter, Log, Status
from td.storage.sqlite_store import SQLiteStore
from td.utils import format_time_ago, truncate

DEFAULT_RECENT_LOGS = 5
DEFAULT_OPEN_LIMIT = 5


@dataclass
class Context:
    session_id: str
    session_name: str = ""
    focused: Optional[Issue] = None
    handoff: Optional[Handoff] = None
    logs: list[Log] = field(default_factory=list)
    snapshot: Optional[GitSnapshot] = None
    in_progress: list[Issue] = field(default_factory=list)
    reviewable: list[Issue] = field(default_factory=list)
    open_issues: list[Issue] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)
    work_session: str = ""

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"session": {"id": self.session_id}}
        if self.session_name:
            d["session"]["name"] = self.session_name
        if self.work_session:
            d["work_session"] = self.work_session
        if self.focused is not None:
            d["focused"] = self.focused.to_dict()
        if self.handoff is not None:
            d["handoff"] = self.handoff.to_dict()
        if self.snapshot is not None:
            d["git_snapshot"] = self.snapshot.to_row()
        d["recent_logs"] = [log.to_dict() for log in self.logs]
        d["in_progress"] = [i.to_dict() for i in self.in_progress]
        d["reviewable"] = [i.to_dict() for i in self.reviewable]
        d["open"] = [i.to_dict() for i in self.open_issues]
        d["counts"] = dict(self.counts)
        return d


def build(store: SQLiteStore, session_id: str, focused_id: str = "",
          session_name: str = "", work_session: str = "",
          log_limit: int = DEFAULT_RECENT_LOGS,
          open_limit: int = DEFAULT_OPEN_LIMIT) -> Context:
    ctx = Context(session_id=session_id, session_name=session_name,
                  work_session=work_session)
    if focused_id:
        ctx.focused = store.get_issue(focused_id)
    if ctx.focused is not None:
        ctx.handoff = store.get_latest_handoff(ctx.focused.id)
        ctx.logs = store.get_logs(ctx.focused.id, limit=log_limit)
        ctx.snapshot = store.get_latest_snapshot(ctx.focused.id)
    else:
        ctx.logs = store.get_recent_logs(limit=log_limit, session_id=session_id)

    ctx.in_progress = store.list_issues(IssueFilter(status=[Status.IN_PROGRESS],
                                                    implementer=session_id))
    ctx.reviewable = store.get_reviewable_issues(session_id)
    ctx.open_issues = store.list_issues(IssueFilter(status=[Status.OPEN],
                                                    sort="priority", limit=open_limit))
    ctx.counts = store.count_by_status()
    return ctx


def _issue_line(issue: Issue) -> str:
    return f"  {issue.id} [{issue.priority}] {truncate(issue.title, 60)}"


def render(ctx: Context) -> str:
    """Plain-text briefing with the same content as ``Context.to_dict``."""
    lines = [f"SESSION: {ctx.session_id}" + (f" ({ctx.session_name})" if ctx.session_name else "")]
    if ctx.work_session:
        lines.append(f"WORK SESSION: {ctx.work_session}")

    if ctx.focused is not None:
        issue = ctx.focused
        lines += ["", f"FOCUSED: {issue.id} \"{issue.title}\" [{issue.status}] {issue.priority}"]
        if ctx.handoff is not None:
            lines.append(f"  Last handoff ({format_time_ago(ctx.handoff.timestamp)}):")
            for label, items in (("Done", ctx.handoff.done),
                                 ("Remaining", ctx.handoff.remaining),
                                 ("Decisions", ctx.handoff.decisions),
                                 ("Uncertain", ctx.handoff.uncertain)):
                if items:
                    lines.append(f"    {label}:")
                    lines += [f"      - {item}" for item in items]
        if ctx.snapshot is not None:
            lines.append(f"  Git: {ctx.snapshot.commit_sha[:7]} ({ctx.snapshot.branch}), "
                         f"{ctx.snapshot.dirty_files} dirty files")
    else:
        lines += ["", "No focused issue."]

    if ctx.logs:
        lines += ["", "RECENT LOGS:"]
        for log in ctx.logs:
            prefix = f"{log.issue_id} " if log.issue_id else ""
            lines.append(f"  [{format_time_ago(log.timestamp)}] {prefix}{log.message}")

    sections = (("IN PROGRESS", ctx.in_progress),
                ("AWAITING YOUR REVIEW", ctx.reviewable),
                ("OPEN (by priority)", ctx.open_issues))
    for title, issues in sections:
        if issues:
            lines += ["", f"{title}:"]
            lines += [_issue_line(i) for i in issues]

    if ctx.counts:
        summary = ", ".join(f"{ctx.counts.get(s, 0)} {s}" for s in Status.ORDER)
        lines += ["", f"TOTALS: {summary}"]
    return "\n".join(lines)
