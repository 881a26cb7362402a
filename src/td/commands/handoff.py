"""td handoff - record structured work state."""

from __future__ import annotations

import sys
from typing import Any

import click
import yaml

from td import config
from td.cli import TDContext, pass_ctx
from td.errors import InvalidInput

SECTIONS = ("done", "remaining", "decisions", "uncertain")


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if str(v).strip()]
    text = str(value).strip()
    return [text] if text else []


def parse_handoff_yaml(text: str) -> dict[str, list[str]]:
    """Parse handoff sections from YAML.

    Accepts a mapping with any of done, remaining, decisions and uncertain
    (singular ``decision`` is accepted too); each value is a list or a
    single string.
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidInput(f"invalid handoff YAML: {e}") from e
    if data is None:
        return {key: [] for key in SECTIONS}
    if not isinstance(data, dict):
        raise InvalidInput("handoff YAML must be a mapping of sections")
    data = {str(k).strip().lower(): v for k, v in data.items()}
    if "decision" in data and "decisions" not in data:
        data["decisions"] = data.pop("decision")
    return {key: _as_list(data.get(key)) for key in SECTIONS}


@click.command("handoff")
@click.argument("issue_id", required=False, default="")
@click.option("--done", multiple=True, help="Completed item (repeatable)")
@click.option("--remaining", multiple=True, help="Remaining item (repeatable)")
@click.option("--decision", "decisions", multiple=True, help="Decision made (repeatable)")
@click.option("--uncertain", multiple=True, help="Open question (repeatable)")
@pass_ctx
def handoff(ctx: TDContext, issue_id: str, done: tuple[str, ...], remaining: tuple[str, ...],
            decisions: tuple[str, ...], uncertain: tuple[str, ...]) -> None:
    """Record a handoff for an issue (defaults to the focused issue).

    Without section options, YAML is read from stdin.
    """
    ops = ctx.ops()
    assert ctx.root is not None

    if issue_id:
        full_id = ctx.resolve_issue_id(issue_id)
    else:
        full_id = config.get_focus(ctx.root)
        if not full_id:
            raise InvalidInput("no issue given and no focused issue")

    sections = {"done": list(done), "remaining": list(remaining),
                "decisions": list(decisions), "uncertain": list(uncertain)}
    if not any(sections.values()) and not sys.stdin.isatty():
        sections = parse_handoff_yaml(click.get_text_stream("stdin").read())

    record = ops.handoff(full_id, git_state=ctx.git_state(), **sections)

    if ctx.json_output:
        ctx.output(record.to_dict())
    else:
        click.echo(f"HANDOFF RECORDED {full_id}")
