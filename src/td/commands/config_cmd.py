"""td config / td feature - project settings and feature flags."""

from __future__ import annotations

from typing import Any, Callable

import click

from td import config, features
from td.cli import TDContext, pass_ctx
from td.config import ProjectConfig
from td.errors import InvalidInput
from td.utils import parse_bool
from td.workflow import TransitionMode


def _parse_int(key: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise InvalidInput(f"{key} must be an integer, got {raw!r}") from None
    if value < 0:
        raise InvalidInput(f"{key} must not be negative")
    return value


def _parse_flag(key: str, raw: str) -> bool:
    value = parse_bool(raw)
    if value is None:
        raise InvalidInput(f"{key} must be true or false, got {raw!r}")
    return value


def _parse_mode(key: str, raw: str) -> str:
    mode = raw.strip().lower()
    if not TransitionMode.is_valid(mode):
        raise InvalidInput(f"invalid workflow mode: {raw} (use liberal, advisory or strict)")
    return mode


# key -> parser for keys settable from the command line
SETTABLE: dict[str, Callable[[str, str], Any]] = {
    "title_min_length": _parse_int,
    "title_max_length": _parse_int,
    "workflow_mode": _parse_mode,
    "include_closed": _parse_flag,
    "session_name": lambda key, raw: raw.strip(),
    "sort_mode": lambda key, raw: raw.strip(),
    "type_filter": lambda key, raw: raw.strip(),
    "search_query": lambda key, raw: raw,
}


@click.group("config")
def config_cmd() -> None:
    """Show or change project settings."""


@config_cmd.command("list")
@pass_ctx
def config_list(ctx: TDContext) -> None:
    """Show all settings."""
    cfg = ProjectConfig.load(ctx.find_root()).to_dict()
    if ctx.json_output:
        ctx.output(cfg)
        return
    for key in sorted(cfg):
        click.echo(f"{key} = {cfg[key]}")


@config_cmd.command("get")
@click.argument("key")
@pass_ctx
def config_get(ctx: TDContext, key: str) -> None:
    """Show one setting."""
    cfg = ProjectConfig.load(ctx.find_root()).to_dict()
    if key not in cfg:
        raise InvalidInput(f"unknown config key: {key}")
    if ctx.json_output:
        ctx.output({key: cfg[key]})
    else:
        click.echo(cfg[key])


@config_cmd.command("set")
@click.argument("key")
@click.argument("value")
@pass_ctx
def config_set(ctx: TDContext, key: str, value: str) -> None:
    """Change one setting."""
    parser = SETTABLE.get(key)
    if parser is None:
        raise InvalidInput(f"config key cannot be set: {key} "
                           f"(settable: {', '.join(sorted(SETTABLE))})")
    parsed = parser(key, value)

    def change(c: ProjectConfig) -> None:
        setattr(c, key, parsed)
        if c.title_min_length > c.title_max_length:
            raise InvalidInput("title_min_length must not exceed title_max_length")

    config.update(ctx.find_root(), change)
    if ctx.json_output:
        ctx.output({key: parsed})
    else:
        click.echo(f"SET {key} = {parsed}")


# --- Feature flags ---

def _require_known(name: str) -> str:
    canonical = features.normalize_name(name)
    if not features.is_known(canonical):
        known = ", ".join(f.name for f in features.list_all())
        raise InvalidInput(f"unknown feature: {name} (known: {known})")
    return canonical


@click.group("feature")
def feature() -> None:
    """Inspect and toggle feature flags."""


@feature.command("list")
@pass_ctx
def feature_list(ctx: TDContext) -> None:
    """List flags with their resolved state and source."""
    root = ctx.find_root()
    rows = []
    for f in features.list_all():
        enabled, source = features.resolve(root, f.name)
        rows.append({"name": f.name, "enabled": enabled, "source": source,
                     "default": f.default, "description": f.description})
    if ctx.json_output:
        ctx.output(rows)
        return
    for r in rows:
        state = "on " if r["enabled"] else "off"
        click.echo(f"{r['name']:<22} {state} ({r['source']})  {r['description']}")


@feature.command("get")
@click.argument("name")
@pass_ctx
def feature_get(ctx: TDContext, name: str) -> None:
    """Show one flag."""
    canonical = _require_known(name)
    enabled, source = features.resolve(ctx.find_root(), canonical)
    if ctx.json_output:
        ctx.output({"name": canonical, "enabled": enabled, "source": source})
    else:
        click.echo(f"{canonical} = {'on' if enabled else 'off'} ({source})")


@feature.command("set")
@click.argument("name")
@click.argument("value")
@pass_ctx
def feature_set(ctx: TDContext, name: str, value: str) -> None:
    """Store a flag value in the project config."""
    canonical = _require_known(name)
    enabled = _parse_flag(canonical, value)
    config.set_feature_flag(ctx.find_root(), canonical, enabled)
    features.reset()
    if ctx.json_output:
        ctx.output({"name": canonical, "enabled": enabled})
    else:
        click.echo(f"SET {canonical} = {'on' if enabled else 'off'}")


@feature.command("unset")
@click.argument("name")
@pass_ctx
def feature_unset(ctx: TDContext, name: str) -> None:
    """Remove a flag from the project config."""
    canonical = _require_known(name)
    config.unset_feature_flag(ctx.find_root(), canonical)
    features.reset()
    if ctx.json_output:
        ctx.output({"name": canonical, "unset": True})
    else:
        click.echo(f"UNSET {canonical}")
