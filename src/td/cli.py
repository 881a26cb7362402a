"""Click CLI root and global flags for td."""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any

import click

from td import __version__, features, session, syncconfig, webhook
from td.config import ProjectConfig
from td.errors import InvalidInput, NotFound, TDError
from td.gitstate import GitState, capture
from td.models import ActionLog
from td.mutations import Mutator
from td.operations import IssueOperations
from td.storage.sqlite_store import SQLiteStore, open_store
from td.workdir import db_path, resolve_base_dir, start_dir, todos_dir

logger = logging.getLogger(__name__)


class TDContext:
    """Shared context for all commands."""

    def __init__(self) -> None:
        self.root: str | None = None
        self.store: SQLiteStore | None = None
        self.config: ProjectConfig | None = None
        self.session: session.Session | None = None
        self.mutator: Mutator | None = None
        self.json_output: bool = False
        self.verbose: bool = False
        self.quiet: bool = False
        self.autosync: Any = None
        self.written: list[ActionLog] = []

    @property
    def session_id(self) -> str:
        assert self.session is not None
        return self.session.id

    def find_root(self) -> str:
        if self.root is None:
            self.root = resolve_base_dir(start_dir())
        return self.root

    def ensure_initialized(self) -> None:
        """Ensure the project directory, store and session are available."""
        if self.store is not None:
            return
        root = self.find_root()
        if not os.path.isdir(todos_dir(root)):
            raise InvalidInput(f"not a td project (no .todos/ directory in {root}). "
                               "Run 'td init' to create one")
        self.config = ProjectConfig.load(root)
        self.store = open_store(db_path(root))
        self.session = session.get_or_create(root)
        if not self.session.name and self.config.session_name:
            self.session.name = self.config.session_name
        self.mutator = Mutator(self.store, self.session.id)
        self.mutator.subscribe(self.written.extend)
        self._start_autosync()

    def _start_autosync(self) -> None:
        assert self.store is not None and self.mutator is not None and self.root
        if not features.is_enabled(self.root, features.SYNC_AUTOSYNC.name):
            return
        cfg = syncconfig.load_sync_config()
        state = self.store.get_sync_state() or {}
        if not cfg.auto.enabled or not state.get("project_id") \
                or not syncconfig.is_authenticated():
            return
        from td.sync.autosync import AutoSync
        from td.sync.engine import connect

        store, root, session_id = self.store, self.root, self.session_id
        self.autosync = AutoSync(lambda: connect(store, root, session_id),
                                 debounce=cfg.debounce(), interval=cfg.interval(),
                                 pull=cfg.auto.pull)
        self.mutator.subscribe(self.autosync.notify)
        self.autosync.start(on_start=cfg.auto.on_start)

    def ops(self) -> IssueOperations:
        self.ensure_initialized()
        assert self.store is not None and self.mutator is not None and self.config
        return IssueOperations(self.store, self.mutator, mode=self.config.workflow_mode)

    def git_state(self) -> GitState | None:
        return capture(self.find_root())

    def resolve_issue_id(self, partial: str) -> str:
        """Resolve a partial issue ID or raise ``NotFound``."""
        assert self.store is not None
        full_id = self.store.resolve_id(partial)
        if full_id is None:
            raise NotFound(f"issue not found or ambiguous: {partial}")
        return full_id

    def output(self, data: dict | list) -> None:
        """Output data as JSON."""
        click.echo(json.dumps(data, indent=2, default=str))

    def echo(self, message: str) -> None:
        """Informational output, suppressed by --quiet."""
        if not self.quiet:
            click.echo(message)

    def close(self) -> None:
        """Flush background work once the command has finished."""
        if self.autosync is not None:
            self.autosync.flush()
            self.autosync.stop()
            self.autosync = None
        if self.written and self.root:
            webhook.deliver(self.root, self.written)
            self.written = []


pass_ctx = click.make_pass_decorator(TDContext, ensure=True)


def setup_logging(verbose: bool, quiet: bool) -> None:
    level = logging.WARNING
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    env_level = os.environ.get("TD_LOG_LEVEL", "").strip().upper()
    if env_level:
        level = logging.getLevelName(env_level)
        if not isinstance(level, int):
            level = logging.WARNING
    root_logger = logging.getLogger("td")
    for handler in list(root_logger.handlers):
        if getattr(handler, "_td_cli", False):
            root_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    handler._td_cli = True  # type: ignore[attr-defined]
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


class TDGroup(click.Group):
    """Group that renders ``TDError`` as ``ERROR: ...`` or a JSON error object."""

    def invoke(self, ctx: click.Context) -> Any:
        try:
            return super().invoke(ctx)
        except TDError as e:
            self._fail(ctx, e.code, e.message, e.exit_code)
        except (click.ClickException, click.exceptions.Exit, click.Abort):
            raise
        except Exception as e:
            logger.debug("unexpected error", exc_info=True)
            self._fail(ctx, "internal_error", str(e) or type(e).__name__, 2)

    def _fail(self, ctx: click.Context, code: str, message: str, exit_code: int) -> None:
        tctx = ctx.find_object(TDContext)
        if tctx is not None and tctx.json_output:
            click.echo(json.dumps({"error": {"code": code, "message": message}}, indent=2))
        else:
            click.echo(f"ERROR: {message}", err=True)
        ctx.exit(exit_code)


@click.group(cls=TDGroup, invoke_without_command=True)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--work-dir", envvar="TD_WORK_DIR", help="Start directory for project lookup")
@click.version_option(__version__, prog_name="td")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, verbose: bool, quiet: bool,
        work_dir: str | None) -> None:
    """td - session-aware issue tracker"""
    tctx = ctx.ensure_object(TDContext)
    tctx.verbose = verbose
    tctx.quiet = quiet
    if json_output:
        tctx.json_output = True
    if work_dir:
        tctx.root = resolve_base_dir(os.path.abspath(work_dir))
    setup_logging(verbose, quiet)
    ctx.call_on_close(tctx.close)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# --- Register all command groups ---

from td.commands.init_cmd import init_cmd
from td.commands.create import create
from td.commands.list_cmd import list_cmd
from td.commands.show import show
from td.commands.update import update
from td.commands.lifecycle import (
    approve, block, close, reject, reopen, review, start, unblock, unstart,
)
from td.commands.delete import delete, restore
from td.commands.log import log
from td.commands.handoff import handoff
from td.commands.comments import comment_add, comments
from td.commands.dep import dep
from td.commands.files import files, link, unlink
from td.commands.focus import focus, unfocus
from td.commands.query_cmd import query
from td.commands.board import board
from td.commands.note import note
from td.commands.ws import ws
from td.commands.session_cmd import session_cmd
from td.commands.config_cmd import config_cmd, feature
from td.commands.webhook_cmd import webhook_cmd
from td.commands.sync_cmd import auth, sync_cmd
from td.commands.silos import silos
from td.commands.context_cmd import context, status, usage
from td.commands.undo_cmd import undo_cmd

cli.add_command(init_cmd, "init")
cli.add_command(create, "create")
cli.add_command(create, "new")  # Alias
cli.add_command(list_cmd, "list")
cli.add_command(show, "show")
cli.add_command(update, "update")
cli.add_command(start, "start")
cli.add_command(unstart, "unstart")
cli.add_command(review, "review")
cli.add_command(approve, "approve")
cli.add_command(reject, "reject")
cli.add_command(close, "close")
cli.add_command(block, "block")
cli.add_command(unblock, "unblock")
cli.add_command(reopen, "reopen")
cli.add_command(delete, "delete")
cli.add_command(restore, "restore")
cli.add_command(log, "log")
cli.add_command(handoff, "handoff")
cli.add_command(comments, "comments")
cli.add_command(comment_add, "comment")
cli.add_command(dep, "dep")
cli.add_command(link, "link")
cli.add_command(unlink, "unlink")
cli.add_command(files, "files")
cli.add_command(focus, "focus")
cli.add_command(unfocus, "unfocus")
cli.add_command(query, "query")
cli.add_command(board, "board")
cli.add_command(note, "note")
cli.add_command(ws, "ws")
cli.add_command(session_cmd, "session")
cli.add_command(config_cmd, "config")
cli.add_command(feature, "feature")
cli.add_command(webhook_cmd, "webhook")
cli.add_command(sync_cmd, "sync")
cli.add_command(auth, "auth")
cli.add_command(silos, "silos")
cli.add_command(context, "context")
cli.add_command(status, "status")
cli.add_command(usage, "usage")
cli.add_command(undo_cmd, "undo")


def main() -> None:
    cli(auto_envvar_prefix="TD")
