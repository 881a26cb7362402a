"""td init - initialize a new .todos/ directory."""

from __future__ import annotations

import os

import click

from td import session
from td.cli import TDContext, pass_ctx
from td.config import ProjectConfig, config_lock, config_path
from td.storage.sqlite_store import open_store
from td.workdir import TODOS_DIR, db_path


@click.command("init")
@pass_ctx
def init_cmd(ctx: TDContext) -> None:
    """Initialize a td project in the current directory."""
    root = ctx.root or os.path.abspath(os.environ.get("TD_WORK_DIR") or os.getcwd())
    todos = os.path.join(root, TODOS_DIR)

    if os.path.isdir(todos) and os.path.exists(db_path(root)):
        if ctx.json_output:
            ctx.output({"root": root, "created": False})
        else:
            click.echo(f"td already initialized at {todos}")
        return

    os.makedirs(todos, exist_ok=True)
    with config_lock(root):
        if not os.path.exists(config_path(root)):
            ProjectConfig().save(root)

    gitignore_path = os.path.join(todos, ".gitignore")
    if not os.path.exists(gitignore_path):
        with open(gitignore_path, "w") as f:
            f.write("# td local files\n")
            f.write("*.db-wal\n")
            f.write("*.db-shm\n")
            f.write("session\n")
            f.write("session.lock\n")
            f.write("config.json.lock\n")

    store = open_store(db_path(root))
    sess = session.get_or_create(root)
    ctx.root = root

    if ctx.json_output:
        ctx.output({"root": root, "created": True, "schema_version": store.schema_version(),
                    "session": sess.id})
        return
    click.echo(f"INITIALIZED {todos}")
    ctx.echo(f"  Database: {db_path(root)}")
    ctx.echo(f"  Session:  {sess.id}")
