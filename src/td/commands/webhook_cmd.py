"""td webhook - configure outbound webhook delivery."""

from __future__ import annotations

import click
import httpx

from td import config, webhook
from td.cli import TDContext, pass_ctx
from td.errors import InvalidInput, TDError


@click.group("webhook")
def webhook_cmd() -> None:
    """Manage the project webhook."""


@webhook_cmd.command("set")
@click.argument("url")
@click.option("--secret", default="", help="HMAC-SHA256 signing secret")
@pass_ctx
def webhook_set(ctx: TDContext, url: str, secret: str) -> None:
    """Deliver every write to URL."""
    if not url.startswith(("http://", "https://")):
        raise InvalidInput(f"webhook URL must be http(s): {url}")
    config.set_webhook(ctx.find_root(), url, secret)
    ctx.echo(f"WEBHOOK SET {url}")


@webhook_cmd.command("clear")
@pass_ctx
def webhook_clear(ctx: TDContext) -> None:
    """Stop webhook delivery."""
    config.set_webhook(ctx.find_root(), "", "")
    ctx.echo("WEBHOOK CLEARED")


@webhook_cmd.command("status")
@pass_ctx
def webhook_status(ctx: TDContext) -> None:
    """Show the configured webhook."""
    root = ctx.find_root()
    url = webhook.get_url(root)
    data = {"url": url, "enabled": bool(url), "signed": bool(webhook.get_secret(root))}
    if ctx.json_output:
        ctx.output(data)
    elif url:
        click.echo(f"{url}{' (signed)' if data['signed'] else ''}")
    else:
        click.echo("No webhook configured.")


@webhook_cmd.command("test")
@pass_ctx
def webhook_test(ctx: TDContext) -> None:
    """Send an empty test payload."""
    root = ctx.find_root()
    url = webhook.get_url(root)
    if not url:
        raise InvalidInput("no webhook configured. Run 'td webhook set <url>' first")
    try:
        webhook.dispatch(url, webhook.get_secret(root), webhook.build_payload(root, []))
    except httpx.HTTPError as e:
        raise TDError(f"webhook test failed: {e}") from e
    ctx.echo(f"WEBHOOK OK {url}")
