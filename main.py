#!/usr/bin/env python3
"""
workflowbot - GitHub Actions workflow runs from Telegram

Run the bot with long polling (`poll`) or behind a webhook (`serve`).
"""
import asyncio
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from workflowbot import __version__

console = Console()


def _load_settings():
    """Load settings or exit with the configuration error."""
    from workflowbot.config import ConfigError, Settings

    try:
        return Settings.from_env()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="workflowbot")
def cli():
    """workflowbot - trigger and inspect GitHub Actions runs from Telegram"""
    pass


@cli.command()
def poll():
    """Run the bot with long polling"""
    from workflowbot.logging_config import setup_logging

    setup_logging()
    settings = _load_settings()

    console.print(Panel.fit(
        "[bold cyan]workflowbot[/bold cyan] - long polling\n"
        f"[dim]{settings.repo_owner}/{settings.repo_name} · {settings.workflow_id}[/dim]",
        border_style="cyan"
    ))
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")

    try:
        asyncio.run(_poll(settings))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")


async def _poll(settings):
    from workflowbot.telegram.handler import CommandHandler
    from workflowbot.telegram.transport import PollingTransport

    handler = CommandHandler.from_settings(settings)
    transport = PollingTransport(handler, settings.telegram_token, timeout=settings.http_timeout)
    try:
        await transport.start()
        await asyncio.Event().wait()
    finally:
        try:
            await transport.stop()
        finally:
            await handler.aclose()


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8080, help="Port to bind to")
def serve(host: str, port: int):
    """Run the webhook server"""
    from workflowbot.logging_config import setup_logging
    from workflowbot.server import create_app, run_server
    from workflowbot.telegram.handler import CommandHandler
    from workflowbot.telegram.transport import WebhookTransport

    setup_logging()
    settings = _load_settings()

    handler = CommandHandler.from_settings(settings)
    transport = WebhookTransport(handler, settings.telegram_token, timeout=settings.http_timeout)
    app = create_app(transport, webhook_secret=settings.webhook_secret)

    console.print(Panel.fit(
        "[bold cyan]workflowbot[/bold cyan] - webhook server\n"
        f"[dim]Listening on http://{host}:{port}/webhook[/dim]",
        border_style="cyan"
    ))
    if not settings.webhook_secret:
        console.print("[yellow]WEBHOOK_SECRET is not set; webhook calls are not authenticated[/yellow]")

    run_server(app, host=host, port=port)


@cli.command("set-webhook")
@click.argument("url")
def set_webhook(url: str):
    """Register URL as the bot's Telegram webhook"""
    settings = _load_settings()
    ok = asyncio.run(_set_webhook(settings, url))
    if ok:
        console.print(f"[green]✓[/green] Webhook set to {url}")
    else:
        console.print("[red]✗[/red] Telegram refused the webhook")
        sys.exit(1)


async def _set_webhook(settings, url: str) -> bool:
    from telegram.error import TelegramError
    from workflowbot.telegram.handler import CommandHandler
    from workflowbot.telegram.transport import WebhookTransport

    handler = CommandHandler.from_settings(settings)
    transport = WebhookTransport(handler, settings.telegram_token, timeout=settings.http_timeout)
    await transport.start()
    try:
        return await transport.set_webhook(url, settings.webhook_secret)
    except TelegramError as e:
        console.print(f"[red]Error:[/red] {e}")
        return False
    finally:
        await transport.stop()
        await handler.aclose()


@cli.command("gen-secret")
def gen_secret():
    """Print a fresh BOT_SECRET (base64, 32 bytes)"""
    from workflowbot.crypto import generate_secret

    click.echo(generate_secret())


@cli.command()
def config():
    """Show the loaded configuration (secrets masked)"""
    settings = _load_settings()

    table = Table(title="workflowbot configuration", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in settings.to_safe_dict().items():
        if value:
            table.add_row(key, value)
    console.print(table)


if __name__ == "__main__":
    cli()
