#!/usr/bin/env python3
"""
upgotify command line interface

Commands:
- run: start the distributor daemon
- status: show stored registrations and the message watermark
- register / unregister: one-shot registration changes against Gotify
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from upgotify import __version__
from upgotify.core.config import ConfigurationError, DistributorConfig
from upgotify.core.exceptions import StoreError
from upgotify.core.logging_config import mask_token, setup_logging
from upgotify.distributor.daemon import Distributor
from upgotify.distributor.registration_service import NEW_ENDPOINT
from upgotify.distributor.registration_store import RegistrationStore

logger = logging.getLogger(__name__)
console = Console()


def _handle_cli_error(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler."""
    logger.error("CLI error: %s", exc, exc_info=True)
    console.print(f"[bold red]Error:[/] {exc}")
    sys.exit(exit_code)


def _load_config(ctx: click.Context) -> DistributorConfig:
    config = DistributorConfig.from_env()
    if ctx.obj.get("log_level"):
        config.log_level = ctx.obj["log_level"]
    return config


def _emit(ctx: click.Context, payload: dict[str, Any]) -> bool:
    """Print JSON when --json was given. Returns True if it did."""
    if ctx.obj.get("json_output"):
        click.echo(json.dumps(payload, indent=2))
        return True
    return False


@click.group()
@click.version_option(__version__, prog_name="upgotify")
@click.option("--log-level", default=None, type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), help="Override UPGOTIFY_LOG_LEVEL")
@click.option("--json", "json_output", is_flag=True, help="Machine-readable output")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, json_output: bool):
    """UnifiedPush distributor for Gotify."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["json_output"] = json_output


@cli.command("run")
@click.pass_context
def run_daemon(ctx: click.Context):
    """
    Run the distributor until interrupted.

    Example:
        upgotify run
    """
    try:
        config = _load_config(ctx)
        setup_logging(
            name="upgotify",
            level=config.log_level,
            log_file=config.log_file,
            environment=config.environment,
        )
        distributor = Distributor.from_config(config)
    except (ConfigurationError, StoreError) as exc:
        _handle_cli_error(exc)
        return

    try:
        asyncio.run(distributor.run())
    except KeyboardInterrupt:
        console.print("[yellow]Distributor stopped[/]")


@cli.command("status")
@click.pass_context
def show_status(ctx: click.Context):
    """Show stored registrations and the watermark."""
    try:
        config = _load_config(ctx)
        store = RegistrationStore(config.db_path)
    except (ConfigurationError, StoreError) as exc:
        _handle_cli_error(exc)
        return

    async def collect():
        return await store.all(), await store.get_watermark()

    try:
        registrations, watermark = asyncio.run(collect())
    except StoreError as exc:
        _handle_cli_error(exc)
        return
    finally:
        store.close()

    payload = {
        "watermark": watermark,
        "registrations": [r.to_dict() for r in registrations],
    }
    if _emit(ctx, payload):
        return

    table = Table(box=box.ROUNDED)
    table.add_column("App ID", style="cyan")
    table.add_column("Token")
    table.add_column("Gotify App", justify="right")
    for registration in registrations:
        table.add_row(
            registration.local_app_id,
            mask_token(registration.local_token),
            str(registration.upstream_app_id),
        )
    console.print(table)
    console.print(f"[cyan]Watermark:[/] {watermark if watermark is not None else 'none'}")


@cli.command("register")
@click.option("--app-id", required=True, help="Application id of the subscriber")
@click.option("--token", required=True, help="Subscription token")
@click.pass_context
def register(ctx: click.Context, app_id: str, token: str):
    """
    Register a subscription and print its push endpoint.

    Example:
        upgotify register --app-id org.example.Chat --token tok1
    """
    try:
        config = _load_config(ctx)
        distributor = Distributor.from_config(config)
    except (ConfigurationError, StoreError) as exc:
        _handle_cli_error(exc)
        return

    try:
        with console.status("[bold cyan]Registering..."):
            status, detail = asyncio.run(distributor.interface.Register(app_id, token))
    finally:
        distributor.store.close()

    if _emit(ctx, {"status": status, "detail": detail}):
        return
    if status != NEW_ENDPOINT:
        console.print(f"[bold red]{status}:[/] {detail}")
        sys.exit(1)

    table = Table(show_header=False, box=box.ROUNDED)
    table.add_row("[cyan]App ID", app_id)
    table.add_row("[cyan]Token", mask_token(token))
    table.add_row("[green]Endpoint", detail)
    console.print(Panel(table, title="[green]Registered", border_style="green"))


@cli.command("unregister")
@click.option("--token", required=True, help="Subscription token to remove")
@click.pass_context
def unregister(ctx: click.Context, token: str):
    """Remove every registration for a subscription token."""
    try:
        config = _load_config(ctx)
        distributor = Distributor.from_config(config)
    except (ConfigurationError, StoreError) as exc:
        _handle_cli_error(exc)
        return

    try:
        asyncio.run(distributor.interface.Unregister(token))
    finally:
        distributor.store.close()

    if _emit(ctx, {"status": "unregistered", "token": token}):
        return
    console.print(f"[green]Unregistered:[/] {mask_token(token)}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
