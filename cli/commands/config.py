"""Configuration Commands - CLI settings management"""

import os
from collections.abc import Callable
from typing import Any

import typer
from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from ..utils.config_manager import ENV_OVERRIDES, config
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="config", help="CLI configuration management")

SECRET_KEYS = ("api.admin_token",)


def _url(raw: str) -> str:
    if not raw.startswith(("http://", "https://")):
        raise ValueError("must start with http:// or https://")
    return raw


def _positive_int(raw: str) -> int:
    if not raw.isdigit() or int(raw) == 0:
        raise ValueError("must be a positive whole number")
    return int(raw)


KEY_PARSERS: dict[str, Callable[[str], Any]] = {
    "api.base_url": _url,
    "api.timeout": _positive_int,
    "api.admin_token": str,
    "display.jobs_per_page": _positive_int,
    "display.recent_errors": _positive_int,
}


def _masked(key: str, value: Any) -> str:
    if key in SECRET_KEYS and value:
        return "****"
    return "" if value is None else str(value)


def _source(key: str, value: Any, defaults: dict[str, Any]) -> str:
    section, _, name = key.partition(".")
    for env_var, target in ENV_OVERRIDES.items():
        if target == (section, name) and os.getenv(env_var):
            return f"env {env_var}"
    return "default" if defaults.get(section, {}).get(name) == value else "file"


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Configuration key (e.g., 'api.base_url')"),
    value: str = typer.Argument(..., help="Configuration value"),
):
    """⚙️ Set a configuration value"""
    parser = KEY_PARSERS.get(key)
    if parser is None:
        print_error(f"Unknown key '{key}'. Known keys: {', '.join(KEY_PARSERS)}")
        raise typer.Exit(1)

    try:
        parsed = parser(value)
    except ValueError as e:
        print_error(f"{key} {e}")
        raise typer.Exit(1) from None

    try:
        config.set(key, parsed)
    except OSError as e:
        print_error(f"Failed to set configuration: {e}")
        raise typer.Exit(1) from None

    print_success(f"Set {key} = {_masked(key, parsed)}")
    if key == "api.base_url":
        print_info("Test connection with: relay status")


@app.command("get")
def get_config(
    key: str | None = typer.Argument(
        None, help="Configuration key (optional - shows all if omitted)"
    ),
):
    """📋 Get configuration value(s)"""
    if not key:
        show_all_config()
        return

    value = config.get(key)
    if value is None:
        console.print(f"[yellow]Key '{key}' is not set[/yellow]")
        return
    console.print(f"[cyan]{key}[/cyan] = [yellow]{_masked(key, value)}[/yellow]")


@app.command("show")
def show_all_config():
    """📊 Show effective settings and where each comes from"""
    defaults = config.get_default_config()
    table = Table(title="Outbox Relay CLI Configuration", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_column("Source", style="dim")

    for key in KEY_PARSERS:
        value = config.get(key)
        table.add_row(key, _masked(key, value), _source(key, value, defaults))

    console.print(table)
    console.print(f"[dim]File: {config.config_file}[/dim]")


@app.command("reset")
def reset_config(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🔄 Reset configuration to defaults"""
    if not yes and not Confirm.ask("Reset the CLI configuration file to defaults?"):
        console.print("Configuration reset cancelled.")
        return

    try:
        config.reset()
    except OSError as e:
        print_error(f"Failed to reset configuration: {e}")
        raise typer.Exit(1) from None

    print_success("Configuration reset to defaults")
