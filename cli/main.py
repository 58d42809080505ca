"""Outbox Relay CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.endpoints import RelayClient, RelayError
from .commands import config, jobs, queue, worker
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

# Create main Typer app
app = typer.Typer(
    name="relay",
    help="📬 Outbox Relay - durable event outbox, job queue and workers",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")

# Top-level commands
app.command("worker")(worker.worker)
app.command("bridge")(worker.bridge)
app.command("repair")(worker.repair)
app.command("stats")(queue.stats)
app.command("replay")(queue.replay)


@app.command()
def status():
    """📊 Check API connectivity and worker health"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with RelayClient(base_url) as client:
            health = client.health_check()
    except RelayError as e:
        print_error(f"Failed to connect: {e}")
        console.print(
            Panel(
                f"🚫 [red]Connection Failed[/red]\n\n"
                f"Make sure the Outbox Relay API is running at:\n"
                f"[blue]{base_url}[/blue]\n\n"
                f"You can update the API URL with:\n"
                f"[cyan]relay config set api.base_url <url>[/cyan]",
                title="Connection Error",
                border_style="red",
            )
        )
        raise typer.Exit(1) from None

    worker_health = health.get("worker") or {}
    alive = worker_health.get("alive", False)
    worker_line = (
        "[green]alive[/green]" if alive else "[red]no fresh heartbeat[/red]"
    )
    console.print(
        Panel(
            f"🚀 [green]Connected Successfully![/green]\n\n"
            f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
            f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
            f"• Workers: {worker_line}\n"
            f"• Queue depth: [cyan]{worker_health.get('queue_depth', 0)}[/cyan]\n"
            f"• API URL: [blue]{base_url}[/blue]",
            title="System Status",
            border_style="green",
        )
    )


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(
        Panel(
            f"📬 [bold cyan]Outbox Relay CLI[/bold cyan]\n\n"
            f"• Version: [green]{__version__}[/green]",
            title="Version Info",
            border_style="cyan",
        )
    )


if __name__ == "__main__":
    app()
