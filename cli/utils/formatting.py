"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

CONDITION_STYLES = {
    "steady": "green",
    "high_load": "yellow",
    "worker_down": "red",
    "has_dead_jobs": "red",
}

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "cyan",
    "done": "green",
    "failed": "magenta",
    "dead": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def _truncate(text: str | None, length: int = 60) -> str:
    if not text:
        return "—"
    return text[:length] + "..." if len(text) > length else text


def create_condition_panel(stats: dict[str, Any]) -> Panel:
    """Overall condition with any alerts underneath"""
    condition = stats.get("condition", "unknown")
    style = CONDITION_STYLES.get(condition, "white")

    lines = [f"Condition: [bold {style}]{condition.upper()}[/bold {style}]"]
    for alert in stats.get("alerts", []):
        lines.append(f"[yellow]⚠ {alert}[/yellow]")

    return Panel("\n".join(lines), title="Queue Health", border_style=style)


def create_status_table(counts: dict[str, int], title: str = "Jobs by Status") -> Table:
    """Create a table of counts keyed by status"""
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("Status", justify="left", style="bold")
    table.add_column("Count", justify="right", style="cyan")

    for status, count in counts.items():
        style = STATUS_STYLES.get(status, "white")
        table.add_row(f"[{style}]{status}[/{style}]", str(count))

    return table


def create_heartbeats_table(heartbeats: list[dict[str, Any]]) -> Table:
    """Create formatted table for worker heartbeats"""
    table = Table(title="Workers", box=box.ROUNDED)

    table.add_column("Worker", justify="left", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Last Seen", justify="left", style="white")
    table.add_column("Age (s)", justify="right")

    for hb in heartbeats:
        stale = hb.get("stale", True)
        age_style = "red" if stale else "green"
        table.add_row(
            hb.get("worker_id", ""),
            hb.get("status") or "—",
            hb.get("last_seen", ""),
            f"[{age_style}]{hb.get('age_seconds', 0):.1f}[/{age_style}]",
        )

    return table


def create_errors_table(errors: list[dict[str, Any]]) -> Table:
    """Create formatted table for recent job errors"""
    table = Table(title="Recent Errors", box=box.ROUNDED)

    table.add_column("Job", justify="right", style="cyan")
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Error", justify="left", style="white")

    for error in errors:
        status = error.get("status") or "—"
        style = STATUS_STYLES.get(status, "white")
        table.add_row(
            str(error.get("id", "")),
            error.get("job_type", ""),
            f"[{style}]{status}[/{style}]",
            f"{error.get('attempts', 0)}/{error.get('max_attempts', 0)}",
            _truncate(error.get("last_error")),
        )

    return table


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a jobs list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="right", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Run At", justify="left", style="white")
    table.add_column("Last Error", justify="left", style="dim")

    for job in jobs:
        status = job.get("status") or "—"
        style = STATUS_STYLES.get(status, "white")
        table.add_row(
            str(job.get("id", "")),
            job.get("job_type", ""),
            f"[{style}]{status}[/{style}]",
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            job.get("run_at", ""),
            _truncate(job.get("last_error"), 40),
        )

    return table
