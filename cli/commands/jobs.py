"""Job Commands - inspect the job queue via the operator API"""

import json

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.endpoints import RelayClient, RelayError
from ..utils.config_manager import config
from ..utils.formatting import create_jobs_table, print_error, print_info

console = Console()
app = typer.Typer(name="jobs", help="Job queue inspection commands")


@app.command("list")
def list_jobs(
    status: list[str] | None = typer.Option(
        None, "--status", "-s", help="Filter by status (repeatable)"
    ),
    job_type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Maximum results"),
    offset: int = typer.Option(0, "--offset", help="Results offset"),
):
    """📋 List jobs, newest first"""
    base_url = config.get("api.base_url")
    page_size = limit or config.get("display.jobs_per_page", 20)

    try:
        with RelayClient(base_url) as client:
            data = client.list_jobs(
                status=status, job_type=job_type, limit=page_size, offset=offset
            )
    except RelayError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = data.get("jobs", [])
    if not jobs:
        print_info("No jobs found")
        return

    console.print(create_jobs_table(jobs))
    console.print(
        f"[dim]Showing {len(jobs)} of {data.get('total', len(jobs))} jobs[/dim]"
    )


@app.command("show")
def show_job(
    job_id: int = typer.Argument(..., help="Job ID"),
):
    """🔍 Show a single job with its payload"""
    base_url = config.get("api.base_url")

    try:
        with RelayClient(base_url) as client:
            job = client.get_job(job_id)
    except RelayError as e:
        print_error(f"Failed to get job {job_id}: {e}")
        raise typer.Exit(1) from None

    console.print(create_jobs_table([job]))
    console.print(
        Panel(json.dumps(job.get("payload", {}), indent=2), title="Payload")
    )
    if job.get("last_error"):
        console.print(Panel(job["last_error"], title="Last Error", border_style="red"))
