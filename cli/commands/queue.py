"""Queue Commands - stats and dead-letter replay via the operator API"""

import typer
from rich.console import Console

from ..client.endpoints import RelayClient, RelayError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_condition_panel,
    create_errors_table,
    create_heartbeats_table,
    create_status_table,
    print_error,
    print_info,
    print_success,
)

console = Console()


def stats(
    recent: int = typer.Option(
        None, "--recent", "-r", help="Number of recent errors to show"
    ),
):
    """📊 Show queue depth, worker heartbeats and recent errors"""
    base_url = config.get("api.base_url")
    recent_limit = recent or config.get("display.recent_errors")

    try:
        with RelayClient(base_url) as client:
            data = client.get_queue_stats(recent_limit=recent_limit)
    except RelayError as e:
        print_error(f"Failed to get queue stats: {e}")
        raise typer.Exit(1) from None

    console.print(create_condition_panel(data))
    console.print(create_status_table(data.get("jobs_by_status", {})))

    outbox = data.get("outbox_by_queue_status", {})
    if outbox:
        console.print(create_status_table(outbox, title="Outbox by Queue Status"))

    heartbeats = data.get("heartbeats", [])
    if heartbeats:
        console.print(create_heartbeats_table(heartbeats))
    else:
        print_info("No worker heartbeats recorded")

    errors = data.get("recent_errors", [])
    if errors:
        console.print(create_errors_table(errors))


def replay(
    job_id: int = typer.Argument(..., help="ID of the dead job to replay"),
):
    """🔁 Replay a dead job as a new pending job"""
    base_url = config.get("api.base_url")

    try:
        with RelayClient(base_url) as client:
            result = client.replay_job(job_id)
    except RelayError as e:
        print_error(f"Failed to replay job {job_id}: {e}")
        raise typer.Exit(1) from None

    new_job = result.get("job", {})
    print_success(f"Job {job_id} replayed as job {new_job.get('id')}")
