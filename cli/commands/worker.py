"""Worker Commands - run the relay loops directly against the database"""

import asyncio
import signal

import typer
from rich.console import Console
from rich.panel import Panel

from api.config.logging import setup_logging
from api.config.settings import Settings, get_settings
from api.infra.database import Database
from api.v1.core.registries import event_route_registry, job_registry
from api.v1.infra.jobs.queue import JobQueue
from api.v1.infra.jobs.registry_init import register_job_handlers
from api.v1.infra.jobs.worker import build_worker
from api.v1.infra.outbox.bridge import OutboxBridge
from api.v1.infra.outbox.routing import register_default_routes

from ..utils.formatting import print_error, print_info, print_success

console = Console()


def _bootstrap(settings: Settings, batch_size: int | None = None) -> Settings:
    setup_logging()
    if batch_size:
        settings = settings.model_copy(update={"worker_batch_size": batch_size})
    register_default_routes(event_route_registry)
    register_job_handlers(settings, job_registry)
    return settings


def _install_signal_handlers(stop) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(stop()))
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass


async def _run_worker(settings: Settings, once: bool, with_bridge: bool | None) -> None:
    database = Database(settings)
    try:
        worker = build_worker(settings, database, job_registry, with_bridge=with_bridge)
        if once:
            if worker.bridge is not None:
                async with database.session() as session:
                    bridged = await worker.bridge.bridge_once(session)
                print_info(f"Bridged {bridged.bridged} events")
            await worker.beat()
            result = await worker.run_once()
            print_success(
                f"Claimed {result.claimed}: {result.completed} done, "
                f"{result.retried} retrying, {result.dead} dead"
            )
            return

        _install_signal_handlers(worker.stop)
        await worker.start()
    finally:
        await database.close()


async def _run_bridge(settings: Settings, once: bool) -> None:
    database = Database(settings)
    bridge = OutboxBridge(settings, database, event_route_registry)
    try:
        if once:
            async with database.session() as session:
                result = await bridge.bridge_once(session)
            print_success(
                f"Scanned {result.scanned}: {result.bridged} bridged, "
                f"{result.already_bridged} already bridged"
            )
            if result.conflicts:
                print_error(
                    f"{result.conflicts} events left pending: idempotency key held "
                    "by another job"
                )
            return

        stop_event = asyncio.Event()

        async def stop():
            stop_event.set()

        _install_signal_handlers(stop)
        await bridge.run(stop_event)
    finally:
        await database.close()


async def _repair(settings: Settings) -> dict[str, int]:
    database = Database(settings)
    try:
        async with database.session() as session:
            return await JobQueue(settings).repair_null_status(session)
    finally:
        await database.close()


def worker(
    once: bool = typer.Option(False, "--once", help="Run a single cycle and exit"),
    batch_size: int | None = typer.Option(
        None, "--batch-size", "-b", help="Jobs claimed per cycle"
    ),
    with_bridge: bool | None = typer.Option(
        None,
        "--with-bridge/--no-bridge",
        help="Run the outbox bridge in this process (default: WORKER_RUN_BRIDGE)",
    ),
):
    """⚙️ Run a job worker"""
    settings = _bootstrap(get_settings(), batch_size)
    if not once:
        console.print(
            Panel(
                f"Batch size: [cyan]{settings.worker_batch_size}[/cyan]\n"
                f"Poll interval: [cyan]{settings.worker_poll_interval_ms}ms[/cyan]\n"
                f"Dry run: [yellow]{settings.dry_run}[/yellow]",
                title="Starting Worker",
                border_style="green",
            )
        )
    asyncio.run(_run_worker(settings, once, with_bridge))


def bridge(
    once: bool = typer.Option(False, "--once", help="Run a single cycle and exit"),
):
    """🌉 Run the outbox bridge"""
    settings = _bootstrap(get_settings())
    asyncio.run(_run_bridge(settings, once))


def repair():
    """🩹 Reset NULL status rows to pending"""
    settings = get_settings()
    repaired = asyncio.run(_repair(settings))
    print_success(
        f"Repaired {repaired['jobs']} jobs and {repaired['events']} outbox events"
    )
