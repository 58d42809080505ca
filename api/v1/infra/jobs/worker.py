"""
Job worker: claims leased batches, runs handlers, records outcomes, beats.
"""

import asyncio
import os
import secrets
import socket
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from api.config.logging import bind_worker_context, get_logger
from api.config.settings import Settings
from api.infra.clock import sleep_or_stop
from api.infra.database import Database
from api.v1.core.exceptions import (
    JobNotFoundError,
    PermanentJobError,
    UnknownJobTypeError,
)
from api.v1.core.registries import JobContext, JobRegistry, job_registry
from api.v1.infra.heartbeat.service import (
    STATUS_RUNNING,
    STATUS_STOPPED,
    HeartbeatService,
)
from api.v1.infra.jobs.models import Job, JobStatus
from api.v1.infra.jobs.queue import JobQueue
from api.v1.infra.jobs.schemas import WorkerCycleResult
from api.v1.infra.outbox.bridge import OutboxBridge

logger = get_logger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{secrets.token_hex(4)}"


class JobWorker:
    """
    Database-backed job worker.

    Features:
    - Lease-based claiming; crashed workers' jobs are reclaimed after the lease
    - Exponential backoff retries and a dead-letter state
    - Heartbeats independent of job availability
    - Optional co-located outbox bridge
    - Graceful shutdown through an asyncio.Event
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        registry: JobRegistry = job_registry,
        queue: JobQueue | None = None,
        worker_id: str | None = None,
        bridge: OutboxBridge | None = None,
        heartbeats: HeartbeatService | None = None,
    ):
        self.settings = settings
        self.database = database
        self.registry = registry
        self.queue = queue or JobQueue(settings)
        self.worker_id = worker_id or default_worker_id()
        self.bridge = bridge
        self.heartbeats = heartbeats or HeartbeatService(settings)
        self.running = False
        self._stop_event = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    async def run_once(
        self, now: datetime | None = None, batch_size: int | None = None
    ) -> WorkerCycleResult:
        """
        Claim one batch and execute it sequentially.

        Shutdown is checked between jobs: once ``stop()`` has been called the
        jobs not yet started are released back to pending.
        """
        result = WorkerCycleResult()

        async with self.database.session() as session:
            jobs = await self.queue.claim(
                session, self.worker_id, batch_size=batch_size, now=now
            )
        result.claimed = len(jobs)

        self._idle.clear()
        try:
            for index, job in enumerate(jobs):
                if self._stop_event.is_set():
                    result.released = await self._release(jobs[index:], now)
                    break

                outcome = await self._process(job, now)
                if outcome is None:
                    result.lost += 1
                elif outcome == JobStatus.DONE:
                    result.completed += 1
                elif outcome == JobStatus.DEAD:
                    result.dead += 1
                else:
                    result.retried += 1
        finally:
            self._idle.set()

        return result

    async def _release(self, jobs: list[Job], now: datetime | None) -> int:
        async with self.database.session() as session:
            released = await self.queue.release(
                session, [job.id for job in jobs], self.worker_id, now=now
            )
        logger.info("Released unstarted jobs on shutdown", released=released)
        return released

    async def _process(self, job: Job, now: datetime | None) -> JobStatus | None:
        """Run one claimed job; failures are recorded, never raised."""
        job_logger = logger.bind(job_id=job.id, job_type=job.job_type)
        context = JobContext(
            job_id=job.id,
            job_type=job.job_type,
            attempt=job.attempts + 1,
            worker_id=self.worker_id,
            dry_run=self.settings.dry_run,
        )

        error: str | None = None
        permanent = False
        try:
            if not self.registry.has(job.job_type):
                raise UnknownJobTypeError(job.job_type)
            handler = self.registry.get(job.job_type)

            job_logger.debug("Processing job started", attempt=context.attempt)
            await asyncio.wait_for(
                handler.handle(dict(job.payload or {}), context),
                timeout=self.settings.job_timeout_s,
            )
        except PermanentJobError as e:
            error, permanent = str(e) or e.__class__.__name__, True
        except TimeoutError:
            error = f"Job timed out after {self.settings.job_timeout_s}s"
        except Exception as e:
            error = str(e) or e.__class__.__name__

        async with self.database.session() as session:
            if error is None:
                done = await self.queue.complete(
                    session, job.id, worker_id=self.worker_id, now=now
                )
                if done:
                    job_logger.info("Job done")
                    return JobStatus.DONE
                return None

            try:
                outcome = await self.queue.fail(
                    session,
                    job.id,
                    error,
                    worker_id=self.worker_id,
                    permanent=permanent,
                    now=now,
                )
            except JobNotFoundError:
                job_logger.warning("Job row vanished before its failure was recorded")
                return None

        if outcome == JobStatus.DEAD:
            job_logger.error(
                "Job moved to dead-letter",
                attempt=context.attempt,
                max_attempts=job.max_attempts,
                permanent=permanent,
                error=error,
            )
        elif outcome == JobStatus.PENDING:
            job_logger.warning(
                "Job failed, retry scheduled",
                attempt=context.attempt,
                max_attempts=job.max_attempts,
                error=error,
            )
        return outcome

    async def run(self, stop_event: asyncio.Event) -> None:
        """Claim loop; infrastructure errors are logged and retried next tick."""
        interval = self.settings.worker_poll_interval_ms / 1000

        while not stop_event.is_set():
            try:
                result = await self.run_once()
                if result.claimed:
                    logger.info("Worker cycle finished", **result.model_dump())
            except (SQLAlchemyError, OSError):
                logger.exception("Worker cycle failed")

            if await sleep_or_stop(stop_event, interval):
                break

    async def beat(self, status: str = STATUS_RUNNING) -> None:
        async with self.database.session() as session:
            await self.heartbeats.beat(
                session,
                self.worker_id,
                status=status,
                metadata={
                    "batch_size": self.settings.worker_batch_size,
                    "bridge": self.bridge is not None,
                },
            )

    async def _heartbeat_loop(self, stop_event: asyncio.Event) -> None:
        """Beat on a fixed cadence whether or not there is work."""
        while not stop_event.is_set():
            try:
                await self.beat()
            except (SQLAlchemyError, OSError):
                logger.exception("Heartbeat failed")

            if await sleep_or_stop(stop_event, self.settings.heartbeat_interval_s):
                break

    async def start(self) -> None:
        """Run the claim, heartbeat and (optional) bridge loops until stopped."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stop_event.clear()
        bind_worker_context(self.worker_id)
        logger.info(
            "Starting job worker",
            batch_size=self.settings.worker_batch_size,
            poll_interval_ms=self.settings.worker_poll_interval_ms,
            bridge=self.bridge is not None,
            handlers=self.registry.list(),
        )

        loops = [
            self.run(self._stop_event),
            self._heartbeat_loop(self._stop_event),
        ]
        if self.bridge is not None:
            loops.append(self.bridge.run(self._stop_event))

        try:
            await asyncio.gather(*loops)
        finally:
            self.running = False
            try:
                await self.beat(STATUS_STOPPED)
            except (SQLAlchemyError, OSError):
                logger.exception("Final heartbeat failed")
            logger.info("Job worker stopped")

    async def stop(self) -> None:
        """Signal shutdown and wait for the in-flight job up to the grace period."""
        logger.info("Stopping job worker")
        self._stop_event.set()

        try:
            await asyncio.wait_for(
                self._idle.wait(), timeout=self.settings.shutdown_grace_s
            )
        except TimeoutError:
            logger.warning(
                "Worker stopped with a job in flight; its lease will expire",
                grace_s=self.settings.shutdown_grace_s,
            )


def build_worker(
    settings: Settings,
    database: Database,
    registry: JobRegistry = job_registry,
    with_bridge: bool | None = None,
) -> JobWorker:
    """Worker wired with the bridge when configured to co-locate it."""
    run_bridge = settings.worker_run_bridge if with_bridge is None else with_bridge
    bridge = OutboxBridge(settings, database) if run_bridge else None
    return JobWorker(settings, database, registry=registry, bridge=bridge)
