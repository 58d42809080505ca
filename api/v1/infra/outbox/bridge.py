"""
Outbox bridge: turns pending outbox events into jobs, exactly once per event.

Each event is handled in its own transaction that inserts the job and marks
the event bridged. ``jobs_queue.source_event_id`` is unique, so when several
bridges pick up the same event only one insert succeeds; the others get an
IntegrityError. That counts as "already bridged" only when a job with the
event's ``source_event_id`` exists. A conflict on the ``ev_<id>`` idempotency
key alone leaves the event pending and is logged.
"""

import asyncio
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.config.logging import get_logger
from api.config.settings import Settings
from api.infra.clock import sleep_or_stop, utcnow
from api.infra.database import Database
from api.v1.core.registries import EventRouteRegistry, event_route_registry
from api.v1.infra.jobs.models import Job, JobStatus, event_idempotency_key
from api.v1.infra.outbox.models import OutboxEvent, QueueStatus
from api.v1.infra.outbox.schemas import BridgeResult

logger = get_logger(__name__)


class OutboxBridge:
    """Polls ``events_outbox`` and materializes each pending row into one job."""

    def __init__(
        self,
        settings: Settings,
        database: Database | None = None,
        routes: EventRouteRegistry = event_route_registry,
    ):
        self.settings = settings
        self.database = database
        self.routes = routes

    async def bridge_once(
        self, session: AsyncSession, now: datetime | None = None
    ) -> BridgeResult:
        """Bridge one batch of pending events, oldest first."""
        now = now or utcnow()

        rows = await session.execute(
            select(OutboxEvent)
            .where(OutboxEvent.queue_status == QueueStatus.PENDING.value)
            .order_by(OutboxEvent.id)
            .limit(self.settings.bridge_batch_size)
        )
        events = rows.scalars().all()
        result = BridgeResult(scanned=len(events))

        # Build everything up front: a rollback below expires loaded rows.
        planned = [self._plan(event) for event in events]

        for event_id, job_type, payload in planned:
            session.add(
                Job(
                    job_type=job_type,
                    payload=payload,
                    status=JobStatus.PENDING.value,
                    attempts=0,
                    max_attempts=self.settings.job_max_attempts,
                    run_at=now,
                    idempotency_key=event_idempotency_key(event_id),
                    source_event_id=event_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                if not await self._has_job_for(session, event_id):
                    # Conflict on the idempotency key alone; the event stays pending
                    result.conflicts += 1
                    logger.error(
                        "Bridge insert conflicted but no job references the event",
                        event_id=event_id,
                        idempotency_key=event_idempotency_key(event_id),
                    )
                    continue
                await self._mark_bridged(session, event_id, now)
                await session.commit()
                result.already_bridged += 1
                logger.warning("Duplicate bridge attempt", event_id=event_id)
                continue

            await self._mark_bridged(session, event_id, now)
            await session.commit()
            result.bridged += 1
            logger.debug("Event bridged", event_id=event_id, job_type=job_type)

        if result.scanned:
            logger.info(
                "Bridge cycle finished",
                scanned=result.scanned,
                bridged=result.bridged,
                already_bridged=result.already_bridged,
                conflicts=result.conflicts,
            )
        return result

    def _plan(self, event: OutboxEvent) -> tuple[int, str, dict[str, Any]]:
        route = self.routes.resolve(event.event_name)
        return event.id, route.job_type, route.build_payload(event)

    async def _has_job_for(self, session: AsyncSession, event_id: int) -> bool:
        existing = await session.execute(
            select(Job.id).where(Job.source_event_id == event_id)
        )
        return existing.first() is not None

    async def _mark_bridged(
        self, session: AsyncSession, event_id: int, now: datetime
    ) -> None:
        await session.execute(
            update(OutboxEvent)
            .where(
                OutboxEvent.id == event_id,
                or_(
                    OutboxEvent.queue_status.is_(None),
                    OutboxEvent.queue_status != QueueStatus.BRIDGED.value,
                ),
            )
            .values(queue_status=QueueStatus.BRIDGED.value, queued_at=now)
            .execution_options(synchronize_session=False)
        )

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll until ``stop_event`` is set; a failed cycle is retried next tick."""
        if self.database is None:
            raise RuntimeError("OutboxBridge.run requires a Database")

        interval = self.settings.bridge_poll_interval_ms / 1000
        logger.info("Outbox bridge started", poll_interval_ms=self.settings.bridge_poll_interval_ms)

        while not stop_event.is_set():
            try:
                async with self.database.session() as session:
                    await self.bridge_once(session)
            except (SQLAlchemyError, OSError):
                logger.exception("Bridge cycle failed")

            if await sleep_or_stop(stop_event, interval):
                break

        logger.info("Outbox bridge stopped")
