"""
Queue stats service.

Read-only aggregation over jobs_queue, events_outbox and worker_heartbeat used
by the operator API and the CLI. Nothing here writes.
"""

import logging
from datetime import datetime

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.config.settings import Settings
from api.infra.clock import utcnow
from api.v1.infra.heartbeat.schemas import HeartbeatView
from api.v1.infra.heartbeat.service import HeartbeatService, any_alive
from api.v1.infra.jobs.models import Job, JobStatus
from api.v1.infra.outbox.models import OutboxEvent
from api.v1.infra.stats.schemas import QueueCondition, QueueStatsResponse, RecentError

logger = logging.getLogger(__name__)

# Rows with a NULL status column are reported under this key
UNKNOWN_STATUS = "null"

RECENT_ERROR_STATUSES = (
    JobStatus.DEAD.value,
    JobStatus.FAILED.value,
    JobStatus.PENDING.value,
)


def derive_condition(
    jobs_by_status: dict[str, int],
    worker_alive: bool,
    high_pending_threshold: int,
) -> QueueCondition:
    """Dead jobs outrank a down worker, which outranks high load."""
    if jobs_by_status.get(JobStatus.DEAD.value, 0) > 0:
        return QueueCondition.HAS_DEAD_JOBS
    if not worker_alive:
        return QueueCondition.WORKER_DOWN
    if jobs_by_status.get(JobStatus.PENDING.value, 0) > high_pending_threshold:
        return QueueCondition.HIGH_LOAD
    return QueueCondition.STEADY


def build_alerts(
    jobs_by_status: dict[str, int],
    heartbeats: list[HeartbeatView],
    worker_alive: bool,
    high_pending_threshold: int,
) -> list[str]:
    alerts: list[str] = []
    pending = jobs_by_status.get(JobStatus.PENDING.value, 0)
    dead = jobs_by_status.get(JobStatus.DEAD.value, 0)

    if not worker_alive:
        if not heartbeats:
            reason = "no worker heartbeat recorded"
        else:
            newest = heartbeats[0]
            reason = f"last heartbeat {newest.age_seconds:.0f}s ago from {newest.worker_id}"
        if pending:
            alerts.append(f"worker_down: worker down while {pending} jobs pending ({reason})")
        else:
            alerts.append(f"worker_down: {reason}")

    if pending > high_pending_threshold:
        alerts.append(
            f"high_pending: {pending} pending jobs exceed threshold {high_pending_threshold}"
        )

    if dead:
        alerts.append(f"dead_jobs: {dead} jobs in dead-letter")

    return alerts


class StatsService:
    """Service for queue observability."""

    def __init__(self, settings: Settings, heartbeats: HeartbeatService | None = None):
        self.settings = settings
        self.heartbeats = heartbeats or HeartbeatService(settings)

    async def count_jobs_by_status(self, session: AsyncSession) -> dict[str, int]:
        """Job counts for every status, zero-filled."""
        counts = {status.value: 0 for status in JobStatus}
        result = await session.execute(
            select(Job.status, func.count()).group_by(Job.status)
        )
        for status, count in result.all():
            counts[status if status is not None else UNKNOWN_STATUS] = count
        return counts

    async def count_outbox_by_queue_status(self, session: AsyncSession) -> dict[str, int]:
        result = await session.execute(
            select(OutboxEvent.queue_status, func.count()).group_by(
                OutboxEvent.queue_status
            )
        )
        return {
            (status if status is not None else UNKNOWN_STATUS): count
            for status, count in result.all()
        }

    async def recent_errors(
        self, session: AsyncSession, limit: int
    ) -> list[RecentError]:
        result = await session.execute(
            select(Job)
            .where(
                Job.last_error.is_not(None),
                Job.status.in_(RECENT_ERROR_STATUSES),
            )
            .order_by(desc(Job.updated_at), desc(Job.id))
            .limit(limit)
        )
        return [
            RecentError(
                id=job.id,
                job_type=job.job_type,
                status=job.status,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                last_error=job.last_error,
                updated_at=job.updated_at,
            )
            for job in result.scalars().all()
        ]

    async def get_queue_stats(
        self,
        session: AsyncSession,
        now: datetime | None = None,
        recent_limit: int | None = None,
    ) -> QueueStatsResponse:
        """Counts, heartbeats, recent failures and the derived condition."""
        now = now or utcnow()
        limit = recent_limit or self.settings.stats_recent_errors_limit

        jobs_by_status = await self.count_jobs_by_status(session)
        outbox = await self.count_outbox_by_queue_status(session)
        heartbeats = await self.heartbeats.list_heartbeats(session, now)
        errors = await self.recent_errors(session, limit)

        worker_alive = any_alive(heartbeats)
        threshold = self.settings.high_pending_threshold
        condition = derive_condition(jobs_by_status, worker_alive, threshold)
        alerts = build_alerts(jobs_by_status, heartbeats, worker_alive, threshold)

        if condition != QueueCondition.STEADY:
            logger.warning(
                "Queue condition degraded",
                extra={"condition": condition.value, "alerts": alerts},
            )

        return QueueStatsResponse(
            jobs_by_status=jobs_by_status,
            outbox_by_queue_status=outbox,
            heartbeats=heartbeats,
            recent_errors=errors,
            condition=condition,
            alerts=alerts,
            generated_at=now,
        )
