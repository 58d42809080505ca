"""
Job queue data access: enqueue, lease-based claiming, outcome recording.

Every state transition is a single conditional UPDATE whose WHERE clause
re-checks the state it expects. Two workers racing on the same row can both
issue the statement, but only one of them matches; no in-process locking is
involved, so any number of worker processes can share the table.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import and_, desc, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.config.settings import Settings
from api.infra.clock import before, utcnow
from api.v1.core.exceptions import JobNotFoundError, JobStateError, ValidationError
from api.v1.infra.jobs.models import EVENT_KEY_PREFIX, Job, JobStatus, event_idempotency_key
from api.v1.infra.jobs.retry import failure_outcome, next_run_at, truncate_error
from api.v1.infra.jobs.schemas import JobEnqueueResponse
from api.v1.infra.outbox.models import OutboxEvent, QueueStatus

logger = logging.getLogger(__name__)


class JobQueue:
    """Durable job queue backed by the ``jobs_queue`` table."""

    def __init__(self, settings: Settings):
        self.settings = settings

    # -- producers -----------------------------------------------------

    async def enqueue(
        self,
        session: AsyncSession,
        job_type: str,
        payload: dict[str, Any] | None = None,
        run_at: datetime | None = None,
        max_attempts: int | None = None,
        idempotency_key: str | None = None,
        source_event_id: int | None = None,
        now: datetime | None = None,
    ) -> JobEnqueueResponse:
        """
        Insert a pending job.

        A job that already carries ``idempotency_key`` is returned instead of
        creating a duplicate, including when a concurrent producer wins the
        insert race.

        Keys starting with ``ev_`` belong to outbox events; only
        ``ev_<source_event_id>`` is accepted.
        """
        now = now or utcnow()

        if (
            idempotency_key
            and idempotency_key.startswith(EVENT_KEY_PREFIX)
            and (
                source_event_id is None
                or idempotency_key != event_idempotency_key(source_event_id)
            )
        ):
            raise ValidationError(
                f"Idempotency key {idempotency_key!r} is reserved for outbox events",
                {"idempotency_key": idempotency_key},
            )

        if idempotency_key:
            existing = await self.get_by_idempotency_key(session, idempotency_key)
            if existing:
                logger.info(
                    "Job deduplicated",
                    extra={
                        "job_id": existing.id,
                        "idempotency_key": idempotency_key,
                        "job_type": job_type,
                    },
                )
                return JobEnqueueResponse(
                    job_id=existing.id, status=existing.status, deduplicated=True
                )

        job = Job(
            job_type=job_type,
            payload=payload or {},
            status=JobStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts or self.settings.job_max_attempts,
            run_at=run_at or now,
            idempotency_key=idempotency_key,
            source_event_id=source_event_id,
            created_at=now,
            updated_at=now,
        )

        try:
            session.add(job)
            await session.commit()
        except IntegrityError:
            await session.rollback()
            if idempotency_key:
                # Race condition - another producer enqueued the same key
                existing = await self.get_by_idempotency_key(session, idempotency_key)
                if existing:
                    return JobEnqueueResponse(
                        job_id=existing.id, status=existing.status, deduplicated=True
                    )
            raise

        logger.info(
            "Job enqueued",
            extra={
                "job_id": job.id,
                "job_type": job_type,
                "idempotency_key": idempotency_key,
                "run_at": job.run_at.isoformat(),
            },
        )
        return JobEnqueueResponse(job_id=job.id, status=job.status)

    # -- leasing -------------------------------------------------------

    def claimable(self, now: datetime):
        """Rows a worker may take: due pending work or an expired lease."""
        lease_cutoff = before(self.settings.job_lease_timeout_s, now)
        return or_(
            and_(Job.status == JobStatus.PENDING.value, Job.run_at <= now),
            and_(
                Job.status == JobStatus.PROCESSING.value,
                Job.locked_at.is_not(None),
                Job.locked_at < lease_cutoff,
            ),
        )

    async def claim(
        self,
        session: AsyncSession,
        worker_id: str,
        batch_size: int | None = None,
        now: datetime | None = None,
    ) -> list[Job]:
        """
        Atomically lease up to ``batch_size`` eligible jobs to ``worker_id``.

        The candidate subquery uses FOR UPDATE SKIP LOCKED on PostgreSQL (the
        clause is dropped on SQLite, where writers are serialized anyway).
        The outer WHERE repeats the eligibility predicate so a row taken by
        another worker between selection and update is not taken twice.
        """
        now = now or utcnow()
        limit = batch_size or self.settings.worker_batch_size
        eligible = self.claimable(now)

        candidates = (
            select(Job.id)
            .where(eligible)
            .order_by(Job.run_at, Job.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )

        stmt = (
            update(Job)
            .where(Job.id.in_(candidates), eligible)
            .values(
                status=JobStatus.PROCESSING.value,
                locked_by=worker_id,
                locked_at=now,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        result = await session.execute(stmt)
        jobs = sorted(result.scalars().all(), key=lambda job: (job.run_at, job.id))
        await session.commit()

        if jobs:
            logger.info(
                "Claimed jobs",
                extra={
                    "worker_id": worker_id,
                    "job_count": len(jobs),
                    "job_ids": [job.id for job in jobs],
                },
            )

        return jobs

    async def complete(
        self,
        session: AsyncSession,
        job_id: int,
        worker_id: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Mark a processing job done and release its lease.

        Returns False without touching the row if it is not processing (for
        example already done) or, when ``worker_id`` is given, if the lease
        now belongs to another worker.
        """
        now = now or utcnow()
        conditions = [Job.id == job_id, Job.status == JobStatus.PROCESSING.value]
        if worker_id is not None:
            conditions.append(Job.locked_by == worker_id)

        result = await session.execute(
            update(Job)
            .where(*conditions)
            .values(
                status=JobStatus.DONE.value,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        if result.rowcount == 0:
            logger.warning(
                "Ignoring completion for job not leased to caller",
                extra={"job_id": job_id, "worker_id": worker_id},
            )
            return False
        return True

    async def release(
        self,
        session: AsyncSession,
        job_ids: list[int],
        worker_id: str,
        now: datetime | None = None,
    ) -> int:
        """
        Hand leased jobs that were never started back to the queue.

        The rows return to pending with their attempts and ``run_at``
        unchanged, so they are claimable again at once. Rows whose lease moved to another worker are
        left alone. Returns the number of rows released.
        """
        if not job_ids:
            return 0
        now = now or utcnow()

        result = await session.execute(
            update(Job)
            .where(
                Job.id.in_(job_ids),
                Job.status == JobStatus.PROCESSING.value,
                Job.locked_by == worker_id,
            )
            .values(
                status=JobStatus.PENDING.value,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        logger.info(
            "Released unstarted jobs",
            extra={"worker_id": worker_id, "job_ids": job_ids, "released": result.rowcount},
        )
        return result.rowcount

    async def fail(
        self,
        session: AsyncSession,
        job_id: int,
        error: str,
        worker_id: str | None = None,
        permanent: bool = False,
        now: datetime | None = None,
    ) -> JobStatus | None:
        """
        Record a failed execution.

        Increments ``attempts``; reschedules with backoff while attempts remain,
        otherwise (or when ``permanent``) moves the job to dead. The update is
        a compare-and-swap on the attempts value that was read, so replaying a
        failure report, or reporting on a job that is no longer processing,
        changes nothing and returns None.
        """
        now = now or utcnow()
        job = await self.get(session, job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        if job.status != JobStatus.PROCESSING.value or (
            worker_id is not None and job.locked_by != worker_id
        ):
            logger.warning(
                "Ignoring failure for job not leased to caller",
                extra={"job_id": job_id, "status": job.status, "worker_id": worker_id},
            )
            await session.rollback()
            return None

        attempts = job.attempts + 1
        outcome = failure_outcome(attempts, job.max_attempts, permanent)
        values: dict[str, Any] = {
            "status": outcome.value,
            "attempts": attempts,
            "last_error": truncate_error(error, self.settings.max_error_length),
            "locked_by": None,
            "locked_at": None,
            "updated_at": now,
        }
        if outcome == JobStatus.PENDING:
            values["run_at"] = next_run_at(attempts, self.settings, now)

        conditions = [
            Job.id == job_id,
            Job.status == JobStatus.PROCESSING.value,
            Job.attempts == job.attempts,
        ]
        if worker_id is not None:
            conditions.append(Job.locked_by == worker_id)

        result = await session.execute(
            update(Job)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        if result.rowcount == 0:
            logger.warning(
                "Failure report lost a race", extra={"job_id": job_id, "worker_id": worker_id}
            )
            return None

        return outcome

    # -- reads ---------------------------------------------------------

    async def get(self, session: AsyncSession, job_id: int) -> Job | None:
        return await session.get(Job, job_id, populate_existing=True)

    async def get_by_idempotency_key(
        self, session: AsyncSession, idempotency_key: str
    ) -> Job | None:
        result = await session.execute(
            select(Job).where(Job.idempotency_key == idempotency_key).limit(1)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        session: AsyncSession,
        status: list[str] | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """List jobs newest first, with the unpaginated total."""
        query = select(Job)
        if status:
            query = query.where(Job.status.in_(status))
        if job_type:
            query = query.where(Job.job_type == job_type)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await session.execute(count_query)).scalar() or 0

        result = await session.execute(
            query.order_by(desc(Job.id)).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    # -- operator actions ----------------------------------------------

    async def replay(
        self, session: AsyncSession, job_id: int, now: datetime | None = None
    ) -> Job:
        """
        Re-run a dead job as a brand-new pending job.

        The dead row stays as it is. The copy carries no idempotency key or
        source event so it cannot collide with the original.
        """
        now = now or utcnow()
        dead = await self.get(session, job_id)
        if dead is None:
            raise JobNotFoundError(job_id)
        if dead.status != JobStatus.DEAD.value:
            raise JobStateError(job_id, dead.status or "null", JobStatus.DEAD.value)

        job = Job(
            job_type=dead.job_type,
            payload=dict(dead.payload or {}),
            status=JobStatus.PENDING.value,
            attempts=0,
            max_attempts=dead.max_attempts,
            run_at=now,
            created_at=now,
            updated_at=now,
        )
        session.add(job)
        await session.commit()

        logger.info(
            "Dead job replayed",
            extra={"job_id": job.id, "replayed_from": job_id, "job_type": job.job_type},
        )
        return job

    async def repair_null_status(self, session: AsyncSession) -> dict[str, int]:
        """Reset rows whose status column was left NULL by older schema versions."""
        jobs_result = await session.execute(
            update(Job)
            .where(Job.status.is_(None))
            .values(status=JobStatus.PENDING.value)
            .execution_options(synchronize_session=False)
        )
        events_result = await session.execute(
            update(OutboxEvent)
            .where(OutboxEvent.queue_status.is_(None))
            .values(queue_status=QueueStatus.PENDING.value)
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        repaired = {"jobs": jobs_result.rowcount, "events": events_result.rowcount}
        if any(repaired.values()):
            logger.info("Repaired NULL status rows", extra=repaired)
        return repaired
