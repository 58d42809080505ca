"""Tests for the job queue: claiming, leases, outcomes and replay."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import update

from api.v1.core.exceptions import JobNotFoundError, JobStateError, ValidationError
from api.v1.infra.jobs.models import Job, JobStatus
from api.v1.infra.jobs.queue import JobQueue
from api.v1.infra.outbox.models import OutboxEvent, QueueStatus

T0 = datetime(2026, 1, 5, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def queue(settings) -> JobQueue:
    return JobQueue(settings)


async def _enqueue(queue, session, **kwargs) -> int:
    kwargs.setdefault("job_type", "noop")
    kwargs.setdefault("now", T0)
    result = await queue.enqueue(session, **kwargs)
    return result.job_id


async def _reload(database, job_id) -> Job:
    async with database.session() as session:
        return await session.get(Job, job_id)


class TestEnqueue:
    async def test_enqueue_creates_pending_job(self, queue, db_session, database):
        job_id = await _enqueue(queue, db_session, payload={"a": 1})

        job = await _reload(database, job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.attempts == 0
        assert job.max_attempts == 5
        assert job.run_at == T0
        assert job.payload == {"a": 1}

    async def test_enqueue_deduplicates_on_idempotency_key(self, queue, db_session):
        first = await queue.enqueue(
            db_session, "noop", {"n": 1}, idempotency_key="order-9", now=T0
        )
        second = await queue.enqueue(
            db_session, "noop", {"n": 2}, idempotency_key="order-9", now=T0
        )

        assert first.deduplicated is False
        assert second.deduplicated is True
        assert second.job_id == first.job_id

    async def test_enqueue_respects_run_at_and_max_attempts(
        self, queue, db_session, database
    ):
        later = T0 + timedelta(minutes=5)
        job_id = await _enqueue(queue, db_session, run_at=later, max_attempts=2)

        job = await _reload(database, job_id)
        assert job.run_at == later
        assert job.max_attempts == 2
        assert await queue.claim(db_session, "w1", now=T0) == []

    async def test_enqueue_rejects_event_key_prefix(self, queue, db_session):
        with pytest.raises(ValidationError, match="reserved for outbox events"):
            await _enqueue(queue, db_session, idempotency_key="ev_7")

        with pytest.raises(ValidationError):
            await _enqueue(
                queue, db_session, idempotency_key="ev_7", source_event_id=8
            )

    async def test_enqueue_accepts_matching_event_key(self, queue, db_session, database):
        job_id = await _enqueue(
            queue, db_session, idempotency_key="ev_7", source_event_id=7
        )

        job = await _reload(database, job_id)
        assert job.source_event_id == 7
        assert job.idempotency_key == "ev_7"


class TestClaim:
    async def test_claim_leases_due_jobs_oldest_first(self, queue, db_session):
        late = await _enqueue(queue, db_session, run_at=T0 - timedelta(seconds=1))
        early = await _enqueue(queue, db_session, run_at=T0 - timedelta(seconds=10))
        await _enqueue(queue, db_session, run_at=T0 + timedelta(seconds=10))

        jobs = await queue.claim(db_session, "w1", batch_size=5, now=T0)

        assert [job.id for job in jobs] == [early, late]
        for job in jobs:
            assert job.status == JobStatus.PROCESSING.value
            assert job.locked_by == "w1"
            assert job.locked_at == T0

    async def test_claim_honours_batch_size(self, queue, db_session):
        for _ in range(4):
            await _enqueue(queue, db_session)

        jobs = await queue.claim(db_session, "w1", batch_size=3, now=T0)

        assert len(jobs) == 3

    async def test_racing_claimers_never_share_a_job(self, queue, database, db_session):
        """Two workers claiming concurrently: exactly one wins each job."""
        job_ids = [await _enqueue(queue, db_session) for _ in range(3)]

        async def claim(worker_id):
            async with database.session() as session:
                return await queue.claim(session, worker_id, batch_size=10, now=T0)

        a, b = await asyncio.gather(claim("worker-a"), claim("worker-b"))

        claimed_a = {job.id for job in a}
        claimed_b = {job.id for job in b}
        assert claimed_a.isdisjoint(claimed_b)
        assert claimed_a | claimed_b == set(job_ids)

    async def test_active_lease_is_not_reclaimed(self, queue, db_session):
        await _enqueue(queue, db_session)
        await queue.claim(db_session, "w1", now=T0)

        before_expiry = T0 + timedelta(seconds=299)
        assert await queue.claim(db_session, "w2", now=before_expiry) == []

    async def test_expired_lease_is_reclaimable(self, queue, db_session, database):
        """A worker that vanished mid-job loses its lease after the timeout."""
        job_id = await _enqueue(queue, db_session)
        await queue.claim(db_session, "crashed", now=T0)

        after_expiry = T0 + timedelta(seconds=301)
        jobs = await queue.claim(db_session, "rescuer", now=after_expiry)

        assert [job.id for job in jobs] == [job_id]
        job = await _reload(database, job_id)
        assert job.locked_by == "rescuer"
        assert job.locked_at == after_expiry

        # The original owner can no longer record an outcome
        assert await queue.complete(db_session, job_id, worker_id="crashed") is False
        assert await queue.complete(db_session, job_id, worker_id="rescuer") is True

    async def test_terminal_jobs_are_never_claimed(self, queue, db_session):
        done_id = await _enqueue(queue, db_session)
        dead_id = await _enqueue(queue, db_session, max_attempts=1)
        await queue.claim(db_session, "w1", now=T0)
        await queue.complete(db_session, done_id, "w1", now=T0)
        await queue.fail(db_session, dead_id, "boom", "w1", now=T0)

        much_later = T0 + timedelta(days=30)
        assert await queue.claim(db_session, "w2", now=much_later) == []

    async def test_release_returns_own_leases_to_pending(
        self, queue, db_session, database
    ):
        mine = await _enqueue(queue, db_session)
        theirs = await _enqueue(queue, db_session)
        await queue.claim(db_session, "w1", batch_size=1, now=T0)
        await queue.claim(db_session, "w2", batch_size=1, now=T0)

        released = await queue.release(db_session, [mine, theirs], "w1", now=T0)

        assert released == 1
        job = await _reload(database, mine)
        assert job.status == JobStatus.PENDING.value
        assert job.locked_by is None
        assert job.attempts == 0
        assert (await _reload(database, theirs)).locked_by == "w2"
        assert [j.id for j in await queue.claim(db_session, "w3", now=T0)] == [mine]


class TestOutcomes:
    async def test_complete_marks_done_and_clears_lease(
        self, queue, db_session, database
    ):
        job_id = await _enqueue(queue, db_session)
        await queue.claim(db_session, "w1", now=T0)

        assert await queue.complete(db_session, job_id, "w1", now=T0) is True

        job = await _reload(database, job_id)
        assert job.status == JobStatus.DONE.value
        assert job.locked_by is None
        assert job.locked_at is None

    async def test_complete_is_idempotent(self, queue, db_session, database):
        job_id = await _enqueue(queue, db_session)
        await queue.claim(db_session, "w1", now=T0)
        await queue.complete(db_session, job_id, "w1", now=T0)

        assert await queue.complete(db_session, job_id, "w1", now=T0) is False
        assert (await _reload(database, job_id)).status == JobStatus.DONE.value

    async def test_fail_schedules_retry_with_backoff(self, queue, db_session, database):
        job_id = await _enqueue(queue, db_session)
        await queue.claim(db_session, "w1", now=T0)

        outcome = await queue.fail(db_session, job_id, "smtp timeout", "w1", now=T0)

        assert outcome == JobStatus.PENDING
        job = await _reload(database, job_id)
        assert job.status == JobStatus.PENDING.value
        assert job.attempts == 1
        assert job.last_error == "smtp timeout"
        assert job.run_at == T0 + timedelta(seconds=5)
        assert job.locked_by is None

    async def test_backoff_doubles_per_attempt(self, queue, db_session, database):
        job_id = await _enqueue(queue, db_session)
        now = T0
        delays = []
        for _ in range(3):
            await queue.claim(db_session, "w1", now=now)
            await queue.fail(db_session, job_id, "boom", "w1", now=now)
            job = await _reload(database, job_id)
            delays.append((job.run_at - now).total_seconds())
            now = job.run_at

        assert delays == [5, 10, 20]

    async def test_three_failures_with_max_attempts_three_is_dead(
        self, queue, db_session, database
    ):
        job_id = await _enqueue(queue, db_session, max_attempts=3)
        now = T0
        outcomes = []
        for _ in range(3):
            [job] = await queue.claim(db_session, "w1", now=now)
            outcomes.append(await queue.fail(db_session, job.id, "boom", "w1", now=now))
            now = now + timedelta(hours=1)

        assert outcomes == [JobStatus.PENDING, JobStatus.PENDING, JobStatus.DEAD]
        job = await _reload(database, job_id)
        assert job.status == JobStatus.DEAD.value
        assert job.attempts == 3
        assert job.attempts <= job.max_attempts

    async def test_permanent_failure_goes_straight_to_dead(
        self, queue, db_session, database
    ):
        job_id = await _enqueue(queue, db_session)
        await queue.claim(db_session, "w1", now=T0)

        outcome = await queue.fail(
            db_session, job_id, "invalid recipient", "w1", permanent=True, now=T0
        )

        assert outcome == JobStatus.DEAD
        job = await _reload(database, job_id)
        assert job.attempts == 1
        assert job.last_error == "invalid recipient"

    async def test_fail_on_dead_job_is_noop(self, queue, db_session, database):
        job_id = await _enqueue(queue, db_session, max_attempts=1)
        await queue.claim(db_session, "w1", now=T0)
        await queue.fail(db_session, job_id, "first", "w1", now=T0)

        assert await queue.fail(db_session, job_id, "second", "w1", now=T0) is None

        job = await _reload(database, job_id)
        assert job.status == JobStatus.DEAD.value
        assert job.attempts == 1
        assert job.last_error == "first"

    async def test_fail_by_non_owner_is_ignored(self, queue, db_session, database):
        job_id = await _enqueue(queue, db_session)
        await queue.claim(db_session, "owner", now=T0)

        assert await queue.fail(db_session, job_id, "boom", "intruder", now=T0) is None
        job = await _reload(database, job_id)
        assert job.status == JobStatus.PROCESSING.value
        assert job.attempts == 0

    async def test_fail_unknown_job_raises(self, queue, db_session):
        with pytest.raises(JobNotFoundError):
            await queue.fail(db_session, 9999, "boom", now=T0)

    async def test_long_errors_are_truncated(self, queue, db_session, database, settings):
        job_id = await _enqueue(queue, db_session)
        await queue.claim(db_session, "w1", now=T0)

        await queue.fail(db_session, job_id, "x" * 5000, "w1", now=T0)

        job = await _reload(database, job_id)
        assert len(job.last_error) == settings.max_error_length
        assert job.last_error.endswith("...")


class TestReadsAndOperatorActions:
    async def test_list_jobs_filters_and_counts(self, queue, db_session):
        for _ in range(3):
            await _enqueue(queue, db_session, job_type="send_email")
        await _enqueue(queue, db_session, job_type="realtime_push")

        jobs, total = await queue.list_jobs(db_session, job_type="send_email", limit=2)

        assert total == 3
        assert len(jobs) == 2
        assert jobs[0].id > jobs[1].id

        _, pending_total = await queue.list_jobs(
            db_session, status=[JobStatus.PENDING.value]
        )
        assert pending_total == 4

    async def test_replay_creates_new_pending_job(self, queue, db_session, database):
        job_id = await _enqueue(
            queue, db_session, payload={"email": "x@example.com"}, max_attempts=1,
            idempotency_key="order-77",
        )
        await queue.claim(db_session, "w1", now=T0)
        await queue.fail(db_session, job_id, "boom", "w1", now=T0)

        later = T0 + timedelta(hours=1)
        replayed = await queue.replay(db_session, job_id, now=later)

        assert replayed.id != job_id
        assert replayed.status == JobStatus.PENDING.value
        assert replayed.attempts == 0
        assert replayed.payload == {"email": "x@example.com"}
        assert replayed.idempotency_key is None
        assert replayed.run_at == later

        original = await _reload(database, job_id)
        assert original.status == JobStatus.DEAD.value

    async def test_replay_rejects_non_dead_jobs(self, queue, db_session):
        job_id = await _enqueue(queue, db_session)

        with pytest.raises(JobStateError):
            await queue.replay(db_session, job_id)

    async def test_replay_unknown_job(self, queue, db_session):
        with pytest.raises(JobNotFoundError):
            await queue.replay(db_session, 12345)

    async def test_repair_null_status(self, queue, db_session, database, add_event):
        job_id = await _enqueue(queue, db_session)
        event = await add_event("request_created")
        await db_session.execute(
            update(Job).where(Job.id == job_id).values(status=None)
        )
        await db_session.execute(
            update(OutboxEvent).where(OutboxEvent.id == event.id).values(queue_status=None)
        )
        await db_session.commit()

        repaired = await queue.repair_null_status(db_session)

        assert repaired == {"jobs": 1, "events": 1}
        assert (await _reload(database, job_id)).status == JobStatus.PENDING.value
        async with database.session() as session:
            refreshed = await session.get(OutboxEvent, event.id)
        assert refreshed.queue_status == QueueStatus.PENDING.value
