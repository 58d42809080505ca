"""Tests for queue stats and the derived condition."""

from datetime import UTC, datetime, timedelta

from sqlalchemy import update

from api.v1.infra.heartbeat.service import HeartbeatService
from api.v1.infra.jobs.models import Job, JobStatus
from api.v1.infra.jobs.queue import JobQueue
from api.v1.infra.outbox.bridge import OutboxBridge
from api.v1.infra.stats.schemas import QueueCondition
from api.v1.infra.stats.service import StatsService, build_alerts, derive_condition

T0 = datetime(2026, 1, 5, 12, 0, 0, tzinfo=UTC)


async def _enqueue(settings, session, **kwargs) -> int:
    result = await JobQueue(settings).enqueue(session, "noop", now=T0, **kwargs)
    return result.job_id


async def _kill(settings, session, job_id, error="boom"):
    queue = JobQueue(settings)
    await queue.claim(session, "w1", now=T0)
    await queue.fail(session, job_id, error, "w1", permanent=True, now=T0)


class TestDeriveCondition:
    def test_steady(self):
        counts = {"pending": 3, "dead": 0}
        assert derive_condition(counts, True, 50) == QueueCondition.STEADY

    def test_dead_jobs_outrank_everything(self):
        counts = {"pending": 500, "dead": 1}
        assert derive_condition(counts, False, 50) == QueueCondition.HAS_DEAD_JOBS

    def test_worker_down_outranks_high_load(self):
        counts = {"pending": 500, "dead": 0}
        assert derive_condition(counts, False, 50) == QueueCondition.WORKER_DOWN

    def test_high_load(self):
        counts = {"pending": 51, "dead": 0}
        assert derive_condition(counts, True, 50) == QueueCondition.HIGH_LOAD
        assert derive_condition({"pending": 50}, True, 50) == QueueCondition.STEADY


def test_alerts_without_any_heartbeat():
    alerts = build_alerts({"pending": 0, "dead": 2}, [], False, 50)

    assert alerts == [
        "worker_down: no worker heartbeat recorded",
        "dead_jobs: 2 jobs in dead-letter",
    ]


async def test_empty_queue_counts_are_zero_filled(settings, db_session):
    stats = await StatsService(settings).get_queue_stats(db_session, now=T0)

    assert stats.jobs_by_status == {
        "pending": 0,
        "processing": 0,
        "done": 0,
        "failed": 0,
        "dead": 0,
    }
    assert stats.outbox_by_queue_status == {}
    assert stats.heartbeats == []
    assert stats.recent_errors == []
    assert stats.condition == QueueCondition.WORKER_DOWN
    assert stats.generated_at == T0


async def test_stale_heartbeat_with_pending_work_is_worker_down(settings, db_session):
    await _enqueue(settings, db_session)
    await HeartbeatService(settings).beat(
        db_session, "worker-1", now=T0 - timedelta(seconds=120)
    )

    stats = await StatsService(settings).get_queue_stats(db_session, now=T0)

    assert stats.condition == QueueCondition.WORKER_DOWN
    assert stats.heartbeats[0].stale is True
    [alert] = stats.alerts
    assert alert.startswith("worker_down: worker down while 1 jobs pending")
    assert "last heartbeat 120s ago from worker-1" in alert


async def test_fresh_worker_and_small_queue_is_steady(settings, db_session):
    await _enqueue(settings, db_session)
    await HeartbeatService(settings).beat(db_session, "worker-1", now=T0)

    stats = await StatsService(settings).get_queue_stats(db_session, now=T0)

    assert stats.condition == QueueCondition.STEADY
    assert stats.alerts == []


async def test_high_load_alert(settings, db_session):
    busy = settings.model_copy(update={"high_pending_threshold": 1})
    await _enqueue(busy, db_session)
    await _enqueue(busy, db_session)
    await HeartbeatService(busy).beat(db_session, "worker-1", now=T0)

    stats = await StatsService(busy).get_queue_stats(db_session, now=T0)

    assert stats.condition == QueueCondition.HIGH_LOAD
    assert stats.alerts == ["high_pending: 2 pending jobs exceed threshold 1"]


async def test_dead_jobs_show_in_recent_errors(settings, db_session):
    job_id = await _enqueue(settings, db_session)
    await _kill(settings, db_session, job_id, error="invalid recipient")
    await HeartbeatService(settings).beat(db_session, "worker-1", now=T0)

    stats = await StatsService(settings).get_queue_stats(db_session, now=T0)

    assert stats.condition == QueueCondition.HAS_DEAD_JOBS
    assert stats.jobs_by_status["dead"] == 1
    [error] = stats.recent_errors
    assert error.id == job_id
    assert error.status == JobStatus.DEAD.value
    assert error.last_error == "invalid recipient"


async def test_done_jobs_are_not_recent_errors(settings, db_session):
    job_id = await _enqueue(settings, db_session)
    await db_session.execute(
        update(Job)
        .where(Job.id == job_id)
        .values(status=JobStatus.DONE.value, last_error="recovered")
    )
    await db_session.commit()

    assert await StatsService(settings).recent_errors(db_session, 10) == []


async def test_recent_errors_respects_limit(settings, db_session):
    for _ in range(3):
        job_id = await _enqueue(settings, db_session)
        await _kill(settings, db_session, job_id)

    stats = await StatsService(settings).get_queue_stats(
        db_session, now=T0, recent_limit=2
    )

    assert len(stats.recent_errors) == 2


async def test_null_statuses_are_reported(settings, db_session, add_event, routes):
    job_id = await _enqueue(settings, db_session)
    await add_event("request_created")
    await add_event("request_created")
    await OutboxBridge(settings, routes=routes).bridge_once(db_session, now=T0)
    await db_session.execute(update(Job).where(Job.id == job_id).values(status=None))
    await db_session.commit()

    service = StatsService(settings)
    jobs = await service.count_jobs_by_status(db_session)
    outbox = await service.count_outbox_by_queue_status(db_session)

    assert jobs["null"] == 1
    assert jobs["pending"] == 2
    assert outbox == {"bridged": 2}
