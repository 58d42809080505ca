from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.config.logging import get_logger
from api.config.settings import Settings, SettingsDep
from api.infra.database import get_session
from api.v1.core.exceptions import create_success_response
from api.v1.infra.heartbeat.service import HeartbeatService, any_alive
from api.v1.infra.jobs.models import Job, JobStatus

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class WorkerHealth(BaseModel):
    """Worker health status."""

    alive: bool
    active_workers: int
    last_heartbeat_age_seconds: int | None = None
    queue_depth: int = 0


class HealthResponse(BaseModel):
    """Health response with worker and database status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    database: DatabaseHealth
    worker: WorkerHealth | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """
    Health check endpoint with database and worker status.

    ``ok`` reflects the database only; a down worker is reported in
    ``worker.alive`` so that the API stays routable while workers restart.
    """

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)

    worker_health = None
    if db_health.connected:
        try:
            worker_health = await _check_worker_health(session, settings)
        except SQLAlchemyError:
            logger.exception("Worker health check failed")

    health_data = HealthResponse(
        ok=db_health.connected,
        version=settings.version,
        environment=settings.environment,
        timestamp=timestamp,
        database=db_health,
        worker=worker_health,
    )

    return create_success_response(data=health_data.model_dump())


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except (SQLAlchemyError, OSError) as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_worker_health(
    session: AsyncSession, settings: Settings
) -> WorkerHealth:
    """Worker liveness from heartbeats, plus outstanding queue depth."""

    heartbeats = await HeartbeatService(settings).list_heartbeats(session)
    active_workers = sum(1 for hb in heartbeats if not hb.stale)

    last_heartbeat_age_seconds = None
    if heartbeats:
        last_heartbeat_age_seconds = int(heartbeats[0].age_seconds)

    queue_depth_result = await session.execute(
        select(func.count(Job.id)).where(
            Job.status.in_([JobStatus.PENDING.value, JobStatus.PROCESSING.value])
        )
    )
    queue_depth = queue_depth_result.scalar() or 0

    return WorkerHealth(
        alive=any_alive(heartbeats),
        active_workers=active_workers,
        last_heartbeat_age_seconds=last_heartbeat_age_seconds,
        queue_depth=queue_depth,
    )
