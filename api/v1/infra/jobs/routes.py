"""
Job management API endpoints.

Provides operator endpoints for job enqueueing, inspection and dead-letter replay.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.config.settings import Settings, SettingsDep
from api.infra.database import get_session
from api.v1.core.exceptions import JobNotFoundError, create_success_response
from api.v1.core.security import AdminDep, Principal
from api.v1.infra.jobs.models import JobStatus
from api.v1.infra.jobs.queue import JobQueue
from api.v1.infra.jobs.schemas import (
    JobEnqueueRequest,
    JobListResponse,
    JobReplayResponse,
    JobResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    principal: Principal = AdminDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Enqueue a new background job."""

    result = await JobQueue(settings).enqueue(
        session,
        job_type=job_request.job_type,
        payload=job_request.payload,
        run_at=job_request.run_at,
        max_attempts=job_request.max_attempts,
        idempotency_key=job_request.idempotency_key,
    )

    logger.info(
        "Job enqueued via API",
        extra={
            "job_id": result.job_id,
            "job_type": job_request.job_type,
            "operator_id": principal.operator_id,
            "deduplicated": result.deduplicated,
        },
    )

    return create_success_response(data=result.model_dump())


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    job_type: str | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: Principal = AdminDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List jobs with filtering and pagination, newest first."""

    jobs, total = await JobQueue(settings).list_jobs(
        session,
        status=[s.value for s in status] if status else None,
        job_type=job_type,
        limit=limit,
        offset=offset,
    )

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )

    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: int,
    principal: Principal = AdminDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""

    job = await JobQueue(settings).get(session, job_id)
    if not job:
        raise JobNotFoundError(job_id)

    job_data = JobResponse.model_validate(job)
    return create_success_response(data=job_data.model_dump(mode="json"))


@router.post("/{job_id}/replay", response_model=dict)
async def replay_job(
    job_id: int,
    principal: Principal = AdminDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Re-run a dead job as a new pending job; the dead row is kept for audit."""

    job = await JobQueue(settings).replay(session, job_id)

    logger.info(
        "Job replayed via API",
        extra={
            "job_id": job.id,
            "replayed_from": job_id,
            "operator_id": principal.operator_id,
        },
    )

    response_data = JobReplayResponse(
        replayed_from=job_id, job=JobResponse.model_validate(job)
    )
    return create_success_response(
        data=response_data.model_dump(mode="json"), message="Job replayed"
    )
