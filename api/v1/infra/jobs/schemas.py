"""
Job queue Pydantic schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from api.v1.infra.jobs.models import EVENT_KEY_PREFIX


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    job_type: str
    payload: dict[str, Any]
    status: str | None
    attempts: int
    max_attempts: int
    run_at: datetime

    # Lease
    locked_by: str | None = None
    locked_at: datetime | None = None

    last_error: str | None = None
    idempotency_key: str | None = None
    source_event_id: int | None = None
    created_at: datetime
    updated_at: datetime | None = None


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    job_type: str = Field(..., min_length=1, description="Handler selector")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    run_at: datetime | None = Field(default=None, description="Scheduled run time")
    max_attempts: int | None = Field(
        default=None, ge=1, le=100, description="Attempts before dead-letter"
    )
    idempotency_key: str | None = Field(
        default=None, max_length=255, description="Producer-side deduplication key"
    )

    @field_validator("idempotency_key")
    @classmethod
    def reject_event_prefix(cls, value: str | None) -> str | None:
        if value and value.startswith(EVENT_KEY_PREFIX):
            raise ValueError(
                f"idempotency keys starting with '{EVENT_KEY_PREFIX}' are reserved for outbox events"
            )
        return value


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: int
    status: str | None
    deduplicated: bool = Field(
        default=False, description="Whether an existing job was returned"
    )


class JobReplayResponse(BaseModel):
    """A dead job re-inserted as new pending work."""

    replayed_from: int
    job: JobResponse


class WorkerCycleResult(BaseModel):
    """Outcome of one claim-and-execute pass."""

    claimed: int = 0
    completed: int = 0
    retried: int = 0
    dead: int = 0
    lost: int = Field(default=0, description="Outcome not recorded: lease lost")
    released: int = Field(
        default=0, description="Claimed but handed back unstarted on shutdown"
    )
