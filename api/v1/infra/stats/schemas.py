"""
Queue stats Pydantic schemas.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from api.v1.infra.heartbeat.schemas import HeartbeatView


class QueueCondition(str, Enum):
    """Overall queue health, most severe first."""

    HAS_DEAD_JOBS = "has_dead_jobs"
    WORKER_DOWN = "worker_down"
    HIGH_LOAD = "high_load"
    STEADY = "steady"


class RecentError(BaseModel):
    """A job that recorded an error and is retrying or dead."""

    id: int
    job_type: str
    status: str | None
    attempts: int
    max_attempts: int
    last_error: str | None
    updated_at: datetime | None = None


class QueueStatsResponse(BaseModel):
    """Snapshot of queue depth, worker liveness and recent failures."""

    jobs_by_status: dict[str, int]
    outbox_by_queue_status: dict[str, int]
    heartbeats: list[HeartbeatView]
    recent_errors: list[RecentError]
    condition: QueueCondition
    alerts: list[str] = Field(default_factory=list)
    generated_at: datetime
