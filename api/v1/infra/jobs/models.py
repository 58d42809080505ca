"""
Job queue models.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from api.infra.clock import utcnow
from api.infra.database import Base, UTCDateTime


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"
    DEAD = "dead"


# Idempotency keys with this prefix belong to jobs bridged from outbox events
EVENT_KEY_PREFIX = "ev_"


def event_idempotency_key(event_id: int) -> str:
    return f"{EVENT_KEY_PREFIX}{event_id}"


class Job(Base):
    """
    Durable work item.

    Provides leased, retryable execution with:
    - Lease fields (locked_by, locked_at) for worker coordination
    - run_at for both first scheduling and retry backoff
    - idempotency_key / source_event_id uniqueness against duplicate work
    """

    __tablename__ = "jobs_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Handler selector"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Job-specific parameters",
    )

    # Job state
    status: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        default=JobStatus.PENDING.value,
        server_default=JobStatus.PENDING.value,
        comment="Job status: pending|processing|done|failed|dead",
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0",
        comment="Failed executions so far",
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=5, server_default="5"
    )
    run_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        comment="Earliest time to run job",
    )

    # Lease
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID holding the lease"
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Lease acquisition time"
    )

    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )

    # Deduplication
    idempotency_key: Mapped[str | None] = mapped_column(
        Text, nullable=True, unique=True
    )
    source_event_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, unique=True, comment="events_outbox.id that produced this job"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
        default=utcnow,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        default=utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'done', 'failed', 'dead')",
            name="jobs_queue_status_check",
        ),
        CheckConstraint("attempts >= 0", name="jobs_queue_attempts_check"),
        CheckConstraint("max_attempts >= 1", name="jobs_queue_max_attempts_check"),
        Index("idx_jobs_fetch", "status", "run_at"),
        Index("idx_jobs_lock", "locked_at"),
        Index("idx_jobs_type", "job_type"),
    )
