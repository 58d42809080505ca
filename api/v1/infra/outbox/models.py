"""
Event outbox model.

Rows are appended by the application inside its own business transaction;
this package only reads them and advances ``queue_status``.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from api.infra.clock import utcnow
from api.infra.database import Base, UTCDateTime


class ProcessStatus(str, Enum):
    """Delivery outcome for non-queue consumers."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    IGNORED = "ignored"


class QueueStatus(str, Enum):
    """Whether the relay has materialized the event into a job."""

    PENDING = "pending"
    QUEUED = "queued"
    BRIDGED = "bridged"


class OutboxEvent(Base):
    """A business occurrence recorded by the application."""

    __tablename__ = "events_outbox"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_name: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Event tag, e.g. invoice_generated"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        server_default=func.now(),
        default=utcnow,
    )

    # Subject references, opaque to the relay
    company_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    driver_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    request_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Logical correlation key"
    )
    audience_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    audience_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    event_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[str | None] = mapped_column(
        "metadata", Text, nullable=True, comment="Opaque payload, passed through"
    )

    # Delivery state (owned by the application's own consumers)
    process_status: Mapped[str] = mapped_column(
        Text, nullable=False, default=ProcessStatus.PENDING.value,
        server_default=ProcessStatus.PENDING.value,
    )
    send_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Relay state
    queue_status: Mapped[str | None] = mapped_column(
        Text, nullable=True, default=QueueStatus.PENDING.value,
        server_default=QueueStatus.PENDING.value,
    )
    queued_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "process_status IN ('pending', 'sent', 'failed', 'ignored')",
            name="events_outbox_process_status_check",
        ),
        Index("idx_events_queue", "queue_status"),
    )