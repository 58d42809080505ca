"""
Worker heartbeat model.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from api.infra.clock import utcnow
from api.infra.database import Base, UTCDateTime


class WorkerHeartbeat(Base):
    """Latest liveness signal per worker identity; overwritten on every beat."""

    __tablename__ = "worker_heartbeat"

    worker_id: Mapped[str] = mapped_column(Text, primary_key=True)
    last_seen: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    status: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )
