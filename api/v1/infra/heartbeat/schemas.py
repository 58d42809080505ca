from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class HeartbeatView(BaseModel):
    """A worker heartbeat row with its freshness evaluated."""

    worker_id: str
    last_seen: datetime
    status: str | None = None
    metadata: dict[str, Any] | None = None
    age_seconds: float = Field(..., description="Seconds since last_seen")
    stale: bool = Field(..., description="Older than the staleness threshold")
