"""
Worker heartbeat registry.

One row per worker identity, overwritten on every beat. Monitoring reads the
rows and decides whether a worker is alive by the age of ``last_seen``.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from api.config.settings import Settings
from api.infra.clock import seconds_since, utcnow
from api.v1.infra.heartbeat.models import WorkerHeartbeat
from api.v1.infra.heartbeat.schemas import HeartbeatView

logger = logging.getLogger(__name__)

STATUS_RUNNING = "running"
STATUS_STOPPED = "stopped"

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def is_stale(last_seen: datetime | None, now: datetime, stale_after_s: float) -> bool:
    """A worker that never beat, or beat too long ago, counts as down."""
    if last_seen is None:
        return True
    return seconds_since(last_seen, now) > stale_after_s


def any_alive(heartbeats: list[HeartbeatView]) -> bool:
    return any(not hb.stale and hb.status != STATUS_STOPPED for hb in heartbeats)


class HeartbeatService:
    """Service for writing and reading worker heartbeats."""

    def __init__(self, settings: Settings):
        self.settings = settings

    async def beat(
        self,
        session: AsyncSession,
        worker_id: str,
        status: str = STATUS_RUNNING,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> None:
        """Upsert this worker's row with the current time."""
        now = now or utcnow()
        dialect = session.bind.dialect.name
        if dialect not in _INSERTS:
            raise RuntimeError(f"Heartbeat upsert not supported on {dialect}")

        table = WorkerHeartbeat.__table__
        stmt = _INSERTS[dialect](table).values(
            worker_id=worker_id,
            last_seen=now,
            status=status,
            metadata=metadata,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.worker_id],
            set_={
                "last_seen": stmt.excluded["last_seen"],
                "status": stmt.excluded["status"],
                "metadata": stmt.excluded["metadata"],
            },
        )

        await session.execute(stmt)
        await session.commit()

    async def list_heartbeats(
        self,
        session: AsyncSession,
        now: datetime | None = None,
        stale_after_s: float | None = None,
    ) -> list[HeartbeatView]:
        """All known workers, most recently seen first."""
        now = now or utcnow()
        threshold = (
            stale_after_s
            if stale_after_s is not None
            else self.settings.heartbeat_stale_after_s
        )

        result = await session.execute(
            select(WorkerHeartbeat).order_by(desc(WorkerHeartbeat.last_seen))
        )
        return [
            HeartbeatView(
                worker_id=row.worker_id,
                last_seen=row.last_seen,
                status=row.status,
                metadata=row.metadata_,
                age_seconds=round(seconds_since(row.last_seen, now), 3),
                stale=is_stale(row.last_seen, now, threshold),
            )
            for row in result.scalars().all()
        ]

    async def has_fresh_worker(
        self, session: AsyncSession, now: datetime | None = None
    ) -> bool:
        """True if at least one running worker beat within the threshold."""
        return any_alive(await self.list_heartbeats(session, now))
