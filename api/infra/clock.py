"""Timezone-aware time helpers shared by the queue, bridge and stats code."""

import asyncio
from datetime import UTC, datetime, timedelta


def utcnow() -> datetime:
    """Return the current UTC time with tzinfo set."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def seconds_since(dt: datetime, now: datetime | None = None) -> float:
    """Age of ``dt`` in seconds relative to ``now``."""
    return ((now or utcnow()) - ensure_utc(dt)).total_seconds()


def after(seconds: float, now: datetime | None = None) -> datetime:
    return (now or utcnow()) + timedelta(seconds=seconds)


def before(seconds: float, now: datetime | None = None) -> datetime:
    return (now or utcnow()) - timedelta(seconds=seconds)


async def sleep_or_stop(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to ``seconds``; return True early if ``stop_event`` is set."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except TimeoutError:
        return False
    return True
