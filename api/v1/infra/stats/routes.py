"""
Queue stats API routes.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.config.settings import Settings, SettingsDep
from api.infra.database import get_session
from api.v1.core.exceptions import create_success_response
from api.v1.core.security import AdminDep, Principal
from api.v1.infra.stats.service import StatsService

router = APIRouter(prefix="/queue", tags=["queue"])


@router.get("/stats", response_model=dict)
async def get_queue_stats(
    recent_limit: int | None = Query(
        default=None, ge=1, le=500, description="Recent errors to return"
    ),
    principal: Principal = AdminDep,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """
    Queue observability snapshot.

    Returns job counts per status, outbox counts per queue status, worker
    heartbeats with staleness, recent failures and the derived condition.
    """
    stats = await StatsService(settings).get_queue_stats(
        session, recent_limit=recent_limit
    )
    return create_success_response(data=stats.model_dump(mode="json"))
