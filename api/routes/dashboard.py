"""
Dashboard Router
================
Live university-wide statistics maintained by the aggregation recalculator.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.auth.security import User, StaffPlus
from api.runtime import DashboardRuntime, get_runtime
from livesync.aggregation import DashboardStats
from livesync.change_stream import ConnectionStatus

router = APIRouter()


class StatsResponse(BaseModel):
    stats:    Optional[DashboardStats] = None
    loading:  bool
    error:    Optional[str] = None
    realtime: ConnectionStatus


def _stats_response(runtime: DashboardRuntime) -> StatsResponse:
    return StatsResponse(
        stats    = runtime.stats.stats,
        loading  = runtime.stats.loading,
        error    = runtime.stats.error,
        realtime = runtime.stats.status,
    )


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Dashboard statistics",
)
async def get_stats(
    current_user: User = StaffPlus,
    runtime: DashboardRuntime = Depends(get_runtime),
) -> StatsResponse:
    """Return the last good statistics snapshot together with any refresh error."""
    return _stats_response(runtime)


@router.post(
    "/refresh",
    response_model=StatsResponse,
    summary="Recompute dashboard statistics",
)
async def refresh_stats(
    current_user: User = StaffPlus,
    runtime: DashboardRuntime = Depends(get_runtime),
) -> StatsResponse:
    await runtime.stats.refresh()
    return _stats_response(runtime)
