"""
Realtime Router
===============
Connection status of every live subscription, the manual reconnect
affordance, and recent change notifications.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.auth.security import User, StaffPlus
from api.runtime import DashboardRuntime, get_runtime
from config.logging_config import logger
from livesync.change_stream import ConnectionStatus

router = APIRouter()


class NotificationOut(BaseModel):
    kind:         str
    collection:   str
    id:           str
    display_name: str


@router.get("/status", response_model=dict[str, ConnectionStatus], summary="Subscription status")
async def get_status(
    current_user: User = StaffPlus,
    runtime: DashboardRuntime = Depends(get_runtime),
) -> dict[str, ConnectionStatus]:
    return runtime.statuses()


@router.post("/reconnect", response_model=dict[str, ConnectionStatus], summary="Reconnect all subscriptions")
async def reconnect(
    current_user: User = StaffPlus,
    runtime: DashboardRuntime = Depends(get_runtime),
) -> dict[str, ConnectionStatus]:
    logger.info(f"Reconnect requested by {current_user.email}")
    await runtime.reconnect()
    return runtime.statuses()


@router.get("/notifications", response_model=list[NotificationOut], summary="Recent change notifications")
async def list_notifications(
    current_user: User = StaffPlus,
    runtime: DashboardRuntime = Depends(get_runtime),
    limit: int = Query(20, ge=1, le=100),
) -> list[NotificationOut]:
    return [
        NotificationOut(kind=n.kind.value, collection=n.collection, id=n.id, display_name=n.display_name)
        for n in list(runtime.notifications)[:limit]
    ]
