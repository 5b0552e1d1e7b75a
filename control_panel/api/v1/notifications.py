from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from control_panel.api.dependencies.auth import require_super_admin
from control_panel.core.context import RequestContext
from control_panel.db.session import get_db_session
from control_panel.schemas.admin import (
    MarkNotificationsReadRequest,
    MarkNotificationsReadResponse,
    NotificationResponse,
    NotificationsResponse,
)
from control_panel.services.notifications import list_unread_notifications, mark_notifications_read


router = APIRouter(prefix="/api/v1/admin", tags=["notifications"])


@router.get("/notifications", response_model=NotificationsResponse)
async def get_unread_notifications(
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> NotificationsResponse:
    notifications = await list_unread_notifications(db, ctx.actor.id)
    return NotificationsResponse(
        notifications=[NotificationResponse.from_notification(item) for item in notifications]
    )


@router.post("/notifications/read", response_model=MarkNotificationsReadResponse)
async def read_notifications(
    payload: MarkNotificationsReadRequest,
    ctx: RequestContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
) -> MarkNotificationsReadResponse:
    updated = await mark_notifications_read(db, ctx.actor.id, payload.notification_ids)
    return MarkNotificationsReadResponse(updated=updated)
