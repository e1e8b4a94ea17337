"""
Notification API router.

Publishers read the notifications produced by negotiation transitions.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Path, Query

from ..dependencies import DatabaseSession, http_error
from ...core.errors import NegotiationError
from ...core.models import NotificationType
from ...core.schemas import NotificationListResponse, NotificationOut
from ...core.services import notifications as notifications_service


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    db: DatabaseSession,
    publisher_id: int = Query(..., description="Publisher whose notifications to list."),
    is_read: Optional[bool] = Query(None),
    type: Optional[NotificationType] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> NotificationListResponse:
    """List notifications, newest first, with the unread count."""
    notifications = await notifications_service.list_notifications(db, publisher_id, is_read, type, limit, offset)
    unread = await notifications_service.count_unread(db, publisher_id)
    return NotificationListResponse(
        notifications=[NotificationOut.model_validate(n) for n in notifications],
        count=len(notifications),
        unread_count=unread,
    )


@router.post("/{notification_id}/read", response_model=NotificationOut)
async def mark_notification_read(
    db: DatabaseSession,
    notification_id: int = Path(..., description="Identifier of the notification."),
) -> NotificationOut:
    """Mark a notification as read."""
    try:
        notification = await notifications_service.mark_read(db, notification_id)
    except NegotiationError as exc:
        raise http_error(exc) from exc
    return NotificationOut.model_validate(notification)
