from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..exceptions import NotFound
from ..models import Notification, User
from ..shared.pagination import paginate

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class NotificationResponse(BaseModel):
    id: int
    eventType: str
    title: str
    message: Optional[str] = None
    payload: dict = {}
    isRead: bool
    createdAt: Optional[datetime] = None


def notification_response(n: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=n.id,
        eventType=n.event_type,
        title=n.title,
        message=n.message,
        payload=n.payload or {},
        isRead=n.is_read,
        createdAt=n.created_at,
    )


@router.get("")
async def get_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the current user's notification inbox, newest first"""
    query = db.query(Notification).filter(Notification.user_id == current_user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    unread_count = (
        db.query(Notification)
        .filter(Notification.user_id == current_user.id, Notification.is_read.is_(False))
        .count()
    )
    items, pagination = paginate(
        query.order_by(Notification.created_at.desc(), Notification.id.desc()), page, limit
    )
    return {
        "success": True,
        "message": "Notifications retrieved",
        "data": [notification_response(n) for n in items],
        "unreadCount": unread_count,
        "pagination": pagination,
    }


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark one notification as read"""
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == current_user.id)
        .first()
    )
    if not notification:
        raise NotFound("Notification not found")
    notification.is_read = True
    db.commit()
    return {"success": True, "message": "Notification marked as read"}


@router.post("/read-all")
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark every notification of the current user as read"""
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == current_user.id, Notification.is_read.is_(False))
        .update({"is_read": True}, synchronize_session=False)
    )
    db.commit()
    return {"success": True, "message": f"Marked {updated} notification(s) as read", "updated": updated}
