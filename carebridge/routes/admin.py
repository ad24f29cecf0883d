import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import require_roles
from ..database import get_db
from ..domain.funding.service import FundingLedger
from ..models import ADMIN_ROLES, Notification, User
from ..services.notification_service import NotificationDispatcher, get_notification_dispatcher
from ..shared.pagination import paginate
from .notifications import notification_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/activity")
async def get_activity_feed(
    event_type: Optional[str] = Query(None, alias="eventType"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_db),
):
    """System-wide activity events (withdrawals and other ledger movements)"""
    query = db.query(Notification).filter(Notification.user_id.is_(None))
    if event_type:
        query = query.filter(Notification.event_type == event_type)
    items, pagination = paginate(
        query.order_by(Notification.created_at.desc(), Notification.id.desc()), page, limit
    )
    return {
        "success": True,
        "message": "Activity retrieved",
        "data": [notification_response(n) for n in items],
        "pagination": pagination,
    }


@router.get("/funding-summary")
async def get_funding_summary(
    current_user: User = Depends(require_roles(*ADMIN_ROLES)),
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Totals across every assistance request"""
    summary = FundingLedger(db, notifier).funding_summary()
    logger.debug(f"📊 Funding summary requested by admin {current_user.id}")
    return {"success": True, "message": "Funding summary retrieved", "data": summary}
