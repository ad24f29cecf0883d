"""
Notification dispatch

Ledgers receive a NotificationDispatcher at construction and call it only
after their own transaction has committed. Delivery is best effort: every
failure is logged here and never reaches the caller, so a lost notification
can never undo a booking, a cancellation or a withdrawal.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from ..models import Notification

logger = logging.getLogger(__name__)

# Titles shown in the notification inbox per event type
EVENT_TITLES = {
    "appointment_created": "New appointment booked",
    "appointment_status_update": "Appointment status updated",
    "assistance_status_update": "Assistance request updated",
    "assistance_withdrawal": "Funds disbursed",
    "donation_received": "Donation received",
    "funds_withdrawn": "Funds withdrawn",
}


class NotificationDispatcher:
    """Collaborator boundary for outbound notifications"""

    def dispatch(self, target_user_id: int, event_type: str, payload: dict) -> None:
        raise NotImplementedError

    def broadcast(self, event_type: str, payload: dict) -> None:
        """Record a system-wide activity event (admin feed)"""
        raise NotImplementedError

    def notify(self, target_user_id: Optional[int], event_type: str, payload: dict) -> bool:
        """Fire-and-forget wrapper used by the ledgers"""
        try:
            if target_user_id is None:
                self.broadcast(event_type, payload)
            else:
                self.dispatch(target_user_id, event_type, payload)
            return True
        except Exception as e:
            logger.error(f"❌ Failed to deliver {event_type} notification to {target_user_id}: {e}")
            return False


class DatabaseNotificationDispatcher(NotificationDispatcher):
    """
    Persists notifications to the inbox table.

    Uses its own session so a failed insert cannot roll back the caller's work.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _store(self, user_id: Optional[int], event_type: str, payload: dict) -> None:
        db: Session = self.session_factory()
        try:
            db.add(
                Notification(
                    user_id=user_id,
                    event_type=event_type,
                    title=EVENT_TITLES.get(event_type, event_type.replace("_", " ").capitalize()),
                    message=payload.get("message"),
                    payload=payload,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispatch(self, target_user_id: int, event_type: str, payload: dict) -> None:
        self._store(target_user_id, event_type, payload)
        logger.debug(f"📨 Stored {event_type} notification for user {target_user_id}")

    def broadcast(self, event_type: str, payload: dict) -> None:
        self._store(None, event_type, payload)


_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Dependency returning the process-wide dispatcher"""
    global _dispatcher
    if _dispatcher is None:
        from ..database import SessionLocal

        _dispatcher = DatabaseNotificationDispatcher(SessionLocal)
    return _dispatcher
