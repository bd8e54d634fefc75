"""
Notification outbox.

Workflow handlers queue Notification rows in the same session as their own
write, commit once, then hand the rows to the dispatcher. The dispatcher
pushes the live event to the user's room and records the outcome on the row,
so a failed emit is logged and retried by the sweeper instead of failing the
workflow request.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

from fastapi import HTTPException, status
from fastapi.encoders import jsonable_encoder
from sqlmodel import Session, select
from sqlalchemy import update

import database
from config import get_settings
from models import Notification, NotificationType
from services.websocket_manager import ws_manager, EventType, WebSocketConnectionManager
from validators.business_rules import get_business_rules
from validators.id_validator import is_valid_id

logger = logging.getLogger(__name__)


def queue_notification(
    session: Session,
    user_id: str,
    message: str,
    notification_type: NotificationType,
    event: EventType,
    appointment_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> Notification:
    """Add a pending notification to the caller's unit of work"""
    notification = Notification(
        user_id=user_id,
        message=message,
        type=notification_type.value,
        appointment_id=appointment_id,
        event=event.value,
        payload=jsonable_encoder(payload or {}),
    )
    session.add(notification)
    return notification


def event_payload(notification: Notification) -> Dict[str, Any]:
    data = dict(notification.payload or {})
    data.update({
        "message": notification.message,
        "notification_id": notification.id,
        "type": notification.type,
        "created_at": notification.created_at,
    })
    return data


class NotificationDispatcher:
    """Delivers queued notifications to their users' rooms"""

    def __init__(self, manager: WebSocketConnectionManager):
        self.manager = manager

    async def dispatch_one(self, notification: Notification) -> bool:
        try:
            await self.manager.emit(
                notification.user_id,
                notification.event,
                event_payload(notification),
                require_delivery=True,
            )
        except Exception as e:
            notification.attempts += 1
            notification.last_error = str(e)[:500]
            logger.exception(f"Failed to dispatch notification {notification.id} to user {notification.user_id}")
            return False

        notification.attempts += 1
        notification.dispatched_at = datetime.utcnow()
        notification.last_error = None
        logger.info(f"Dispatched {notification.event} notification {notification.id} to user {notification.user_id}")
        return True

    async def dispatch(self, session: Session, notifications: List[Notification]) -> int:
        """Dispatch committed notifications and persist the outcome; never raises"""
        delivered = 0
        try:
            for notification in notifications:
                if await self.dispatch_one(notification):
                    delivered += 1
                session.add(notification)
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("Failed to record notification dispatch state")
        return delivered

    async def dispatch_pending(
        self,
        max_attempts: Optional[int] = None,
        batch_size: int = 100,
        min_age: Optional[float] = None,
    ) -> int:
        """
        Retry notifications whose live event has not gone out yet.
        Rows younger than min_age seconds (default: the sweep interval) are
        left to the request that queued them.
        """
        settings = get_settings()
        if max_attempts is None:
            max_attempts = settings.outbox_max_attempts
        if min_age is None:
            min_age = settings.outbox_sweep_interval
        cutoff = datetime.utcnow() - timedelta(seconds=min_age)

        with database.open_session() as session:
            pending = session.exec(
                select(Notification)
                .where(
                    Notification.dispatched_at == None,  # noqa: E711
                    Notification.attempts < max_attempts,
                    Notification.created_at <= cutoff
                )
                .order_by(Notification.created_at)
                .limit(batch_size)
            ).all()
            if not pending:
                return 0
            logger.info(f"Retrying {len(pending)} undispatched notification(s)")
            return await self.dispatch(session, list(pending))


async def run_outbox_sweeper(dispatcher: "NotificationDispatcher", interval: float) -> None:
    """Background loop started in the app lifespan"""
    logger.info(f"Notification outbox sweeper running every {interval}s")
    while True:
        await asyncio.sleep(interval)
        try:
            await dispatcher.dispatch_pending()
        except Exception:
            logger.exception("Notification outbox sweep failed")


def list_notifications(session: Session, user_id: str) -> List[Notification]:
    """Most recent notifications first, capped by the fetch limit"""
    return list(session.exec(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(get_business_rules().NOTIFICATION_FETCH_LIMIT)
    ).all())


async def mark_notification_read(session: Session, notification_id: str, user_id: str) -> Notification:
    """Idempotent: an already-read notification is returned unchanged"""
    if not is_valid_id(notification_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid notification ID format"
        )

    notification = session.get(Notification, notification_id)
    if not notification:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")

    if notification.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized: You cannot mark this notification as read"
        )

    if not notification.read:
        notification.read = True
        session.add(notification)
        session.commit()
        session.refresh(notification)
        logger.info(f"Notification {notification_id} marked as read by user {user_id}")

    await ws_manager.emit(user_id, EventType.NOTIFICATIONS_MARKED_AS_READ.value, {
        "user_id": user_id,
        "notification_ids": [notification.id],
        "timestamp": datetime.utcnow(),
    })
    return notification


async def mark_all_notifications_read(session: Session, user_id: str) -> int:
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
        .values(read=True)
    )
    session.commit()
    modified = result.rowcount or 0
    logger.info(f"{modified} notification(s) marked as read for user {user_id}")

    await ws_manager.emit(user_id, EventType.NOTIFICATIONS_MARKED_AS_READ.value, {
        "user_id": user_id,
        "notification_ids": None,
        "timestamp": datetime.utcnow(),
    })
    return modified


# Singleton instance
notification_dispatcher = NotificationDispatcher(ws_manager)
