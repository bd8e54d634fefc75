"""Notification listing and read state"""
from fastapi import APIRouter, Depends
from sqlmodel import Session
from typing import List
from database import get_session
from models import User
from schemas import NotificationResponse, MarkAllReadResponse
from dependencies import get_current_user
from services import notification_service

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("", response_model=List[NotificationResponse])
async def get_notifications(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Get the caller's most recent notifications"""
    return notification_service.list_notifications(session, current_user.id)


@router.put("/read-all", response_model=MarkAllReadResponse)
async def mark_all_as_read(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Mark all of the caller's notifications as read"""
    modified = await notification_service.mark_all_notifications_read(session, current_user.id)
    return MarkAllReadResponse(message="All notifications marked as read", modified_count=modified)


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_as_read(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Mark one notification as read"""
    return await notification_service.mark_notification_read(session, notification_id, current_user.id)
