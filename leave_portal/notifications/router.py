"""Notification endpoints — list and mark read."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.auth.dependencies import get_current_user
from leave_portal.database import get_db
from leave_portal.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
)
from leave_portal.notifications.service import NotificationService
from leave_portal.users.models import User

router = APIRouter(prefix="", tags=["notifications"])


# ── GET / — list current user's notifications ───────────────────────

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    is_read: Optional[bool] = Query(default=None, description="Filter by read status"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List notifications for the authenticated user."""
    return await NotificationService.get_notifications(db, user.id, is_read=is_read)


# ── POST /{id}/read — mark single as read ───────────────────────────

@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark a single notification as read. Only the recipient can do this."""
    return await NotificationService.mark_read(db, notification_id, user.id)
