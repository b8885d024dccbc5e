"""Notification service — the status-change sink and recipient-side reads.

The approval workflow hands every committed status change to a
``NotificationSink`` after its transaction has closed. Sinks open their own
session, so a failing or slow sink cannot touch the leave/ledger state.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leave_portal.common.constants import LeaveStatus, NotificationType
from leave_portal.common.exceptions import ForbiddenException, NotFoundException
from leave_portal.leave.schemas import LeaveRequestOut
from leave_portal.notifications.models import Notification
from leave_portal.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
)


class NotificationSink(Protocol):
    """Receives fire-and-forget notices about leave status changes."""

    async def leave_status_changed(
        self,
        leave_request: LeaveRequestOut,
        previous_status: LeaveStatus,
    ) -> None:
        ...


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            entity_type=entity_type,
            entity_id=entity_id,
            is_read=False,
            created_at=datetime.now(timezone.utc),
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def get_notifications(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        is_read: Optional[bool] = None,
    ) -> NotificationListResponse:
        """Return a user's notifications, newest first, with the unread badge count."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == user_id)
            .order_by(Notification.created_at.desc())
        )
        if is_read is not None:
            query = query.where(Notification.is_read == is_read)

        rows = (await db.execute(query)).scalars().all()
        unread = await NotificationService.get_unread_count(db, user_id)
        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            unread=unread,
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> NotificationResponse:
        """Mark a single notification as read. Verifies ownership."""
        result = await db.execute(
            select(Notification).where(Notification.id == notification_id)
        )
        notification = result.scalars().first()

        if notification is None:
            raise NotFoundException("Notification", notification_id)

        if notification.recipient_id != user_id:
            raise ForbiddenException("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return NotificationResponse.model_validate(notification)

    @staticmethod
    async def get_unread_count(
        db: AsyncSession,
        user_id: uuid.UUID,
    ) -> int:
        """Return the number of unread notifications for a user."""
        result = await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.recipient_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()


# ── Message building ────────────────────────────────────────────────

_STATUS_MESSAGES: dict[LeaveStatus, tuple[NotificationType, str]] = {
    LeaveStatus.approved: (NotificationType.approval, "Leave Request Approved"),
    LeaveStatus.rejected: (NotificationType.alert, "Leave Request Rejected"),
    LeaveStatus.pending: (NotificationType.info, "Leave Request Reopened"),
}


async def notify_leave_status_changed(
    db: AsyncSession,
    leave_request: LeaveRequestOut,
    previous_status: LeaveStatus,
) -> Notification:
    """Notify the requester that their leave request changed status."""
    type_, title = _STATUS_MESSAGES[leave_request.status]
    return await NotificationService.create_notification(
        db,
        recipient_id=leave_request.requester_id,
        type=type_,
        title=title,
        message=(
            f"Your leave request from {leave_request.start_date} to "
            f"{leave_request.end_date} ({leave_request.working_days} working day(s)) "
            f"moved from {previous_status.value} to {leave_request.status.value}."
        ),
        entity_type="leave_request",
        entity_id=leave_request.id,
    )


class DatabaseNotificationSink:
    """Stores notices in the ``notifications`` table, one short transaction each."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def leave_status_changed(
        self,
        leave_request: LeaveRequestOut,
        previous_status: LeaveStatus,
    ) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                await notify_leave_status_changed(db, leave_request, previous_status)
