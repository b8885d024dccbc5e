"""User service — onboarding, profile, request statistics and removal."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.common.constants import LeaveStatus
from leave_portal.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InUseException,
    NotFoundException,
)
from leave_portal.config import settings
from leave_portal.ledger.models import BalanceAdjustment
from leave_portal.leave.models import LeaveRequest, LeaveStatusChange
from leave_portal.leave.store import RequestStore
from leave_portal.notifications.models import Notification
from leave_portal.users.models import User
from leave_portal.users.schemas import (
    LeaveStatsOut,
    UserCreate,
    UserOut,
    UserProfileOut,
)

logger = logging.getLogger(__name__)


class UserService:
    """Async user operations."""

    @staticmethod
    async def create_user(db: AsyncSession, data: UserCreate) -> UserOut:
        """Onboard a user with an untouched allotment."""
        existing = await db.execute(
            select(User).where(
                or_(User.username == data.username, User.email == data.email)
            )
        )
        clash = existing.scalars().first()
        if clash is not None:
            if clash.username == data.username:
                raise ConflictError("username", data.username)
            raise ConflictError("email", data.email)

        user = User(
            id=uuid.uuid4(),
            username=data.username,
            name=data.name,
            email=data.email,
            role=data.role,
            total_days=(
                settings.DEFAULT_TOTAL_DAYS if data.total_days is None else data.total_days
            ),
            used_days=0,
            created_at=datetime.now(timezone.utc),
        )
        db.add(user)
        await db.flush()
        return UserOut.model_validate(user)

    @staticmethod
    async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> UserProfileOut:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", str(user_id))
        return UserProfileOut(
            **UserOut.model_validate(user).model_dump(),
            available_days=user.available_days,
        )

    @staticmethod
    async def list_users(db: AsyncSession) -> list[UserOut]:
        result = await db.execute(select(User).order_by(User.name))
        return [UserOut.model_validate(u) for u in result.scalars().all()]

    @staticmethod
    async def get_stats(
        db: AsyncSession,
        *,
        user_id: Optional[uuid.UUID] = None,
    ) -> LeaveStatsOut:
        """Request counts for one user, or for everybody when ``user_id`` is None."""
        counts = await RequestStore.count_by_status(db, user_id=user_id)
        return LeaveStatsOut(
            total=sum(counts.values()),
            pending=counts[LeaveStatus.pending],
            approved=counts[LeaveStatus.approved],
            rejected=counts[LeaveStatus.rejected],
        )

    @staticmethod
    async def delete_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        acting_user_id: uuid.UUID,
    ) -> UserOut:
        """Remove a user account together with its notifications.

        Users who appear in leave requests, status history or the balance
        log are kept: those rows are the audit trail.

        Raises:
            ForbiddenException: an admin deleting their own account.
            NotFoundException: unknown user.
            InUseException: the user is referenced by leave or ledger records.
        """
        if user_id == acting_user_id:
            raise ForbiddenException("You cannot delete your own account.")

        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", str(user_id))

        references = {
            "leave requests": select(func.count()).select_from(LeaveRequest).where(
                or_(LeaveRequest.requester_id == user_id, LeaveRequest.approver_id == user_id)
            ),
            "status history": select(func.count()).select_from(LeaveStatusChange).where(
                LeaveStatusChange.changed_by == user_id
            ),
            "balance log": select(func.count()).select_from(BalanceAdjustment).where(
                or_(
                    BalanceAdjustment.user_id == user_id,
                    BalanceAdjustment.acting_user_id == user_id,
                )
            ),
        }
        for label, query in references.items():
            if await db.scalar(query):
                raise InUseException("User", user_id, f"referenced by {label}")

        deleted = UserOut.model_validate(user)
        await db.execute(delete(Notification).where(Notification.recipient_id == user_id))
        await db.delete(user)
        await db.flush()
        logger.info("User %s (%s) deleted by %s", user_id, deleted.username, acting_user_id)
        return deleted
