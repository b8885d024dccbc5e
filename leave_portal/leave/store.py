"""Request store — persistence of leave requests and their status history.

Pure storage: no balance checks, no ledger side effects. The approval
workflow composes these calls with BalanceLedger inside one transaction.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leave_portal.common.constants import LeaveStatus, LeaveType
from leave_portal.common.exceptions import NotFoundException
from leave_portal.leave.models import LeaveRequest, LeaveStatusChange
from leave_portal.leave.schemas import LeaveRequestOut, LeaveStatusChangeOut


class RequestStore:
    """Async CRUD over ``leave_requests`` and ``leave_status_changes``."""

    @staticmethod
    def _record_change(
        db: AsyncSession,
        request: LeaveRequest,
        *,
        from_status: Optional[LeaveStatus],
        changed_by: uuid.UUID,
        changed_at: datetime,
    ) -> None:
        db.add(
            LeaveStatusChange(
                request_id=request.id,
                from_status=from_status,
                to_status=request.status,
                changed_by=changed_by,
                changed_at=changed_at,
            )
        )

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        requester_id: uuid.UUID,
        leave_type: LeaveType,
        start_date: date,
        end_date: date,
        working_days: int,
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        """Insert a pending request and its initial history row."""
        now = datetime.now(timezone.utc)
        request = LeaveRequest(
            id=uuid.uuid4(),
            requester_id=requester_id,
            leave_type=leave_type,
            start_date=start_date,
            end_date=end_date,
            working_days=working_days,
            reason=reason,
            status=LeaveStatus.pending,
            created_at=now,
            updated_at=now,
        )
        db.add(request)
        # History rows reference the request; insert it first
        await db.flush()
        RequestStore._record_change(
            db, request, from_status=None, changed_by=requester_id, changed_at=now,
        )
        await db.flush()
        return request

    @staticmethod
    async def get(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveRequest]:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def get_or_404(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> LeaveRequest:
        request = await RequestStore.get(db, request_id, for_update=for_update)
        if request is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return request

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: uuid.UUID,
    ) -> list[LeaveRequestOut]:
        """A requester's own requests, newest first."""
        result = await db.execute(
            select(LeaveRequest)
            .where(LeaveRequest.requester_id == user_id)
            .order_by(LeaveRequest.created_at.desc())
        )
        return [LeaveRequestOut.model_validate(r) for r in result.scalars().all()]

    @staticmethod
    async def list_all(db: AsyncSession) -> list[LeaveRequestOut]:
        """Every request with the requester's name, newest first. Caller gates by role."""
        result = await db.execute(
            select(LeaveRequest)
            .options(selectinload(LeaveRequest.requester))
            .order_by(LeaveRequest.created_at.desc())
        )
        output: list[LeaveRequestOut] = []
        for req in result.scalars().all():
            out = LeaveRequestOut.model_validate(req)
            out.requester_name = req.requester.name if req.requester else None
            output.append(out)
        return output

    @staticmethod
    async def set_status(
        db: AsyncSession,
        request: LeaveRequest,
        new_status: LeaveStatus,
        *,
        approver_id: Optional[uuid.UUID],
        timestamp: Optional[datetime],
        changed_by: uuid.UUID,
    ) -> LeaveRequest:
        """Move ``request`` to ``new_status`` and append a history row."""
        old_status = request.status
        now = datetime.now(timezone.utc)

        request.status = new_status
        request.approver_id = approver_id
        request.approved_at = timestamp
        request.updated_at = now

        RequestStore._record_change(
            db, request, from_status=old_status, changed_by=changed_by, changed_at=now,
        )
        await db.flush()
        return request

    @staticmethod
    async def delete(db: AsyncSession, request: LeaveRequest) -> None:
        """Hard delete. Balance reversal is the caller's job."""
        await db.execute(
            delete(LeaveStatusChange).where(LeaveStatusChange.request_id == request.id)
        )
        await db.delete(request)
        await db.flush()

    @staticmethod
    async def list_history(
        db: AsyncSession,
        request_id: uuid.UUID,
    ) -> list[LeaveStatusChangeOut]:
        await RequestStore.get_or_404(db, request_id)
        result = await db.execute(
            select(LeaveStatusChange)
            .where(LeaveStatusChange.request_id == request_id)
            .order_by(LeaveStatusChange.id)
        )
        return [LeaveStatusChangeOut.model_validate(c) for c in result.scalars().all()]

    @staticmethod
    async def count_by_status(
        db: AsyncSession,
        *,
        user_id: Optional[uuid.UUID] = None,
    ) -> dict[LeaveStatus, int]:
        """Request counts per status, for one requester or the whole tenant."""
        query = select(LeaveRequest.status, func.count()).group_by(LeaveRequest.status)
        if user_id is not None:
            query = query.where(LeaveRequest.requester_id == user_id)
        result = await db.execute(query)
        counts = {status: 0 for status in LeaveStatus}
        for status, count in result.all():
            counts[LeaveStatus(status)] = count
        return counts
