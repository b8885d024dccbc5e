"""Leave router — file, list, transition and delete leave requests.

All endpoints require authentication. Transitions need manager rights,
deletion needs admin rights.
"""

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.auth.dependencies import get_current_user, has_role, require_role
from leave_portal.common.constants import UserRole
from leave_portal.common.exceptions import ForbiddenException
from leave_portal.database import get_db
from leave_portal.dependencies import get_workflow
from leave_portal.leave.schemas import (
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveStatusChangeOut,
    LeaveStatusUpdate,
    TransitionOut,
)
from leave_portal.leave.service import ApprovalWorkflow
from leave_portal.leave.store import RequestStore
from leave_portal.users.models import User

router = APIRouter(prefix="", tags=["requests"])


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=LeaveRequestOut, status_code=status.HTTP_201_CREATED)
async def create_request(
    body: LeaveRequestCreate,
    user: User = Depends(get_current_user),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """File a leave request for the authenticated user."""
    return await workflow.create_request(
        user.id,
        body.leave_type,
        body.start_date,
        body.end_date,
        body.reason,
    )


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=list[LeaveRequestOut])
async def list_requests(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Own requests for employees; every request for managers and admins."""
    if has_role(user, UserRole.manager):
        return await RequestStore.list_all(db)
    return await RequestStore.list_for_user(db, user.id)


# ── GET /{request_id}/history ───────────────────────────────────────

@router.get("/{request_id}/history", response_model=list[LeaveStatusChangeOut])
async def request_history(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Status history of a request. Employees only see their own."""
    request = await RequestStore.get_or_404(db, request_id)
    if request.requester_id != user.id and not has_role(user, UserRole.manager):
        raise ForbiddenException("You can only view the history of your own requests.")
    return await RequestStore.list_history(db, request_id)


# ── PATCH /{request_id} ─────────────────────────────────────────────

@router.patch("/{request_id}", response_model=TransitionOut)
async def update_request_status(
    request_id: uuid.UUID,
    body: LeaveStatusUpdate,
    user: User = Depends(require_role(UserRole.manager)),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """Approve, reject or reopen a request."""
    return await workflow.transition(request_id, body.status, user.id)


# ── DELETE /{request_id} ────────────────────────────────────────────

@router.delete("/{request_id}", response_model=LeaveRequestOut)
async def delete_request(
    request_id: uuid.UUID,
    user: User = Depends(require_role(UserRole.admin)),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    return await workflow.delete_request(request_id, user.id)
