"""User endpoints — profile, stats, admin balance management and removal."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.auth.dependencies import get_current_user, has_role, require_role
from leave_portal.common.constants import UserRole
from leave_portal.database import get_db
from leave_portal.dependencies import get_workflow
from leave_portal.ledger.schemas import BalanceAdjustmentOut, BalanceOut, TotalDaysUpdate
from leave_portal.ledger.service import BalanceLedger
from leave_portal.leave.service import ApprovalWorkflow
from leave_portal.users.models import User
from leave_portal.users.schemas import LeaveStatsOut, UserOut, UserProfileOut
from leave_portal.users.service import UserService

router = APIRouter(prefix="", tags=["users"])


# ── GET /profile ────────────────────────────────────────────────────

@router.get("/profile", response_model=UserProfileOut)
async def get_profile(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The authenticated user with their remaining balance."""
    return await UserService.get_profile(db, user.id)


# ── GET /stats ──────────────────────────────────────────────────────

@router.get("/stats", response_model=LeaveStatsOut)
async def get_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Request counts. Admins get company-wide numbers."""
    scope = None if has_role(user, UserRole.admin) else user.id
    return await UserService.get_stats(db, user_id=scope)


# ── GET /users ──────────────────────────────────────────────────────

@router.get("/users", response_model=list[UserOut])
async def list_users(
    user: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await UserService.list_users(db)


# ── DELETE /users/{user_id} ─────────────────────────────────────────

@router.delete("/users/{user_id}", response_model=UserOut)
async def delete_user(
    user_id: uuid.UUID,
    user: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Remove an account that has no leave or ledger history. Admins cannot remove themselves."""
    return await UserService.delete_user(db, user_id, user.id)


# ── PUT /users/{user_id}/total-days ─────────────────────────────────

@router.put("/users/{user_id}/total-days", response_model=BalanceOut)
async def set_total_days(
    user_id: uuid.UUID,
    body: TotalDaysUpdate,
    user: User = Depends(require_role(UserRole.admin)),
    workflow: ApprovalWorkflow = Depends(get_workflow),
):
    """Reset a user's annual allotment. Recorded in the balance log."""
    return await workflow.adjust_total_days(user_id, body.total_days, user.id)


# ── GET /users/{user_id}/ledger ─────────────────────────────────────

@router.get("/users/{user_id}/ledger", response_model=list[BalanceAdjustmentOut])
async def get_ledger(
    user_id: uuid.UUID,
    user: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await BalanceLedger.list_adjustments(db, user_id)
