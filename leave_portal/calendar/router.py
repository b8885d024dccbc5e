"""Holiday calendar endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.auth.dependencies import get_current_user, require_role
from leave_portal.calendar.schemas import HolidayCreate, HolidayOut
from leave_portal.calendar.service import HolidayCalendar
from leave_portal.common.constants import UserRole
from leave_portal.database import get_db
from leave_portal.users.models import User

router = APIRouter(prefix="", tags=["holidays"])


@router.get("", response_model=list[HolidayOut])
async def list_holidays(
    year: Optional[int] = Query(None, ge=1900, le=2200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await HolidayCalendar.list_holidays(db, year=year)


@router.post("", response_model=HolidayOut, status_code=status.HTTP_201_CREATED)
async def add_holiday(
    body: HolidayCreate,
    user: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Register a company holiday. Affects requests filed afterwards only."""
    return await HolidayCalendar.add_holiday(db, body)
