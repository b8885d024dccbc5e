"""User Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leave_portal.common.constants import UserRole


class UserCreate(BaseModel):
    """Onboarding payload. ``total_days`` defaults to the configured allotment."""

    username: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=255)
    role: UserRole = UserRole.employee
    total_days: Optional[int] = Field(None, ge=0)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    username: str
    name: str
    email: str
    role: UserRole
    total_days: int
    used_days: int
    created_at: Optional[datetime] = None


class UserProfileOut(UserOut):
    """Profile widget payload: counters plus the remaining balance."""

    available_days: int


class LeaveStatsOut(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
