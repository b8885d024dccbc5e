"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update  → request bodies (write)
  - *Out               → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leave_portal.common.constants import LedgerEffect, LeaveStatus, LeaveType


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create / Update
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for filing a leave request. Date order is checked by the workflow."""

    leave_type: LeaveType = LeaveType.paid_leave
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: Optional[str] = Field(None, max_length=1000)


class LeaveStatusUpdate(BaseModel):
    """Payload for a manager/admin moving a request to another status."""

    status: LeaveStatus


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request response."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    requester_id: uuid.UUID
    leave_type: LeaveType
    start_date: date
    end_date: date
    working_days: int
    reason: Optional[str] = None
    status: LeaveStatus
    approver_id: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Filled by the admin listing
    requester_name: Optional[str] = None


class TransitionOut(BaseModel):
    """Outcome of ApprovalWorkflow.transition."""

    request: LeaveRequestOut
    previous_status: LeaveStatus
    ledger_effect: LedgerEffect
    # False when the request already had the target status
    changed: bool


class LeaveStatusChangeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    request_id: uuid.UUID
    from_status: Optional[LeaveStatus] = None
    to_status: LeaveStatus
    changed_by: uuid.UUID
    changed_at: datetime
