"""Balance ledger Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leave_portal.common.constants import BalanceAction


class BalanceOut(BaseModel):
    """A user's counters with the computed available field."""

    user_id: uuid.UUID
    total_days: int
    used_days: int
    available_days: int


class TotalDaysUpdate(BaseModel):
    """Payload for an admin resetting a user's annual allotment."""

    total_days: int = Field(..., ge=0)


class BalanceAdjustmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: uuid.UUID
    related_request_id: Optional[uuid.UUID] = None
    action: BalanceAction
    amount: int
    balance_before: int
    balance_after: int
    acting_user_id: Optional[uuid.UUID] = None
    created_at: datetime
