"""Holiday calendar Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date

from pydantic import BaseModel, ConfigDict, Field


class HolidayCreate(BaseModel):
    day: date
    name: str = Field(..., min_length=1, max_length=200)


class HolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    day: date
    name: str
