"""Working-day calculation and holiday calendar lookups."""

from __future__ import annotations

from datetime import date, timedelta
from typing import AbstractSet, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.calendar.models import Holiday
from leave_portal.calendar.schemas import HolidayCreate, HolidayOut
from leave_portal.common.constants import MIN_CHARGED_DAYS, WEEKEND_DAYS
from leave_portal.common.exceptions import ConflictError, InvalidRangeException
from leave_portal.config import settings


def compute_working_days(
    start: date,
    end: date,
    holidays: Optional[AbstractSet[date]] = None,
) -> int:
    """Count Mon–Fri dates in ``[start, end]`` that are not holidays.

    A range without any working day still charges ``MIN_CHARGED_DAYS``
    so that every accepted request debits something.

    Raises:
        InvalidRangeException: ``end`` is before ``start``.
    """
    if end < start:
        raise InvalidRangeException(start, end)

    holidays = holidays or frozenset()
    count = 0
    # Never step past ``end``: date.max + 1 day overflows.
    for offset in range((end - start).days + 1):
        day = start + timedelta(days=offset)
        if day.weekday() not in WEEKEND_DAYS and day not in holidays:
            count += 1

    return max(count, MIN_CHARGED_DAYS)


class HolidayCalendar:
    """Async access to the configured holiday calendar."""

    @staticmethod
    async def get_holiday_dates(
        db: AsyncSession,
        from_date: date,
        to_date: date,
        *,
        enabled: Optional[bool] = None,
    ) -> set[date]:
        """Return holiday dates in the given range.

        Empty when the calendar is switched off (``HOLIDAYS_ENABLED``),
        in which case only weekends are excluded from working days.
        """
        if enabled is None:
            enabled = settings.HOLIDAYS_ENABLED
        if not enabled:
            return set()

        result = await db.execute(
            select(Holiday.day).where(
                Holiday.day >= from_date,
                Holiday.day <= to_date,
            )
        )
        return set(result.scalars().all())

    @staticmethod
    async def list_holidays(
        db: AsyncSession,
        *,
        year: Optional[int] = None,
    ) -> list[HolidayOut]:
        query = select(Holiday).order_by(Holiday.day)
        if year is not None:
            query = query.where(
                Holiday.day >= date(year, 1, 1),
                Holiday.day <= date(year, 12, 31),
            )
        result = await db.execute(query)
        return [HolidayOut.model_validate(h) for h in result.scalars().all()]

    @staticmethod
    async def add_holiday(db: AsyncSession, data: HolidayCreate) -> HolidayOut:
        """Register a holiday. Requests already filed keep their day count."""
        existing = await db.execute(select(Holiday.id).where(Holiday.day == data.day))
        if existing.scalar() is not None:
            raise ConflictError("day", data.day.isoformat())

        holiday = Holiday(day=data.day, name=data.name)
        db.add(holiday)
        try:
            await db.flush()
        except IntegrityError:
            raise ConflictError("day", data.day.isoformat())
        return HolidayOut.model_validate(holiday)
