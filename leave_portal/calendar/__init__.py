"""Calendar module — working-day arithmetic and the holiday calendar."""

from leave_portal.calendar.service import HolidayCalendar, compute_working_days

__all__ = ["HolidayCalendar", "compute_working_days"]
