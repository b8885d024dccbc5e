"""Common module — shared enums and exceptions for the leave portal."""

from leave_portal.common.constants import (
    MIN_CHARGED_DAYS,
    WEEKEND_DAYS,
    BalanceAction,
    LeaveStatus,
    LeaveType,
    LedgerEffect,
    NotificationType,
    UserRole,
)
from leave_portal.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    InsufficientBalanceException,
    InvalidRangeException,
    NotFoundException,
    TransactionConflictError,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Constants / Enums
    "BalanceAction",
    "LeaveStatus",
    "LeaveType",
    "LedgerEffect",
    "NotificationType",
    "UserRole",
    "MIN_CHARGED_DAYS",
    "WEEKEND_DAYS",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "InsufficientBalanceException",
    "InvalidRangeException",
    "NotFoundException",
    "TransactionConflictError",
    "ValidationException",
    "register_exception_handlers",
]
