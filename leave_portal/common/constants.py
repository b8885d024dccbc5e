"""Enums and constants for the leave portal — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    admin = "admin"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    """Absence categories. Only paid leave is charged against the allotment."""

    paid_leave = "paid_leave"
    permit = "permit"
    sick = "sick"


class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class LedgerEffect(str, enum.Enum):
    """What a status transition does to the requester's day balance."""

    none = "none"
    reserve = "reserve"
    release = "release"


# ── Balance ledger ──────────────────────────────────────────────────

class BalanceAction(str, enum.Enum):
    debit = "debit"
    credit = "credit"
    manual_set = "manual_set"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    approval = "approval"
    alert = "alert"


# ── Misc constants ──────────────────────────────────────────────────

# Saturday and Sunday, as returned by date.weekday()
WEEKEND_DAYS: frozenset[int] = frozenset({5, 6})
# Charged for a request whose range contains no working day
MIN_CHARGED_DAYS = 1
