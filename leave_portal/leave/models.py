"""Leave ORM models: LeaveRequest, LeaveStatusChange."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_portal.common.constants import LeaveStatus, LeaveType
from leave_portal.database import Base


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_requests_range"),
        sa.CheckConstraint("working_days >= 1", name="ck_leave_requests_working_days"),
        sa.Index("ix_leave_requests_requester_id", "requester_id"),
        sa.Index("ix_leave_requests_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"), nullable=False
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="leave_type"),
        nullable=False,
        default=LeaveType.paid_leave,
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    # Fixed when the request is filed; never recomputed
    working_days: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.pending,
    )
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    # Relationships
    requester: Mapped["User"] = relationship(
        back_populates="leave_requests", foreign_keys=[requester_id]
    )
    approver: Mapped[Optional["User"]] = relationship(
        foreign_keys=[approver_id]
    )

    @property
    def consumes_balance(self) -> bool:
        return self.leave_type == LeaveType.paid_leave


class LeaveStatusChange(Base):
    """One row per status a request has entered, creation included."""

    __tablename__ = "leave_status_changes"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[Optional[LeaveStatus]] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
    )
    to_status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"), nullable=False,
    )
    changed_by: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"), nullable=False
    )
    changed_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
