"""User ORM model — identity, role and the annual day allotment."""

from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_portal.common.constants import UserRole
from leave_portal.database import Base


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        sa.CheckConstraint("total_days >= 0", name="ck_users_total_days_non_negative"),
        sa.CheckConstraint("used_days >= 0", name="ck_users_used_days_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    username: Mapped[str] = mapped_column(sa.String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.employee,
    )
    total_days: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=26)
    used_days: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    # Bumped on every UPDATE; a stale write raises StaleDataError
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    leave_requests: Mapped[list["LeaveRequest"]] = relationship(
        back_populates="requester",
        foreign_keys="LeaveRequest.requester_id",
    )

    @property
    def available_days(self) -> int:
        return self.total_days - self.used_days

    def __repr__(self) -> str:
        return f"<User {self.username} role={self.role.value} used={self.used_days}/{self.total_days}>"
