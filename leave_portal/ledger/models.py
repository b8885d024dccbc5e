"""Balance ledger ORM model: the append-only adjustment log."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from leave_portal.common.constants import BalanceAction
from leave_portal.database import Base


class BalanceAdjustment(Base):
    """Immutable record of every change to a user's day counters.

    ``balance_before`` / ``balance_after`` are available days
    (``total_days - used_days``) around the mutation.
    """

    __tablename__ = "balance_adjustments"

    # Integer key keeps insertion order for the audit view
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"), nullable=False,
    )
    # No FK: entries outlive deleted requests
    related_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(sa.Uuid)
    action: Mapped[BalanceAction] = mapped_column(
        sa.Enum(BalanceAction, name="balance_action"), nullable=False,
    )
    amount: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    balance_before: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    acting_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"),
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False,
    )

    __table_args__ = (
        sa.Index("ix_balance_adjustments_user_id", "user_id"),
        sa.Index("ix_balance_adjustments_related_request_id", "related_request_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<BalanceAdjustment {self.action.value} {self.amount} "
            f"user={self.user_id} {self.balance_before}->{self.balance_after}>"
        )
