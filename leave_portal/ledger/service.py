"""Balance ledger — owns ``total_days`` / ``used_days`` and the adjustment log.

Every mutation:
  - locks the user row (``SELECT ... FOR UPDATE``; ignored by SQLite)
  - bumps ``users.version_id`` so a concurrent writer fails with StaleDataError
  - appends exactly one BalanceAdjustment entry

Callers own the transaction; nothing here commits.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.common.constants import BalanceAction
from leave_portal.common.exceptions import (
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
)
from leave_portal.ledger.models import BalanceAdjustment
from leave_portal.ledger.schemas import BalanceAdjustmentOut, BalanceOut
from leave_portal.users.models import User

logger = logging.getLogger(__name__)


class BalanceLedger:
    """Async balance operations over a caller-supplied session."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> User:
        query = select(User).where(User.id == user_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        user = result.scalars().first()
        if user is None:
            raise NotFoundException("User", str(user_id))
        return user

    @staticmethod
    def _append_entry(
        db: AsyncSession,
        user: User,
        *,
        action: BalanceAction,
        amount: int,
        balance_before: int,
        related_request_id: Optional[uuid.UUID],
        acting_user_id: Optional[uuid.UUID],
    ) -> BalanceAdjustment:
        entry = BalanceAdjustment(
            user_id=user.id,
            related_request_id=related_request_id,
            action=action,
            amount=amount,
            balance_before=balance_before,
            balance_after=user.available_days,
            acting_user_id=acting_user_id,
            created_at=datetime.now(timezone.utc),
        )
        db.add(entry)
        return entry

    @staticmethod
    def _require_positive(amount: int) -> None:
        if amount <= 0:
            raise ValidationException(
                {"amount": [f"Amount must be a positive number of days, got {amount}."]}
            )

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_available(db: AsyncSession, user_id: uuid.UUID) -> int:
        """``total_days - used_days``. Negative only after a manual downward reset."""
        user = await BalanceLedger._load_user(db, user_id)
        return user.available_days

    @staticmethod
    async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> BalanceOut:
        user = await BalanceLedger._load_user(db, user_id)
        return BalanceOut(
            user_id=user.id,
            total_days=user.total_days,
            used_days=user.used_days,
            available_days=user.available_days,
        )

    @staticmethod
    async def list_adjustments(
        db: AsyncSession,
        user_id: uuid.UUID,
    ) -> list[BalanceAdjustmentOut]:
        """Full adjustment history for a user, oldest first."""
        await BalanceLedger._load_user(db, user_id)
        result = await db.execute(
            select(BalanceAdjustment)
            .where(BalanceAdjustment.user_id == user_id)
            .order_by(BalanceAdjustment.id)
        )
        return [BalanceAdjustmentOut.model_validate(e) for e in result.scalars().all()]

    # ─────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def reserve(
        db: AsyncSession,
        user_id: uuid.UUID,
        amount: int,
        *,
        related_request_id: Optional[uuid.UUID],
        acting_user_id: Optional[uuid.UUID],
    ) -> BalanceAdjustment:
        """Debit ``amount`` days. Fails without side effects when not enough is available."""
        BalanceLedger._require_positive(amount)
        user = await BalanceLedger._load_user(db, user_id, for_update=True)

        available = user.available_days
        if amount > available:
            raise InsufficientBalanceException(available=available, requested=amount)

        user.used_days += amount
        entry = BalanceLedger._append_entry(
            db,
            user,
            action=BalanceAction.debit,
            amount=amount,
            balance_before=available,
            related_request_id=related_request_id,
            acting_user_id=acting_user_id,
        )
        await db.flush()
        return entry

    @staticmethod
    async def release(
        db: AsyncSession,
        user_id: uuid.UUID,
        amount: int,
        *,
        related_request_id: Optional[uuid.UUID],
        acting_user_id: Optional[uuid.UUID],
    ) -> BalanceAdjustment:
        """Credit ``amount`` days back. ``used_days`` never drops below zero."""
        BalanceLedger._require_positive(amount)
        user = await BalanceLedger._load_user(db, user_id, for_update=True)

        available = user.available_days
        credited = min(amount, user.used_days)
        if credited < amount:
            logger.warning(
                "Release of %d day(s) for user %s floored at zero (used_days=%d, request=%s)",
                amount, user_id, user.used_days, related_request_id,
            )

        user.used_days -= credited
        entry = BalanceLedger._append_entry(
            db,
            user,
            action=BalanceAction.credit,
            amount=credited,
            balance_before=available,
            related_request_id=related_request_id,
            acting_user_id=acting_user_id,
        )
        await db.flush()
        return entry

    @staticmethod
    async def manual_adjust(
        db: AsyncSession,
        user_id: uuid.UUID,
        new_total_days: int,
        *,
        acting_user_id: Optional[uuid.UUID],
    ) -> BalanceAdjustment:
        """Admin reset of the annual allotment; logs the signed delta."""
        if new_total_days < 0:
            raise ValidationException(
                {"total_days": ["Total days cannot be negative."]}
            )
        user = await BalanceLedger._load_user(db, user_id, for_update=True)

        available = user.available_days
        delta = new_total_days - user.total_days
        user.total_days = new_total_days
        entry = BalanceLedger._append_entry(
            db,
            user,
            action=BalanceAction.manual_set,
            amount=delta,
            balance_before=available,
            related_request_id=None,
            acting_user_id=acting_user_id,
        )
        await db.flush()
        return entry
