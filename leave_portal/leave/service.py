"""Approval workflow — the leave-request state machine and its balance effects.

Business logic:
  - Request creation with working-day computation and a paid-leave balance pre-check
  - Status transitions between pending / approved / rejected in any direction
  - Ledger reserve/release tied to each transition, committed atomically with it
  - Admin deletion reversing the balance effect of an approved request
  - Requester notification after commit, never inside the transaction

Balance is only debited when a request becomes approved. Two pending
requests may together exceed the available balance; whichever is approved
second fails with InsufficientBalanceException at that point.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from leave_portal.calendar.service import HolidayCalendar, compute_working_days
from leave_portal.common.constants import LedgerEffect, LeaveStatus, LeaveType
from leave_portal.common.exceptions import (
    InsufficientBalanceException,
    InvalidRangeException,
    TransactionConflictError,
)
from leave_portal.config import settings
from leave_portal.ledger.schemas import BalanceOut
from leave_portal.ledger.service import BalanceLedger
from leave_portal.leave.schemas import LeaveRequestOut, TransitionOut
from leave_portal.leave.store import RequestStore
from leave_portal.notifications.service import NotificationSink

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ═════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════

_LEDGER_EFFECTS: dict[tuple[LeaveStatus, LeaveStatus], LedgerEffect] = {
    (LeaveStatus.pending, LeaveStatus.approved): LedgerEffect.reserve,
    (LeaveStatus.pending, LeaveStatus.rejected): LedgerEffect.none,
    (LeaveStatus.approved, LeaveStatus.rejected): LedgerEffect.release,
    (LeaveStatus.approved, LeaveStatus.pending): LedgerEffect.release,
    (LeaveStatus.rejected, LeaveStatus.approved): LedgerEffect.reserve,
    (LeaveStatus.rejected, LeaveStatus.pending): LedgerEffect.none,
}


def ledger_effect(
    current: LeaveStatus,
    target: LeaveStatus,
    leave_type: LeaveType,
) -> LedgerEffect:
    """Balance effect of moving a request of ``leave_type`` from ``current`` to ``target``."""
    if current == target:
        return LedgerEffect.none
    effect = _LEDGER_EFFECTS[(current, target)]
    if leave_type != LeaveType.paid_leave:
        return LedgerEffect.none
    return effect


# ═════════════════════════════════════════════════════════════════════
# ApprovalWorkflow
# ═════════════════════════════════════════════════════════════════════


class ApprovalWorkflow:
    """Orchestrates RequestStore and BalanceLedger inside single transactions.

    Each mutating operation:
      1. holds an in-process lock scoped to the requester's user id,
         discarded once no task holds or awaits it
      2. runs in one ``session.begin()`` block (commit or full rollback)
      3. is retried once if the user row changed concurrently
         (``StaleDataError`` from the ``version_id`` counter)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationSink,
        *,
        holidays_enabled: Optional[bool] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._holidays_enabled = (
            settings.HOLIDAYS_ENABLED if holidays_enabled is None else holidays_enabled
        )
        self._max_attempts = max(
            1, settings.TRANSITION_MAX_ATTEMPTS if max_attempts is None else max_attempts
        )
        # One lock per user with a task holding or awaiting it; emptied as they finish
        self._user_locks: dict[uuid.UUID, asyncio.Lock] = {}
        self._lock_refs: Counter[uuid.UUID] = Counter()

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _user_lock(self, user_id: uuid.UUID) -> AsyncIterator[None]:
        lock = self._user_locks.setdefault(user_id, asyncio.Lock())
        self._lock_refs[user_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_refs[user_id] -= 1
            if not self._lock_refs[user_id]:
                del self._lock_refs[user_id]
                del self._user_locks[user_id]

    async def _run_atomic(
        self,
        unit: Callable[[AsyncSession], Awaitable[T]],
        *,
        entity_type: str,
        entity_id: uuid.UUID,
    ) -> T:
        """Run ``unit`` in a fresh transaction, retrying on optimistic-lock conflicts."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._session_factory() as db:
                    async with db.begin():
                        return await unit(db)
            except StaleDataError:
                logger.warning(
                    "Concurrent update on %s %s (attempt %d/%d)",
                    entity_type, entity_id, attempt, self._max_attempts,
                )
        raise TransactionConflictError(entity_type, entity_id)

    async def _requester_of(self, request_id: uuid.UUID) -> uuid.UUID:
        """Look up whose balance a request touches, to pick the lock."""
        async with self._session_factory() as db:
            request = await RequestStore.get_or_404(db, request_id)
            return request.requester_id

    async def _notify(self, result: TransitionOut) -> None:
        try:
            await self._notifier.leave_status_changed(result.request, result.previous_status)
        except Exception:
            # The transition is already committed; a lost notice is only logged
            logger.warning(
                "Status notification failed for leave request %s",
                result.request.id,
                exc_info=True,
            )

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    async def get_available(self, user_id: uuid.UUID) -> int:
        async with self._session_factory() as db:
            return await BalanceLedger.get_available(db, user_id)

    # ─────────────────────────────────────────────────────────────────
    # Create Request
    # ─────────────────────────────────────────────────────────────────

    async def create_request(
        self,
        requester_id: uuid.UUID,
        leave_type: LeaveType,
        start_date: date,
        end_date: date,
        reason: Optional[str] = None,
    ) -> LeaveRequestOut:
        """File a pending request.

        Paid leave is checked against the available balance but nothing is
        reserved until approval.

        Raises:
            InvalidRangeException: end_date before start_date.
            NotFoundException: unknown requester.
            InsufficientBalanceException: paid leave exceeding the balance.
        """
        if end_date < start_date:
            raise InvalidRangeException(start_date, end_date)

        async def unit(db: AsyncSession) -> LeaveRequestOut:
            holidays = await HolidayCalendar.get_holiday_dates(
                db, start_date, end_date, enabled=self._holidays_enabled,
            )
            working_days = compute_working_days(start_date, end_date, holidays)

            available = await BalanceLedger.get_available(db, requester_id)
            if leave_type == LeaveType.paid_leave and available < working_days:
                raise InsufficientBalanceException(available=available, requested=working_days)

            request = await RequestStore.create(
                db,
                requester_id=requester_id,
                leave_type=leave_type,
                start_date=start_date,
                end_date=end_date,
                working_days=working_days,
                reason=reason,
            )
            return LeaveRequestOut.model_validate(request)

        async with self._user_lock(requester_id):
            created = await self._run_atomic(unit, entity_type="User", entity_id=requester_id)

        logger.info(
            "Leave request %s filed by %s: %s %s..%s (%d working day(s))",
            created.id, requester_id, leave_type.value,
            start_date, end_date, created.working_days,
        )
        return created

    # ─────────────────────────────────────────────────────────────────
    # Transition
    # ─────────────────────────────────────────────────────────────────

    async def transition(
        self,
        request_id: uuid.UUID,
        new_status: LeaveStatus,
        acting_user_id: uuid.UUID,
    ) -> TransitionOut:
        """Move a request to ``new_status`` and apply its ledger effect atomically.

        Moving a request to the status it already has is a successful no-op
        (``changed=False``): no ledger entry, no history row, no notification.

        Raises:
            NotFoundException: unknown request.
            InsufficientBalanceException: approving paid leave beyond the balance;
                the request keeps its previous status.
            TransactionConflictError: the balance row kept changing underneath.
        """
        requester_id = await self._requester_of(request_id)

        async def unit(db: AsyncSession) -> TransitionOut:
            request = await RequestStore.get_or_404(db, request_id, for_update=True)
            previous = request.status

            if previous == new_status:
                return TransitionOut(
                    request=LeaveRequestOut.model_validate(request),
                    previous_status=previous,
                    ledger_effect=LedgerEffect.none,
                    changed=False,
                )

            effect = ledger_effect(previous, new_status, request.leave_type)
            if effect == LedgerEffect.reserve:
                await BalanceLedger.reserve(
                    db,
                    request.requester_id,
                    request.working_days,
                    related_request_id=request.id,
                    acting_user_id=acting_user_id,
                )
            elif effect == LedgerEffect.release:
                await BalanceLedger.release(
                    db,
                    request.requester_id,
                    request.working_days,
                    related_request_id=request.id,
                    acting_user_id=acting_user_id,
                )

            decided = new_status != LeaveStatus.pending
            await RequestStore.set_status(
                db,
                request,
                new_status,
                approver_id=acting_user_id if decided else None,
                timestamp=datetime.now(timezone.utc) if decided else None,
                changed_by=acting_user_id,
            )
            return TransitionOut(
                request=LeaveRequestOut.model_validate(request),
                previous_status=previous,
                ledger_effect=effect,
                changed=True,
            )

        async with self._user_lock(requester_id):
            result = await self._run_atomic(
                unit, entity_type="LeaveRequest", entity_id=request_id,
            )

        if result.changed:
            logger.info(
                "Leave request %s: %s -> %s by %s (ledger: %s)",
                request_id, result.previous_status.value, new_status.value,
                acting_user_id, result.ledger_effect.value,
            )
            await self._notify(result)
        return result

    # ─────────────────────────────────────────────────────────────────
    # Delete Request
    # ─────────────────────────────────────────────────────────────────

    async def delete_request(
        self,
        request_id: uuid.UUID,
        acting_user_id: uuid.UUID,
    ) -> LeaveRequestOut:
        """Hard-delete a request, crediting back an approved paid leave first.

        Returns the request as it was before deletion.
        """
        requester_id = await self._requester_of(request_id)

        async def unit(db: AsyncSession) -> LeaveRequestOut:
            request = await RequestStore.get_or_404(db, request_id, for_update=True)
            snapshot = LeaveRequestOut.model_validate(request)

            if request.status == LeaveStatus.approved and request.consumes_balance:
                await BalanceLedger.release(
                    db,
                    request.requester_id,
                    request.working_days,
                    related_request_id=request.id,
                    acting_user_id=acting_user_id,
                )
            await RequestStore.delete(db, request)
            return snapshot

        async with self._user_lock(requester_id):
            deleted = await self._run_atomic(
                unit, entity_type="LeaveRequest", entity_id=request_id,
            )

        logger.info(
            "Leave request %s (%s, %s) deleted by %s",
            request_id, deleted.leave_type.value, deleted.status.value, acting_user_id,
        )
        return deleted

    # ─────────────────────────────────────────────────────────────────
    # Balance Adjustment
    # ─────────────────────────────────────────────────────────────────

    async def adjust_total_days(
        self,
        user_id: uuid.UUID,
        new_total_days: int,
        acting_user_id: uuid.UUID,
    ) -> BalanceOut:
        """Admin reset of a user's annual allotment.

        Lowering it below ``used_days`` is allowed; the user simply cannot
        file or get approved any further paid leave until it is raised.
        """

        async def unit(db: AsyncSession) -> BalanceOut:
            await BalanceLedger.manual_adjust(
                db, user_id, new_total_days, acting_user_id=acting_user_id,
            )
            return await BalanceLedger.get_balance(db, user_id)

        async with self._user_lock(user_id):
            balance = await self._run_atomic(unit, entity_type="User", entity_id=user_id)

        logger.info(
            "Total days for user %s set to %d by %s (available now %d)",
            user_id, new_total_days, acting_user_id, balance.available_days,
        )
        return balance
