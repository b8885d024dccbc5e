"""ApprovalWorkflow test suite — creation, the transition table, deletion,
balance scenarios, concurrency and notification isolation.

Every workflow call opens its own transaction, so assertions re-read
state through fresh sessions.
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from leave_portal.calendar.models import Holiday
from leave_portal.common.constants import (
    BalanceAction,
    LedgerEffect,
    LeaveStatus,
    LeaveType,
    UserRole,
)
from leave_portal.common.exceptions import (
    InsufficientBalanceException,
    InvalidRangeException,
    NotFoundException,
    TransactionConflictError,
    ValidationException,
)
from leave_portal.ledger.models import BalanceAdjustment
from leave_portal.ledger.service import BalanceLedger
from leave_portal.leave.service import ApprovalWorkflow, ledger_effect
from leave_portal.leave.store import RequestStore
from leave_portal.users.models import User
from tests.conftest import RecordingSink, TestSessionFactory, fetch_user, seed_user

# Mon 2026-02-23 → Fri 2026-02-27
WEEK_START = date(2026, 2, 23)
WEEK_END = date(2026, 2, 27)
# Mon 2026-03-02 → Tue 2026-03-31: 22 working days
MONTH_START = date(2026, 3, 2)
MONTH_END = date(2026, 3, 31)


# ═════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════


async def _ledger_entries(user_id: uuid.UUID) -> list[BalanceAdjustment]:
    async with TestSessionFactory() as session:
        result = await session.execute(
            select(BalanceAdjustment)
            .where(BalanceAdjustment.user_id == user_id)
            .order_by(BalanceAdjustment.id)
        )
        return list(result.scalars().all())


async def _stored_request(request_id: uuid.UUID):
    async with TestSessionFactory() as session:
        return await RequestStore.get(session, request_id)


async def _request_in_status(
    workflow: ApprovalWorkflow,
    requester: User,
    approver: User,
    status: LeaveStatus,
    *,
    leave_type: LeaveType = LeaveType.paid_leave,
):
    created = await workflow.create_request(requester.id, leave_type, WEEK_START, WEEK_END)
    if status != LeaveStatus.pending:
        await workflow.transition(created.id, status, approver.id)
    return created


# ═════════════════════════════════════════════════════════════════════
# 1. Transition table — pure
# ═════════════════════════════════════════════════════════════════════


class TestLedgerEffectTable:

    @pytest.mark.parametrize(
        "current,target,expected",
        [
            (LeaveStatus.pending, LeaveStatus.approved, LedgerEffect.reserve),
            (LeaveStatus.pending, LeaveStatus.rejected, LedgerEffect.none),
            (LeaveStatus.approved, LeaveStatus.rejected, LedgerEffect.release),
            (LeaveStatus.approved, LeaveStatus.pending, LedgerEffect.release),
            (LeaveStatus.rejected, LeaveStatus.approved, LedgerEffect.reserve),
            (LeaveStatus.rejected, LeaveStatus.pending, LedgerEffect.none),
        ],
    )
    def test_paid_leave_effects(self, current, target, expected):
        assert ledger_effect(current, target, LeaveType.paid_leave) == expected

    @pytest.mark.parametrize("leave_type", [LeaveType.permit, LeaveType.sick])
    def test_unpaid_types_never_touch_ledger(self, leave_type):
        for current, target in itertools.permutations(LeaveStatus, 2):
            assert ledger_effect(current, target, leave_type) == LedgerEffect.none

    def test_same_status_is_none(self):
        for status in LeaveStatus:
            assert ledger_effect(status, status, LeaveType.paid_leave) == LedgerEffect.none


# ═════════════════════════════════════════════════════════════════════
# 2. create_request
# ═════════════════════════════════════════════════════════════════════


class TestCreateRequest:

    async def test_creates_pending_without_reserving(self, workflow, employee):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END, "Holiday at the sea",
        )

        assert created.status == LeaveStatus.pending
        assert created.working_days == 5
        assert created.reason == "Holiday at the sea"
        assert (await fetch_user(employee.id)).used_days == 0
        assert await _ledger_entries(employee.id) == []

    async def test_invalid_range(self, workflow, employee):
        with pytest.raises(InvalidRangeException):
            await workflow.create_request(
                employee.id, LeaveType.paid_leave, WEEK_END, WEEK_START,
            )

    async def test_unknown_requester(self, workflow):
        with pytest.raises(NotFoundException):
            await workflow.create_request(
                uuid.uuid4(), LeaveType.paid_leave, WEEK_START, WEEK_END,
            )

    async def test_paid_leave_pre_check(self, workflow):
        user = await seed_user(total_days=26, used_days=23)

        with pytest.raises(InsufficientBalanceException) as exc_info:
            await workflow.create_request(user.id, LeaveType.paid_leave, WEEK_START, WEEK_END)

        assert exc_info.value.available == 3
        assert exc_info.value.requested == 5
        async with TestSessionFactory() as session:
            assert await RequestStore.list_for_user(session, user.id) == []

    async def test_sick_leave_ignores_balance(self, workflow):
        user = await seed_user(total_days=0)
        created = await workflow.create_request(user.id, LeaveType.sick, WEEK_START, WEEK_END)
        assert created.status == LeaveStatus.pending

    async def test_weekend_request_charges_one_day(self, workflow, employee):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, date(2026, 2, 28), date(2026, 3, 1),
        )
        assert created.working_days == 1

    async def test_request_on_last_representable_date(self, workflow, employee):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, date.max, date.max,
        )
        assert created.end_date == date.max
        assert created.working_days == 1

    async def test_holidays_reduce_working_days(self, workflow, employee):
        async with TestSessionFactory() as session:
            session.add(Holiday(day=date(2026, 2, 25), name="Company day"))
            await session.commit()

        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        assert created.working_days == 4

    async def test_holidays_ignored_when_disabled(self, employee):
        async with TestSessionFactory() as session:
            session.add(Holiday(day=date(2026, 2, 25), name="Company day"))
            await session.commit()

        workflow = ApprovalWorkflow(TestSessionFactory, RecordingSink(), holidays_enabled=False)
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        assert created.working_days == 5

    async def test_two_pending_may_exceed_balance(self, workflow):
        """Only approval enforces the balance; filing does not reserve."""
        user = await seed_user(total_days=26)
        await workflow.create_request(user.id, LeaveType.paid_leave, WEEK_START, WEEK_END)
        second = await workflow.create_request(
            user.id, LeaveType.paid_leave, MONTH_START, MONTH_END,
        )
        assert second.working_days == 22
        assert (await fetch_user(user.id)).used_days == 0


# ═════════════════════════════════════════════════════════════════════
# 3. transition — exhaustive over the table
# ═════════════════════════════════════════════════════════════════════


class TestTransition:

    @pytest.mark.parametrize(
        "start,target,used_after",
        [
            (LeaveStatus.pending, LeaveStatus.approved, 5),
            (LeaveStatus.pending, LeaveStatus.rejected, 0),
            (LeaveStatus.approved, LeaveStatus.rejected, 0),
            (LeaveStatus.approved, LeaveStatus.pending, 0),
            (LeaveStatus.rejected, LeaveStatus.approved, 5),
            (LeaveStatus.rejected, LeaveStatus.pending, 0),
        ],
    )
    async def test_paid_leave_table(self, workflow, employee, manager, start, target, used_after):
        created = await _request_in_status(workflow, employee, manager, start)

        result = await workflow.transition(created.id, target, manager.id)

        assert result.changed is True
        assert result.previous_status == start
        assert result.request.status == target
        assert result.ledger_effect == ledger_effect(start, target, LeaveType.paid_leave)
        assert (await fetch_user(employee.id)).used_days == used_after

    @pytest.mark.parametrize("start,target", list(itertools.permutations(LeaveStatus, 2)))
    async def test_sick_leave_never_changes_used_days(self, workflow, employee, manager, start, target):
        created = await _request_in_status(
            workflow, employee, manager, start, leave_type=LeaveType.sick,
        )

        result = await workflow.transition(created.id, target, manager.id)

        assert result.ledger_effect == LedgerEffect.none
        assert (await fetch_user(employee.id)).used_days == 0
        assert await _ledger_entries(employee.id) == []

    async def test_approval_stamps_approver(self, workflow, employee, manager):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )

        result = await workflow.transition(created.id, LeaveStatus.approved, manager.id)
        assert result.request.approver_id == manager.id
        assert result.request.approved_at is not None

        reopened = await workflow.transition(created.id, LeaveStatus.pending, manager.id)
        assert reopened.request.approver_id is None
        assert reopened.request.approved_at is None

    async def test_history_records_each_change(self, workflow, employee, manager):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        await workflow.transition(created.id, LeaveStatus.approved, manager.id)
        await workflow.transition(created.id, LeaveStatus.approved, manager.id)
        await workflow.transition(created.id, LeaveStatus.rejected, manager.id)

        async with TestSessionFactory() as session:
            history = await RequestStore.list_history(session, created.id)
        assert [h.to_status for h in history] == [
            LeaveStatus.pending,
            LeaveStatus.approved,
            LeaveStatus.rejected,
        ]
        assert history[-1].changed_by == manager.id

    async def test_ledger_entries_reference_request(self, workflow, employee, manager):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        await workflow.transition(created.id, LeaveStatus.approved, manager.id)

        entries = await _ledger_entries(employee.id)
        assert len(entries) == 1
        assert entries[0].action == BalanceAction.debit
        assert entries[0].related_request_id == created.id
        assert entries[0].acting_user_id == manager.id
        assert (entries[0].balance_before, entries[0].balance_after) == (26, 21)

    async def test_unknown_request(self, workflow, manager):
        with pytest.raises(NotFoundException):
            await workflow.transition(uuid.uuid4(), LeaveStatus.approved, manager.id)


# ═════════════════════════════════════════════════════════════════════
# 4. Idempotence and round trips
# ═════════════════════════════════════════════════════════════════════


class TestIdempotenceAndRoundTrip:

    @pytest.mark.parametrize("status", list(LeaveStatus))
    async def test_same_status_twice_matches_once(self, workflow, notifier, employee, manager, status):
        created = await _request_in_status(workflow, employee, manager, status)
        used_before = (await fetch_user(employee.id)).used_days
        entries_before = len(await _ledger_entries(employee.id))
        notices_before = len(notifier.calls)

        result = await workflow.transition(created.id, status, manager.id)

        assert result.changed is False
        assert result.ledger_effect == LedgerEffect.none
        assert (await fetch_user(employee.id)).used_days == used_before
        assert len(await _ledger_entries(employee.id)) == entries_before
        assert len(notifier.calls) == notices_before

    async def test_approve_then_reject_restores_used_days(self, workflow, manager):
        user = await seed_user(total_days=26, used_days=7)
        created = await workflow.create_request(
            user.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )

        await workflow.transition(created.id, LeaveStatus.approved, manager.id)
        assert (await fetch_user(user.id)).used_days == 12
        await workflow.transition(created.id, LeaveStatus.rejected, manager.id)
        assert (await fetch_user(user.id)).used_days == 7

    async def test_many_flips_keep_counter_consistent(self, workflow, employee, manager):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        path = [
            LeaveStatus.approved,
            LeaveStatus.pending,
            LeaveStatus.approved,
            LeaveStatus.rejected,
            LeaveStatus.approved,
            LeaveStatus.rejected,
            LeaveStatus.pending,
        ]
        for status in path:
            await workflow.transition(created.id, status, manager.id)
            used = (await fetch_user(employee.id)).used_days
            assert used == (5 if status == LeaveStatus.approved else 0)
            assert used >= 0

    async def test_release_after_manual_reset_is_floored(self, workflow, employee, manager):
        """An admin zeroing the counters mid-flight cannot push used_days negative."""
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        await workflow.transition(created.id, LeaveStatus.approved, manager.id)

        async with TestSessionFactory() as session:
            user = await session.get(User, employee.id)
            user.used_days = 2
            await session.commit()

        await workflow.transition(created.id, LeaveStatus.rejected, manager.id)

        assert (await fetch_user(employee.id)).used_days == 0
        credit = (await _ledger_entries(employee.id))[-1]
        assert credit.action == BalanceAction.credit
        assert credit.amount == 2


# ═════════════════════════════════════════════════════════════════════
# 5. Balance scenarios
# ═════════════════════════════════════════════════════════════════════


class TestBalanceScenarios:

    async def test_approve_week_leaves_21(self, workflow, manager):
        user = await seed_user(total_days=26, used_days=0)
        created = await workflow.create_request(
            user.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )

        await workflow.transition(created.id, LeaveStatus.approved, manager.id)

        assert await workflow.get_available(user.id) == 21

    async def test_second_approval_beyond_balance_fails(self, workflow, manager):
        """Both filed while 26 were free; approving 22 after 5 is refused."""
        user = await seed_user(total_days=26, used_days=0)
        week = await workflow.create_request(
            user.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        month = await workflow.create_request(
            user.id, LeaveType.paid_leave, MONTH_START, MONTH_END,
        )
        await workflow.transition(week.id, LeaveStatus.approved, manager.id)

        with pytest.raises(InsufficientBalanceException) as exc_info:
            await workflow.transition(month.id, LeaveStatus.approved, manager.id)

        assert exc_info.value.available == 21
        assert exc_info.value.requested == 22
        assert (await _stored_request(month.id)).status == LeaveStatus.pending
        assert (await fetch_user(user.id)).used_days == 5

    async def test_failed_approval_writes_nothing(self, workflow, notifier, manager):
        user = await seed_user(total_days=26)
        month = await workflow.create_request(
            user.id, LeaveType.paid_leave, MONTH_START, MONTH_END,
        )
        async with TestSessionFactory() as session:
            await BalanceLedger.manual_adjust(session, user.id, 10, acting_user_id=manager.id)
            await session.commit()
        entries_before = len(await _ledger_entries(user.id))

        with pytest.raises(InsufficientBalanceException):
            await workflow.transition(month.id, LeaveStatus.approved, manager.id)

        assert len(await _ledger_entries(user.id)) == entries_before
        async with TestSessionFactory() as session:
            history = await RequestStore.list_history(session, month.id)
        assert len(history) == 1
        assert notifier.calls == []

    async def test_sick_approval_never_changes_used_days(self, workflow, manager):
        user = await seed_user(total_days=26, used_days=3)
        created = await workflow.create_request(user.id, LeaveType.sick, MONTH_START, MONTH_END)

        await workflow.transition(created.id, LeaveStatus.approved, manager.id)

        assert (await fetch_user(user.id)).used_days == 3


# ═════════════════════════════════════════════════════════════════════
# 6. delete_request / adjust_total_days
# ═════════════════════════════════════════════════════════════════════


class TestDeleteRequest:

    async def test_delete_approved_paid_leave_credits_back(self, workflow, employee, manager, admin):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        await workflow.transition(created.id, LeaveStatus.approved, manager.id)
        assert (await fetch_user(employee.id)).used_days == 5

        deleted = await workflow.delete_request(created.id, admin.id)

        assert deleted.id == created.id
        assert deleted.status == LeaveStatus.approved
        assert (await fetch_user(employee.id)).used_days == 0
        assert await _stored_request(created.id) is None

        credit = (await _ledger_entries(employee.id))[-1]
        assert credit.action == BalanceAction.credit
        assert credit.related_request_id == created.id

    @pytest.mark.parametrize("status", [LeaveStatus.pending, LeaveStatus.rejected])
    async def test_delete_unapproved_leaves_balance(self, workflow, employee, manager, admin, status):
        created = await _request_in_status(workflow, employee, manager, status)

        await workflow.delete_request(created.id, admin.id)

        assert (await fetch_user(employee.id)).used_days == 0
        assert await _ledger_entries(employee.id) == []
        assert await _stored_request(created.id) is None

    async def test_delete_approved_sick_leave(self, workflow, employee, manager, admin):
        created = await _request_in_status(
            workflow, employee, manager, LeaveStatus.approved, leave_type=LeaveType.sick,
        )
        await workflow.delete_request(created.id, admin.id)
        assert await _ledger_entries(employee.id) == []

    async def test_delete_unknown(self, workflow, admin):
        with pytest.raises(NotFoundException):
            await workflow.delete_request(uuid.uuid4(), admin.id)


class TestAdjustTotalDays:

    async def test_adjust(self, workflow, employee, admin):
        balance = await workflow.adjust_total_days(employee.id, 30, admin.id)

        assert balance.total_days == 30
        assert balance.available_days == 30
        entry = (await _ledger_entries(employee.id))[-1]
        assert entry.action == BalanceAction.manual_set
        assert entry.amount == 4

    async def test_negative_rejected(self, workflow, employee, admin):
        with pytest.raises(ValidationException):
            await workflow.adjust_total_days(employee.id, -3, admin.id)
        assert (await fetch_user(employee.id)).total_days == 26


# ═════════════════════════════════════════════════════════════════════
# 7. Concurrency
# ═════════════════════════════════════════════════════════════════════


class TestConcurrency:

    async def test_competing_approvals_never_overdraw(self, workflow, manager):
        user = await seed_user(total_days=26)
        requests = []
        for week in range(6):
            start = WEEK_START + timedelta(weeks=week)
            requests.append(
                await workflow.create_request(
                    user.id, LeaveType.paid_leave, start, start + timedelta(days=4),
                )
            )

        results = await asyncio.gather(
            *(workflow.transition(r.id, LeaveStatus.approved, manager.id) for r in requests),
            return_exceptions=True,
        )

        approved = [r for r in results if not isinstance(r, Exception)]
        refused = [r for r in results if isinstance(r, Exception)]
        assert len(approved) == 5
        assert len(refused) == 1
        assert isinstance(refused[0], InsufficientBalanceException)

        stored = await fetch_user(user.id)
        assert stored.used_days == 25
        assert stored.used_days <= stored.total_days
        assert len(await _ledger_entries(user.id)) == 5

    async def test_concurrent_approve_and_reject_of_same_request(self, workflow, employee, manager, admin):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )

        await asyncio.gather(
            workflow.transition(created.id, LeaveStatus.approved, manager.id),
            workflow.transition(created.id, LeaveStatus.rejected, admin.id),
        )

        final = await _stored_request(created.id)
        used = (await fetch_user(employee.id)).used_days
        assert used == (5 if final.status == LeaveStatus.approved else 0)

    async def test_user_locks_released_after_use(self, workflow, manager):
        users = [await seed_user() for _ in range(4)]
        created = await asyncio.gather(
            *(workflow.create_request(u.id, LeaveType.sick, WEEK_START, WEEK_END) for u in users),
        )
        await asyncio.gather(
            *(workflow.transition(r.id, LeaveStatus.approved, manager.id) for r in created),
            workflow.adjust_total_days(users[0].id, 30, manager.id),
        )
        with pytest.raises(InvalidRangeException):
            await workflow.create_request(users[0].id, LeaveType.sick, WEEK_END, WEEK_START)
        with pytest.raises(NotFoundException):
            await workflow.create_request(uuid.uuid4(), LeaveType.sick, WEEK_START, WEEK_END)

        assert workflow._user_locks == {}
        assert not workflow._lock_refs

    async def test_stale_write_is_retried(self, workflow, employee, manager, monkeypatch):
        """A concurrent writer bumps the locked user row once; the retry succeeds."""
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        original_load = BalanceLedger._load_user
        locked_loads = 0

        async def racing_load(db, user_id, *, for_update=False):
            nonlocal locked_loads
            user = await original_load(db, user_id, for_update=for_update)
            if for_update:
                locked_loads += 1
                if locked_loads == 1:
                    await _bump_total_days(user_id)
            return user

        monkeypatch.setattr(BalanceLedger, "_load_user", staticmethod(racing_load))

        result = await workflow.transition(created.id, LeaveStatus.approved, manager.id)

        assert locked_loads == 2
        assert result.changed is True
        stored = await fetch_user(employee.id)
        assert stored.total_days == 27
        assert stored.used_days == 5

    async def test_persistent_conflict_raises(self, workflow, employee, manager, monkeypatch):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        original_load = BalanceLedger._load_user

        async def always_racing(db, user_id, *, for_update=False):
            user = await original_load(db, user_id, for_update=for_update)
            if for_update:
                await _bump_total_days(user_id)
            return user

        monkeypatch.setattr(BalanceLedger, "_load_user", staticmethod(always_racing))

        with pytest.raises(TransactionConflictError):
            await workflow.transition(created.id, LeaveStatus.approved, manager.id)

        monkeypatch.undo()
        assert (await _stored_request(created.id)).status == LeaveStatus.pending
        stored = await fetch_user(employee.id)
        assert stored.used_days == 0
        assert stored.total_days == 28
        assert await _ledger_entries(employee.id) == []


async def _bump_total_days(user_id: uuid.UUID) -> None:
    """Simulate another process raising the allotment by one day."""
    async with TestSessionFactory() as other:
        user = await other.get(User, user_id)
        user.total_days += 1
        await other.commit()


# ═════════════════════════════════════════════════════════════════════
# 8. Notifications
# ═════════════════════════════════════════════════════════════════════


class TestNotifications:

    async def test_requester_notified_after_commit(self, workflow, notifier, employee, manager):
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        await workflow.transition(created.id, LeaveStatus.approved, manager.id)

        assert len(notifier.calls) == 1
        notice, previous = notifier.calls[0]
        assert notice.id == created.id
        assert notice.status == LeaveStatus.approved
        assert previous == LeaveStatus.pending

    async def test_failing_sink_does_not_roll_back(self, employee, manager):
        workflow = ApprovalWorkflow(TestSessionFactory, RecordingSink(fail=True))
        created = await workflow.create_request(
            employee.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )

        result = await workflow.transition(created.id, LeaveStatus.approved, manager.id)

        assert result.changed is True
        assert (await _stored_request(created.id)).status == LeaveStatus.approved
        assert (await fetch_user(employee.id)).used_days == 5

    async def test_manager_role_not_needed_by_core(self, workflow):
        """Role gating happens at the HTTP edge; the core trusts its caller."""
        user = await seed_user(total_days=26)
        peer = await seed_user(role=UserRole.employee)
        created = await workflow.create_request(
            user.id, LeaveType.paid_leave, WEEK_START, WEEK_END,
        )
        result = await workflow.transition(created.id, LeaveStatus.approved, peer.id)
        assert result.request.approver_id == peer.id
