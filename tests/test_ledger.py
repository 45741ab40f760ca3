"""Tests for the balance ledger: availability, reservations, usage, adjustments,
lazy provisioning, the annual quota and the transaction log.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlmodel import col

from app.exceptions import AppError
from app.models.balance import LeaveBalance
from app.models.enums import ANNUAL_LEAVE_QUOTA, TransactionType
from app.models.policy import LeavePolicy
from app.models.transaction import LeaveBalanceTransaction
from app.services import ledger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

YEAR = 2026


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _add_policy(session: AsyncSession, leave_type: str, allocation: int, **kwargs: object) -> LeavePolicy:
    policy = LeavePolicy(leave_type=leave_type, default_allocation=allocation, **kwargs)
    session.add(policy)
    await session.flush()
    return policy


async def _balance(session: AsyncSession, employee_id: uuid.UUID, leave_type: str) -> LeaveBalance:
    balance = await ledger.get_balance(session, employee_id, leave_type, YEAR)
    assert balance is not None
    return balance


async def _transactions(session: AsyncSession, balance_id: uuid.UUID) -> list[LeaveBalanceTransaction]:
    result = await session.execute(
        select(LeaveBalanceTransaction)
        .where(col(LeaveBalanceTransaction.balance_id) == balance_id)
        .order_by(col(LeaveBalanceTransaction.balance_version))
    )
    return list(result.scalars().all())


async def _balance_count(session: AsyncSession, employee_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count()).select_from(LeaveBalance).where(col(LeaveBalance.employee_id) == employee_id)
    )
    return result.scalar_one()


def _assert_remaining_consistent(balance: LeaveBalance) -> None:
    assert balance.remaining == balance.total_allocated + balance.carried_forward - balance.used - balance.pending


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


async def test_first_check_provisions_both_buckets(db_session: AsyncSession) -> None:
    """Vacation default 12 with no balances yet: both buckets are created."""
    await _add_policy(db_session, "Vacation", 12)
    employee_id = uuid.uuid4()

    result = await ledger.check_availability(db_session, employee_id, "Vacation", 5, YEAR)

    assert result.has_balance is True
    assert result.available == 12
    assert result.required == 5
    assert result.message == "Sufficient balance available"

    vacation = await _balance(db_session, employee_id, "Vacation")
    quota = await _balance(db_session, employee_id, ANNUAL_LEAVE_QUOTA)
    assert vacation.total_allocated == 12
    assert vacation.remaining == 12
    assert quota.total_allocated == 15
    assert quota.remaining == 15


async def test_quota_shortfall_blocks_even_with_specific_balance(db_session: AsyncSession) -> None:
    """Quota at 12/15 and 4 Vacation days requested: the quota says no."""
    await _add_policy(db_session, "Vacation", 20)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)
    assert await ledger.record_usage(db_session, employee_id, "Vacation", 12, uuid.uuid4(), YEAR)

    result = await ledger.check_availability(db_session, employee_id, "Vacation", 4, YEAR)

    assert result.has_balance is False
    assert result.message.startswith("Insufficient annual leave quota. Available: 3 days, Required: 4 days")
    assert result.specific_available == 8
    assert result.quota_available == 3
    assert result.available == 3


async def test_specific_shortfall_reported_before_quota(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 3)
    employee_id = uuid.uuid4()

    result = await ledger.check_availability(db_session, employee_id, "Vacation", 4, YEAR)

    assert result.has_balance is False
    assert result.message == "Insufficient Vacation balance. Available: 3 days, Required: 4 days"


async def test_exempt_shortfall_leaves_quota_untouched(db_session: AsyncSession) -> None:
    """Sick Leave 10 allocated, 8 used, 3 requested: refused, quota never changes."""
    await _add_policy(db_session, "Sick Leave", 10)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)
    assert await ledger.record_usage(db_session, employee_id, "Sick Leave", 8, uuid.uuid4(), YEAR)

    result = await ledger.check_availability(db_session, employee_id, "Sick Leave", 3, YEAR)

    assert result.has_balance is False
    assert result.available == 2
    assert result.message == "Insufficient Sick Leave balance. Available: 2 days, Required: 3 days"
    assert result.quota_available is None

    quota = await _balance(db_session, employee_id, ANNUAL_LEAVE_QUOTA)
    assert quota.used == 0
    assert quota.pending == 0
    assert quota.version == 1
    assert len(await _transactions(db_session, quota.id)) == 1


async def test_exempt_type_ignores_quota_exhaustion(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 20)
    await _add_policy(db_session, "Maternity Leave", 90)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)
    assert await ledger.record_usage(db_session, employee_id, "Vacation", 15, uuid.uuid4(), YEAR)

    result = await ledger.check_availability(db_session, employee_id, "Maternity Leave", 60, YEAR)

    assert result.has_balance is True
    assert result.available == 90


async def test_unknown_leave_type_is_not_found(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)

    result = await ledger.check_availability(db_session, uuid.uuid4(), "Sabbatical", 1, YEAR)

    assert result.has_balance is False
    assert result.available == 0
    assert result.message == "Leave balance not found for this leave type"


async def test_pending_reduces_non_exempt_availability(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 10)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)
    assert await ledger.reserve_balance(db_session, employee_id, "Vacation", 7, uuid.uuid4(), YEAR)

    result = await ledger.check_availability(db_session, employee_id, "Vacation", 4, YEAR)

    assert result.has_balance is False
    assert result.specific_available == 3
    assert result.quota_available == 8


async def test_pending_does_not_reduce_exempt_availability(db_session: AsyncSession) -> None:
    """Exempt types compare against allocation + carried forward - used."""
    await _add_policy(db_session, "Sick Leave", 10)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)
    assert await ledger.reserve_balance(db_session, employee_id, "Sick Leave", 5, uuid.uuid4(), YEAR)

    result = await ledger.check_availability(db_session, employee_id, "Sick Leave", 8, YEAR)

    assert result.has_balance is True
    assert result.available == 10


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------


async def test_record_usage_non_exempt_moves_both_buckets(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)
    employee_id = uuid.uuid4()
    request_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    assert await ledger.record_usage(db_session, employee_id, "Vacation", 4, request_id, YEAR) is True

    vacation = await _balance(db_session, employee_id, "Vacation")
    quota = await _balance(db_session, employee_id, ANNUAL_LEAVE_QUOTA)
    assert (vacation.used, vacation.remaining, vacation.version) == (4, 8, 2)
    assert (quota.used, quota.remaining, quota.version) == (4, 11, 2)

    result = await db_session.execute(
        select(LeaveBalanceTransaction).where(
            col(LeaveBalanceTransaction.transaction_type) == TransactionType.USED.value
        )
    )
    used_entries = list(result.scalars().all())
    assert len(used_entries) == 2
    assert {entry.balance_id for entry in used_entries} == {vacation.id, quota.id}
    assert all(entry.leave_request_id == request_id for entry in used_entries)
    assert all(entry.amount == 4 for entry in used_entries)


async def test_record_usage_exempt_only_touches_specific_bucket(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Sick Leave", 10)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    assert await ledger.record_usage(db_session, employee_id, "Sick Leave", 3, uuid.uuid4(), YEAR) is True

    sick = await _balance(db_session, employee_id, "Sick Leave")
    quota = await _balance(db_session, employee_id, ANNUAL_LEAVE_QUOTA)
    assert sick.used == 3
    assert sick.remaining == 7
    assert quota.used == 0
    assert quota.remaining == 15
    assert quota.version == 1


async def test_record_usage_creates_missing_quota(db_session: AsyncSession) -> None:
    employee_id = uuid.uuid4()
    db_session.add(
        LeaveBalance(employee_id=employee_id, leave_type="Vacation", year=YEAR, total_allocated=10, remaining=10)
    )
    await db_session.flush()

    assert await ledger.record_usage(db_session, employee_id, "Vacation", 2, uuid.uuid4(), YEAR) is True

    quota = await _balance(db_session, employee_id, ANNUAL_LEAVE_QUOTA)
    assert quota.total_allocated == 15
    assert quota.used == 2
    assert quota.remaining == 13


async def test_record_usage_without_balance_fails_softly(db_session: AsyncSession) -> None:
    employee_id = uuid.uuid4()

    assert await ledger.record_usage(db_session, employee_id, "Vacation", 2, uuid.uuid4(), YEAR) is False
    assert await _balance_count(db_session, employee_id) == 0


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------


async def test_reserve_and_release_round_trip(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)
    employee_id = uuid.uuid4()
    request_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    assert await ledger.reserve_balance(db_session, employee_id, "Vacation", 5, request_id, YEAR) is True
    vacation = await _balance(db_session, employee_id, "Vacation")
    quota = await _balance(db_session, employee_id, ANNUAL_LEAVE_QUOTA)
    assert (vacation.pending, vacation.remaining) == (5, 7)
    assert (quota.pending, quota.remaining) == (5, 10)

    assert await ledger.release_reserved(db_session, employee_id, "Vacation", 5, request_id, YEAR) is True
    assert (vacation.pending, vacation.remaining) == (0, 12)
    assert (quota.pending, quota.remaining) == (0, 15)

    entries = await _transactions(db_session, vacation.id)
    assert [e.transaction_type for e in entries] == ["allocated", "reserved", "adjustment"]
    assert [e.balance_version for e in entries] == [1, 2, 3]


async def test_release_never_drops_pending_below_zero(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)
    assert await ledger.reserve_balance(db_session, employee_id, "Vacation", 2, uuid.uuid4(), YEAR)

    assert await ledger.release_reserved(db_session, employee_id, "Vacation", 5, uuid.uuid4(), YEAR) is True

    vacation = await _balance(db_session, employee_id, "Vacation")
    assert vacation.pending == 0
    assert vacation.remaining == 12
    release = (await _transactions(db_session, vacation.id))[-1]
    assert release.amount == 2


async def test_release_with_nothing_pending_writes_no_entry(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    assert await ledger.release_reserved(db_session, employee_id, "Vacation", 3, uuid.uuid4(), YEAR) is True

    vacation = await _balance(db_session, employee_id, "Vacation")
    assert vacation.version == 1
    assert len(await _transactions(db_session, vacation.id)) == 1


# ---------------------------------------------------------------------------
# Adjustments and provisioning
# ---------------------------------------------------------------------------


async def test_admin_adjust_adds_to_allocation(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    balance = await ledger.admin_adjust(db_session, employee_id, "Vacation", 5, "Long service bonus", YEAR)

    assert balance.total_allocated == 17
    assert balance.remaining == 17
    entries = await _transactions(db_session, balance.id)
    adjustments = [e for e in entries if e.transaction_type == TransactionType.ADJUSTMENT.value]
    assert len(adjustments) == 1
    assert adjustments[0].amount == 5
    assert adjustments[0].description == "Long service bonus"


async def test_admin_adjust_allows_negative_allocation(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 2)
    employee_id = uuid.uuid4()

    balance = await ledger.admin_adjust(db_session, employee_id, "Vacation", -5, "Correction", YEAR)

    assert balance.total_allocated == -3
    assert balance.remaining == -3


async def test_admin_adjust_unknown_type_raises(db_session: AsyncSession) -> None:
    with pytest.raises(AppError) as exc_info:
        await ledger.admin_adjust(db_session, uuid.uuid4(), "Sabbatical", 5, "Bonus", YEAR)

    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "Unable to create or find balance record"


async def test_initialize_twice_creates_no_duplicates(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)
    await _add_policy(db_session, "Sick Leave", 10)
    employee_id = uuid.uuid4()

    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    assert await _balance_count(db_session, employee_id) == 3


async def test_initialize_skips_inactive_policies(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)
    await _add_policy(db_session, "Study Leave", 5, is_active=False)
    employee_id = uuid.uuid4()

    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    assert await ledger.get_balance(db_session, employee_id, "Study Leave", YEAR) is None
    assert await _balance_count(db_session, employee_id) == 2


async def test_initialize_ensures_quota_without_policies(db_session: AsyncSession) -> None:
    employee_id = uuid.uuid4()

    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    quota = await _balance(db_session, employee_id, ANNUAL_LEAVE_QUOTA)
    assert quota.total_allocated == 15
    entries = await _transactions(db_session, quota.id)
    assert entries[0].transaction_type == TransactionType.ALLOCATED.value
    assert entries[0].description == "Statutory annual leave quota (15 days)"


async def test_remaining_stays_consistent_across_operations(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)
    employee_id = uuid.uuid4()
    request_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    assert await ledger.reserve_balance(db_session, employee_id, "Vacation", 3, request_id, YEAR)
    await ledger.admin_adjust(db_session, employee_id, "Vacation", 2, "Bonus", YEAR)
    assert await ledger.release_reserved(db_session, employee_id, "Vacation", 3, request_id, YEAR)
    assert await ledger.record_usage(db_session, employee_id, "Vacation", 3, request_id, YEAR)

    vacation = await _balance(db_session, employee_id, "Vacation")
    quota = await _balance(db_session, employee_id, ANNUAL_LEAVE_QUOTA)
    _assert_remaining_consistent(vacation)
    _assert_remaining_consistent(quota)
    assert vacation.remaining == 11
    assert quota.remaining == 12
    assert vacation.version == 5


# ---------------------------------------------------------------------------
# Locked check-and-reserve
# ---------------------------------------------------------------------------


async def test_check_and_reserve_holds_days_on_both_buckets(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)
    employee_id = uuid.uuid4()
    request_id = uuid.uuid4()

    result = await ledger.check_and_reserve(db_session, employee_id, "Vacation", 5, request_id, YEAR)

    assert result.has_balance is True
    assert result.error is False
    vacation = await _balance(db_session, employee_id, "Vacation")
    quota = await _balance(db_session, employee_id, ANNUAL_LEAVE_QUOTA)
    assert (vacation.pending, quota.pending) == (5, 5)
    entries = await _transactions(db_session, vacation.id)
    assert entries[-1].transaction_type == TransactionType.RESERVED.value
    assert entries[-1].leave_request_id == request_id


async def test_check_and_reserve_sees_earlier_reservation(db_session: AsyncSession) -> None:
    """Quota 15 with 12 used: the first 3-day hold fits, the second does not."""
    await _add_policy(db_session, "Vacation", 20)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)
    assert await ledger.record_usage(db_session, employee_id, "Vacation", 12, uuid.uuid4(), YEAR)

    first = await ledger.check_and_reserve(db_session, employee_id, "Vacation", 3, uuid.uuid4(), YEAR)
    second = await ledger.check_and_reserve(db_session, employee_id, "Vacation", 3, uuid.uuid4(), YEAR)

    assert first.has_balance is True
    assert second.has_balance is False
    assert second.quota_available == 0
    assert second.message.startswith("Insufficient annual leave quota")
    quota = await _balance(db_session, employee_id, ANNUAL_LEAVE_QUOTA)
    assert quota.pending == 3
    assert quota.remaining == 0


async def test_check_and_reserve_shortfall_changes_nothing(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 4)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    result = await ledger.check_and_reserve(db_session, employee_id, "Vacation", 5, uuid.uuid4(), YEAR)

    assert result.has_balance is False
    assert result.error is False
    vacation = await _balance(db_session, employee_id, "Vacation")
    assert (vacation.pending, vacation.version) == (0, 1)


async def test_lock_balances_skips_missing_rows(db_session: AsyncSession) -> None:
    await _add_policy(db_session, "Vacation", 12)
    employee_id = uuid.uuid4()
    await ledger.initialize_employee_balances(db_session, employee_id, YEAR)

    await ledger.lock_balances(db_session, employee_id, [("Vacation", YEAR), ("Study Leave", YEAR + 1)])

    assert await _balance_count(db_session, employee_id) == 2


# ---------------------------------------------------------------------------
# Storage failures
# ---------------------------------------------------------------------------


def _storage_error() -> OperationalError:
    return OperationalError("UPDATE leave_balance", {}, ConnectionError("connection lost"))


async def _seed_reserved(session: AsyncSession, employee_id: uuid.UUID, request_id: uuid.UUID) -> None:
    """Vacation 12 with 3 days already reserved, committed."""
    await _add_policy(session, "Vacation", 12)
    await ledger.initialize_employee_balances(session, employee_id, YEAR)
    assert await ledger.reserve_balance(session, employee_id, "Vacation", 3, request_id, YEAR)
    await session.commit()


async def _snapshot(session: AsyncSession, employee_id: uuid.UUID) -> list[tuple[int, int, int, int]]:
    snapshot = []
    for leave_type in ("Vacation", ANNUAL_LEAVE_QUOTA):
        balance = await _balance(session, employee_id, leave_type)
        snapshot.append((balance.used, balance.pending, balance.remaining, balance.version))
    return snapshot


async def test_check_availability_reports_storage_failure(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    employee_id = uuid.uuid4()
    await _seed_reserved(db_session, employee_id, uuid.uuid4())

    async def _failing_get_balance(*args: object, **kwargs: object) -> None:
        raise _storage_error()

    monkeypatch.setattr(ledger, "get_balance", _failing_get_balance)
    result = await ledger.check_availability(db_session, employee_id, "Vacation", 2, YEAR)

    assert result.error is True
    assert result.has_balance is False
    assert result.message == "Error checking leave balance"


async def test_check_and_reserve_reports_storage_failure(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    employee_id = uuid.uuid4()
    await _seed_reserved(db_session, employee_id, uuid.uuid4())
    before = await _snapshot(db_session, employee_id)

    async def _failing_get_balance(*args: object, **kwargs: object) -> None:
        raise _storage_error()

    monkeypatch.setattr(ledger, "get_balance", _failing_get_balance)
    result = await ledger.check_and_reserve(db_session, employee_id, "Vacation", 2, uuid.uuid4(), YEAR)
    monkeypatch.undo()

    assert result.error is True
    assert result.has_balance is False
    assert await _snapshot(db_session, employee_id) == before


@pytest.mark.parametrize("operation", ["reserve_balance", "record_usage", "release_reserved"])
async def test_quota_write_failure_rolls_back_both_buckets(
    db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch, operation: str
) -> None:
    """The specific bucket is already changed when the quota write fails; neither change survives."""
    employee_id = uuid.uuid4()
    request_id = uuid.uuid4()
    await _seed_reserved(db_session, employee_id, request_id)
    before = await _snapshot(db_session, employee_id)

    post = ledger._post

    def _post_failing_on_quota(session: AsyncSession, balance: LeaveBalance, *args: Any, **kwargs: Any) -> None:
        if balance.leave_type == ANNUAL_LEAVE_QUOTA:
            raise _storage_error()
        post(session, balance, *args, **kwargs)

    monkeypatch.setattr(ledger, "_post", _post_failing_on_quota)
    ok = await getattr(ledger, operation)(db_session, employee_id, "Vacation", 3, request_id, YEAR)
    monkeypatch.undo()

    assert ok is False
    assert await _snapshot(db_session, employee_id) == before
    vacation = await _balance(db_session, employee_id, "Vacation")
    assert len(await _transactions(db_session, vacation.id)) == 2
