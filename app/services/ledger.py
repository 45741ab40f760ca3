"""Leave balance ledger.

Every function here works inside the caller's session and only flushes:
the caller owns the unit of work, so the specific-type bucket, the annual
quota bucket and whatever the caller changed alongside them (request status,
audit rows) commit or roll back together.

Write paths lock the rows they change with SELECT FOR UPDATE, always the
specific-type bucket before the quota bucket, and bump ``version``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col

from app.config import get_settings
from app.exceptions import AppError
from app.models.balance import LeaveBalance
from app.models.enums import ANNUAL_LEAVE_QUOTA, TransactionType
from app.models.policy import LeavePolicy
from app.models.transaction import LeaveBalanceTransaction
from app.schemas.balance import AvailabilityResult

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _resolve_year(year: int | None) -> int:
    return date.today().year if year is None else year


def is_quota_exempt(leave_type: str) -> bool:
    """Whether the leave type is excluded from the annual quota."""
    return leave_type in get_settings().quota_exempt_leave_types


def _draws_on_quota(leave_type: str) -> bool:
    return leave_type != ANNUAL_LEAVE_QUOTA and not is_quota_exempt(leave_type)


async def get_balance(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    year: int,
    *,
    for_update: bool = False,
) -> LeaveBalance | None:
    """Fetch one balance row, optionally locking it for the transaction."""
    query = select(LeaveBalance).where(
        col(LeaveBalance.employee_id) == employee_id,
        col(LeaveBalance.leave_type) == leave_type,
        col(LeaveBalance.year) == year,
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


def _append_transaction(
    session: AsyncSession,
    balance: LeaveBalance,
    transaction_type: TransactionType,
    amount: int,
    description: str,
    leave_request_id: uuid.UUID | None = None,
) -> LeaveBalanceTransaction:
    entry = LeaveBalanceTransaction(
        balance_id=balance.id,
        transaction_type=transaction_type.value,
        amount=amount,
        description=description,
        leave_request_id=leave_request_id,
        balance_version=balance.version,
    )
    session.add(entry)
    return entry


def _post(
    session: AsyncSession,
    balance: LeaveBalance,
    transaction_type: TransactionType,
    amount: int,
    description: str,
    leave_request_id: uuid.UUID | None = None,
) -> None:
    """Finalize a mutation already applied to ``balance`` and log it."""
    balance.touch()
    _append_transaction(session, balance, transaction_type, amount, description, leave_request_id)


async def _new_balance(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    year: int,
    allocation: int,
    description: str,
) -> LeaveBalance:
    balance = LeaveBalance(
        employee_id=employee_id,
        leave_type=leave_type,
        year=year,
        total_allocated=allocation,
        version=1,
    )
    balance.recompute_remaining()
    session.add(balance)
    # The balance row must exist before its first transaction references it.
    await session.flush()
    _append_transaction(session, balance, TransactionType.ALLOCATED, allocation, description)
    return balance


async def _new_quota_balance(session: AsyncSession, employee_id: uuid.UUID, year: int) -> LeaveBalance:
    days = get_settings().annual_leave_quota_days
    return await _new_balance(
        session,
        employee_id,
        ANNUAL_LEAVE_QUOTA,
        year,
        days,
        f"Statutory annual leave quota ({days} days)",
    )


async def _get_or_create_quota(
    session: AsyncSession,
    employee_id: uuid.UUID,
    year: int,
    *,
    for_update: bool = False,
) -> LeaveBalance:
    quota = await get_balance(session, employee_id, ANNUAL_LEAVE_QUOTA, year, for_update=for_update)
    if quota is None:
        quota = await _new_quota_balance(session, employee_id, year)
        await session.flush()
    return quota


async def _lock_buckets(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    year: int,
) -> tuple[LeaveBalance, LeaveBalance | None]:
    """Lock the specific-type bucket and, for non-exempt types, the quota bucket."""
    balance = await get_balance(session, employee_id, leave_type, year, for_update=True)
    if balance is None:
        raise AppError(f"No {leave_type} balance for {year}", status_code=404)
    quota = None
    if _draws_on_quota(leave_type):
        quota = await _get_or_create_quota(session, employee_id, year, for_update=True)
    return balance, quota


def _available(balance: LeaveBalance, *, include_pending: bool) -> int:
    available = balance.total_allocated + balance.carried_forward - balance.used
    if include_pending:
        available -= balance.pending
    return available


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------


async def initialize_employee_balances(
    session: AsyncSession,
    employee_id: uuid.UUID,
    year: int | None = None,
) -> None:
    """Create any missing balances for the year from the active policies.

    The annual quota bucket is always ensured at the statutory allocation,
    independent of any policy row. Existing rows are left untouched.
    """
    year = _resolve_year(year)

    policies_result = await session.execute(
        select(LeavePolicy).where(col(LeavePolicy.is_active).is_(True)).order_by(col(LeavePolicy.leave_type))
    )
    policies = list(policies_result.scalars().all())

    existing_result = await session.execute(
        select(col(LeaveBalance.leave_type)).where(
            col(LeaveBalance.employee_id) == employee_id,
            col(LeaveBalance.year) == year,
        )
    )
    existing = set(existing_result.scalars().all())

    created = 0
    for policy in policies:
        if policy.leave_type in existing or policy.leave_type == ANNUAL_LEAVE_QUOTA:
            continue
        await _new_balance(
            session,
            employee_id,
            policy.leave_type,
            year,
            policy.default_allocation,
            "Initial allocation for the year",
        )
        created += 1

    if ANNUAL_LEAVE_QUOTA not in existing:
        await _new_quota_balance(session, employee_id, year)
        created += 1

    if created:
        await session.flush()
        logger.info("Initialized %d leave balances for employee=%s year=%d", created, employee_id, year)


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


async def _load_buckets(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    year: int,
    *,
    for_update: bool = False,
) -> tuple[LeaveBalance | None, LeaveBalance | None]:
    """Fetch the specific bucket and, for non-exempt types, the quota bucket.

    Missing rows are provisioned first. The specific bucket is always read
    before the quota bucket so locks are taken in the same order everywhere.
    """
    balance = await get_balance(session, employee_id, leave_type, year, for_update=for_update)
    if balance is None:
        await initialize_employee_balances(session, employee_id, year)
        balance = await get_balance(session, employee_id, leave_type, year, for_update=for_update)
    if balance is None:
        return None, None
    quota = None
    if _draws_on_quota(leave_type):
        quota = await _get_or_create_quota(session, employee_id, year, for_update=for_update)
    return balance, quota


def _evaluate(
    balance: LeaveBalance | None,
    quota: LeaveBalance | None,
    leave_type: str,
    days: int,
) -> AvailabilityResult:
    if balance is None:
        return AvailabilityResult(
            has_balance=False,
            available=0,
            required=days,
            message="Leave balance not found for this leave type",
        )

    # Exempt types are checked against their own bucket only, and their
    # reservations do not reduce what is available.
    if quota is None:
        available = _available(balance, include_pending=False)
        has_balance = available >= days
        return AvailabilityResult(
            has_balance=has_balance,
            available=available,
            required=days,
            message=(
                "Sufficient balance available"
                if has_balance
                else f"Insufficient {leave_type} balance. Available: {available} days, Required: {days} days"
            ),
            specific_available=available,
        )

    specific_available = _available(balance, include_pending=True)
    quota_available = _available(quota, include_pending=True)
    has_specific = specific_available >= days
    has_quota = quota_available >= days

    if not has_specific:
        message = f"Insufficient {leave_type} balance. Available: {specific_available} days, Required: {days} days"
    elif not has_quota:
        message = (
            f"Insufficient annual leave quota. Available: {quota_available} days, Required: {days} days "
            f"({quota.total_allocated + quota.carried_forward} days annual limit)"
        )
    else:
        message = "Sufficient balance available"

    return AvailabilityResult(
        has_balance=has_specific and has_quota,
        available=min(specific_available, quota_available),
        required=days,
        message=message,
        specific_available=specific_available,
        quota_available=quota_available,
    )


def _storage_failure(days: int) -> AvailabilityResult:
    return AvailabilityResult(
        has_balance=False,
        available=0,
        required=days,
        message="Error checking leave balance",
        error=True,
    )


async def check_availability(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    days: int,
    year: int | None = None,
) -> AvailabilityResult:
    """Answer whether the employee can take ``days`` of ``leave_type`` in ``year``.

    Reads without locking, so the answer is advisory; use
    :func:`check_and_reserve` to act on it. May create missing balance rows
    as a side effect; the caller commits them. A storage failure rolls the
    session back and comes back as a result with ``error`` set.
    """
    year = _resolve_year(year)
    try:
        balance, quota = await _load_buckets(session, employee_id, leave_type, year)
        return _evaluate(balance, quota, leave_type, days)
    except SQLAlchemyError:
        logger.exception("Availability check failed for employee=%s type=%s year=%d", employee_id, leave_type, year)
        await session.rollback()
        return _storage_failure(days)


# ---------------------------------------------------------------------------
# Write path
# ---------------------------------------------------------------------------


async def lock_balances(
    session: AsyncSession,
    employee_id: uuid.UUID,
    buckets: Iterable[tuple[str, int]],
) -> None:
    """Lock several ``(leave_type, year)`` buckets of one employee at once.

    Specific buckets are locked sorted by year and type, then the quota
    bucket of every year any of them draws on. Rows that do not exist yet
    are skipped. Later single-bucket calls in the same transaction find
    their rows already held.
    """
    keys = sorted(set(buckets), key=lambda key: (key[1], key[0]))
    for leave_type, year in keys:
        await get_balance(session, employee_id, leave_type, year, for_update=True)
    for year in sorted({year for leave_type, year in keys if _draws_on_quota(leave_type)}):
        await get_balance(session, employee_id, ANNUAL_LEAVE_QUOTA, year, for_update=True)


def _reserve(
    session: AsyncSession,
    balance: LeaveBalance,
    quota: LeaveBalance | None,
    days: int,
    leave_request_id: uuid.UUID,
) -> None:
    balance.pending += days
    _post(session, balance, TransactionType.RESERVED, days, "Reserved for pending leave request", leave_request_id)

    if quota is not None:
        quota.pending += days
        _post(
            session,
            quota,
            TransactionType.RESERVED,
            days,
            f"Reserved from annual quota for {balance.leave_type} request",
            leave_request_id,
        )


async def check_and_reserve(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    days: int,
    leave_request_id: uuid.UUID,
    year: int | None = None,
) -> AvailabilityResult:
    """Lock both buckets, check availability on the locked rows and reserve.

    Days are held only when ``has_balance`` is true. Concurrent submissions
    for the same employee serialize on the row locks, so each one sees the
    reservations committed before it.
    """
    year = _resolve_year(year)
    try:
        balance, quota = await _load_buckets(session, employee_id, leave_type, year, for_update=True)
        result = _evaluate(balance, quota, leave_type, days)
        if result.has_balance and balance is not None:
            _reserve(session, balance, quota, days, leave_request_id)
            await session.flush()
    except SQLAlchemyError:
        logger.exception(
            "Failed to check and reserve %d %s days for employee=%s request=%s",
            days,
            leave_type,
            employee_id,
            leave_request_id,
        )
        await session.rollback()
        return _storage_failure(days)
    return result


async def reserve_balance(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    days: int,
    leave_request_id: uuid.UUID,
    year: int | None = None,
) -> bool:
    """Hold ``days`` in ``pending`` without checking availability."""
    year = _resolve_year(year)
    try:
        balance, quota = await _lock_buckets(session, employee_id, leave_type, year)
        _reserve(session, balance, quota, days, leave_request_id)
        await session.flush()
    except (AppError, SQLAlchemyError):
        logger.exception(
            "Failed to reserve %d %s days for employee=%s request=%s", days, leave_type, employee_id, leave_request_id
        )
        await session.rollback()
        return False
    return True


async def record_usage(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    days: int,
    leave_request_id: uuid.UUID,
    year: int | None = None,
) -> bool:
    """Consume ``days`` from the specific bucket and, if non-exempt, the quota.

    ``pending`` is not touched; releasing a reservation is a separate step.
    """
    year = _resolve_year(year)
    try:
        balance, quota = await _lock_buckets(session, employee_id, leave_type, year)

        balance.used += days
        _post(session, balance, TransactionType.USED, days, "Leave approved and balance used", leave_request_id)

        if quota is not None:
            quota.used += days
            _post(
                session,
                quota,
                TransactionType.USED,
                days,
                f"Annual quota used for approved {leave_type}",
                leave_request_id,
            )

        await session.flush()
    except (AppError, SQLAlchemyError):
        logger.exception(
            "Failed to record usage of %d %s days for employee=%s request=%s",
            days,
            leave_type,
            employee_id,
            leave_request_id,
        )
        await session.rollback()
        return False
    return True


async def release_reserved(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    days: int,
    leave_request_id: uuid.UUID,
    year: int | None = None,
) -> bool:
    """Give back a reservation. ``pending`` never drops below zero."""
    year = _resolve_year(year)
    try:
        balance, quota = await _lock_buckets(session, employee_id, leave_type, year)

        released = min(days, balance.pending)
        if released > 0:
            balance.pending -= released
            _post(session, balance, TransactionType.ADJUSTMENT, released, "Reservation released", leave_request_id)

        if quota is not None:
            quota_released = min(days, quota.pending)
            if quota_released > 0:
                quota.pending -= quota_released
                _post(
                    session,
                    quota,
                    TransactionType.ADJUSTMENT,
                    quota_released,
                    f"Annual quota reservation released for {leave_type} request",
                    leave_request_id,
                )

        await session.flush()
    except (AppError, SQLAlchemyError):
        logger.exception(
            "Failed to release %d %s days for employee=%s request=%s", days, leave_type, employee_id, leave_request_id
        )
        await session.rollback()
        return False
    return True


async def admin_adjust(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    adjustment_days: int,
    reason: str,
    year: int | None = None,
) -> LeaveBalance:
    """Add a signed number of days to ``total_allocated``.

    No lower bound is enforced; an allocation may go negative.
    """
    year = _resolve_year(year)

    balance = await get_balance(session, employee_id, leave_type, year, for_update=True)
    if balance is None:
        await initialize_employee_balances(session, employee_id, year)
        balance = await get_balance(session, employee_id, leave_type, year, for_update=True)
    if balance is None:
        raise AppError("Unable to create or find balance record", status_code=404)

    balance.total_allocated += adjustment_days
    _post(session, balance, TransactionType.ADJUSTMENT, adjustment_days, reason)
    await session.flush()
    return balance


async def apply_carry_forward(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    days: int,
    from_year: int,
) -> LeaveBalance | None:
    """Credit ``days`` carried over from ``from_year`` to the next year's balance.

    The target balance is provisioned if missing. Returns None when the
    target already holds a carry-forward, so repeated runs are harmless.
    """
    to_year = from_year + 1

    target = await get_balance(session, employee_id, leave_type, to_year, for_update=True)
    if target is None:
        await initialize_employee_balances(session, employee_id, to_year)
        target = await get_balance(session, employee_id, leave_type, to_year, for_update=True)
    if target is None:
        raise AppError(f"No {leave_type} balance for {to_year}", status_code=404)

    already_carried = await session.execute(
        select(col(LeaveBalanceTransaction.id))
        .where(
            col(LeaveBalanceTransaction.balance_id) == target.id,
            col(LeaveBalanceTransaction.transaction_type) == TransactionType.CARRIED_FORWARD.value,
        )
        .limit(1)
    )
    if already_carried.first() is not None:
        return None

    target.carried_forward = days
    _post(session, target, TransactionType.CARRIED_FORWARD, days, f"Carried forward from {from_year}")
    await session.flush()
    return target
