from __future__ import annotations

import uuid
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from app.exceptions import AppError
from app.models.balance import LeaveBalance
from app.models.enums import ANNUAL_LEAVE_QUOTA, AuditAction, AuditEntityType, TransactionType, UserRole
from app.models.transaction import LeaveBalanceTransaction
from app.schemas.balance import (
    AvailabilityResult,
    BalanceListResponse,
    BalanceResponse,
    TransactionListResponse,
    TransactionResponse,
)
from app.services import ledger
from app.services.audit import model_to_audit_dict, write_audit_log

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.schemas.auth import AuthContext
    from app.schemas.balance import CreateAdjustmentRequest, InitializeBalancesRequest


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def build_balance_response(balance: LeaveBalance) -> BalanceResponse:
    """Map a balance model to its response schema."""
    return BalanceResponse(
        id=balance.id,
        employee_id=balance.employee_id,
        leave_type=balance.leave_type,
        year=balance.year,
        total_allocated=balance.total_allocated,
        used=balance.used,
        pending=balance.pending,
        carried_forward=balance.carried_forward,
        remaining=balance.remaining,
        version=balance.version,
        last_updated=balance.last_updated,
    )


def _build_transaction_response(entry: LeaveBalanceTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=entry.id,
        balance_id=entry.balance_id,
        transaction_type=TransactionType(entry.transaction_type),
        amount=entry.amount,
        description=entry.description,
        leave_request_id=entry.leave_request_id,
        balance_version=entry.balance_version,
        created_at=entry.created_at,
    )


def _ensure_can_read(auth: AuthContext, employee_id: uuid.UUID) -> None:
    if auth.role == UserRole.STAFF and auth.user_id != employee_id:
        raise AppError("Access denied", status_code=403)


def _require_admin_or_manager(auth: AuthContext, verb: str) -> None:
    if not auth.is_admin_or_manager:
        raise AppError(f"You don't have permission to {verb} leave balances", status_code=403)


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


async def get_employee_balances(
    session: AsyncSession,
    auth: AuthContext,
    employee_id: uuid.UUID,
    year: int | None = None,
) -> BalanceListResponse:
    """List an employee's balances for a year.

    The annual quota bucket is internal bookkeeping and is left out.
    """
    _ensure_can_read(auth, employee_id)
    year = date.today().year if year is None else year

    result = await session.execute(
        select(LeaveBalance)
        .where(
            col(LeaveBalance.employee_id) == employee_id,
            col(LeaveBalance.year) == year,
            col(LeaveBalance.leave_type) != ANNUAL_LEAVE_QUOTA,
        )
        .order_by(col(LeaveBalance.leave_type))
    )
    balances = list(result.scalars().all())
    return BalanceListResponse(items=[build_balance_response(b) for b in balances], total=len(balances))


async def list_balances(
    session: AsyncSession,
    auth: AuthContext,
    year: int | None = None,
    leave_type: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> BalanceListResponse:
    """List balances for a year across all employees visible to the caller.

    Admins and managers see everyone; other roles see their own balances.
    """
    year = date.today().year if year is None else year

    filters = [
        col(LeaveBalance.year) == year,
        col(LeaveBalance.leave_type) != ANNUAL_LEAVE_QUOTA,
    ]
    if not auth.is_admin_or_manager:
        filters.append(col(LeaveBalance.employee_id) == auth.user_id)
    if leave_type is not None:
        filters.append(col(LeaveBalance.leave_type) == leave_type)

    result = await session.execute(
        select(LeaveBalance)
        .where(*filters)
        .order_by(col(LeaveBalance.employee_id), col(LeaveBalance.leave_type))
        .offset(offset)
        .limit(limit)
    )
    balances = list(result.scalars().all())
    return BalanceListResponse(items=[build_balance_response(b) for b in balances], total=len(balances))


async def get_balance_transactions(
    session: AsyncSession,
    auth: AuthContext,
    employee_id: uuid.UUID,
    leave_type: str,
    year: int | None = None,
) -> TransactionListResponse:
    """Return the transaction log of one balance, oldest first."""
    _ensure_can_read(auth, employee_id)
    year = date.today().year if year is None else year

    balance = await ledger.get_balance(session, employee_id, leave_type, year)
    if balance is None:
        raise AppError("Leave balance not found", status_code=404)

    result = await session.execute(
        select(LeaveBalanceTransaction)
        .where(col(LeaveBalanceTransaction.balance_id) == balance.id)
        .order_by(col(LeaveBalanceTransaction.balance_version), col(LeaveBalanceTransaction.created_at))
    )
    entries = list(result.scalars().all())
    return TransactionListResponse(items=[_build_transaction_response(e) for e in entries], total=len(entries))


async def check_employee_availability(
    session: AsyncSession,
    auth: AuthContext,
    employee_id: uuid.UUID,
    leave_type: str,
    days: int,
    year: int | None = None,
) -> AvailabilityResult:
    """Run an availability check and keep any balances it initialized."""
    _ensure_can_read(auth, employee_id)
    result = await ledger.check_availability(session, employee_id, leave_type, days, year)
    if result.error:
        raise AppError(result.message, status_code=500)
    await session.commit()
    return result


# ---------------------------------------------------------------------------
# Write path: admin entry points
# ---------------------------------------------------------------------------


async def create_adjustment(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreateAdjustmentRequest,
) -> BalanceResponse:
    """Apply an admin adjustment to a balance's allocation."""
    _require_admin_or_manager(auth, "adjust")

    balance = await ledger.admin_adjust(
        session,
        payload.employee_id,
        payload.leave_type,
        payload.adjustment_days,
        payload.reason,
        payload.year,
    )

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.BALANCE,
        entity_id=balance.id,
        action=AuditAction.ADJUST,
        after_json={
            **model_to_audit_dict(balance),
            "adjustment_days": payload.adjustment_days,
            "reason": payload.reason,
        },
    )

    await session.commit()
    return build_balance_response(balance)


async def initialize_balances(
    session: AsyncSession,
    auth: AuthContext,
    payload: InitializeBalancesRequest,
) -> BalanceListResponse:
    """Provision an employee's balances for a year from the active policies."""
    _require_admin_or_manager(auth, "initialize")
    year = date.today().year if payload.year is None else payload.year

    await ledger.initialize_employee_balances(session, payload.employee_id, year)
    await session.commit()
    return await get_employee_balances(session, auth, payload.employee_id, year)
