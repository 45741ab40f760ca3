# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, Query, status

from app.api.deps import AdminDep, AuthDep
from app.db import SessionDep
from app.schemas.balance import (
    AvailabilityResult,
    BalanceListResponse,
    BalanceResponse,
    CarryForwardRequest,
    CarryForwardResponse,
    CreateAdjustmentRequest,
    InitializeBalancesRequest,
    TransactionListResponse,
)
from app.services import balance as balance_service
from app.services.carryover import run_carry_forward

employee_balance_router = APIRouter(
    prefix="/employees/{employee_id}/leave-balances",
    tags=["balances"],
)

balance_router = APIRouter(
    prefix="/leave-balances",
    tags=["balances"],
)


@employee_balance_router.get("", response_model=BalanceListResponse)
async def get_employee_balances(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    year: int | None = Query(default=None),
) -> BalanceListResponse:
    """Get an employee's leave balances for a year."""
    return await balance_service.get_employee_balances(session, auth, employee_id, year)


@employee_balance_router.get("/check", response_model=AvailabilityResult)
async def check_availability(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    leave_type: str = Query(min_length=1),
    days: int = Query(ge=1),
    year: int | None = Query(default=None),
) -> AvailabilityResult:
    """Check whether the employee can take ``days`` of ``leave_type``."""
    return await balance_service.check_employee_availability(session, auth, employee_id, leave_type, days, year)


@employee_balance_router.get("/transactions", response_model=TransactionListResponse)
async def get_balance_transactions(
    employee_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    leave_type: str = Query(min_length=1),
    year: int | None = Query(default=None),
) -> TransactionListResponse:
    """Get the transaction log of one balance."""
    return await balance_service.get_balance_transactions(session, auth, employee_id, leave_type, year)


@balance_router.get("", response_model=BalanceListResponse)
async def list_balances(
    session: SessionDep,
    auth: AuthDep,
    year: int | None = Query(default=None),
    leave_type: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
) -> BalanceListResponse:
    return await balance_service.list_balances(session, auth, year, leave_type, offset, limit)


@balance_router.post("/adjustments", response_model=BalanceResponse, status_code=status.HTTP_201_CREATED)
async def create_adjustment(
    payload: CreateAdjustmentRequest,
    session: SessionDep,
    auth: AuthDep,
) -> BalanceResponse:
    """Apply an admin adjustment to a balance (admin or manager)."""
    return await balance_service.create_adjustment(session, auth, payload)


@balance_router.post("/initialize", response_model=BalanceListResponse, status_code=status.HTTP_201_CREATED)
async def initialize_balances(
    payload: InitializeBalancesRequest,
    session: SessionDep,
    auth: AuthDep,
) -> BalanceListResponse:
    """Provision an employee's balances for a year (admin or manager)."""
    return await balance_service.initialize_balances(session, auth, payload)


@balance_router.post("/carry-forward", response_model=CarryForwardResponse)
async def trigger_carry_forward(
    payload: CarryForwardRequest,
    session: SessionDep,
    auth: AdminDep,
) -> CarryForwardResponse:
    """Run the year-end carry forward on demand (admin only)."""
    result = await run_carry_forward(session, payload.from_year, actor_id=auth.user_id)
    return CarryForwardResponse(
        from_year=result.from_year,
        to_year=result.to_year,
        processed=result.processed,
        skipped=result.skipped,
        errors=result.errors,
    )
