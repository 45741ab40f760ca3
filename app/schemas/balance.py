# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Self

from pydantic import BaseModel, Field, model_validator

from app.models.enums import TransactionType

# ---------------------------------------------------------------------------
# Ledger results
# ---------------------------------------------------------------------------


class AvailabilityResult(BaseModel):
    """Outcome of an availability check.

    A shortfall is a normal negative result; ``error`` marks a storage failure.
    """

    has_balance: bool
    available: int
    required: int
    message: str
    specific_available: int | None = None
    quota_available: int | None = None
    error: bool = False


# ---------------------------------------------------------------------------
# Balance response schemas
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    """Balance for one leave type and year."""

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: str
    year: int
    total_allocated: int
    used: int
    pending: int
    carried_forward: int
    remaining: int
    version: int
    last_updated: datetime


class BalanceListResponse(BaseModel):
    """Balances for an employee or for everyone visible to the caller."""

    items: list[BalanceResponse]
    total: int


class TransactionResponse(BaseModel):
    """A single entry of a balance's transaction log."""

    id: uuid.UUID
    balance_id: uuid.UUID
    transaction_type: TransactionType
    amount: int
    description: str
    leave_request_id: uuid.UUID | None
    balance_version: int
    created_at: datetime


class TransactionListResponse(BaseModel):
    """Transaction log of one balance, oldest first."""

    items: list[TransactionResponse]
    total: int


# ---------------------------------------------------------------------------
# Admin payloads
# ---------------------------------------------------------------------------


class CreateAdjustmentRequest(BaseModel):
    """Request body for an admin balance adjustment."""

    employee_id: uuid.UUID
    leave_type: str = Field(min_length=1, max_length=255)
    adjustment_days: int = Field(description="Signed integer: positive to add, negative to deduct")
    reason: str = Field(min_length=1, max_length=1000)
    year: int | None = Field(default=None, ge=1900, le=9999)

    @model_validator(mode="after")
    def _validate_adjustment(self) -> Self:
        if self.adjustment_days == 0:
            msg = "adjustment_days must not be zero"
            raise ValueError(msg)
        return self


class InitializeBalancesRequest(BaseModel):
    """Request body for provisioning an employee's balances for a year."""

    employee_id: uuid.UUID
    year: int | None = Field(default=None, ge=1900, le=9999)


class CarryForwardRequest(BaseModel):
    """Request body for a year-end carry forward run."""

    from_year: int = Field(ge=1900, le=9998)


class CarryForwardResponse(BaseModel):
    """Summary of a carry forward run."""

    from_year: int
    to_year: int
    processed: int
    skipped: int
    errors: int
