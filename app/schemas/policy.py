# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Self

from pydantic import BaseModel, Field, model_validator


class ApprovalLimits(BaseModel):
    """Largest request, in days, each approver role may approve."""

    manager_max_days: int = Field(default=30, ge=0)
    dept_head_max_days: int = Field(default=60, ge=0)


class CreatePolicyRequest(BaseModel):
    """Request body for creating a leave policy."""

    leave_type: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    default_allocation: int = Field(gt=0)
    max_consecutive_days: int = Field(default=365, ge=1)
    min_advance_notice: int = Field(default=0, ge=0)
    max_advance_booking: int = Field(default=365, ge=0)
    allow_carry_forward: bool = False
    carry_forward_limit: int = Field(default=0, ge=0)
    documents_required: bool = False
    approval_limits: ApprovalLimits = Field(default_factory=ApprovalLimits)

    @model_validator(mode="after")
    def _validate_carry_forward(self) -> Self:
        if not self.allow_carry_forward and self.carry_forward_limit:
            msg = "carry_forward_limit requires allow_carry_forward"
            raise ValueError(msg)
        return self


class UpdatePolicyRequest(BaseModel):
    """Partial update of a leave policy; omitted fields are left unchanged."""

    leave_type: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    default_allocation: int | None = Field(default=None, gt=0)
    max_consecutive_days: int | None = Field(default=None, ge=1)
    min_advance_notice: int | None = Field(default=None, ge=0)
    max_advance_booking: int | None = Field(default=None, ge=0)
    allow_carry_forward: bool | None = None
    carry_forward_limit: int | None = Field(default=None, ge=0)
    documents_required: bool | None = None
    approval_limits: ApprovalLimits | None = None


class PolicyResponse(BaseModel):
    """Response schema for a leave policy."""

    id: uuid.UUID
    leave_type: str
    description: str | None
    default_allocation: int
    max_consecutive_days: int
    min_advance_notice: int
    max_advance_booking: int
    allow_carry_forward: bool
    carry_forward_limit: int
    documents_required: bool
    approval_limits: ApprovalLimits
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PolicyListResponse(BaseModel):
    """List of active leave policies."""

    items: list[PolicyResponse]
    total: int
