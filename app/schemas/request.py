# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Self

from pydantic import BaseModel, Field, model_validator

from app.models.enums import ApprovalStatus, LeavePriority, RequestStatus

# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class SubmitLeavePayload(BaseModel):
    """Request body for submitting a leave application."""

    employee_id: uuid.UUID | None = Field(default=None, description="Defaults to the caller")
    leave_type: str = Field(min_length=1, max_length=255)
    start_date: date
    end_date: date
    reason: str = Field(min_length=1, max_length=2000)
    priority: LeavePriority = LeavePriority.NORMAL

    @model_validator(mode="after")
    def _validate_dates(self) -> Self:
        if self.end_date < self.start_date:
            msg = "end_date must not be before start_date"
            raise ValueError(msg)
        return self


class UpdateLeavePayload(BaseModel):
    """Partial update of a pending leave application."""

    leave_type: str | None = Field(default=None, min_length=1, max_length=255)
    start_date: date | None = None
    end_date: date | None = None
    reason: str | None = Field(default=None, min_length=1, max_length=2000)
    priority: LeavePriority | None = None


class DecisionPayload(BaseModel):
    """Request body for approve/reject actions."""

    comments: str | None = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ApprovalStepResponse(BaseModel):
    """One step of the approval workflow."""

    order: int
    approver_role: str
    approver_id: uuid.UUID | None
    status: ApprovalStatus
    comments: str | None
    action_date: datetime | None


class LeaveRequestResponse(BaseModel):
    """Response schema for a single leave request."""

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: str
    start_date: date
    end_date: date
    total_days: int
    reason: str
    priority: LeavePriority
    status: RequestStatus
    department_id: uuid.UUID | None
    submitted_at: datetime
    updated_at: datetime
    modified_by: uuid.UUID | None
    approval_workflow: list[ApprovalStepResponse]


class LeaveRequestListResponse(BaseModel):
    """Paginated list of leave requests."""

    items: list[LeaveRequestResponse]
    total: int


class LeaveStatsResponse(BaseModel):
    """Headline counts for the caller's visible requests."""

    total_applications: int
    pending_approvals: int
    approved_this_month: int
    rejected_this_month: int
    upcoming_leaves: int
    on_leave_today: int
