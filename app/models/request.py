# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import date, datetime

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDBase, now_utc
from app.models.enums import ApprovalStatus, LeavePriority, RequestStatus


class LeaveRequest(UUIDBase, TimestampMixin, table=True):
    """An employee's leave application and its decision state."""

    __tablename__ = "leave_request"
    __table_args__ = (sa.Index("ix_request_employee_status", "employee_id", "status"),)

    employee_id: uuid.UUID = Field(index=True)
    leave_type: str = Field(max_length=255)
    start_date: date
    end_date: date
    total_days: int
    reason: str = Field(max_length=2000)
    priority: str = Field(default=LeavePriority.NORMAL, max_length=20)
    status: str = Field(
        default=RequestStatus.PENDING, max_length=20, index=True, sa_column_kwargs={"server_default": "pending"}
    )
    department_id: uuid.UUID | None = Field(default=None, index=True)
    submitted_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
    )
    modified_by: uuid.UUID | None = None
    is_active: bool = Field(default=True, index=True)


class LeaveApprovalStep(UUIDBase, table=True):
    """One step of a request's approval workflow."""

    __tablename__ = "leave_approval_step"
    __table_args__ = (sa.UniqueConstraint("request_id", "order", name="uq_approval_step_order"),)

    request_id: uuid.UUID = Field(
        sa_column=sa.Column(
            sa.Uuid, sa.ForeignKey("leave_request.id", ondelete="CASCADE"), nullable=False, index=True
        ),
    )
    order: int
    approver_role: str = Field(max_length=50)
    approver_id: uuid.UUID | None = None
    status: str = Field(default=ApprovalStatus.PENDING, max_length=20)
    comments: str | None = Field(default=None, max_length=1000)
    action_date: datetime | None = Field(
        default=None,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
    )
