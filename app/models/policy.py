from __future__ import annotations

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDBase


class LeavePolicy(UUIDBase, TimestampMixin, table=True):
    """Rules and default yearly allocation for one leave type."""

    __tablename__ = "leave_policy"
    __table_args__ = (sa.UniqueConstraint("leave_type", name="uq_policy_leave_type"),)

    leave_type: str = Field(max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    default_allocation: int
    max_consecutive_days: int = 365
    min_advance_notice: int = 0
    max_advance_booking: int = 365
    allow_carry_forward: bool = False
    carry_forward_limit: int = 0
    documents_required: bool = False
    manager_max_days: int = 30
    dept_head_max_days: int = 60
    is_active: bool = Field(default=True, index=True)
