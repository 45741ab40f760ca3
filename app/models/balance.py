# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import UUIDBase, now_utc


class LeaveBalance(UUIDBase, table=True):
    """Per employee, leave type and year balance.

    ``remaining`` is stored rather than derived at read time and must be
    recomputed in the same flush as any change to the other counters.
    """

    __tablename__ = "leave_balance"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "leave_type", "year", name="uq_balance_employee_type_year"),
        sa.Index("ix_balance_employee_year", "employee_id", "year"),
    )

    employee_id: uuid.UUID = Field(index=True)
    leave_type: str = Field(max_length=255)
    year: int
    total_allocated: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
    used: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
    pending: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
    carried_forward: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
    remaining: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
    version: int = Field(default=1, sa_column_kwargs={"server_default": "1"})
    created_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )
    last_updated: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )

    def recompute_remaining(self) -> int:
        """Store total_allocated + carried_forward - used - pending in ``remaining``."""
        self.remaining = self.total_allocated + self.carried_forward - self.used - self.pending
        return self.remaining

    def touch(self) -> None:
        """Recompute ``remaining`` and bump the version after a mutation."""
        self.recompute_remaining()
        self.version += 1
        self.last_updated = now_utc()
