# ruff: noqa: TC003
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field

from app.models.base import UUIDBase, now_utc


class LeaveBalanceTransaction(UUIDBase, table=True):
    """Append-only log entry for a single change to a leave balance."""

    __tablename__ = "leave_balance_transaction"
    __table_args__ = (sa.Index("ix_transaction_balance_version", "balance_id", "balance_version"),)

    balance_id: uuid.UUID = Field(
        sa_column=sa.Column(
            sa.Uuid, sa.ForeignKey("leave_balance.id", ondelete="CASCADE"), nullable=False, index=True
        ),
    )
    transaction_type: str = Field(max_length=50)
    amount: int
    description: str = Field(max_length=1000)
    leave_request_id: uuid.UUID | None = Field(default=None, index=True)
    # Balance version right after this entry was applied; orders the log.
    balance_version: int
    created_at: datetime = Field(
        default_factory=now_utc,
        sa_type=sa.DateTime(timezone=True),  # ty: ignore[invalid-argument-type]
        sa_column_kwargs={"server_default": sa.func.now()},
    )
