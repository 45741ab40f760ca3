from sqlmodel import SQLModel

from app.models.audit import AuditLog
from app.models.balance import LeaveBalance
from app.models.base import TimestampMixin, UUIDBase
from app.models.enums import (
    ANNUAL_LEAVE_QUOTA,
    ApprovalStatus,
    AuditAction,
    AuditEntityType,
    LeavePriority,
    RequestStatus,
    TransactionType,
    UserRole,
)
from app.models.policy import LeavePolicy
from app.models.request import LeaveApprovalStep, LeaveRequest
from app.models.transaction import LeaveBalanceTransaction

__all__ = [
    "ANNUAL_LEAVE_QUOTA",
    "ApprovalStatus",
    "AuditAction",
    "AuditEntityType",
    "AuditLog",
    "LeaveApprovalStep",
    "LeaveBalance",
    "LeaveBalanceTransaction",
    "LeavePolicy",
    "LeavePriority",
    "LeaveRequest",
    "RequestStatus",
    "SQLModel",
    "TimestampMixin",
    "TransactionType",
    "UUIDBase",
    "UserRole",
]
