from __future__ import annotations

import enum

# Synthetic balance bucket that caps all non-exempt leave for a year.
ANNUAL_LEAVE_QUOTA = "Annual Leave Quota"


class TransactionType(enum.StrEnum):
    """Kind of entry in a balance's transaction log."""

    ALLOCATED = "allocated"
    RESERVED = "reserved"
    USED = "used"
    ADJUSTMENT = "adjustment"
    CARRIED_FORWARD = "carried_forward"


class RequestStatus(enum.StrEnum):
    """State machine for leave requests."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalStatus(enum.StrEnum):
    """State of a single approval step."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LeavePriority(enum.StrEnum):
    """Priority the employee attaches to a request."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class UserRole(enum.StrEnum):
    """Role of the calling user."""

    ADMIN = "admin"
    MANAGER = "manager"
    DEPARTMENT_HEAD = "department_head"
    STAFF = "staff"


class AuditEntityType(enum.StrEnum):
    """Entity type recorded in the audit log."""

    POLICY = "POLICY"
    REQUEST = "REQUEST"
    BALANCE = "BALANCE"


class AuditAction(enum.StrEnum):
    """Action recorded in the audit log."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SUBMIT = "SUBMIT"
    ADJUST = "ADJUST"
    CARRY_FORWARD = "CARRY_FORWARD"
