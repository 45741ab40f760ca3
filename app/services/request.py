# ruff: noqa: TC003
from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select
from sqlmodel import col

from app.exceptions import AppError
from app.models.base import now_utc
from app.models.enums import (
    ANNUAL_LEAVE_QUOTA,
    ApprovalStatus,
    AuditAction,
    AuditEntityType,
    LeavePriority,
    RequestStatus,
    UserRole,
)
from app.models.request import LeaveApprovalStep, LeaveRequest
from app.schemas.request import (
    ApprovalStepResponse,
    LeaveRequestListResponse,
    LeaveRequestResponse,
    LeaveStatsResponse,
)
from app.services import ledger
from app.services.audit import model_to_audit_dict, write_audit_log
from app.services.policy import get_active_policy

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.models.policy import LeavePolicy
    from app.schemas.auth import AuthContext
    from app.schemas.request import DecisionPayload, SubmitLeavePayload, UpdateLeavePayload


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def count_leave_days(start_date: date, end_date: date) -> int:
    """Inclusive number of calendar days between two dates."""
    return (end_date - start_date).days + 1


def _build_request_response(request: LeaveRequest, steps: list[LeaveApprovalStep]) -> LeaveRequestResponse:
    """Map a request model and its workflow steps to the response schema."""
    return LeaveRequestResponse(
        id=request.id,
        employee_id=request.employee_id,
        leave_type=request.leave_type,
        start_date=request.start_date,
        end_date=request.end_date,
        total_days=request.total_days,
        reason=request.reason,
        priority=LeavePriority(request.priority),
        status=RequestStatus(request.status),
        department_id=request.department_id,
        submitted_at=request.submitted_at,
        updated_at=request.updated_at,
        modified_by=request.modified_by,
        approval_workflow=[
            ApprovalStepResponse(
                order=step.order,
                approver_role=step.approver_role,
                approver_id=step.approver_id,
                status=ApprovalStatus(step.status),
                comments=step.comments,
                action_date=step.action_date,
            )
            for step in steps
        ],
    )


async def _load_steps(
    session: AsyncSession,
    request_ids: list[uuid.UUID],
) -> dict[uuid.UUID, list[LeaveApprovalStep]]:
    if not request_ids:
        return {}
    result = await session.execute(
        select(LeaveApprovalStep)
        .where(col(LeaveApprovalStep.request_id).in_(request_ids))
        .order_by(col(LeaveApprovalStep.request_id), col(LeaveApprovalStep.order))
    )
    steps: dict[uuid.UUID, list[LeaveApprovalStep]] = defaultdict(list)
    for step in result.scalars().all():
        steps[step.request_id].append(step)
    return steps


async def _respond(session: AsyncSession, request: LeaveRequest) -> LeaveRequestResponse:
    steps = await _load_steps(session, [request.id])
    return _build_request_response(request, steps.get(request.id, []))


async def _get_request_or_404(session: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
    """Fetch an active (not soft deleted) request. Raises 404 if not found."""
    result = await session.execute(
        select(LeaveRequest).where(
            col(LeaveRequest.id) == request_id,
            col(LeaveRequest.is_active).is_(True),
        )
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise AppError("Leave not found", status_code=404)
    return request


def _scope_filters(auth: AuthContext) -> list[Any]:
    """Row filters limiting requests to what the caller may see."""
    if auth.role == UserRole.STAFF:
        return [col(LeaveRequest.employee_id) == auth.user_id]
    if auth.role == UserRole.DEPARTMENT_HEAD:
        if auth.department_id is None:
            return [col(LeaveRequest.employee_id) == auth.user_id]
        return [
            or_(
                col(LeaveRequest.department_id) == auth.department_id,
                col(LeaveRequest.employee_id) == auth.user_id,
            )
        ]
    return []


def _can_view(auth: AuthContext, request: LeaveRequest) -> bool:
    if auth.is_admin_or_manager or request.employee_id == auth.user_id:
        return True
    return (
        auth.role == UserRole.DEPARTMENT_HEAD
        and auth.department_id is not None
        and request.department_id == auth.department_id
    )


def _can_modify(auth: AuthContext, request: LeaveRequest) -> bool:
    return auth.is_admin_or_manager or request.employee_id == auth.user_id


def _can_decide(auth: AuthContext, request: LeaveRequest) -> bool:
    if auth.is_admin_or_manager:
        return True
    return (
        auth.role == UserRole.DEPARTMENT_HEAD
        and auth.department_id is not None
        and request.department_id == auth.department_id
    )


def _approval_limit(role: UserRole, policy: LeavePolicy | None) -> int | None:
    """Largest request the role may approve; None means unlimited."""
    if policy is None or role == UserRole.ADMIN:
        return None
    if role == UserRole.MANAGER:
        return policy.manager_max_days
    if role == UserRole.DEPARTMENT_HEAD:
        return policy.dept_head_max_days
    return 0


def _validate_leave_type(leave_type: str) -> None:
    if leave_type == ANNUAL_LEAVE_QUOTA:
        raise AppError(f"'{ANNUAL_LEAVE_QUOTA}' is not a leave type that can be requested", status_code=400)


def _enforce_policy_rules(policy: LeavePolicy, start_date: date, total_days: int, today: date) -> None:
    if total_days > policy.max_consecutive_days:
        raise AppError(
            f"{policy.leave_type} cannot exceed {policy.max_consecutive_days} consecutive days",
            status_code=400,
        )
    notice_days = (start_date - today).days
    if policy.min_advance_notice > 0 and notice_days < policy.min_advance_notice:
        raise AppError(
            f"{policy.leave_type} requires at least {policy.min_advance_notice} days advance notice",
            status_code=400,
        )
    if notice_days > policy.max_advance_booking:
        raise AppError(
            f"{policy.leave_type} cannot be booked more than {policy.max_advance_booking} days in advance",
            status_code=400,
        )


async def _reserve_or_raise(
    session: AsyncSession,
    employee_id: uuid.UUID,
    leave_type: str,
    days: int,
    leave_request_id: uuid.UUID,
    year: int,
) -> None:
    """Reserve the days, or roll back and raise with the ledger's explanation.

    A shortfall is a 400; a storage failure is a 500.
    """
    availability = await ledger.check_and_reserve(session, employee_id, leave_type, days, leave_request_id, year)
    if availability.error:
        raise AppError(availability.message, status_code=500)
    if not availability.has_balance:
        await session.rollback()
        raise AppError(availability.message, status_code=400)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def submit_leave(
    session: AsyncSession,
    auth: AuthContext,
    payload: SubmitLeavePayload,
) -> LeaveRequestResponse:
    """Submit a leave application and reserve the requested days.

    Flow:
    1. Resolve the employee (staff may only apply for themselves)
    2. Validate leave type and the active policy's date rules
    3. Create the request with a pending manager approval step
    4. Lock both buckets for the start date's year, check availability
       on the locked rows and reserve (a shortfall rolls everything back)
    5. Audit and commit
    """
    employee_id = payload.employee_id or auth.user_id
    if employee_id != auth.user_id and not auth.is_admin_or_manager:
        raise AppError("You can only apply for leave for yourself", status_code=403)

    _validate_leave_type(payload.leave_type)
    total_days = count_leave_days(payload.start_date, payload.end_date)

    policy = await get_active_policy(session, payload.leave_type)
    if policy is not None:
        _enforce_policy_rules(policy, payload.start_date, total_days, date.today())

    year = payload.start_date.year

    leave = LeaveRequest(
        employee_id=employee_id,
        leave_type=payload.leave_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        total_days=total_days,
        reason=payload.reason,
        priority=payload.priority.value,
        status=RequestStatus.PENDING.value,
        department_id=auth.department_id,
    )
    session.add(leave)
    await session.flush()
    session.add(
        LeaveApprovalStep(
            request_id=leave.id,
            order=1,
            approver_role=UserRole.MANAGER.value,
            status=ApprovalStatus.PENDING.value,
        )
    )
    await session.flush()

    await _reserve_or_raise(session, employee_id, leave.leave_type, total_days, leave.id, year)

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.REQUEST,
        entity_id=leave.id,
        action=AuditAction.SUBMIT,
        after_json=model_to_audit_dict(leave),
    )

    await session.commit()
    return await _respond(session, leave)


async def update_leave(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: UpdateLeavePayload,
) -> LeaveRequestResponse:
    """Edit a pending request.

    When the leave type, the number of days or the year changes, the old and
    new buckets are locked together, the old reservation is released and the
    new one is checked and reserved in the same transaction.
    """
    leave = await _get_request_or_404(session, request_id)
    if not _can_modify(auth, leave):
        raise AppError("You don't have permission to update this leave", status_code=403)
    if leave.status != RequestStatus.PENDING.value:
        raise AppError("Only pending requests can be updated", status_code=400)

    new_type = payload.leave_type or leave.leave_type
    new_start = payload.start_date or leave.start_date
    new_end = payload.end_date or leave.end_date
    if new_end < new_start:
        raise AppError("end_date must not be before start_date", status_code=400)
    _validate_leave_type(new_type)
    new_days = count_leave_days(new_start, new_end)

    if (new_type, new_start, new_end) != (leave.leave_type, leave.start_date, leave.end_date):
        policy = await get_active_policy(session, new_type)
        if policy is not None:
            _enforce_policy_rules(policy, new_start, new_days, date.today())

    before = model_to_audit_dict(leave)
    old_year = leave.start_date.year
    new_year = new_start.year

    if (new_type, new_days, new_year) != (leave.leave_type, leave.total_days, old_year):
        await ledger.lock_balances(session, leave.employee_id, [(leave.leave_type, old_year), (new_type, new_year)])
        if not await ledger.release_reserved(
            session, leave.employee_id, leave.leave_type, leave.total_days, leave.id, old_year
        ):
            raise AppError("Unable to release leave balance", status_code=500)

        await _reserve_or_raise(session, leave.employee_id, new_type, new_days, leave.id, new_year)

    leave.leave_type = new_type
    leave.start_date = new_start
    leave.end_date = new_end
    leave.total_days = new_days
    if payload.reason is not None:
        leave.reason = payload.reason
    if payload.priority is not None:
        leave.priority = payload.priority.value
    leave.modified_by = auth.user_id
    leave.updated_at = now_utc()
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.REQUEST,
        entity_id=leave.id,
        action=AuditAction.UPDATE,
        before_json=before,
        after_json=model_to_audit_dict(leave),
    )

    await session.commit()
    return await _respond(session, leave)


async def _decide(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    *,
    approve: bool,
    payload: DecisionPayload | None,
) -> LeaveRequestResponse:
    """Shared logic for approve and reject.

    Approve releases the reservation and records usage; reject only
    releases it. Both ledger steps and the status change commit together.
    """
    verb = "approve" if approve else "reject"
    leave = await _get_request_or_404(session, request_id)
    if not _can_decide(auth, leave):
        raise AppError("You don't have permission to approve/reject this leave", status_code=403)
    if leave.status != RequestStatus.PENDING.value:
        raise AppError(f"Only pending requests can be {verb}d", status_code=400)

    if approve:
        limit = _approval_limit(auth.role, await get_active_policy(session, leave.leave_type))
        if limit is not None and leave.total_days > limit:
            raise AppError(
                f"A {auth.role.value} can approve at most {limit} days of {leave.leave_type}",
                status_code=403,
            )

    steps = (await _load_steps(session, [leave.id])).get(leave.id, [])
    before = model_to_audit_dict(leave)
    year = leave.start_date.year

    if not await ledger.release_reserved(
        session, leave.employee_id, leave.leave_type, leave.total_days, leave.id, year
    ):
        raise AppError("Failed to update leave balance", status_code=500)
    if approve and not await ledger.record_usage(
        session, leave.employee_id, leave.leave_type, leave.total_days, leave.id, year
    ):
        raise AppError("Failed to update leave balance", status_code=500)

    now = now_utc()
    leave.status = RequestStatus.APPROVED.value if approve else RequestStatus.REJECTED.value
    leave.modified_by = auth.user_id
    leave.updated_at = now

    current_step = next((s for s in steps if s.status == ApprovalStatus.PENDING.value), None)
    if current_step is not None:
        current_step.status = ApprovalStatus.APPROVED.value if approve else ApprovalStatus.REJECTED.value
        current_step.comments = payload.comments if payload else None
        current_step.action_date = now
        current_step.approver_id = auth.user_id
        current_step.approver_role = auth.role.value

    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.REQUEST,
        entity_id=leave.id,
        action=AuditAction.APPROVE if approve else AuditAction.REJECT,
        before_json=before,
        after_json=model_to_audit_dict(leave),
    )

    await session.commit()
    return _build_request_response(leave, steps)


async def approve_leave(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: DecisionPayload | None = None,
) -> LeaveRequestResponse:
    """Approve a pending request and consume its balance."""
    return await _decide(session, auth, request_id, approve=True, payload=payload)


async def reject_leave(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
    payload: DecisionPayload | None = None,
) -> LeaveRequestResponse:
    """Reject a pending request and release its reservation."""
    return await _decide(session, auth, request_id, approve=False, payload=payload)


async def delete_leave(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
) -> None:
    """Soft delete a pending request and release its reservation."""
    leave = await _get_request_or_404(session, request_id)
    if not _can_modify(auth, leave):
        raise AppError("You don't have permission to delete this leave", status_code=403)
    if leave.status != RequestStatus.PENDING.value:
        raise AppError("Only pending requests can be deleted", status_code=400)

    before = model_to_audit_dict(leave)
    if not await ledger.release_reserved(
        session, leave.employee_id, leave.leave_type, leave.total_days, leave.id, leave.start_date.year
    ):
        raise AppError("Failed to update leave balance", status_code=500)

    leave.is_active = False
    leave.modified_by = auth.user_id
    leave.updated_at = now_utc()
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.REQUEST,
        entity_id=leave.id,
        action=AuditAction.DELETE,
        before_json=before,
        after_json=model_to_audit_dict(leave),
    )
    await session.commit()


async def get_leave(
    session: AsyncSession,
    auth: AuthContext,
    request_id: uuid.UUID,
) -> LeaveRequestResponse:
    """Get a single request the caller is allowed to see."""
    leave = await _get_request_or_404(session, request_id)
    if not _can_view(auth, leave):
        raise AppError("Access denied", status_code=403)
    return await _respond(session, leave)


async def list_leaves(
    session: AsyncSession,
    auth: AuthContext,
    status_filter: RequestStatus | None = None,
    leave_type: str | None = None,
    department_id: uuid.UUID | None = None,
    employee_id: uuid.UUID | None = None,
    start_from: date | None = None,
    start_to: date | None = None,
    offset: int = 0,
    limit: int = 10,
) -> LeaveRequestListResponse:
    """List active requests visible to the caller, newest submission first."""
    filters = [col(LeaveRequest.is_active).is_(True), *_scope_filters(auth)]

    if status_filter is not None:
        filters.append(col(LeaveRequest.status) == status_filter.value)
    if leave_type is not None:
        filters.append(col(LeaveRequest.leave_type) == leave_type)
    if department_id is not None:
        filters.append(col(LeaveRequest.department_id) == department_id)
    if employee_id is not None:
        filters.append(col(LeaveRequest.employee_id) == employee_id)
    if start_from is not None:
        filters.append(col(LeaveRequest.start_date) >= start_from)
    if start_to is not None:
        filters.append(col(LeaveRequest.start_date) <= start_to)

    count_result = await session.execute(select(func.count()).select_from(LeaveRequest).where(*filters))
    total = count_result.scalar_one()

    result = await session.execute(
        select(LeaveRequest)
        .where(*filters)
        .order_by(col(LeaveRequest.submitted_at).desc())
        .offset(offset)
        .limit(limit)
    )
    leaves = list(result.scalars().all())
    steps = await _load_steps(session, [leave.id for leave in leaves])

    return LeaveRequestListResponse(
        items=[_build_request_response(leave, steps.get(leave.id, [])) for leave in leaves],
        total=total,
    )


async def get_leave_stats(
    session: AsyncSession,
    auth: AuthContext,
    today: date | None = None,
) -> LeaveStatsResponse:
    """Headline counts over the caller's visible, active requests."""
    if today is None:
        today = date.today()
    month_start = datetime(today.year, today.month, 1, tzinfo=UTC)
    if today.month == 12:
        next_month = datetime(today.year + 1, 1, 1, tzinfo=UTC)
    else:
        next_month = datetime(today.year, today.month + 1, 1, tzinfo=UTC)

    base = [col(LeaveRequest.is_active).is_(True), *_scope_filters(auth)]
    approved = col(LeaveRequest.status) == RequestStatus.APPROVED.value
    this_month = [col(LeaveRequest.submitted_at) >= month_start, col(LeaveRequest.submitted_at) < next_month]

    async def _count(*extra: Any) -> int:
        result = await session.execute(select(func.count()).select_from(LeaveRequest).where(*base, *extra))
        return int(result.scalar_one())

    return LeaveStatsResponse(
        total_applications=await _count(),
        pending_approvals=await _count(col(LeaveRequest.status) == RequestStatus.PENDING.value),
        approved_this_month=await _count(approved, *this_month),
        rejected_this_month=await _count(col(LeaveRequest.status) == RequestStatus.REJECTED.value, *this_month),
        upcoming_leaves=await _count(approved, col(LeaveRequest.start_date) > today),
        on_leave_today=await _count(
            approved,
            col(LeaveRequest.start_date) <= today,
            col(LeaveRequest.end_date) >= today,
        ),
    )
