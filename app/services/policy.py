# ruff: noqa: TC003
from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlmodel import col

from app.exceptions import AppError
from app.models.base import now_utc
from app.models.enums import ANNUAL_LEAVE_QUOTA, AuditAction, AuditEntityType
from app.models.policy import LeavePolicy
from app.schemas.policy import ApprovalLimits, PolicyListResponse, PolicyResponse
from app.services.audit import model_to_audit_dict, write_audit_log

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.schemas.auth import AuthContext
    from app.schemas.policy import CreatePolicyRequest, UpdatePolicyRequest


def _build_policy_response(policy: LeavePolicy) -> PolicyResponse:
    """Build a PolicyResponse from a DB model."""
    return PolicyResponse(
        id=policy.id,
        leave_type=policy.leave_type,
        description=policy.description,
        default_allocation=policy.default_allocation,
        max_consecutive_days=policy.max_consecutive_days,
        min_advance_notice=policy.min_advance_notice,
        max_advance_booking=policy.max_advance_booking,
        allow_carry_forward=policy.allow_carry_forward,
        carry_forward_limit=policy.carry_forward_limit,
        documents_required=policy.documents_required,
        approval_limits=ApprovalLimits(
            manager_max_days=policy.manager_max_days,
            dept_head_max_days=policy.dept_head_max_days,
        ),
        is_active=policy.is_active,
        created_at=policy.created_at,
        updated_at=policy.updated_at,
    )


def _require_policy_admin(auth: AuthContext, verb: str) -> None:
    if not auth.is_admin_or_manager:
        raise AppError(f"You don't have permission to {verb} leave policies", status_code=403)


def _reject_reserved_name(leave_type: str) -> None:
    if leave_type == ANNUAL_LEAVE_QUOTA:
        raise AppError(f"'{ANNUAL_LEAVE_QUOTA}' is reserved and cannot be used as a policy", status_code=400)


async def _get_policy_or_404(session: AsyncSession, policy_id: uuid.UUID) -> LeavePolicy:
    result = await session.execute(select(LeavePolicy).where(col(LeavePolicy.id) == policy_id))
    policy = result.scalar_one_or_none()
    if policy is None:
        raise AppError("Policy not found", status_code=404)
    return policy


async def _ensure_unique_leave_type(
    session: AsyncSession,
    leave_type: str,
    exclude_policy_id: uuid.UUID | None = None,
) -> None:
    query = select(LeavePolicy).where(col(LeavePolicy.leave_type) == leave_type)
    if exclude_policy_id is not None:
        query = query.where(col(LeavePolicy.id) != exclude_policy_id)
    existing = await session.execute(query)
    if existing.scalar_one_or_none() is not None:
        raise AppError("A policy for this leave type already exists", status_code=409)


async def get_active_policy(session: AsyncSession, leave_type: str) -> LeavePolicy | None:
    """Return the active policy governing ``leave_type``, if any."""
    result = await session.execute(
        select(LeavePolicy).where(
            col(LeavePolicy.leave_type) == leave_type,
            col(LeavePolicy.is_active).is_(True),
        )
    )
    return result.scalar_one_or_none()


async def create_policy(
    session: AsyncSession,
    auth: AuthContext,
    payload: CreatePolicyRequest,
) -> PolicyResponse:
    """Create a leave policy."""
    _require_policy_admin(auth, "create")
    _reject_reserved_name(payload.leave_type)
    await _ensure_unique_leave_type(session, payload.leave_type)

    policy = LeavePolicy(
        leave_type=payload.leave_type,
        description=payload.description,
        default_allocation=payload.default_allocation,
        max_consecutive_days=payload.max_consecutive_days,
        min_advance_notice=payload.min_advance_notice,
        max_advance_booking=payload.max_advance_booking,
        allow_carry_forward=payload.allow_carry_forward,
        carry_forward_limit=payload.carry_forward_limit,
        documents_required=payload.documents_required,
        manager_max_days=payload.approval_limits.manager_max_days,
        dept_head_max_days=payload.approval_limits.dept_head_max_days,
    )
    session.add(policy)
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.POLICY,
        entity_id=policy.id,
        action=AuditAction.CREATE,
        after_json=model_to_audit_dict(policy),
    )

    await session.commit()
    return _build_policy_response(policy)


async def get_policy(session: AsyncSession, policy_id: uuid.UUID) -> PolicyResponse:
    """Fetch a single policy, active or not."""
    policy = await _get_policy_or_404(session, policy_id)
    return _build_policy_response(policy)


async def list_policies(session: AsyncSession) -> PolicyListResponse:
    """List active policies ordered by leave type."""
    result = await session.execute(
        select(LeavePolicy).where(col(LeavePolicy.is_active).is_(True)).order_by(col(LeavePolicy.leave_type))
    )
    policies = list(result.scalars().all())
    return PolicyListResponse(items=[_build_policy_response(p) for p in policies], total=len(policies))


async def update_policy(
    session: AsyncSession,
    auth: AuthContext,
    policy_id: uuid.UUID,
    payload: UpdatePolicyRequest,
) -> PolicyResponse:
    """Apply a partial update to a policy.

    Changing ``default_allocation`` only affects balances initialized
    afterwards; existing balances keep their allocation.
    """
    _require_policy_admin(auth, "update")
    policy = await _get_policy_or_404(session, policy_id)
    before = model_to_audit_dict(policy)

    changes = {
        field: value
        for field, value in payload.model_dump(exclude_unset=True, exclude={"approval_limits"}).items()
        if value is not None
    }
    if "leave_type" in changes and changes["leave_type"] != policy.leave_type:
        _reject_reserved_name(changes["leave_type"])
        await _ensure_unique_leave_type(session, changes["leave_type"], exclude_policy_id=policy.id)

    allow_carry_forward = changes.get("allow_carry_forward", policy.allow_carry_forward)
    if changes.get("carry_forward_limit", policy.carry_forward_limit) and not allow_carry_forward:
        raise AppError("carry_forward_limit requires allow_carry_forward", status_code=400)

    for field, value in changes.items():
        setattr(policy, field, value)
    if payload.approval_limits is not None:
        policy.manager_max_days = payload.approval_limits.manager_max_days
        policy.dept_head_max_days = payload.approval_limits.dept_head_max_days

    policy.updated_at = now_utc()
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.POLICY,
        entity_id=policy.id,
        action=AuditAction.UPDATE,
        before_json=before,
        after_json=model_to_audit_dict(policy),
    )

    await session.commit()
    return _build_policy_response(policy)


async def delete_policy(
    session: AsyncSession,
    auth: AuthContext,
    policy_id: uuid.UUID,
) -> None:
    """Soft delete: the policy stops seeding new balances but keeps its history."""
    _require_policy_admin(auth, "delete")
    policy = await _get_policy_or_404(session, policy_id)
    before = model_to_audit_dict(policy)

    policy.is_active = False
    policy.updated_at = now_utc()
    await session.flush()

    await write_audit_log(
        session,
        actor_id=auth.user_id,
        entity_type=AuditEntityType.POLICY,
        entity_id=policy.id,
        action=AuditAction.DELETE,
        before_json=before,
        after_json=model_to_audit_dict(policy),
    )
    await session.commit()
