"""Year-end carry forward.

Runs on Jan 1 (or on demand) to move unused days of carry-forward enabled
leave types into the next year, capped by each policy's limit.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col

from app.exceptions import AppError
from app.models.balance import LeaveBalance
from app.models.enums import ANNUAL_LEAVE_QUOTA, AuditAction, AuditEntityType
from app.models.policy import LeavePolicy
from app.services import ledger
from app.services.audit import SYSTEM_ACTOR, model_to_audit_dict, write_audit_log

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass
class CarryForwardRunResult:
    """Result of a carry forward run."""

    from_year: int
    to_year: int
    processed: int = 0
    skipped: int = 0
    errors: int = 0


async def _carry_forward_limits(session: AsyncSession) -> dict[str, int]:
    """Map leave type -> carry forward cap for policies that allow it."""
    result = await session.execute(
        select(col(LeavePolicy.leave_type), col(LeavePolicy.carry_forward_limit)).where(
            col(LeavePolicy.is_active).is_(True),
            col(LeavePolicy.allow_carry_forward).is_(True),
            col(LeavePolicy.carry_forward_limit) > 0,
            col(LeavePolicy.leave_type) != ANNUAL_LEAVE_QUOTA,
        )
    )
    return {leave_type: limit for leave_type, limit in result.all()}


async def run_carry_forward(
    session: AsyncSession,
    from_year: int,
    *,
    actor_id: uuid.UUID = SYSTEM_ACTOR,
) -> CarryForwardRunResult:
    """Carry unused days from ``from_year`` into ``from_year + 1``.

    For every source balance of an eligible leave type:
    1. Lock the source and compute min(remaining, policy limit)
    2. Skip when nothing is left to carry
    3. Credit the next year's balance (provisioned if missing)
    4. Audit and commit

    Each balance commits on its own so one failure does not undo the
    rest. Idempotent: a target already holding a carry-forward is skipped.
    """
    result = CarryForwardRunResult(from_year=from_year, to_year=from_year + 1)

    limits = await _carry_forward_limits(session)
    if not limits:
        logger.info("Carry forward from %d: no eligible policies", from_year)
        return result

    sources = await session.execute(
        select(col(LeaveBalance.employee_id), col(LeaveBalance.leave_type))
        .where(
            col(LeaveBalance.year) == from_year,
            col(LeaveBalance.leave_type).in_(list(limits)),
        )
        .order_by(col(LeaveBalance.employee_id), col(LeaveBalance.leave_type))
    )

    for employee_id, leave_type in sources.all():
        try:
            source = await ledger.get_balance(session, employee_id, leave_type, from_year, for_update=True)
            days = min(source.remaining, limits[leave_type]) if source is not None else 0
            if days <= 0:
                result.skipped += 1
                continue

            target = await ledger.apply_carry_forward(session, employee_id, leave_type, days, from_year)
            if target is None:
                result.skipped += 1
                continue

            await write_audit_log(
                session,
                actor_id=actor_id,
                entity_type=AuditEntityType.BALANCE,
                entity_id=target.id,
                action=AuditAction.CARRY_FORWARD,
                after_json={**model_to_audit_dict(target), "from_year": from_year},
            )
            await session.commit()
            result.processed += 1
        except (AppError, SQLAlchemyError):
            logger.exception("Carry forward failed for employee=%s type=%s from=%d", employee_id, leave_type, from_year)
            await session.rollback()
            result.errors += 1

    await session.commit()
    logger.info(
        "Carry forward %d -> %d: processed=%d skipped=%d errors=%d",
        result.from_year,
        result.to_year,
        result.processed,
        result.skipped,
        result.errors,
    )
    return result
