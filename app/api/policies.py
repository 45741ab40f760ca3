# ruff: noqa: TC001, TC003
from __future__ import annotations

import uuid

from fastapi import APIRouter, status

from app.api.deps import AuthDep
from app.db import SessionDep
from app.schemas.policy import (
    CreatePolicyRequest,
    PolicyListResponse,
    PolicyResponse,
    UpdatePolicyRequest,
)
from app.services import policy as policy_service

router = APIRouter(
    prefix="/leave-policies",
    tags=["policies"],
)


@router.post("", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    payload: CreatePolicyRequest,
    session: SessionDep,
    auth: AuthDep,
) -> PolicyResponse:
    """Create a leave policy (admin or manager)."""
    return await policy_service.create_policy(session, auth, payload)


@router.get("", response_model=PolicyListResponse)
async def list_policies(
    session: SessionDep,
    _auth: AuthDep,
) -> PolicyListResponse:
    """List active leave policies."""
    return await policy_service.list_policies(session)


@router.get("/{policy_id}", response_model=PolicyResponse)
async def get_policy(
    policy_id: uuid.UUID,
    session: SessionDep,
    _auth: AuthDep,
) -> PolicyResponse:
    return await policy_service.get_policy(session, policy_id)


@router.put("/{policy_id}", response_model=PolicyResponse)
async def update_policy(
    policy_id: uuid.UUID,
    payload: UpdatePolicyRequest,
    session: SessionDep,
    auth: AuthDep,
) -> PolicyResponse:
    """Partially update a leave policy (admin or manager)."""
    return await policy_service.update_policy(session, auth, policy_id, payload)


@router.delete("/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_policy(
    policy_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> None:
    """Deactivate a leave policy (admin or manager)."""
    await policy_service.delete_policy(session, auth, policy_id)
