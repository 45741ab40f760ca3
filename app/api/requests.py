# ruff: noqa: B008, TC001, TC003
from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Query, status

from app.api.deps import AuthDep
from app.db import SessionDep
from app.models.enums import RequestStatus
from app.schemas.request import (
    DecisionPayload,
    LeaveRequestListResponse,
    LeaveRequestResponse,
    LeaveStatsResponse,
    SubmitLeavePayload,
    UpdateLeavePayload,
)
from app.services import request as request_service

requests_router = APIRouter(
    prefix="/leaves",
    tags=["leaves"],
)


@requests_router.post("", response_model=LeaveRequestResponse, status_code=status.HTTP_201_CREATED)
async def submit_leave(
    payload: SubmitLeavePayload,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    """Submit a leave application; the requested days are reserved."""
    return await request_service.submit_leave(session, auth, payload)


@requests_router.get("", response_model=LeaveRequestListResponse)
async def list_leaves(
    session: SessionDep,
    auth: AuthDep,
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    leave_type: str | None = Query(default=None),
    department_id: uuid.UUID | None = Query(default=None),
    employee_id: uuid.UUID | None = Query(default=None),
    start_from: date | None = Query(default=None),
    start_to: date | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
) -> LeaveRequestListResponse:
    """List leave applications visible to the caller."""
    return await request_service.list_leaves(
        session,
        auth,
        status_filter,
        leave_type,
        department_id,
        employee_id,
        start_from,
        start_to,
        offset,
        limit,
    )


@requests_router.get("/stats", response_model=LeaveStatsResponse)
async def get_leave_stats(
    session: SessionDep,
    auth: AuthDep,
) -> LeaveStatsResponse:
    return await request_service.get_leave_stats(session, auth)


@requests_router.get("/{request_id}", response_model=LeaveRequestResponse)
async def get_leave(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    return await request_service.get_leave(session, auth, request_id)


@requests_router.put("/{request_id}", response_model=LeaveRequestResponse)
async def update_leave(
    request_id: uuid.UUID,
    payload: UpdateLeavePayload,
    session: SessionDep,
    auth: AuthDep,
) -> LeaveRequestResponse:
    """Edit a pending leave application."""
    return await request_service.update_leave(session, auth, request_id, payload)


@requests_router.post("/{request_id}/approve", response_model=LeaveRequestResponse)
async def approve_leave(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: DecisionPayload | None = None,
) -> LeaveRequestResponse:
    """Approve a pending application and consume the balance."""
    return await request_service.approve_leave(session, auth, request_id, payload)


@requests_router.post("/{request_id}/reject", response_model=LeaveRequestResponse)
async def reject_leave(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
    payload: DecisionPayload | None = None,
) -> LeaveRequestResponse:
    """Reject a pending application and release the reservation."""
    return await request_service.reject_leave(session, auth, request_id, payload)


@requests_router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_leave(
    request_id: uuid.UUID,
    session: SessionDep,
    auth: AuthDep,
) -> None:
    """Withdraw a pending application."""
    await request_service.delete_leave(session, auth, request_id)
