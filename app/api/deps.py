# ruff: noqa: B008, TC003
from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import Depends, Header, status

from app.exceptions import AppError
from app.models.enums import UserRole
from app.schemas.auth import AuthContext


async def get_auth_context(
    x_user_id: uuid.UUID = Header(),
    x_role: UserRole = Header(default=UserRole.STAFF),
    x_department_id: uuid.UUID | None = Header(default=None),
) -> AuthContext:
    """Extract the caller's identity from trusted gateway headers."""
    return AuthContext(user_id=x_user_id, role=x_role, department_id=x_department_id)


AuthDep = Annotated[AuthContext, Depends(get_auth_context)]


async def require_admin(
    auth: AuthDep,
) -> AuthContext:
    """Require admin role for the request."""
    if auth.role != UserRole.ADMIN:
        raise AppError("Admin access required", status_code=status.HTTP_403_FORBIDDEN)
    return auth


AdminDep = Annotated[AuthContext, Depends(require_admin)]
