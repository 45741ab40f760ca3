# ruff: noqa: TC003
from __future__ import annotations

import uuid

from pydantic import BaseModel

from app.models.enums import UserRole


class AuthContext(BaseModel):
    """Caller identity extracted from trusted request headers."""

    user_id: uuid.UUID
    role: UserRole = UserRole.STAFF
    department_id: uuid.UUID | None = None

    @property
    def is_admin_or_manager(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.MANAGER)
