"""The authenticated caller every core operation receives."""

from __future__ import annotations

import uuid

from pydantic import BaseModel

from codemarket.errors import PermissionDenied


class Principal(BaseModel):
    user_id: uuid.UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def require_admin(principal: Principal, message: str | None = None) -> None:
    if not principal.is_admin:
        raise PermissionDenied(message or "Administrator role required")
