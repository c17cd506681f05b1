"""Shared FastAPI dependencies for authenticated routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.database import get_db
from codemarket.errors import AuthenticationError
from codemarket.models import User
from codemarket.services.principal import Principal
from codemarket.services.user_service import verify_token

# auto_error=False so a missing header renders through our error envelope
_bearer_scheme = HTTPBearer(auto_error=False)


async def get_token_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict:
    """Verify the provider's bearer token and return its claims."""
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    claims = verify_token(credentials.credentials)
    request.state.user_id = claims["sub"]
    return claims


async def get_current_principal(
    claims: dict = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Load the caller's profile and return who they are and what role they hold.

    Raises AuthenticationError if the identity has no profile yet or the
    profile has been deactivated.
    """
    try:
        user_id = UUID(claims["sub"])
    except ValueError:
        raise AuthenticationError("Token subject is not a valid user id")

    result = await db.execute(
        select(User.role, User.is_active).where(User.user_id == user_id)
    )
    row = result.one_or_none()
    if row is None or not row[1]:
        raise AuthenticationError("User not found or deactivated")

    return Principal(user_id=user_id, role=row[0])
