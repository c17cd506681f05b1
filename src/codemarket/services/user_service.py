"""User profiles: provider token verification, registration, profile lookup.

Passwords, sessions and refresh live with the hosted identity provider.
This service only verifies its HS256 access tokens and keeps the local
profile row that carries the marketplace role.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import structlog
from jose import JWTError, jwt
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.config import settings
from codemarket.errors import (
    AuthenticationError,
    Conflict,
    DailyEarnLimitExceeded,
    NotFound,
)
from codemarket.models import User
from codemarket.services.credit_service import get_balance
from codemarket.services.reward_service import grant_registration_bonus

log = structlog.get_logger()

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,50}$")


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class RegisterProfileRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if not _USERNAME_RE.match(v):
            raise ValueError("Username may only contain letters, digits and underscores")
        return v


class ProfileResponse(BaseModel):
    user_id: UUID
    email: str
    username: str
    role: str
    available_credits: int
    total_earned: int
    created_at: datetime


# ---------------------------------------------------------------------------
# Token verification
# ---------------------------------------------------------------------------

def verify_token(token: str) -> dict:
    """Decode and validate an identity-provider access token.

    Raises AuthenticationError if the token is invalid, expired, issued for
    another audience, or carries no subject.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.SUPABASE_JWT_AUDIENCE,
        )
    except JWTError:
        raise AuthenticationError("Invalid or expired token")

    if not payload.get("sub"):
        raise AuthenticationError("Token has no subject")
    return payload


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def register_profile(
    db: AsyncSession,
    claims: dict,
    username: str,
) -> ProfileResponse:
    """Create the local profile for a fresh identity and grant the bonus.

    Both writes share the caller's transaction: a profile never exists
    without its registration bonus unless the bonus is disabled or exceeds
    the daily earning cap.
    """
    try:
        user_id = UUID(claims["sub"])
    except (KeyError, ValueError):
        raise AuthenticationError("Token subject is not a valid user id")
    email = (claims.get("email") or "").lower().strip()
    if not email:
        raise AuthenticationError("Token carries no email")

    result = await db.execute(
        select(User.user_id, User.email, User.username).where(
            or_(User.user_id == user_id, User.email == email, User.username == username)
        )
    )
    for existing_id, existing_email, existing_username in result.all():
        if existing_id == user_id:
            raise Conflict("Profile already registered", code="ALREADY_REGISTERED")
        if existing_email == email:
            raise Conflict("Email already registered", code="EMAIL_TAKEN")
        if existing_username == username:
            raise Conflict("Username already taken", code="USERNAME_TAKEN")

    user = User(
        user_id=user_id,
        email=email,
        username=username,
        role="buyer",
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(user)
    await db.flush()

    try:
        await grant_registration_bonus(db, user_id)
    except DailyEarnLimitExceeded:
        # The profile stands; only the bonus is forfeited.
        log.warning("register_bonus_capped", user_id=str(user_id))
    log.info("user_registered", user_id=str(user_id), username=username)
    return await get_profile(db, user_id)


async def get_profile(db: AsyncSession, user_id: UUID) -> ProfileResponse:
    result = await db.execute(
        select(User)
        .where(User.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    user: Optional[User] = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")

    balance = await get_balance(db, user_id)
    return ProfileResponse(
        user_id=user.user_id,
        email=user.email,
        username=user.username,
        role=user.role,
        available_credits=balance.available_credits,
        total_earned=balance.total_earned,
        created_at=user.created_at,
    )
