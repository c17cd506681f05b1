"""Profile API router -- /api/v1/auth/*.

Login, logout and token refresh happen against the identity provider; these
endpoints only bind a verified identity to a marketplace profile.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.api.dependencies import get_current_principal, get_token_claims
from codemarket.database import get_db
from codemarket.services.credit_events import BalanceChanged, credit_events
from codemarket.services.principal import Principal
from codemarket.services.user_service import (
    ProfileResponse,
    RegisterProfileRequest,
    get_profile,
    register_profile,
)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=ProfileResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    body: RegisterProfileRequest,
    claims: dict = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    """Create the caller's profile and grant the registration bonus."""
    profile = await register_profile(db, claims, body.username)
    await db.commit()

    if profile.available_credits:
        await credit_events.publish(
            BalanceChanged(
                user_id=profile.user_id,
                amount=profile.available_credits,
                txn_type="register_bonus",
                balance_after=profile.available_credits,
            )
        )
    return profile


@router.get("/me", response_model=ProfileResponse)
async def me(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> ProfileResponse:
    return await get_profile(db, principal.user_id)
