"""Credit balance, history and sign-in reward endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.api.dependencies import get_current_principal
from codemarket.database import get_db
from codemarket.services.credit_events import credit_events
from codemarket.services.credit_service import (
    CreditBalanceResponse,
    CreditTransactionResponse,
    get_balance,
    list_transactions,
)
from codemarket.services.principal import Principal
from codemarket.services.reward_service import grant_daily_signin

router = APIRouter(prefix="/api/v1/credits", tags=["credits"])


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/balance", response_model=CreditBalanceResponse)
async def read_balance(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Return the authenticated user's current credit balance."""
    return await get_balance(db, principal.user_id)


@router.get("/transactions", response_model=list[CreditTransactionResponse])
async def read_transactions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await list_transactions(db, principal.user_id, limit, offset)


@router.post("/daily-signin", response_model=CreditBalanceResponse)
async def daily_signin(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Claim today's sign-in bonus; a second claim the same day is a 409."""
    entry = await grant_daily_signin(db, principal.user_id)
    await db.commit()
    await credit_events.publish_entries([entry])
    return await get_balance(db, principal.user_id)
