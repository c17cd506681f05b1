"""Order API router -- /api/v1/orders/*."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.api.dependencies import get_current_principal
from codemarket.database import get_db
from codemarket.services.credit_events import credit_events
from codemarket.services.order_service import (
    CancelOrderRequest,
    CreateOrderRequest,
    OrderResponse,
    SalesStats,
    SettlementResult,
    cancel_order,
    complete_credits_order,
    create_order,
    get_order,
    get_sales_stats,
    list_purchases,
    list_sales,
)
from codemarket.services.principal import Principal

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    body: CreateOrderRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Create a pending order. Credits move only when it is completed."""
    order = await create_order(db, principal, body.project_id, body.payment_method)
    await db.commit()
    return order


# Static paths are registered before /{order_id} so they are not parsed as ids.

@router.get("/purchases", response_model=list[OrderResponse])
async def read_purchases(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await list_purchases(db, principal, limit, offset)


@router.get("/sales", response_model=list[OrderResponse])
async def read_sales(
    order_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await list_sales(db, principal, order_status, limit, offset)


@router.get("/sales/stats", response_model=SalesStats)
async def read_sales_stats(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await get_sales_stats(db, principal.user_id)


@router.get("/{order_id}", response_model=OrderResponse)
async def read_order(
    order_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await get_order(db, principal, order_id)


@router.post("/{order_id}/complete", response_model=SettlementResult)
async def complete_order(
    order_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Settle a credits order. Safe to retry: a settled order is a no-op."""
    result = await complete_credits_order(db, principal, order_id)
    await db.commit()
    await credit_events.publish_entries(result.ledger_entries, reference_id=order_id)
    return result


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel(
    order_id: UUID,
    body: CancelOrderRequest | None = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    order = await cancel_order(db, principal, order_id, body.reason if body else None)
    await db.commit()
    return order
