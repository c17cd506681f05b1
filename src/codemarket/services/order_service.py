"""Order workflow: creation, atomic credits settlement, cancellation, history.

Orders start ``pending`` and move exactly once, either to ``completed``
(settlement) or to ``cancelled``.  Both transitions are conditional updates
on ``status = 'pending'``, so a terminal order can never change again.

No funds move at creation.  Settlement claims the order, debits the buyer
and credits the seller inside the caller's single database transaction;
the API layer commits once and any exception rolls everything back, which
leaves the order ``pending`` and safe to retry.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import case, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.config import settings
from codemarket.errors import (
    Conflict,
    InsufficientBalance,
    InternalError,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from codemarket.models import Order, Project
from codemarket.models.credit import PURCHASE_TXN, SALE_TXN
from codemarket.models.marketplace import PAYMENT_METHODS
from codemarket.services.audit_logger import audit
from codemarket.services.catalog_service import get_project_for_sale
from codemarket.services.credit_config_service import (
    MIN_PURCHASE_AMOUNT,
    PLATFORM_FEE_PERCENT,
    get_config,
)
from codemarket.services.credit_service import (
    LedgerEntry,
    get_balance,
    grant_credits,
    spend_credits,
)
from codemarket.services.principal import Principal

log = structlog.get_logger()

_ORDER_NUMBER_ATTEMPTS = 5


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class CreateOrderRequest(BaseModel):
    project_id: uuid.UUID
    payment_method: str = "credits"


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class OrderResponse(BaseModel):
    order_id: uuid.UUID
    order_number: str
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    project_id: uuid.UUID
    amount: int
    platform_fee: int
    seller_proceeds: int
    payment_method: str
    status: str
    payment_transaction_id: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SettlementResult(BaseModel):
    order_id: uuid.UUID
    order_number: str
    status: str
    already_completed: bool
    buyer_balance: Optional[int] = None
    seller_proceeds: int
    platform_fee: int
    # Ledger movements made by this call, for post-commit notifications.
    ledger_entries: list[LedgerEntry] = Field(default_factory=list, exclude=True)


class SalesStats(BaseModel):
    total_orders: int
    completed_orders: int
    pending_orders: int
    cancelled_orders: int
    total_revenue: int


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _generate_order_number(now: datetime) -> str:
    """Prefix + YYYYMMDD + 8 random digits, e.g. ``EC2026101812345678``."""
    return f"{settings.ORDER_NUMBER_PREFIX}{now:%Y%m%d}{secrets.randbelow(10**8):08d}"


async def _unique_order_number(db: AsyncSession) -> str:
    now = datetime.now(timezone.utc)
    for _ in range(_ORDER_NUMBER_ATTEMPTS):
        candidate = _generate_order_number(now)
        result = await db.execute(
            select(exists().where(Order.order_number == candidate))
        )
        if not result.scalar():
            return candidate
    log.error("order_number_exhausted", attempts=_ORDER_NUMBER_ATTEMPTS)
    raise InternalError("Could not allocate an order number, please retry")


async def _load_order(db: AsyncSession, order_id: uuid.UUID) -> Order:
    # populate_existing: status may have been changed by a conditional UPDATE
    # issued earlier in this session.
    result = await db.execute(
        select(Order)
        .where(Order.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found")
    return order


async def _has_completed_order(
    db: AsyncSession,
    buyer_id: uuid.UUID,
    project_id: uuid.UUID,
    exclude_order_id: Optional[uuid.UUID] = None,
) -> bool:
    conditions = [
        Order.buyer_id == buyer_id,
        Order.project_id == project_id,
        Order.status == "completed",
    ]
    if exclude_order_id is not None:
        conditions.append(Order.order_id != exclude_order_id)
    result = await db.execute(select(exists().where(*conditions)))
    return bool(result.scalar())


def _split_amount(amount: int, fee_percent: int) -> tuple[int, int]:
    """Return (platform_fee, seller_proceeds); the fee rounds down."""
    fee = amount * min(fee_percent, 100) // 100
    return fee, amount - fee


def _settled(
    order: Order,
    already_completed: bool,
    buyer_balance: Optional[int] = None,
) -> SettlementResult:
    return SettlementResult(
        order_id=order.order_id,
        order_number=order.order_number,
        status="completed",
        already_completed=already_completed,
        buyer_balance=buyer_balance,
        seller_proceeds=order.seller_proceeds,
        platform_fee=order.platform_fee,
    )


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_order(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID,
    payment_method: str = "credits",
) -> OrderResponse:
    """Validate a purchase and insert a ``pending`` order.

    Nothing is written to the ledger here.  The balance check is advisory
    so that a buyer who cannot pay is told before an order exists; the
    authoritative check is the conditional debit at settlement.
    """
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment method '{payment_method}'")

    project = await get_project_for_sale(db, project_id)
    if project.status != "approved":
        raise ValidationError(
            "This project is not available for purchase",
            code="PROJECT_NOT_PURCHASABLE",
        )
    if project.seller_id == principal.user_id:
        raise ValidationError("You cannot buy your own project", code="SELF_PURCHASE")

    min_amount = await get_config(db, MIN_PURCHASE_AMOUNT)
    if project.price < min_amount:
        raise ValidationError(f"Minimum purchase amount is {min_amount} credits")

    balance = await get_balance(db, principal.user_id)
    if balance.available_credits < project.price:
        raise InsufficientBalance(
            f"Insufficient credits: {project.price} required, "
            f"{balance.available_credits} available"
        )

    if await _has_completed_order(db, principal.user_id, project_id):
        raise Conflict("You have already purchased this project", code="ALREADY_PURCHASED")

    order = Order(
        order_id=uuid.uuid4(),
        order_number=await _unique_order_number(db),
        buyer_id=principal.user_id,
        seller_id=project.seller_id,
        project_id=project_id,
        amount=project.price,
        platform_fee=0,
        seller_proceeds=0,
        payment_method=payment_method,
        status="pending",
        created_at=datetime.now(timezone.utc),
    )
    db.add(order)
    await db.flush()

    log.info(
        "order_created",
        order_id=str(order.order_id),
        order_number=order.order_number,
        buyer_id=str(principal.user_id),
        project_id=str(project_id),
        amount=order.amount,
    )
    return OrderResponse.model_validate(order)


async def complete_credits_order(
    db: AsyncSession,
    principal: Principal,
    order_id: uuid.UUID,
) -> SettlementResult:
    """Settle a pending credits order.

    A completed order is returned unchanged with ``already_completed=True``;
    a cancelled one raises Conflict.  InsufficientBalance (or any other
    failure) propagates after the claim, and the caller's rollback undoes
    the claim together with any partial ledger writes.
    """
    order = await _load_order(db, order_id)
    if order.buyer_id != principal.user_id and not principal.is_admin:
        raise PermissionDenied("Only the buyer can complete this order")

    if order.status == "completed":
        log.info("order_already_settled", order_id=str(order_id))
        return _settled(order, already_completed=True)
    if order.status == "cancelled":
        raise Conflict("Cancelled orders cannot be completed", code="ORDER_NOT_PENDING")

    fee_percent = await get_config(db, PLATFORM_FEE_PERCENT)
    platform_fee, seller_proceeds = _split_amount(order.amount, fee_percent)

    claim = await db.execute(
        update(Order)
        .where(Order.order_id == order_id, Order.status == "pending")
        .values(
            status="completed",
            completed_at=datetime.now(timezone.utc),
            platform_fee=platform_fee,
            seller_proceeds=seller_proceeds,
        )
        .returning(Order.order_id)
        .execution_options(synchronize_session=False)
    )
    if claim.scalar_one_or_none() is None:
        # Lost a race with another settlement or a cancellation.
        order = await _load_order(db, order_id)
        if order.status == "completed":
            return _settled(order, already_completed=True)
        raise Conflict("Order is no longer pending", code="ORDER_NOT_PENDING")

    debit = await spend_credits(
        db,
        order.buyer_id,
        order.amount,
        PURCHASE_TXN,
        f"Purchase of order {order.order_number}",
        reference_id=order_id,
        reference_type="order",
        created_by=principal.user_id,
    )
    # Checked after the debit has locked the buyer's account row, so a
    # concurrent settlement of a sibling order for the same project is
    # already committed and visible here.
    if await _has_completed_order(db, order.buyer_id, order.project_id, order_id):
        log.info(
            "duplicate_purchase_rejected",
            order_id=str(order_id),
            buyer_id=str(order.buyer_id),
            project_id=str(order.project_id),
        )
        raise Conflict("You have already purchased this project", code="ALREADY_PURCHASED")

    entries = [debit]
    if seller_proceeds > 0:
        sale = await grant_credits(
            db,
            order.seller_id,
            seller_proceeds,
            SALE_TXN,
            f"Sale of order {order.order_number}",
            reference_id=order_id,
            reference_type="order",
        )
        entries.append(sale)

    await db.execute(
        update(Order)
        .where(Order.order_id == order_id)
        .values(payment_transaction_id=str(debit.txn_id))
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Project)
        .where(Project.project_id == order.project_id)
        .values(download_count=Project.download_count + 1)
        .execution_options(synchronize_session=False)
    )

    audit.log_settlement({
        "order_id": order_id,
        "order_number": order.order_number,
        "buyer_id": order.buyer_id,
        "seller_id": order.seller_id,
        "project_id": order.project_id,
        "amount": order.amount,
        "platform_fee": platform_fee,
        "seller_proceeds": seller_proceeds,
        "payment_transaction_id": str(debit.txn_id),
    })
    audit.log_order_transition(order_id, "pending", "completed", principal.user_id)

    return SettlementResult(
        order_id=order_id,
        order_number=order.order_number,
        status="completed",
        already_completed=False,
        buyer_balance=debit.balance_after,
        seller_proceeds=seller_proceeds,
        platform_fee=platform_fee,
        ledger_entries=entries,
    )


async def cancel_order(
    db: AsyncSession,
    principal: Principal,
    order_id: uuid.UUID,
    reason: Optional[str] = None,
) -> OrderResponse:
    """Cancel a pending order. No funds have moved, so nothing is refunded."""
    order = await _load_order(db, order_id)
    if order.buyer_id != principal.user_id and not principal.is_admin:
        raise PermissionDenied("Only the buyer can cancel this order")

    result = await db.execute(
        update(Order)
        .where(Order.order_id == order_id, Order.status == "pending")
        .values(
            status="cancelled",
            cancelled_at=datetime.now(timezone.utc),
            cancel_reason=reason,
        )
        .returning(Order.order_id)
        .execution_options(synchronize_session=False)
    )
    if result.scalar_one_or_none() is None:
        raise Conflict(
            f"Order cannot be cancelled from status '{order.status}'",
            code="ORDER_NOT_PENDING",
        )

    audit.log_order_transition(order_id, "pending", "cancelled", principal.user_id, reason)
    return OrderResponse.model_validate(await _load_order(db, order_id))


async def get_order(
    db: AsyncSession,
    principal: Principal,
    order_id: uuid.UUID,
) -> OrderResponse:
    order = await _load_order(db, order_id)
    if principal.user_id not in (order.buyer_id, order.seller_id) and not principal.is_admin:
        # Do not reveal other users' orders.
        raise NotFound("Order not found")
    return OrderResponse.model_validate(order)


async def list_purchases(
    db: AsyncSession,
    principal: Principal,
    limit: int = 20,
    offset: int = 0,
) -> list[OrderResponse]:
    result = await db.execute(
        select(Order)
        .where(Order.buyer_id == principal.user_id)
        .order_by(Order.created_at.desc())
        .limit(min(max(limit, 1), 100))
        .offset(max(offset, 0))
        .execution_options(populate_existing=True)
    )
    return [OrderResponse.model_validate(o) for o in result.scalars()]


async def list_sales(
    db: AsyncSession,
    principal: Principal,
    status: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> list[OrderResponse]:
    stmt = select(Order).where(Order.seller_id == principal.user_id)
    if status is not None:
        stmt = stmt.where(Order.status == status)
    result = await db.execute(
        stmt.order_by(Order.created_at.desc())
        .limit(min(max(limit, 1), 100))
        .offset(max(offset, 0))
        .execution_options(populate_existing=True)
    )
    return [OrderResponse.model_validate(o) for o in result.scalars()]


async def get_sales_stats(db: AsyncSession, seller_id: uuid.UUID) -> SalesStats:
    """Order counts by status and revenue (completed seller proceeds)."""
    def _count(status: str):
        return func.coalesce(func.sum(case((Order.status == status, 1), else_=0)), 0)

    result = await db.execute(
        select(
            func.count(Order.order_id),
            _count("completed"),
            _count("pending"),
            _count("cancelled"),
            func.coalesce(
                func.sum(case((Order.status == "completed", Order.seller_proceeds), else_=0)),
                0,
            ),
        ).where(Order.seller_id == seller_id)
    )
    total, completed, pending, cancelled, revenue = result.one()
    return SalesStats(
        total_orders=total,
        completed_orders=completed,
        pending_orders=pending,
        cancelled_orders=cancelled,
        total_revenue=revenue,
    )
