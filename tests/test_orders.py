"""Tests for order creation, settlement, cancellation and history."""

from __future__ import annotations

import re
import uuid

import pytest
from sqlalchemy import func, select, update

from codemarket.errors import (
    Conflict,
    InsufficientBalance,
    InternalError,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from codemarket.models import CreditConfig, CreditTransaction, Order, Project
from codemarket.models.credit import PURCHASE_TXN
from codemarket.services import order_service
from codemarket.services.credit_service import (
    find_ledger_discrepancies,
    get_balance,
    grant_credits,
    spend_credits,
)
from codemarket.services.order_service import (
    cancel_order,
    complete_credits_order,
    create_order,
    get_order,
    get_sales_stats,
    list_purchases,
    list_sales,
)

from conftest import make_project, make_user


async def _order_status(db, order_id) -> str:
    result = await db.execute(select(Order.status).where(Order.order_id == order_id))
    return result.scalar_one()


async def _balance(db, user_id) -> int:
    return (await get_balance(db, user_id)).available_credits


# ---------------------------------------------------------------------------
# create_order
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_order_is_pending_and_moves_no_funds(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=100)
    project_id = await make_project(db_session, seller.user_id, price=60)

    order = await create_order(db_session, buyer, project_id)
    await db_session.commit()

    assert order.status == "pending"
    assert order.amount == 60
    assert order.seller_id == seller.user_id
    assert re.fullmatch(r"EC\d{8}\d{8}", order.order_number)
    assert await _balance(db_session, buyer.user_id) == 100


@pytest.mark.asyncio
async def test_create_order_validations(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=500)
    draft_id = await make_project(db_session, seller.user_id, status="pending_review")
    project_id = await make_project(db_session, seller.user_id)

    with pytest.raises(NotFound):
        await create_order(db_session, buyer, uuid.uuid4())

    with pytest.raises(ValidationError) as exc:
        await create_order(db_session, buyer, draft_id)
    assert exc.value.code == "PROJECT_NOT_PURCHASABLE"

    with pytest.raises(ValidationError) as exc:
        await create_order(db_session, seller, project_id)
    assert exc.value.code == "SELF_PURCHASE"

    with pytest.raises(ValidationError):
        await create_order(db_session, buyer, project_id, payment_method="alipay")


@pytest.mark.asyncio
async def test_create_order_respects_min_purchase_amount(db_session):
    await db_session.execute(
        update(CreditConfig)
        .where(CreditConfig.config_key == "min_purchase_amount")
        .values(config_value=10)
    )
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=100)
    cheap_id = await make_project(db_session, seller.user_id, price=5)

    with pytest.raises(ValidationError):
        await create_order(db_session, buyer, cheap_id)


@pytest.mark.asyncio
async def test_create_order_prechecks_balance(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=99)
    project_id = await make_project(db_session, seller.user_id, price=100)

    with pytest.raises(InsufficientBalance):
        await create_order(db_session, buyer, project_id)
    result = await db_session.execute(select(func.count()).select_from(Order))
    assert result.scalar_one() == 0


@pytest.mark.asyncio
async def test_already_purchased_is_conflict(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=300)
    project_id = await make_project(db_session, seller.user_id, price=100)

    order = await create_order(db_session, buyer, project_id)
    await complete_credits_order(db_session, buyer, order.order_id)
    await db_session.commit()

    with pytest.raises(Conflict) as exc:
        await create_order(db_session, buyer, project_id)
    assert exc.value.code == "ALREADY_PURCHASED"


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_hundred_credit_purchase_scenario(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=100)
    project_id = await make_project(db_session, seller.user_id, price=100)

    order = await create_order(db_session, buyer, project_id)
    await db_session.commit()
    result = await complete_credits_order(db_session, buyer, order.order_id)
    await db_session.commit()

    assert result.already_completed is False
    assert result.buyer_balance == 0
    assert await _balance(db_session, buyer.user_id) == 0
    assert await _balance(db_session, seller.user_id) == 100
    assert await _order_status(db_session, order.order_id) == "completed"

    with pytest.raises(InsufficientBalance):
        await create_order(db_session, buyer, project_id)


@pytest.mark.asyncio
async def test_settlement_records_split_and_download_count(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=100)
    project_id = await make_project(db_session, seller.user_id, price=80)

    order = await create_order(db_session, buyer, project_id)
    await complete_credits_order(db_session, buyer, order.order_id)
    await db_session.commit()

    settled = await get_order(db_session, buyer, order.order_id)
    assert settled.status == "completed"
    assert settled.completed_at is not None
    assert (settled.platform_fee, settled.seller_proceeds) == (0, 80)
    assert settled.payment_transaction_id is not None

    result = await db_session.execute(
        select(Project.download_count).where(Project.project_id == project_id)
    )
    assert result.scalar_one() == 1

    result = await db_session.execute(
        select(CreditTransaction.txn_type, CreditTransaction.amount).where(
            CreditTransaction.reference_id == order.order_id
        )
    )
    assert sorted(result.all()) == [("purchase", -80), ("sale", 80)]


@pytest.mark.asyncio
async def test_settlement_applies_platform_fee(db_session):
    await db_session.execute(
        update(CreditConfig)
        .where(CreditConfig.config_key == "platform_fee_percent")
        .values(config_value=15)
    )
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=200)
    project_id = await make_project(db_session, seller.user_id, price=99)

    order = await create_order(db_session, buyer, project_id)
    result = await complete_credits_order(db_session, buyer, order.order_id)
    await db_session.commit()

    # 99 * 15 // 100 == 14
    assert (result.platform_fee, result.seller_proceeds) == (14, 85)
    assert await _balance(db_session, buyer.user_id) == 101
    assert await _balance(db_session, seller.user_id) == 85
    assert await find_ledger_discrepancies(db_session) == []


@pytest.mark.asyncio
async def test_settlement_is_idempotent(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=500)
    project_id = await make_project(db_session, seller.user_id, price=100)

    order = await create_order(db_session, buyer, project_id)
    first = await complete_credits_order(db_session, buyer, order.order_id)
    await db_session.commit()
    second = await complete_credits_order(db_session, buyer, order.order_id)
    await db_session.commit()

    assert first.already_completed is False
    assert len(first.ledger_entries) == 2
    assert second.already_completed is True
    assert second.ledger_entries == []
    assert await _balance(db_session, buyer.user_id) == 400
    assert await _balance(db_session, seller.user_id) == 100


@pytest.mark.asyncio
async def test_sibling_pending_order_cannot_charge_twice(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=200)
    project_id = await make_project(db_session, seller.user_id, price=100)

    first = await create_order(db_session, buyer, project_id)
    second = await create_order(db_session, buyer, project_id)
    await db_session.commit()

    await complete_credits_order(db_session, buyer, first.order_id)
    await db_session.commit()

    with pytest.raises(Conflict) as exc:
        await complete_credits_order(db_session, buyer, second.order_id)
    assert exc.value.code == "ALREADY_PURCHASED"
    await db_session.rollback()

    assert await _order_status(db_session, second.order_id) == "pending"
    assert await _balance(db_session, buyer.user_id) == 100
    assert await _balance(db_session, seller.user_id) == 100
    result = await db_session.execute(
        select(func.count()).select_from(CreditTransaction).where(
            CreditTransaction.user_id == buyer.user_id,
            CreditTransaction.txn_type == PURCHASE_TXN,
        )
    )
    assert result.scalar_one() == 1


@pytest.mark.asyncio
async def test_insufficient_balance_at_settlement_leaves_order_pending(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=100)
    project_id = await make_project(db_session, seller.user_id, price=100)

    order = await create_order(db_session, buyer, project_id)
    # Balance drops between order creation and settlement.
    await spend_credits(db_session, buyer.user_id, 50, PURCHASE_TXN)
    await db_session.commit()

    with pytest.raises(InsufficientBalance):
        await complete_credits_order(db_session, buyer, order.order_id)
    await db_session.rollback()

    assert await _order_status(db_session, order.order_id) == "pending"
    assert await _balance(db_session, buyer.user_id) == 50
    assert await _balance(db_session, seller.user_id) == 0

    # Retryable once funded.
    await grant_credits(db_session, buyer.user_id, 50, "admin_adjustment")
    await db_session.commit()
    result = await complete_credits_order(db_session, buyer, order.order_id)
    await db_session.commit()
    assert result.buyer_balance == 0


@pytest.mark.asyncio
async def test_failure_after_debit_rolls_back_everything(db_session, monkeypatch):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=100)
    project_id = await make_project(db_session, seller.user_id, price=100)
    order = await create_order(db_session, buyer, project_id)
    await db_session.commit()

    async def broken_grant(*args, **kwargs):
        raise InternalError("ledger unavailable")

    monkeypatch.setattr(order_service, "grant_credits", broken_grant)

    with pytest.raises(InternalError):
        await complete_credits_order(db_session, buyer, order.order_id)
    await db_session.rollback()

    assert await _order_status(db_session, order.order_id) == "pending"
    assert await _balance(db_session, buyer.user_id) == 100
    result = await db_session.execute(
        select(func.count()).select_from(CreditTransaction).where(
            CreditTransaction.reference_id == order.order_id
        )
    )
    assert result.scalar_one() == 0


@pytest.mark.asyncio
async def test_only_buyer_or_admin_can_settle(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=100)
    admin = await make_user(db_session, role="admin")
    project_id = await make_project(db_session, seller.user_id, price=10)
    order = await create_order(db_session, buyer, project_id)

    with pytest.raises(PermissionDenied):
        await complete_credits_order(db_session, seller, order.order_id)

    result = await complete_credits_order(db_session, admin, order.order_id)
    assert result.status == "completed"


# ---------------------------------------------------------------------------
# Cancellation and terminality
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cancel_pending_order(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=100)
    project_id = await make_project(db_session, seller.user_id, price=40)
    order = await create_order(db_session, buyer, project_id)

    cancelled = await cancel_order(db_session, buyer, order.order_id, "changed my mind")
    await db_session.commit()

    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == "changed my mind"
    assert cancelled.cancelled_at is not None
    assert await _balance(db_session, buyer.user_id) == 100


@pytest.mark.asyncio
async def test_terminal_orders_never_transition(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=500)
    project_a = await make_project(db_session, seller.user_id, price=10)
    project_b = await make_project(db_session, seller.user_id, price=10)

    cancelled = await create_order(db_session, buyer, project_a)
    await cancel_order(db_session, buyer, cancelled.order_id)
    completed = await create_order(db_session, buyer, project_b)
    await complete_credits_order(db_session, buyer, completed.order_id)
    await db_session.commit()

    with pytest.raises(Conflict):
        await complete_credits_order(db_session, buyer, cancelled.order_id)
    with pytest.raises(Conflict):
        await cancel_order(db_session, buyer, cancelled.order_id)
    with pytest.raises(Conflict):
        await cancel_order(db_session, buyer, completed.order_id)

    assert await _order_status(db_session, cancelled.order_id) == "cancelled"
    assert await _order_status(db_session, completed.order_id) == "completed"
    assert await _balance(db_session, buyer.user_id) == 490


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_order_visibility(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=100)
    stranger = await make_user(db_session)
    project_id = await make_project(db_session, seller.user_id, price=10)
    order = await create_order(db_session, buyer, project_id)

    assert (await get_order(db_session, seller, order.order_id)).order_id == order.order_id
    with pytest.raises(NotFound):
        await get_order(db_session, stranger, order.order_id)


@pytest.mark.asyncio
async def test_purchase_and_sales_history(db_session):
    seller = await make_user(db_session, role="seller")
    buyer = await make_user(db_session, credits=1000)
    projects = [await make_project(db_session, seller.user_id, price=p) for p in (10, 20, 30)]

    done = await create_order(db_session, buyer, projects[0])
    await complete_credits_order(db_session, buyer, done.order_id)
    dropped = await create_order(db_session, buyer, projects[1])
    await cancel_order(db_session, buyer, dropped.order_id)
    await create_order(db_session, buyer, projects[2])
    await db_session.commit()

    assert len(await list_purchases(db_session, buyer)) == 3
    assert await list_purchases(db_session, seller) == []
    pending = await list_sales(db_session, seller, status="pending")
    assert [o.amount for o in pending] == [30]

    stats = await get_sales_stats(db_session, seller.user_id)
    assert (stats.total_orders, stats.completed_orders) == (3, 1)
    assert (stats.pending_orders, stats.cancelled_orders) == (1, 1)
    assert stats.total_revenue == 10
