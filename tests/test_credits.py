"""Tests for the credit ledger primitives, reconciliation and admin adjustment."""

from __future__ import annotations

import asyncio
import uuid

import pytest
from sqlalchemy import func, select, update

from codemarket.errors import (
    DailyEarnLimitExceeded,
    InsufficientBalance,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from codemarket.models import CreditConfig, CreditTransaction, UserCredits
from codemarket.models.credit import PURCHASE_TXN, SALE_TXN
from codemarket.services.credit_service import (
    admin_adjust_credits,
    find_ledger_discrepancies,
    get_balance,
    grant_credits,
    list_transactions,
    spend_credits,
)

from conftest import make_user


async def _txn_sum(db, user_id) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.user_id == user_id
        )
    )
    return result.scalar_one()


async def _set_config(db, key, value):
    await db.execute(
        update(CreditConfig).where(CreditConfig.config_key == key).values(config_value=value)
    )
    await db.commit()


# ---------------------------------------------------------------------------
# grant / spend
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_grant_creates_account_lazily(db_session):
    user = await make_user(db_session)
    assert (await get_balance(db_session, user.user_id)).available_credits == 0

    entry = await grant_credits(db_session, user.user_id, 40, "review_bonus", "review")
    await db_session.commit()

    assert entry.amount == 40
    assert entry.balance_after == 40
    balance = await get_balance(db_session, user.user_id)
    assert balance.available_credits == 40
    assert balance.total_earned == 40


@pytest.mark.asyncio
async def test_spend_records_negative_transaction(db_session):
    user = await make_user(db_session, credits=100)

    entry = await spend_credits(db_session, user.user_id, 30, PURCHASE_TXN, "buy")
    await db_session.commit()

    assert entry.amount == -30
    assert entry.balance_after == 70
    assert await _txn_sum(db_session, user.user_id) == 70
    # total_earned tracks grants only
    assert (await get_balance(db_session, user.user_id)).total_earned == 100


@pytest.mark.asyncio
async def test_spend_insufficient_writes_nothing(db_session):
    user = await make_user(db_session, credits=10)

    with pytest.raises(InsufficientBalance):
        await spend_credits(db_session, user.user_id, 11, PURCHASE_TXN)
    await db_session.commit()

    assert (await get_balance(db_session, user.user_id)).available_credits == 10
    result = await db_session.execute(
        select(func.count()).select_from(CreditTransaction).where(
            CreditTransaction.user_id == user.user_id
        )
    )
    assert result.scalar_one() == 1


@pytest.mark.asyncio
async def test_spend_without_account_is_insufficient(db_session):
    user = await make_user(db_session)
    with pytest.raises(InsufficientBalance):
        await spend_credits(db_session, user.user_id, 1, PURCHASE_TXN)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, True, 1.5])
async def test_invalid_amounts_rejected(db_session, amount):
    user = await make_user(db_session)
    with pytest.raises(ValidationError):
        await grant_credits(db_session, user.user_id, amount, SALE_TXN)
    with pytest.raises(ValidationError):
        await spend_credits(db_session, user.user_id, amount, PURCHASE_TXN)


@pytest.mark.asyncio
async def test_unknown_txn_type_rejected(db_session):
    user = await make_user(db_session)
    with pytest.raises(ValidationError):
        await grant_credits(db_session, user.user_id, 5, "lottery")


@pytest.mark.asyncio
async def test_ledger_invariant_holds_after_mixed_operations(db_session):
    user = await make_user(db_session)
    await grant_credits(db_session, user.user_id, 100, "register_bonus")
    await spend_credits(db_session, user.user_id, 35, PURCHASE_TXN)
    await grant_credits(db_session, user.user_id, 250, SALE_TXN)
    with pytest.raises(InsufficientBalance):
        await spend_credits(db_session, user.user_id, 1000, PURCHASE_TXN)
    await spend_credits(db_session, user.user_id, 315, PURCHASE_TXN)
    await db_session.commit()

    assert (await get_balance(db_session, user.user_id)).available_credits == 0
    assert await _txn_sum(db_session, user.user_id) == 0
    assert await find_ledger_discrepancies(db_session) == []


@pytest.mark.asyncio
async def test_list_transactions_newest_first(db_session):
    user = await make_user(db_session)
    await grant_credits(db_session, user.user_id, 10, "review_bonus")
    await spend_credits(db_session, user.user_id, 4, PURCHASE_TXN)
    await db_session.commit()

    txns = await list_transactions(db_session, user.user_id)
    assert [t.amount for t in txns] == [-4, 10]
    assert txns[0].balance_after == 6


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_concurrent_spends_of_whole_balance(session_factory):
    async with session_factory() as db:
        user = await make_user(db, credits=100)

    async def attempt() -> bool:
        async with session_factory() as db:
            try:
                await spend_credits(db, user.user_id, 100, PURCHASE_TXN)
            except InsufficientBalance:
                await db.rollback()
                return False
            await db.commit()
            return True

    outcomes = await asyncio.gather(attempt(), attempt())

    assert sorted(outcomes) == [False, True]
    async with session_factory() as db:
        assert (await get_balance(db, user.user_id)).available_credits == 0
        assert await _txn_sum(db, user.user_id) == 0


# ---------------------------------------------------------------------------
# Daily earning cap
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_daily_cap_rejects_instead_of_clipping(db_session):
    await _set_config(db_session, "max_daily_earn", 120)
    user = await make_user(db_session)

    await grant_credits(db_session, user.user_id, 100, "register_bonus")
    await grant_credits(db_session, user.user_id, 20, "review_bonus")
    with pytest.raises(DailyEarnLimitExceeded):
        await grant_credits(db_session, user.user_id, 1, "daily_signin")
    await db_session.commit()

    assert (await get_balance(db_session, user.user_id)).available_credits == 120


@pytest.mark.asyncio
async def test_daily_cap_ignores_sales_and_adjustments(db_session):
    await _set_config(db_session, "max_daily_earn", 10)
    user = await make_user(db_session, credits=1000)

    await grant_credits(db_session, user.user_id, 5000, SALE_TXN)
    await grant_credits(db_session, user.user_id, 10, "review_bonus")
    await db_session.commit()

    assert (await get_balance(db_session, user.user_id)).available_credits == 6010


@pytest.mark.asyncio
async def test_daily_cap_zero_means_uncapped(db_session):
    await _set_config(db_session, "max_daily_earn", 0)
    user = await make_user(db_session)
    await grant_credits(db_session, user.user_id, 10_000, "referral_bonus")
    assert (await get_balance(db_session, user.user_id)).available_credits == 10_000


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_find_ledger_discrepancies_reports_tampered_balance(db_session):
    honest = await make_user(db_session, credits=50)
    tampered = await make_user(db_session, credits=50)
    await db_session.execute(
        update(UserCredits)
        .where(UserCredits.user_id == tampered.user_id)
        .values(available_credits=75)
    )
    await db_session.commit()

    found = await find_ledger_discrepancies(db_session)

    assert [d.user_id for d in found] == [tampered.user_id]
    assert found[0].stored_balance == 75
    assert found[0].computed_balance == 50
    assert found[0].difference == 25
    assert honest.user_id not in {d.user_id for d in found}


# ---------------------------------------------------------------------------
# Admin adjustment
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_admin_adjust_both_directions(db_session):
    admin = await make_user(db_session, role="admin")
    user = await make_user(db_session)

    up = await admin_adjust_credits(db_session, admin, user.user_id, 80, "goodwill")
    down = await admin_adjust_credits(db_session, admin, user.user_id, -30, "correction")
    await db_session.commit()

    assert (up.amount, down.amount) == (80, -30)
    assert (await get_balance(db_session, user.user_id)).available_credits == 50

    result = await db_session.execute(
        select(CreditTransaction.created_by, CreditTransaction.description).where(
            CreditTransaction.user_id == user.user_id
        )
    )
    rows = result.all()
    assert {r[0] for r in rows} == {admin.user_id}
    assert all(r[1].startswith("Admin adjustment:") for r in rows)


@pytest.mark.asyncio
async def test_admin_adjust_cannot_overdraw(db_session):
    admin = await make_user(db_session, role="admin")
    user = await make_user(db_session, credits=5)
    with pytest.raises(InsufficientBalance):
        await admin_adjust_credits(db_session, admin, user.user_id, -6, "too much")


@pytest.mark.asyncio
async def test_admin_adjust_requires_admin(db_session):
    seller = await make_user(db_session, role="seller")
    with pytest.raises(PermissionDenied):
        await admin_adjust_credits(db_session, seller, seller.user_id, 1000, "please")


@pytest.mark.asyncio
async def test_admin_adjust_validation(db_session):
    admin = await make_user(db_session, role="admin")
    with pytest.raises(ValidationError):
        await admin_adjust_credits(db_session, admin, admin.user_id, 0, "zero")
    with pytest.raises(ValidationError):
        await admin_adjust_credits(db_session, admin, admin.user_id, 5, "   ")
    with pytest.raises(NotFound):
        await admin_adjust_credits(db_session, admin, uuid.uuid4(), 5, "ghost")
