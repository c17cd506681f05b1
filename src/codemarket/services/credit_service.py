"""Credit ledger -- balance queries, atomic grants and spends, reconciliation.

``available_credits`` is only ever changed by the two primitives below, and
each change is paired with an appended ``credit_transactions`` row inside the
caller's database transaction, so that for every user the sum of their
transactions equals their balance.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.errors import (
    DailyEarnLimitExceeded,
    InsufficientBalance,
    NotFound,
    ValidationError,
)
from codemarket.models import CreditTransaction, User, UserCredits
from codemarket.models.credit import ADMIN_ADJUSTMENT_TXN, EARN_TXN_TYPES, TXN_TYPES
from codemarket.services.audit_logger import audit
from codemarket.services.credit_config_service import MAX_DAILY_EARN, get_config
from codemarket.services.principal import Principal, require_admin

log = structlog.get_logger()

_UPSERT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class LedgerEntry(BaseModel):
    txn_id: int
    user_id: uuid.UUID
    amount: int
    txn_type: str
    balance_after: int


class CreditBalanceResponse(BaseModel):
    user_id: uuid.UUID
    available_credits: int
    total_earned: int


class CreditTransactionResponse(BaseModel):
    txn_id: int
    amount: int
    txn_type: str
    description: Optional[str] = None
    reference_id: Optional[uuid.UUID] = None
    reference_type: Optional[str] = None
    balance_after: int
    created_at: datetime

    model_config = {"from_attributes": True}


class LedgerDiscrepancy(BaseModel):
    user_id: uuid.UUID
    stored_balance: int
    computed_balance: int

    @property
    def difference(self) -> int:
        return self.stored_balance - self.computed_balance


class AdminAdjustRequest(BaseModel):
    user_id: uuid.UUID
    amount: int
    reason: str


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Credit amount must be a positive integer")


def _validate_txn_type(txn_type: str) -> None:
    if txn_type not in TXN_TYPES:
        raise ValidationError(f"Unknown transaction type '{txn_type}'")


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


async def _ensure_account(db: AsyncSession, user_id: uuid.UUID) -> None:
    """Create the user's credit account on first use (no-op if it exists)."""
    dialect = db.get_bind().dialect.name
    stmt = (
        _UPSERT_INSERTS[dialect](UserCredits)
        .values(
            user_id=user_id,
            available_credits=0,
            total_earned=0,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    await db.execute(stmt)


async def lock_account(db: AsyncSession, user_id: uuid.UUID) -> None:
    """Create the account if needed and lock its row until the transaction ends.

    Grants for one user are serialized on this lock, so checks made after it
    (daily cap, once-only reward guards) cannot be raced.
    """
    await _ensure_account(db, user_id)
    await db.execute(
        select(UserCredits.available_credits)
        .where(UserCredits.user_id == user_id)
        .with_for_update()
    )


async def _enforce_daily_cap(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
) -> None:
    cap = await get_config(db, MAX_DAILY_EARN)
    if cap == 0:
        return

    result = await db.execute(
        select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.txn_type.in_(EARN_TXN_TYPES),
            CreditTransaction.amount > 0,
            CreditTransaction.created_at >= _start_of_day(datetime.now(timezone.utc)),
        )
    )
    earned_today = result.scalar_one()
    if earned_today + amount > cap:
        log.info(
            "daily_earn_limit_exceeded",
            user_id=str(user_id),
            earned_today=earned_today,
            requested=amount,
            cap=cap,
        )
        raise DailyEarnLimitExceeded(
            f"Daily earning limit of {cap} credits reached "
            f"({earned_today} already earned today)"
        )


async def _append_transaction(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    amount: int,
    txn_type: str,
    balance_after: int,
    description: Optional[str],
    reference_id: Optional[uuid.UUID],
    reference_type: Optional[str],
    created_by: Optional[uuid.UUID],
) -> int:
    result = await db.execute(
        insert(CreditTransaction)
        .values(
            user_id=user_id,
            amount=amount,
            txn_type=txn_type,
            balance_after=balance_after,
            description=description,
            reference_id=reference_id,
            reference_type=reference_type,
            created_by=created_by,
            created_at=datetime.now(timezone.utc),
        )
        .returning(CreditTransaction.txn_id)
    )
    return result.scalar_one()


# ---------------------------------------------------------------------------
# Ledger primitives
# ---------------------------------------------------------------------------

async def grant_credits(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    txn_type: str,
    description: Optional[str] = None,
    reference_id: Optional[uuid.UUID] = None,
    reference_type: Optional[str] = None,
    created_by: Optional[uuid.UUID] = None,
) -> LedgerEntry:
    """Add credits to a user's balance and record the transaction.

    Earning types are checked against ``max_daily_earn`` first and rejected
    with DailyEarnLimitExceeded rather than clipped.
    """
    _validate_amount(amount)
    _validate_txn_type(txn_type)

    await lock_account(db, user_id)
    if txn_type in EARN_TXN_TYPES:
        await _enforce_daily_cap(db, user_id, amount)

    result = await db.execute(
        update(UserCredits)
        .where(UserCredits.user_id == user_id)
        .values(
            available_credits=UserCredits.available_credits + amount,
            total_earned=UserCredits.total_earned + amount,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(UserCredits.available_credits)
        .execution_options(synchronize_session=False)
    )
    new_balance: int = result.scalar_one()

    txn_id = await _append_transaction(
        db,
        user_id=user_id,
        amount=amount,
        txn_type=txn_type,
        balance_after=new_balance,
        description=description,
        reference_id=reference_id,
        reference_type=reference_type,
        created_by=created_by,
    )
    audit.log_credit_event(user_id, amount, txn_type, reference_id)

    return LedgerEntry(
        txn_id=txn_id,
        user_id=user_id,
        amount=amount,
        txn_type=txn_type,
        balance_after=new_balance,
    )


async def spend_credits(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    txn_type: str,
    description: Optional[str] = None,
    reference_id: Optional[uuid.UUID] = None,
    reference_type: Optional[str] = None,
    created_by: Optional[uuid.UUID] = None,
) -> LedgerEntry:
    """Atomically deduct credits using UPDATE ... WHERE balance >= amount.

    The balance check and the decrement are one statement, so two concurrent
    spends against the same balance can never both succeed. Nothing is
    written when the balance is short.
    """
    _validate_amount(amount)
    _validate_txn_type(txn_type)

    result = await db.execute(
        update(UserCredits)
        .where(
            UserCredits.user_id == user_id,
            UserCredits.available_credits >= amount,
        )
        .values(
            available_credits=UserCredits.available_credits - amount,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(UserCredits.available_credits)
        .execution_options(synchronize_session=False)
    )
    new_balance: Optional[int] = result.scalar_one_or_none()
    if new_balance is None:
        log.info("insufficient_balance", user_id=str(user_id), requested=amount)
        raise InsufficientBalance(f"Insufficient credits: {amount} required")

    txn_id = await _append_transaction(
        db,
        user_id=user_id,
        amount=-amount,
        txn_type=txn_type,
        balance_after=new_balance,
        description=description,
        reference_id=reference_id,
        reference_type=reference_type,
        created_by=created_by,
    )
    audit.log_credit_event(user_id, -amount, txn_type, reference_id)

    return LedgerEntry(
        txn_id=txn_id,
        user_id=user_id,
        amount=-amount,
        txn_type=txn_type,
        balance_after=new_balance,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def get_balance(db: AsyncSession, user_id: uuid.UUID) -> CreditBalanceResponse:
    """Return the current balance. Users without an account yet have zero."""
    result = await db.execute(
        select(UserCredits.available_credits, UserCredits.total_earned).where(
            UserCredits.user_id == user_id
        )
    )
    row = result.one_or_none()
    if row is None:
        return CreditBalanceResponse(user_id=user_id, available_credits=0, total_earned=0)
    return CreditBalanceResponse(
        user_id=user_id, available_credits=row[0], total_earned=row[1],
    )


async def list_transactions(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int = 20,
    offset: int = 0,
) -> list[CreditTransactionResponse]:
    """Newest first, max 100 per page."""
    limit = min(max(limit, 1), 100)
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.txn_id.desc())
        .limit(limit)
        .offset(max(offset, 0))
    )
    return [CreditTransactionResponse.model_validate(t) for t in result.scalars()]


async def find_ledger_discrepancies(db: AsyncSession) -> list[LedgerDiscrepancy]:
    """Return every account whose balance differs from its transaction sum."""
    sums = (
        select(
            CreditTransaction.user_id.label("user_id"),
            func.sum(CreditTransaction.amount).label("computed"),
        )
        .group_by(CreditTransaction.user_id)
        .subquery()
    )
    computed = func.coalesce(sums.c.computed, 0)
    result = await db.execute(
        select(UserCredits.user_id, UserCredits.available_credits, computed)
        .outerjoin(sums, sums.c.user_id == UserCredits.user_id)
        .where(UserCredits.available_credits != computed)
        .order_by(UserCredits.user_id)
    )
    return [
        LedgerDiscrepancy(
            user_id=row[0], stored_balance=row[1], computed_balance=row[2],
        )
        for row in result.all()
    ]


# ---------------------------------------------------------------------------
# Admin operations
# ---------------------------------------------------------------------------

async def admin_adjust_credits(
    db: AsyncSession,
    principal: Principal,
    target_user_id: uuid.UUID,
    amount: int,
    reason: str,
) -> LedgerEntry:
    """Manually credit (amount > 0) or debit (amount < 0) a user. Admin only."""
    require_admin(principal, "Only administrators can adjust credits")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
        raise ValidationError("Adjustment amount must be a non-zero integer")
    if not reason or not reason.strip():
        raise ValidationError("A reason is required for credit adjustments")

    result = await db.execute(
        select(User.user_id).where(User.user_id == target_user_id)
    )
    if result.scalar_one_or_none() is None:
        raise NotFound("User not found")

    description = f"Admin adjustment: {reason.strip()}"
    primitive = grant_credits if amount > 0 else spend_credits
    entry = await primitive(
        db,
        target_user_id,
        abs(amount),
        ADMIN_ADJUSTMENT_TXN,
        description,
        reference_id=principal.user_id,
        reference_type="admin_operation",
        created_by=principal.user_id,
    )
    log.info(
        "credits_adjusted",
        admin_id=str(principal.user_id),
        user_id=str(target_user_id),
        amount=amount,
    )
    return entry
