"""Reward rules: registration, upload, review, daily sign-in and referral bonuses.

Amounts are resolved from the credit config store at the moment of the
event.  A resolved amount of 0 disables the reward and nothing is written.
Each reward is granted at most once per triggering event.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.errors import Conflict, ValidationError
from codemarket.models import CreditTransaction
from codemarket.services.credit_config_service import (
    DAILY_SIGNIN_BONUS,
    DOCKER_MULTIPLIER,
    REFERRAL_BONUS,
    REGISTER_BONUS,
    REVIEW_BONUS,
    UPLOAD_BONUS,
    get_config,
)
from codemarket.services.credit_service import LedgerEntry, grant_credits, lock_account

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _already_granted(db: AsyncSession, user_id: uuid.UUID, *conditions) -> bool:
    result = await db.execute(
        select(
            exists().where(CreditTransaction.user_id == user_id, *conditions)
        )
    )
    return bool(result.scalar())


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def grant_registration_bonus(
    db: AsyncSession,
    user_id: uuid.UUID,
) -> Optional[LedgerEntry]:
    amount = await get_config(db, REGISTER_BONUS)
    if amount == 0:
        return None

    await lock_account(db, user_id)
    if await _already_granted(db, user_id, CreditTransaction.txn_type == "register_bonus"):
        log.info("registration_bonus_skipped", user_id=str(user_id))
        return None

    return await grant_credits(
        db, user_id, amount, "register_bonus", "Registration bonus",
        reference_id=user_id, reference_type="user",
    )


async def grant_upload_bonus(
    db: AsyncSession,
    seller_id: uuid.UUID,
    project_id: uuid.UUID,
    is_dockerized: bool = False,
) -> Optional[LedgerEntry]:
    """Reward a seller whose project passed review.

    Dockerized projects earn ``upload_bonus * docker_multiplier`` recorded as
    ``docker_bonus``.
    """
    amount = await get_config(db, UPLOAD_BONUS)
    txn_type = "upload_bonus"
    description = "Project approved bonus"
    if is_dockerized:
        amount *= await get_config(db, DOCKER_MULTIPLIER)
        txn_type = "docker_bonus"
        description = "Dockerized project approved bonus"
    if amount == 0:
        return None

    await lock_account(db, seller_id)
    if await _already_granted(
        db,
        seller_id,
        CreditTransaction.txn_type.in_(("upload_bonus", "docker_bonus")),
        CreditTransaction.reference_id == project_id,
    ):
        log.info("upload_bonus_skipped", seller_id=str(seller_id), project_id=str(project_id))
        return None

    return await grant_credits(
        db, seller_id, amount, txn_type, description,
        reference_id=project_id, reference_type="project",
    )


async def grant_review_bonus(
    db: AsyncSession,
    user_id: uuid.UUID,
    project_id: uuid.UUID,
) -> Optional[LedgerEntry]:
    amount = await get_config(db, REVIEW_BONUS)
    if amount == 0:
        return None

    await lock_account(db, user_id)
    if await _already_granted(
        db,
        user_id,
        CreditTransaction.txn_type == "review_bonus",
        CreditTransaction.reference_id == project_id,
    ):
        return None

    return await grant_credits(
        db, user_id, amount, "review_bonus", "Project review bonus",
        reference_id=project_id, reference_type="project",
    )


async def grant_daily_signin(
    db: AsyncSession,
    user_id: uuid.UUID,
) -> Optional[LedgerEntry]:
    """Once per UTC day. A repeat on the same day is a Conflict."""
    amount = await get_config(db, DAILY_SIGNIN_BONUS)
    if amount == 0:
        return None

    await lock_account(db, user_id)
    today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    if await _already_granted(
        db,
        user_id,
        CreditTransaction.txn_type == "daily_signin",
        CreditTransaction.created_at >= today,
    ):
        raise Conflict("Already signed in today", code="ALREADY_SIGNED_IN")

    return await grant_credits(
        db, user_id, amount, "daily_signin", "Daily sign-in bonus",
    )


async def grant_referral_bonus(
    db: AsyncSession,
    referrer_id: uuid.UUID,
    referred_user_id: uuid.UUID,
) -> Optional[LedgerEntry]:
    if referrer_id == referred_user_id:
        raise ValidationError("Users cannot refer themselves")

    amount = await get_config(db, REFERRAL_BONUS)
    if amount == 0:
        return None

    await lock_account(db, referrer_id)
    # Any referrer counts: a referred user pays out only once.
    result = await db.execute(
        select(
            exists().where(
                CreditTransaction.txn_type == "referral_bonus",
                CreditTransaction.reference_id == referred_user_id,
            )
        )
    )
    if result.scalar():
        return None

    return await grant_credits(
        db, referrer_id, amount, "referral_bonus", "Referral bonus",
        reference_id=referred_user_id, reference_type="user",
    )
