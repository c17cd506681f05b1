"""Credit config store -- admin-tunable reward amounts, always read fresh."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.errors import CreditConfigMissing, NotFound, ValidationError
from codemarket.models import CreditConfig
from codemarket.services.audit_logger import audit
from codemarket.services.principal import Principal, require_admin

log = structlog.get_logger()


REGISTER_BONUS = "register_bonus"
UPLOAD_BONUS = "upload_bonus"
DOCKER_MULTIPLIER = "docker_multiplier"
REVIEW_BONUS = "review_bonus"
DAILY_SIGNIN_BONUS = "daily_signin_bonus"
REFERRAL_BONUS = "referral_bonus"
MIN_PURCHASE_AMOUNT = "min_purchase_amount"
MAX_DAILY_EARN = "max_daily_earn"
PLATFORM_FEE_PERCENT = "platform_fee_percent"


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class CreditConfigResponse(BaseModel):
    config_key: str
    config_value: int
    description: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UpdateConfigsRequest(BaseModel):
    configs: dict[str, int]


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def get_config(db: AsyncSession, key: str) -> int:
    """Return the active value for *key*.

    Raises CreditConfigMissing for unknown or inactive keys; reward
    computations must never run on a guessed default.
    """
    result = await db.execute(
        select(CreditConfig.config_value).where(
            CreditConfig.config_key == key,
            CreditConfig.is_active.is_(True),
        )
    )
    value = result.scalar_one_or_none()
    if value is None:
        log.error("credit_config_missing", config_key=key)
        raise CreditConfigMissing(f"Credit config '{key}' is not configured")
    return value


async def list_configs(db: AsyncSession) -> list[CreditConfigResponse]:
    result = await db.execute(
        select(CreditConfig)
        .where(CreditConfig.is_active.is_(True))
        .order_by(CreditConfig.config_key)
    )
    return [CreditConfigResponse.model_validate(row) for row in result.scalars()]


def _validate_value(key: str, value) -> int:
    # bool is an int subclass; True must not sneak in as 1.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Value for '{key}' must be an integer")
    if value < 0:
        raise ValidationError(f"Value for '{key}' must not be negative")
    return value


async def update_config(
    db: AsyncSession,
    principal: Principal,
    key: str,
    value: int,
) -> CreditConfigResponse:
    """Set a single config value. Admin only."""
    require_admin(principal, "Only administrators can change credit configs")
    value = _validate_value(key, value)

    result = await db.execute(
        select(CreditConfig).where(CreditConfig.config_key == key)
    )
    config = result.scalar_one_or_none()
    if config is None:
        raise NotFound(f"Credit config '{key}' does not exist")

    old_value = config.config_value
    config.config_value = value
    config.updated_at = datetime.now(timezone.utc)
    await db.flush()

    audit.log_config_change(principal.user_id, key, old_value, value)
    return CreditConfigResponse.model_validate(config)


async def update_configs(
    db: AsyncSession,
    principal: Principal,
    values: dict[str, int],
) -> list[CreditConfigResponse]:
    """Batch update. Every entry is validated before anything is written."""
    require_admin(principal, "Only administrators can change credit configs")
    if not values:
        raise ValidationError("At least one config value is required")
    for key, value in values.items():
        _validate_value(key, value)

    result = await db.execute(
        select(CreditConfig.config_key).where(CreditConfig.config_key.in_(values))
    )
    known = set(result.scalars())
    missing = sorted(set(values) - known)
    if missing:
        raise NotFound(f"Unknown credit config: {', '.join(missing)}")

    return [
        await update_config(db, principal, key, value)
        for key, value in sorted(values.items())
    ]
