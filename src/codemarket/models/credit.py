"""Credit ledger models: balances, the append-only transaction log, and configs."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from codemarket.models.base import Base, utcnow

if TYPE_CHECKING:
    from codemarket.models.user import User


# Earning types count towards the max_daily_earn cap.
EARN_TXN_TYPES = (
    "register_bonus",
    "upload_bonus",
    "docker_bonus",
    "review_bonus",
    "daily_signin",
    "referral_bonus",
)
PURCHASE_TXN = "purchase"
SALE_TXN = "sale"
ADMIN_ADJUSTMENT_TXN = "admin_adjustment"

TXN_TYPES = EARN_TXN_TYPES + (PURCHASE_TXN, SALE_TXN, ADMIN_ADJUSTMENT_TXN)


def _sql_in(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{v}'" for v in values)


class UserCredits(Base):
    __tablename__ = "user_credits"

    account_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="CASCADE"),
        unique=True, nullable=False,
    )
    available_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "available_credits >= 0", name="ck_user_credits_non_negative"
        ),
        CheckConstraint("total_earned >= 0", name="ck_user_credits_earned_non_negative"),
    )

    user: Mapped[User] = relationship(back_populates="credit_account")


class CreditTransaction(Base):
    """Append-only. UPDATE/DELETE are rejected by a trigger in PostgreSQL."""

    __tablename__ = "credit_transactions"

    txn_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    txn_type: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reference_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    reference_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.user_id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_credit_txn_amount_nonzero"),
        CheckConstraint(
            f"txn_type IN ({_sql_in(TXN_TYPES)})",
            name="ck_credit_txn_type",
        ),
        Index("idx_credit_txn_user_created", "user_id", "created_at"),
        Index("idx_credit_txn_reference", "reference_id", "txn_type"),
    )

    user: Mapped[User] = relationship(
        foreign_keys=[user_id], back_populates="credit_transactions"
    )


class CreditConfig(Base):
    __tablename__ = "credit_configs"

    config_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    config_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    config_value: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("config_value >= 0", name="ck_credit_config_non_negative"),
    )
