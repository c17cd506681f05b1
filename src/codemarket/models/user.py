"""User profile model -- mirror of the identity provider's user plus role."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from codemarket.models.base import Base, utcnow

if TYPE_CHECKING:
    from codemarket.models.credit import CreditTransaction, UserCredits
    from codemarket.models.marketplace import Order, Project
    from codemarket.models.role_upgrade import RoleUpgradeRequest


ROLES = ("buyer", "seller", "admin")

# Higher rank includes the privileges of the lower ones.
ROLE_RANK = {"buyer": 0, "seller": 1, "admin": 2}


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="buyer", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=utcnow, nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('buyer', 'seller', 'admin')", name="ck_users_role"
        ),
    )

    # Relationships (collections are never loaded implicitly in async code)
    credit_account: Mapped[Optional[UserCredits]] = relationship(
        back_populates="user", lazy="selectin", uselist=False
    )
    credit_transactions: Mapped[list[CreditTransaction]] = relationship(
        foreign_keys="CreditTransaction.user_id", back_populates="user", lazy="raise"
    )
    projects: Mapped[list[Project]] = relationship(
        back_populates="seller", lazy="raise"
    )
    purchases: Mapped[list[Order]] = relationship(
        foreign_keys="Order.buyer_id", back_populates="buyer", lazy="raise"
    )
    sales: Mapped[list[Order]] = relationship(
        foreign_keys="Order.seller_id", back_populates="seller", lazy="raise"
    )
    role_upgrade_requests: Mapped[list[RoleUpgradeRequest]] = relationship(
        foreign_keys="RoleUpgradeRequest.user_id", back_populates="user", lazy="raise"
    )
