"""Catalog, order, and download-entitlement models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
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


PROJECT_STATUSES = ("draft", "pending_review", "approved", "rejected", "archived")
ORDER_STATUSES = ("pending", "completed", "cancelled")
PAYMENT_METHODS = ("credits",)


class Project(Base):
    """Catalog record. Settlement only relies on seller, price, and status."""

    __tablename__ = "projects"

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)
    is_dockerized: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    download_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_project_price_positive"),
        CheckConstraint(
            "status IN ('draft', 'pending_review', 'approved', 'rejected', 'archived')",
            name="ck_project_status",
        ),
    )

    seller: Mapped[User] = relationship(back_populates="projects")
    orders: Mapped[list[Order]] = relationship(back_populates="project", lazy="raise")


class Order(Base):
    __tablename__ = "orders"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    seller_proceeds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payment_method: Mapped[str] = mapped_column(
        String(20), default="credits", nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    payment_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True
    )
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_order_amount_positive"),
        CheckConstraint(
            "platform_fee >= 0 AND seller_proceeds >= 0",
            name="ck_order_split_non_negative",
        ),
        CheckConstraint(
            "status <> 'completed' OR amount = platform_fee + seller_proceeds",
            name="ck_order_fee_split",
        ),
        CheckConstraint("buyer_id <> seller_id", name="ck_order_no_self_purchase"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled')",
            name="ck_order_status",
        ),
        CheckConstraint("payment_method IN ('credits')", name="ck_order_payment_method"),
        Index("idx_orders_buyer_project", "buyer_id", "project_id", "status"),
        Index("idx_orders_seller", "seller_id", "created_at"),
    )

    buyer: Mapped[User] = relationship(
        foreign_keys=[buyer_id], back_populates="purchases", lazy="raise"
    )
    seller: Mapped[User] = relationship(
        foreign_keys=[seller_id], back_populates="sales", lazy="raise"
    )
    project: Mapped[Project] = relationship(back_populates="orders", lazy="raise")
    downloads: Mapped[list[OrderDownload]] = relationship(
        back_populates="order", lazy="raise"
    )


class OrderDownload(Base):
    __tablename__ = "order_downloads"

    download_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.order_id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.project_id", ondelete="CASCADE"), nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    downloaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    order: Mapped[Order] = relationship(back_populates="downloads")
