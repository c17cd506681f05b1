"""Download entitlement derived from completed orders."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from pydantic import BaseModel
from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.errors import NotFound, PermissionDenied, ValidationError
from codemarket.models import Order, OrderDownload, Project
from codemarket.services.principal import Principal

log = structlog.get_logger()


class EntitlementResponse(BaseModel):
    project_id: uuid.UUID
    has_purchased: bool


class RecordDownloadRequest(BaseModel):
    file_name: str


class DownloadResponse(BaseModel):
    download_id: uuid.UUID
    order_id: uuid.UUID
    project_id: uuid.UUID
    file_name: str
    downloaded_at: datetime

    model_config = {"from_attributes": True}


async def has_user_purchased(
    db: AsyncSession,
    user_id: uuid.UUID,
    project_id: uuid.UUID,
) -> bool:
    """True if *user_id* sells the project or holds a completed order for it.

    Always answered from the store, so a purchase settled moments ago is
    visible immediately.
    """
    result = await db.execute(
        select(
            or_(
                exists().where(
                    Project.project_id == project_id,
                    Project.seller_id == user_id,
                ),
                exists().where(
                    Order.buyer_id == user_id,
                    Order.project_id == project_id,
                    Order.status == "completed",
                ),
            )
        )
    )
    return bool(result.scalar())


async def record_download(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID,
    file_name: str,
) -> uuid.UUID:
    if not file_name or not file_name.strip():
        raise ValidationError("file_name is required")

    result = await db.execute(
        select(Order.order_id)
        .where(
            Order.buyer_id == principal.user_id,
            Order.project_id == project_id,
            Order.status == "completed",
        )
        .order_by(Order.completed_at.desc())
        .limit(1)
    )
    order_id = result.scalar_one_or_none()
    if order_id is None:
        raise PermissionDenied("You have not purchased this project")

    download = OrderDownload(
        download_id=uuid.uuid4(),
        order_id=order_id,
        user_id=principal.user_id,
        project_id=project_id,
        file_name=file_name.strip(),
        downloaded_at=datetime.now(timezone.utc),
    )
    db.add(download)
    await db.flush()

    log.info(
        "download_recorded",
        user_id=str(principal.user_id),
        project_id=str(project_id),
        file_name=download.file_name,
    )
    return download.download_id


async def list_downloads(
    db: AsyncSession,
    principal: Principal,
    order_id: uuid.UUID,
) -> list[DownloadResponse]:
    result = await db.execute(select(Order.buyer_id).where(Order.order_id == order_id))
    buyer_id = result.scalar_one_or_none()
    if buyer_id is None or (buyer_id != principal.user_id and not principal.is_admin):
        raise NotFound("Order not found")

    result = await db.execute(
        select(OrderDownload)
        .where(OrderDownload.order_id == order_id)
        .order_by(OrderDownload.downloaded_at.desc())
    )
    return [DownloadResponse.model_validate(d) for d in result.scalars()]
