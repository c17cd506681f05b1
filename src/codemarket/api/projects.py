"""Project entitlement and download-log endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.api.dependencies import get_current_principal
from codemarket.database import get_db
from codemarket.services.entitlement_service import (
    DownloadResponse,
    EntitlementResponse,
    RecordDownloadRequest,
    has_user_purchased,
    list_downloads,
    record_download,
)
from codemarket.services.principal import Principal

router = APIRouter(prefix="/api/v1", tags=["projects"])


@router.get("/projects/{project_id}/entitlement", response_model=EntitlementResponse)
async def read_entitlement(
    project_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    purchased = await has_user_purchased(db, principal.user_id, project_id)
    return EntitlementResponse(project_id=project_id, has_purchased=purchased)


@router.post("/projects/{project_id}/downloads", status_code=status.HTTP_201_CREATED)
async def create_download(
    project_id: UUID,
    body: RecordDownloadRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    download_id = await record_download(db, principal, project_id, body.file_name)
    await db.commit()
    return {"download_id": str(download_id)}


@router.get("/orders/{order_id}/downloads", response_model=list[DownloadResponse])
async def read_downloads(
    order_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await list_downloads(db, principal, order_id)
