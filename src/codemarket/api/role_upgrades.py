"""Role-upgrade submission endpoints -- /api/v1/role-upgrades/*."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.api.dependencies import get_current_principal
from codemarket.database import get_db
from codemarket.services.principal import Principal
from codemarket.services.role_upgrade_service import (
    CreateRoleUpgradeRequest,
    RoleUpgradeResponse,
    cancel_request,
    create_request,
    list_my_requests,
)

router = APIRouter(prefix="/api/v1/role-upgrades", tags=["role-upgrades"])


@router.post("", response_model=RoleUpgradeResponse, status_code=status.HTTP_201_CREATED)
async def submit(
    body: CreateRoleUpgradeRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    request = await create_request(
        db,
        principal,
        body.to_role,
        body.reason,
        experience=body.experience,
        portfolio_url=body.portfolio_url,
        github_url=body.github_url,
    )
    await db.commit()
    return request


@router.get("/mine", response_model=list[RoleUpgradeResponse])
async def read_mine(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await list_my_requests(db, principal)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def withdraw(
    request_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    await cancel_request(db, principal, request_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
