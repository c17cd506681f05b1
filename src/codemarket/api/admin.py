"""Admin endpoints -- credit configs, manual adjustments, reconciliation,
project approval and role-upgrade review."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.api.dependencies import get_current_principal
from codemarket.database import get_db
from codemarket.services.catalog_service import ApprovalResponse, approve_project
from codemarket.services.credit_config_service import (
    CreditConfigResponse,
    UpdateConfigsRequest,
    list_configs,
    update_configs,
)
from codemarket.services.credit_events import credit_events
from codemarket.services.credit_service import (
    AdminAdjustRequest,
    LedgerDiscrepancy,
    LedgerEntry,
    admin_adjust_credits,
    find_ledger_discrepancies,
)
from codemarket.services.principal import Principal, require_admin
from codemarket.services.role_upgrade_service import (
    ReviewRoleUpgradeRequest,
    RoleUpgradeResponse,
    count_pending,
    list_requests,
    review_request,
)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Credit configs
# ---------------------------------------------------------------------------

@router.get("/credit-configs", response_model=list[CreditConfigResponse])
async def read_configs(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    require_admin(principal)
    return await list_configs(db)


@router.put("/credit-configs", response_model=list[CreditConfigResponse])
async def write_configs(
    body: UpdateConfigsRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    updated = await update_configs(db, principal, body.configs)
    await db.commit()
    return updated


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

@router.post("/credits/adjust", response_model=LedgerEntry)
async def adjust_credits(
    body: AdminAdjustRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    entry = await admin_adjust_credits(db, principal, body.user_id, body.amount, body.reason)
    await db.commit()
    await credit_events.publish_entries([entry], reference_id=principal.user_id)
    return entry


@router.get("/credits/reconcile", response_model=list[LedgerDiscrepancy])
async def reconcile(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Accounts whose balance does not match their transaction history."""
    require_admin(principal)
    return await find_ledger_discrepancies(db)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

@router.post("/projects/{project_id}/approve", response_model=ApprovalResponse)
async def approve(
    project_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    approval = await approve_project(db, principal, project_id)
    await db.commit()
    await credit_events.publish_entries([approval.ledger_entry], reference_id=project_id)
    return approval


# ---------------------------------------------------------------------------
# Role upgrades
# ---------------------------------------------------------------------------

@router.get("/role-upgrades", response_model=list[RoleUpgradeResponse])
async def read_role_upgrades(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await list_requests(db, principal, status, limit, offset)


@router.get("/role-upgrades/pending-count")
async def read_pending_count(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return {"pending": await count_pending(db, principal)}


@router.post("/role-upgrades/{request_id}/review", response_model=RoleUpgradeResponse)
async def review_role_upgrade(
    request_id: UUID,
    body: ReviewRoleUpgradeRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    reviewed = await review_request(db, principal, request_id, body.decision, body.comment)
    await db.commit()
    return reviewed
