"""Catalog contract used by settlement: the sale view of a project and approval."""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.errors import Conflict, DailyEarnLimitExceeded, NotFound
from codemarket.models import Project
from codemarket.services.credit_service import LedgerEntry
from codemarket.services.principal import Principal, require_admin
from codemarket.services.reward_service import grant_upload_bonus

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class ProjectForSale(BaseModel):
    project_id: uuid.UUID
    seller_id: uuid.UUID
    title: str
    price: int
    status: str
    is_dockerized: bool

    model_config = {"from_attributes": True}


class ApprovalResponse(BaseModel):
    project_id: uuid.UUID
    status: str
    upload_bonus: int
    ledger_entry: Optional[LedgerEntry] = Field(None, exclude=True)


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def get_project_for_sale(db: AsyncSession, project_id: uuid.UUID) -> ProjectForSale:
    result = await db.execute(
        select(Project)
        .where(Project.project_id == project_id)
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()
    if project is None:
        raise NotFound("Project not found")
    return ProjectForSale.model_validate(project)


async def approve_project(
    db: AsyncSession,
    principal: Principal,
    project_id: uuid.UUID,
) -> ApprovalResponse:
    """Move a project from pending_review to approved and reward its seller."""
    require_admin(principal, "Only administrators can approve projects")

    result = await db.execute(
        update(Project)
        .where(Project.project_id == project_id, Project.status == "pending_review")
        .values(status="approved")
        .returning(Project.seller_id, Project.is_dockerized)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        project = await get_project_for_sale(db, project_id)
        raise Conflict(
            f"Project cannot be approved from status '{project.status}'",
            code="INVALID_PROJECT_STATUS",
        )

    seller_id, is_dockerized = row[0], row[1]
    try:
        entry = await grant_upload_bonus(db, seller_id, project_id, is_dockerized)
    except DailyEarnLimitExceeded:
        # The approval stands; only the reward is forfeited.
        log.warning("upload_bonus_capped", seller_id=str(seller_id), project_id=str(project_id))
        entry = None
    log.info(
        "project_approved",
        project_id=str(project_id),
        admin_id=str(principal.user_id),
        upload_bonus=entry.amount if entry else 0,
    )
    return ApprovalResponse(
        project_id=project_id,
        status="approved",
        upload_bonus=entry.amount if entry else 0,
        ledger_entry=entry,
    )
