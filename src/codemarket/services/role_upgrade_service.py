"""Role-upgrade requests: submission, admin review, cancellation, listing."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from codemarket.errors import Conflict, NotFound, ValidationError
from codemarket.models import RoleUpgradeRequest, User
from codemarket.models.role_upgrade import REQUEST_STATUSES
from codemarket.models.user import ROLE_RANK
from codemarket.services.audit_logger import audit
from codemarket.services.principal import Principal, require_admin

log = structlog.get_logger()

DECISIONS = ("approved", "rejected")


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class CreateRoleUpgradeRequest(BaseModel):
    to_role: str
    reason: str
    experience: Optional[str] = None
    portfolio_url: Optional[str] = None
    github_url: Optional[str] = None


class ReviewRoleUpgradeRequest(BaseModel):
    decision: str
    comment: Optional[str] = None


class RoleUpgradeResponse(BaseModel):
    request_id: uuid.UUID
    user_id: uuid.UUID
    from_role: str
    to_role: str
    status: str
    reason: str
    experience: Optional[str] = None
    portfolio_url: Optional[str] = None
    github_url: Optional[str] = None
    admin_comment: Optional[str] = None
    reviewed_by: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _load_request(db: AsyncSession, request_id: uuid.UUID) -> RoleUpgradeRequest:
    result = await db.execute(
        select(RoleUpgradeRequest)
        .where(RoleUpgradeRequest.request_id == request_id)
        .execution_options(populate_existing=True)
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFound("Role upgrade request not found")
    return request


async def _current_role(db: AsyncSession, user_id: uuid.UUID) -> str:
    result = await db.execute(select(User.role).where(User.user_id == user_id))
    role = result.scalar_one_or_none()
    if role is None:
        raise NotFound("User not found")
    return role


async def _has_pending_request(db: AsyncSession, user_id: uuid.UUID, to_role: str) -> bool:
    result = await db.execute(
        select(
            exists().where(
                RoleUpgradeRequest.user_id == user_id,
                RoleUpgradeRequest.to_role == to_role,
                RoleUpgradeRequest.status == "pending",
            )
        )
    )
    return bool(result.scalar())


def _duplicate_pending() -> Conflict:
    return Conflict(
        "You already have a pending request for this role",
        code="DUPLICATE_PENDING_REQUEST",
    )


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def create_request(
    db: AsyncSession,
    principal: Principal,
    to_role: str,
    reason: str,
    experience: Optional[str] = None,
    portfolio_url: Optional[str] = None,
    github_url: Optional[str] = None,
) -> RoleUpgradeResponse:
    if to_role not in ROLE_RANK:
        raise ValidationError(f"Unknown role '{to_role}'")
    if not reason or not reason.strip():
        raise ValidationError("A reason is required")

    from_role = await _current_role(db, principal.user_id)
    if ROLE_RANK[to_role] <= ROLE_RANK[from_role]:
        raise ValidationError(f"Cannot request '{to_role}' while holding '{from_role}'")

    if await _has_pending_request(db, principal.user_id, to_role):
        raise _duplicate_pending()

    request = RoleUpgradeRequest(
        request_id=uuid.uuid4(),
        user_id=principal.user_id,
        from_role=from_role,
        to_role=to_role,
        status="pending",
        reason=reason.strip(),
        experience=experience,
        portfolio_url=portfolio_url,
        github_url=github_url,
        created_at=datetime.now(timezone.utc),
    )
    db.add(request)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent submission won the partial unique index.
        raise _duplicate_pending()

    log.info(
        "role_upgrade_requested",
        request_id=str(request.request_id),
        user_id=str(principal.user_id),
        to_role=to_role,
    )
    return RoleUpgradeResponse.model_validate(request)


async def review_request(
    db: AsyncSession,
    principal: Principal,
    request_id: uuid.UUID,
    decision: str,
    comment: Optional[str] = None,
) -> RoleUpgradeResponse:
    """Approve or reject a pending request. Approval raises the user's role."""
    require_admin(principal, "Only administrators can review role upgrades")
    if decision not in DECISIONS:
        raise ValidationError("decision must be 'approved' or 'rejected'")

    result = await db.execute(
        update(RoleUpgradeRequest)
        .where(
            RoleUpgradeRequest.request_id == request_id,
            RoleUpgradeRequest.status == "pending",
        )
        .values(
            status=decision,
            admin_comment=comment,
            reviewed_by=principal.user_id,
            reviewed_at=datetime.now(timezone.utc),
        )
        .returning(RoleUpgradeRequest.user_id, RoleUpgradeRequest.to_role)
        .execution_options(synchronize_session=False)
    )
    row = result.one_or_none()
    if row is None:
        # Distinguishes a missing request from one already decided.
        await _load_request(db, request_id)
        raise Conflict("This request has already been reviewed", code="REQUEST_ALREADY_REVIEWED")

    user_id, to_role = row[0], row[1]
    if decision == "approved":
        # Only ever upward: an admin who files a stale seller request stays admin.
        current = await _current_role(db, user_id)
        if ROLE_RANK[to_role] > ROLE_RANK[current]:
            await db.execute(
                update(User)
                .where(User.user_id == user_id)
                .values(role=to_role, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )

    audit.log_role_review(principal.user_id, request_id, user_id, to_role, decision)
    return RoleUpgradeResponse.model_validate(await _load_request(db, request_id))


async def cancel_request(
    db: AsyncSession,
    principal: Principal,
    request_id: uuid.UUID,
) -> None:
    """Withdraw one's own pending request."""
    request = await _load_request(db, request_id)
    if request.user_id != principal.user_id:
        raise NotFound("Role upgrade request not found")
    if request.status != "pending":
        raise Conflict("Only pending requests can be cancelled", code="REQUEST_ALREADY_REVIEWED")
    await db.delete(request)
    await db.flush()


async def list_my_requests(
    db: AsyncSession,
    principal: Principal,
) -> list[RoleUpgradeResponse]:
    result = await db.execute(
        select(RoleUpgradeRequest)
        .where(RoleUpgradeRequest.user_id == principal.user_id)
        .order_by(RoleUpgradeRequest.created_at.desc())
        .execution_options(populate_existing=True)
    )
    return [RoleUpgradeResponse.model_validate(r) for r in result.scalars()]


async def list_requests(
    db: AsyncSession,
    principal: Principal,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[RoleUpgradeResponse]:
    require_admin(principal)
    stmt = select(RoleUpgradeRequest)
    if status is not None:
        if status not in REQUEST_STATUSES:
            raise ValidationError(f"Unknown status '{status}'")
        stmt = stmt.where(RoleUpgradeRequest.status == status)
    result = await db.execute(
        stmt.order_by(RoleUpgradeRequest.created_at.desc())
        .limit(min(max(limit, 1), 100))
        .offset(max(offset, 0))
        .execution_options(populate_existing=True)
    )
    return [RoleUpgradeResponse.model_validate(r) for r in result.scalars()]


async def count_pending(db: AsyncSession, principal: Principal) -> int:
    require_admin(principal)
    result = await db.execute(
        select(func.count(RoleUpgradeRequest.request_id)).where(
            RoleUpgradeRequest.status == "pending"
        )
    )
    return result.scalar_one()
