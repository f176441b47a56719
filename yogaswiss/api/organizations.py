"""
Organization and membership endpoints.
"""

from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.organization import ROLE_PERMISSIONS, Permission
from ..models.user import User
from ..schemas.organization import (
    MemberCreate,
    MemberResponse,
    MembershipSummary,
    MemberUpdate,
    OrganizationCreate,
    OrganizationResponse,
    OrganizationUpdate,
)
from ..services.organization_service import OrganizationService
from ..utils.dependencies import OrgContext, get_current_user, get_org_context, require_permission

router = APIRouter(prefix="/orgs", tags=["organizations"])


def _summary(org, member) -> MembershipSummary:
    return MembershipSummary(
        organization=OrganizationResponse.model_validate(org),
        role=member.role,
        permissions=sorted(p.value for p in ROLE_PERMISSIONS.get(member.role, ())),
    )


@router.post("", response_model=MembershipSummary, status_code=status.HTTP_201_CREATED)
async def create_organization(
    data: OrganizationCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """Create a studio; the caller becomes its owner."""
    org, member = await OrganizationService(db).create_organization(current_user, data)
    return _summary(org, member)


@router.get("", response_model=List[MembershipSummary])
async def list_my_organizations(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> Any:
    pairs = await OrganizationService(db).list_user_organizations(current_user.id)
    return [_summary(org, member) for org, member in pairs]


@router.get("/current", response_model=MembershipSummary)
async def get_current_organization(ctx: OrgContext = Depends(get_org_context)) -> Any:
    return _summary(ctx.org, ctx.member)


@router.patch("/current", response_model=OrganizationResponse)
async def update_current_organization(
    data: OrganizationUpdate,
    ctx: OrgContext = Depends(require_permission(Permission.SETTINGS)),
    db: AsyncSession = Depends(get_db)
) -> Any:
    org = await OrganizationService(db).update_organization(ctx.org, data)
    return OrganizationResponse.model_validate(org)


@router.get("/current/members", response_model=List[MemberResponse])
async def list_members(
    ctx: OrgContext = Depends(require_permission(Permission.USER_MANAGEMENT)),
    db: AsyncSession = Depends(get_db)
) -> Any:
    members = await OrganizationService(db).list_members(ctx.org_id)
    return [MemberResponse.model_validate(m) for m in members]


@router.post("/current/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    data: MemberCreate,
    ctx: OrgContext = Depends(require_permission(Permission.USER_MANAGEMENT)),
    db: AsyncSession = Depends(get_db)
) -> Any:
    """
    Add an existing user to the organization with a role.

    Raises:
        UserNotFoundError: No account with that email
        ValidationError: Already a member
    """
    member = await OrganizationService(db).add_member(ctx.org, data)
    return MemberResponse.model_validate(member)


@router.patch("/current/members/{member_id}", response_model=MemberResponse)
async def update_member(
    member_id: UUID,
    data: MemberUpdate,
    ctx: OrgContext = Depends(require_permission(Permission.USER_MANAGEMENT)),
    db: AsyncSession = Depends(get_db)
) -> Any:
    member = await OrganizationService(db).update_member(ctx.org_id, member_id, data)
    return MemberResponse.model_validate(member)
