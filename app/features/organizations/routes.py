"""
Organization feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.organizations.models import Organization, Member, MemberRole
from app.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationResponse,
    MemberCreate,
    MemberResponse,
    MemberRoleUpdate,
)
from app.features.organizations.dependencies import (
    get_organization_by_id,
    get_current_member,
    get_member,
)
from app.features.permissions.dependencies import require_org_admin
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])


@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new organization (admin only)."""
    result = await db.execute(select(Organization).where(Organization.slug == org_data.slug))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Organization with this slug already exists"
        )
    
    organization = Organization(name=org_data.name, slug=org_data.slug)
    db.add(organization)
    await db.flush()
    
    if org_data.owner_user_id:
        db.add(Member(
            user_id=org_data.owner_user_id,
            organization_id=organization.id,
            role=MemberRole.OWNER.value
        ))
    
    await db.commit()
    await db.refresh(organization)
    return organization


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _member: Annotated[Member, Depends(get_current_member)]
):
    """Get an organization the current user belongs to."""
    return organization


@router.get("/{organization_id}/members", response_model=list[MemberResponse])
async def list_members(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _member: Annotated[Member, Depends(get_current_member)]
):
    """List members of an organization."""
    return organization.members


@router.post(
    "/{organization_id}/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_member(
    data: MemberCreate,
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    _admin: Annotated[User, Depends(require_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Add a user to the organization (org owner/admin or global admin)."""
    if await get_member(db, data.user_id, organization.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User is already a member of this organization"
        )
    
    member = Member(user_id=data.user_id, organization_id=organization.id, role=data.role.value)
    db.add(member)
    await db.commit()
    await db.refresh(member)
    return member


async def _get_organization_member(db: AsyncSession, organization_id: str, member_id: str) -> Member:
    member = await db.get(Member, member_id)
    if member is None or member.organization_id != organization_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Member not found"
        )
    return member


@router.patch("/{organization_id}/members/{member_id}", response_model=MemberResponse)
async def update_member_role(
    organization_id: str,
    member_id: str,
    data: MemberRoleUpdate,
    admin: Annotated[User, Depends(require_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change a member's tier between admin and member. Owners are left alone."""
    admin_id = admin.id
    member = await _get_organization_member(db, organization_id, member_id)
    
    if member.user_id == admin_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot change your own role"
        )
    if member.role == MemberRole.OWNER.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change the role of an owner"
        )
    
    member.role = data.role
    await db.commit()
    await db.refresh(member)
    log.info("User %s set role of member %s to %s", admin_id, member_id, data.role)
    return member


@router.delete("/{organization_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    organization_id: str,
    member_id: str,
    admin: Annotated[User, Depends(require_org_admin)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remove a member; their module role assignments go with them."""
    admin_id = admin.id
    member = await _get_organization_member(db, organization_id, member_id)
    
    if member.user_id == admin_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot remove yourself from the organization"
        )
    if member.role == MemberRole.OWNER.value:
        result = await db.execute(
            select(func.count()).select_from(Member).where(
                Member.organization_id == organization_id,
                Member.role == MemberRole.OWNER.value
            )
        )
        if result.scalar_one() <= 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot remove the last owner of the organization"
            )
    
    await db.execute(delete(Member).where(Member.id == member_id))
    await db.commit()
    log.info("User %s removed member %s from organization %s", admin_id, member_id, organization_id)
    return None
