"""
Organization-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.dependencies import get_current_user
from app.features.organizations.models import Organization, Member


async def get_organization_by_id(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get organization by ID or raise 404.
    """
    result = await db.execute(
        select(Organization).where(Organization.id == organization_id)
    )
    organization = result.scalar_one_or_none()
    
    if organization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found"
        )
    
    return organization


async def get_member(db: AsyncSession, user_id: str, organization_id: str) -> Member | None:
    """Membership of a user in an organization, if any."""
    result = await db.execute(
        select(Member).where(
            Member.user_id == user_id,
            Member.organization_id == organization_id
        )
    )
    return result.scalar_one_or_none()


async def get_current_member(
    organization: Annotated[Organization, Depends(get_organization_by_id)],
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Member:
    """
    Get the current user's membership in the organization from the path.
    
    Raises:
        HTTPException: 404 if org not found or 403 if user not a member
    """
    member = await get_member(db, user.id, organization.id)
    
    if member is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this organization"
        )
    
    return member
