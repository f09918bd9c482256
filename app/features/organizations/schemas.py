"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, ConfigDict, Field

from app.features.organizations.models import MemberRole


class OrganizationCreate(BaseModel):
    """Schema for creating a new organization (admin only)."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100, pattern="^[a-z0-9-]+$")
    owner_user_id: str | None = Field(None, description="User that becomes the organization owner")


class OrganizationResponse(BaseModel):
    """Schema for organization responses."""
    id: str
    name: str
    slug: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
    
    model_config = ConfigDict(from_attributes=True)


class MemberCreate(BaseModel):
    """Schema for adding a user to an organization."""
    user_id: str
    role: MemberRole = MemberRole.MEMBER


class MemberResponse(BaseModel):
    """Schema for member responses."""
    id: str
    user_id: str
    organization_id: str
    role: str
    joined_at: datetime
    
    model_config = ConfigDict(from_attributes=True)


class MemberRoleUpdate(BaseModel):
    """Owners are set at organization creation and cannot be granted here."""
    role: Literal["admin", "member"]
