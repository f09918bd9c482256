"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from typing import Literal
from pydantic import BaseModel, ConfigDict, Field


class UserUpdate(BaseModel):
    """Schema for updating user information."""
    name: str | None = Field(None, min_length=1, max_length=255)


class GlobalRoleUpdate(BaseModel):
    """Global role to set; null revokes global admin."""
    role: Literal["admin"] | None = None


class MembershipSummary(BaseModel):
    """Membership of the user in one organization."""
    id: str
    organization_id: str
    role: str
    
    model_config = ConfigDict(from_attributes=True)


class UserResponse(BaseModel):
    """Schema for user responses."""
    id: str
    email: str
    name: str
    role: str | None = None
    is_active: bool
    is_admin: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    memberships: list[MembershipSummary] = []
    
    model_config = ConfigDict(from_attributes=True)


class UserPublic(BaseModel):
    """Public user information (limited fields)."""
    id: str
    name: str
    
    model_config = ConfigDict(from_attributes=True)
