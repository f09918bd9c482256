"""
Pydantic schemas for the module catalog and organization-module bindings.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


class ModulePermissionCreate(BaseModel):
    """One catalog entry to declare for a module."""
    resource: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9_-]+$")
    action: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z0-9_-]+$")
    description: Optional[str] = Field(None, max_length=1000)
    
    @field_validator("resource", "action", mode="before")
    @classmethod
    def lowercase(cls, v: str) -> str:
        return v.lower() if isinstance(v, str) else v


class ModulePermissionResponse(BaseModel):
    id: str
    module_id: str
    resource: str
    action: str
    description: Optional[str] = None
    
    model_config = ConfigDict(from_attributes=True)


class ModuleCreate(BaseModel):
    """Schema for creating a module (global admin only)."""
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")
    description: Optional[str] = Field(None, max_length=1000)
    icon: Optional[str] = Field(None, max_length=100)
    default_permissions: List[ModulePermissionCreate] = []


class ModuleUpdate(BaseModel):
    """Schema for updating a module. The slug cannot change."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    icon: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None


class ModuleResponse(BaseModel):
    id: str
    slug: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool
    created_at: datetime
    permissions: List[ModulePermissionResponse] = []
    
    model_config = ConfigDict(from_attributes=True)


class OrganizationModuleAssign(BaseModel):
    module_id: str
    settings: Optional[Dict[str, Any]] = None


class OrganizationModuleUpdate(BaseModel):
    is_enabled: bool


class OrganizationModuleResponse(BaseModel):
    id: str
    organization_id: str
    module_id: str
    is_enabled: bool
    settings: Optional[Dict[str, Any]] = None
    assigned_by: Optional[str] = None
    created_at: datetime
    module: ModuleResponse
    
    model_config = ConfigDict(from_attributes=True)
