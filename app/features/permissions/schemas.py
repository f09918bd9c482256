"""
Pydantic schemas for custom roles, assignments and permission checks.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.types import PermissionKey, PermissionSource


# ============================================================================
# Role Schemas
# ============================================================================

def _strip_role_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("Role name cannot be blank")
    return v


class RoleCreate(BaseModel):
    """Schema for creating a custom role in an organization module."""
    module_id: str = Field(..., description="Module the role is scoped to")
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permission_ids: List[str] = Field(default_factory=list, description="Module permission IDs to grant")

    strip_name = field_validator("name")(_strip_role_name)


class RoleUpdate(BaseModel):
    """
    Schema for updating a role.

    `permission_ids`, when present, replaces the whole permission set.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    is_active: Optional[bool] = None
    permission_ids: Optional[List[str]] = None

    strip_name = field_validator("name")(_strip_role_name)


class RolePermissionsUpdate(BaseModel):
    """Complete desired permission set of a role."""
    permission_ids: List[str]


class GrantedPermission(BaseModel):
    module_permission_id: str
    granted: bool
    resource: str
    action: str


class RoleResponse(BaseModel):
    id: str
    organization_module_id: str
    name: str
    description: Optional[str] = None
    is_predefined: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime
    
    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    permissions: List[GrantedPermission] = []
    member_count: Optional[int] = None
    
    @classmethod
    def from_role(cls, role, member_count: Optional[int] = None) -> "RoleWithPermissions":
        return cls(
            **RoleResponse.model_validate(role).model_dump(),
            permissions=[
                GrantedPermission(
                    module_permission_id=grant.module_permission_id,
                    granted=grant.granted,
                    resource=grant.module_permission.resource,
                    action=grant.module_permission.action,
                )
                for grant in role.permissions
            ],
            member_count=member_count,
        )


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignRoleToMember(BaseModel):
    member_id: str = Field(..., description="Member ID")


class MemberRoleResponse(BaseModel):
    member_id: str
    custom_role_id: str
    assigned_by: Optional[str] = None
    assigned_at: datetime
    role: RoleWithPermissions
    
    @classmethod
    def from_assignment(cls, assignment) -> "MemberRoleResponse":
        return cls(
            member_id=assignment.member_id,
            custom_role_id=assignment.custom_role_id,
            assigned_by=assignment.assigned_by,
            assigned_at=assignment.assigned_at,
            role=RoleWithPermissions.from_role(assignment.custom_role),
        )


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckResult(BaseModel):
    """Resolver decision. `reason` is for logs and audits, not for end users."""
    allowed: bool
    source: Optional[PermissionSource] = None
    reason: str


class PermissionCheckRequest(BaseModel):
    member_id: str
    module_slug: str
    resource: str
    action: str


class BatchPermissionCheckRequest(BaseModel):
    member_id: str
    module_slug: str
    permissions: List[PermissionKey]


class RolePermissionSet(BaseModel):
    role_id: str
    role_name: str
    permissions: List[PermissionKey] = []


class EffectivePermission(BaseModel):
    resource: str
    action: str
    granted_by: List[str] = Field(default_factory=list, description="Names of the roles granting it")


class MemberPermissions(BaseModel):
    """Display/audit view of what a member can do in a module."""
    is_global_admin: bool = False
    is_org_owner: bool = False
    is_org_admin: bool = False
    custom_roles: List[RolePermissionSet] = []
    effective_permissions: List[EffectivePermission] = []


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    organization_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime
    
    model_config = ConfigDict(from_attributes=True)
