"""
Custom role, assignment and permission-check routes.

Mounted under /organizations/{organization_id}. Mutations go through the
admin gate (organization owner/admin or global admin).
"""
from typing import Annotated, List
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.models import User
from app.features.users.dependencies import get_current_user
from app.features.organizations.dependencies import get_member, get_current_member
from app.features.organizations.models import Member
from app.features.modules.service import get_organization_module_by_module_id
from app.features.permissions import roles as role_service
from app.features.permissions.checker import check_permission, check_permissions, get_member_permissions
from app.features.permissions.dependencies import require_org_admin, create_audit_log, request_origin
from app.features.permissions.errors import raise_for_result
from app.features.permissions.models import AuditLog, CustomRole
from app.features.permissions.schemas import (
    RoleCreate,
    RoleUpdate,
    RolePermissionsUpdate,
    RoleWithPermissions,
    AssignRoleToMember,
    MemberRoleResponse,
    PermissionCheckRequest,
    PermissionCheckResult,
    BatchPermissionCheckRequest,
    MemberPermissions,
    AuditLogResponse,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def _get_binding_id(db: AsyncSession, organization_id: str, module_id: str) -> str:
    binding = await get_organization_module_by_module_id(db, organization_id, module_id)
    if binding is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Module not assigned to this organization"
        )
    return binding.id


async def _get_organization_role(db: AsyncSession, organization_id: str, role_id: str) -> CustomRole:
    """Role by ID, 404 unless it belongs to the organization in the path."""
    role = await role_service.get_custom_role(db, role_id)
    if role is None or role.organization_module.organization_id != organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    return role


async def _authorize_inspection(db: AsyncSession, user: User, organization_id: str, member_id: str) -> None:
    """Members may inspect themselves. Owners, admins and global admins may inspect anyone."""
    if user.is_admin:
        return
    caller = await get_member(db, user.id, organization_id)
    if caller is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this organization"
        )
    if caller.id != member_id and not caller.is_org_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only organization owners or admins can inspect other members"
        )


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleWithPermissions])
async def list_roles(
    organization_id: str,
    module_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _member: Annotated[Member, Depends(get_current_member)]
):
    """List the roles of a module in the organization with member counts."""
    binding_id = await _get_binding_id(db, organization_id, module_id)
    return [
        RoleWithPermissions.from_role(role, member_count)
        for role, member_count in await role_service.list_custom_roles(db, binding_id)
    ]


@router.post("/roles", response_model=RoleWithPermissions, status_code=status.HTTP_201_CREATED)
async def create_role(
    organization_id: str,
    data: RoleCreate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_org_admin)]
):
    """Create a custom role with an initial permission set."""
    admin_id = admin.id
    binding_id = await _get_binding_id(db, organization_id, data.module_id)
    role = raise_for_result(await role_service.create_custom_role(
        db,
        organization_module_id=binding_id,
        name=data.name,
        description=data.description,
        permission_ids=data.permission_ids,
        created_by=admin_id,
    ))
    
    background_tasks.add_task(
        create_audit_log,
        user_id=admin_id,
        action="create",
        resource_type="role",
        resource_id=role.id,
        organization_id=organization_id,
        details={"name": data.name, "permission_ids": data.permission_ids},
        **request_origin(request)
    )
    return RoleWithPermissions.from_role(role, 0)


@router.get("/roles/{role_id}", response_model=RoleWithPermissions)
async def get_role(
    organization_id: str,
    role_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _member: Annotated[Member, Depends(get_current_member)]
):
    """Get a role with its permissions."""
    role = await _get_organization_role(db, organization_id, role_id)
    return RoleWithPermissions.from_role(role, await role_service.count_role_members(db, role.id))


@router.patch("/roles/{role_id}", response_model=RoleWithPermissions)
async def update_role(
    organization_id: str,
    role_id: str,
    data: RoleUpdate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_org_admin)]
):
    """Update a role. A given `permission_ids` list replaces the whole set."""
    admin_id = admin.id
    await _get_organization_role(db, organization_id, role_id)
    update_data = data.model_dump(exclude_unset=True)
    role = raise_for_result(await role_service.update_custom_role(db, role_id, **update_data))
    
    background_tasks.add_task(
        create_audit_log,
        user_id=admin_id,
        action="update",
        resource_type="role",
        resource_id=role_id,
        organization_id=organization_id,
        details=update_data,
        **request_origin(request)
    )
    return RoleWithPermissions.from_role(role)


@router.put("/roles/{role_id}/permissions", response_model=RoleWithPermissions)
async def replace_role_permissions(
    organization_id: str,
    role_id: str,
    data: RolePermissionsUpdate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_org_admin)]
):
    """Replace the complete permission set of a role."""
    admin_id = admin.id
    await _get_organization_role(db, organization_id, role_id)
    role = raise_for_result(await role_service.update_role_permissions(db, role_id, data.permission_ids))
    
    background_tasks.add_task(
        create_audit_log,
        user_id=admin_id,
        action="update_permissions",
        resource_type="role",
        resource_id=role_id,
        organization_id=organization_id,
        details={"permission_ids": data.permission_ids},
        **request_origin(request)
    )
    return RoleWithPermissions.from_role(role)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    organization_id: str,
    role_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_org_admin)]
):
    """Delete a custom role that no member holds."""
    admin_id = admin.id
    role = await _get_organization_role(db, organization_id, role_id)
    role_name = role.name
    raise_for_result(await role_service.delete_custom_role(db, role_id))
    
    background_tasks.add_task(
        create_audit_log,
        user_id=admin_id,
        action="delete",
        resource_type="role",
        resource_id=role_id,
        organization_id=organization_id,
        details={"name": role_name},
        **request_origin(request)
    )
    return None


# ============================================================================
# Assignment Routes
# ============================================================================

@router.post("/roles/{role_id}/members", status_code=status.HTTP_201_CREATED)
async def assign_role(
    organization_id: str,
    role_id: str,
    data: AssignRoleToMember,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_org_admin)]
):
    """Assign a role to a member of the organization."""
    admin_id = admin.id
    await _get_organization_role(db, organization_id, role_id)
    raise_for_result(await role_service.assign_role_to_member(db, data.member_id, role_id, assigned_by=admin_id))
    
    background_tasks.add_task(
        create_audit_log,
        user_id=admin_id,
        action="assign",
        resource_type="role",
        resource_id=role_id,
        organization_id=organization_id,
        details={"member_id": data.member_id},
        **request_origin(request)
    )
    return {"message": "Role assigned to member"}


@router.delete("/roles/{role_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role(
    organization_id: str,
    role_id: str,
    member_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_org_admin)]
):
    """Remove a role from a member. Succeeds if the member did not hold it."""
    admin_id = admin.id
    await _get_organization_role(db, organization_id, role_id)
    raise_for_result(await role_service.remove_role_from_member(db, member_id, role_id))
    
    background_tasks.add_task(
        create_audit_log,
        user_id=admin_id,
        action="revoke",
        resource_type="role",
        resource_id=role_id,
        organization_id=organization_id,
        details={"member_id": member_id},
        **request_origin(request)
    )
    return None


@router.get("/members/{member_id}/roles", response_model=List[MemberRoleResponse])
async def list_member_roles(
    organization_id: str,
    member_id: str,
    module_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)]
):
    """Roles a member holds in one module."""
    await _authorize_inspection(db, user, organization_id, member_id)
    binding_id = await _get_binding_id(db, organization_id, module_id)
    assignments = await role_service.get_member_module_roles(db, member_id, binding_id)
    return [MemberRoleResponse.from_assignment(assignment) for assignment in assignments]


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.post("/permissions/check", response_model=PermissionCheckResult)
async def check_member_permission(
    organization_id: str,
    data: PermissionCheckRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)]
):
    """Check a single permission of a member."""
    await _authorize_inspection(db, user, organization_id, data.member_id)
    return await check_permission(
        db, data.member_id, organization_id, data.module_slug, data.resource, data.action
    )


@router.post("/permissions/check-batch", response_model=dict[str, bool])
async def check_member_permissions(
    organization_id: str,
    data: BatchPermissionCheckRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)]
):
    """Check several permissions of a member, keyed "resource.action"."""
    await _authorize_inspection(db, user, organization_id, data.member_id)
    return await check_permissions(db, data.member_id, organization_id, data.module_slug, data.permissions)


@router.get("/members/{member_id}/permissions", response_model=MemberPermissions)
async def member_permissions(
    organization_id: str,
    member_id: str,
    module_slug: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    user: Annotated[User, Depends(get_current_user)]
):
    """Effective permissions of a member in a module, with the roles granting them."""
    await _authorize_inspection(db, user, organization_id, member_id)
    return await get_member_permissions(db, member_id, organization_id, module_slug)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=List[AuditLogResponse])
async def list_audit_logs(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _admin: Annotated[User, Depends(require_org_admin)],
    skip: int = 0,
    limit: int = 100
):
    """Audit trail of module and role changes in the organization."""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.organization_id == organization_id)
        .order_by(AuditLog.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()
