"""
Module catalog and organization-module binding routes.
"""
from typing import Annotated, List
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.users.models import User
from app.features.organizations.dependencies import get_current_member
from app.features.organizations.models import Member
from app.features.modules import service
from app.features.modules.schemas import (
    ModuleCreate,
    ModuleUpdate,
    ModuleResponse,
    ModulePermissionCreate,
    ModulePermissionResponse,
    OrganizationModuleAssign,
    OrganizationModuleUpdate,
    OrganizationModuleResponse,
)
from app.features.permissions.dependencies import require_org_admin, create_audit_log, request_origin
from app.features.permissions.errors import raise_for_result


router = APIRouter()
organization_router = APIRouter()


# ============================================================================
# Module catalog (global admin)
# ============================================================================

@router.get("/", response_model=List[ModuleResponse])
async def list_modules(
    db: Annotated[AsyncSession, Depends(get_db)],
    _user: Annotated[User, Depends(get_current_user)],
    include_inactive: bool = False
):
    """List modules with their permission catalogs."""
    return await service.list_modules(db, include_inactive=include_inactive)


@router.post("/", response_model=ModuleResponse, status_code=status.HTTP_201_CREATED)
async def create_module(
    data: ModuleCreate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(get_current_admin_user)]
):
    """Create a module (global admin only)."""
    admin_id = admin.id
    module = raise_for_result(await service.create_module(
        db,
        name=data.name,
        slug=data.slug,
        description=data.description,
        icon=data.icon,
        default_permissions=data.default_permissions,
    ))
    
    background_tasks.add_task(
        create_audit_log,
        user_id=admin_id,
        action="create",
        resource_type="module",
        resource_id=module.id,
        details={"slug": data.slug, "permissions": len(data.default_permissions)},
        **request_origin(request)
    )
    return module


@router.get("/{module_id}", response_model=ModuleResponse)
async def get_module(
    module_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _user: Annotated[User, Depends(get_current_user)]
):
    """Get a module by ID."""
    module = await service.get_module(db, module_id)
    if module is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Module not found")
    return module


@router.patch("/{module_id}", response_model=ModuleResponse)
async def update_module(
    module_id: str,
    data: ModuleUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    _admin: Annotated[User, Depends(get_current_admin_user)]
):
    """Update or soft-disable a module (global admin only)."""
    return raise_for_result(await service.update_module(db, module_id, **data.model_dump(exclude_unset=True)))


@router.post(
    "/{module_id}/permissions",
    response_model=List[ModulePermissionResponse],
    status_code=status.HTTP_201_CREATED
)
async def add_module_permissions(
    module_id: str,
    permissions: List[ModulePermissionCreate],
    db: Annotated[AsyncSession, Depends(get_db)],
    _admin: Annotated[User, Depends(get_current_admin_user)]
):
    """Append permissions to a module's catalog (global admin only)."""
    return raise_for_result(await service.add_module_permissions(db, module_id, permissions))


# ============================================================================
# Organization bindings (org owner/admin or global admin)
# ============================================================================

@organization_router.get("/", response_model=List[OrganizationModuleResponse])
async def list_organization_modules(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    _member: Annotated[Member, Depends(get_current_member)]
):
    """List modules enabled for an organization."""
    return await service.list_organization_modules(db, organization_id)


@organization_router.post("/", response_model=OrganizationModuleResponse, status_code=status.HTTP_201_CREATED)
async def assign_module(
    organization_id: str,
    data: OrganizationModuleAssign,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_org_admin)]
):
    """
    Assign a module to the organization.
    
    Admin/Editor/Viewer roles are created in the background after the response.
    """
    admin_id = admin.id
    binding = raise_for_result(await service.assign_module_to_organization(
        db,
        organization_id=organization_id,
        module_id=data.module_id,
        background_tasks=background_tasks,
        assigned_by=admin_id,
        settings=data.settings,
    ))
    
    background_tasks.add_task(
        create_audit_log,
        user_id=admin_id,
        action="assign",
        resource_type="module",
        resource_id=data.module_id,
        organization_id=organization_id,
        **request_origin(request)
    )
    return binding


@organization_router.patch("/{module_id}", response_model=OrganizationModuleResponse)
async def update_organization_module(
    organization_id: str,
    module_id: str,
    data: OrganizationModuleUpdate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_org_admin)]
):
    """Enable or disable a module for the organization. Roles are kept."""
    admin_id = admin.id
    binding = raise_for_result(
        await service.set_organization_module_enabled(db, organization_id, module_id, data.is_enabled)
    )

    background_tasks.add_task(
        create_audit_log,
        user_id=admin_id,
        action="enable" if data.is_enabled else "disable",
        resource_type="module",
        resource_id=module_id,
        organization_id=organization_id,
        **request_origin(request)
    )
    return binding


@organization_router.delete("/{module_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_module(
    organization_id: str,
    module_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_org_admin)]
):
    """Remove a module and all of its roles and assignments from the organization."""
    admin_id = admin.id
    raise_for_result(await service.remove_module_from_organization(db, organization_id, module_id))
    
    background_tasks.add_task(
        create_audit_log,
        user_id=admin_id,
        action="remove",
        resource_type="module",
        resource_id=module_id,
        organization_id=organization_id,
        **request_origin(request)
    )
    return None
