"""
Module catalog and organization-module binding operations.

Assigning a module to an organization commits the binding first and then
schedules predefined-role provisioning as a background task; until that task
finishes the binding is enabled but has no roles, which the resolver treats
as "no grant".
"""
from typing import Any, Dict, Iterable, Optional
from fastapi import BackgroundTasks
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core import config
from app.core.database.engine import AsyncSessionLocal
from app.features.modules.models import Module, ModulePermission, OrganizationModule
from app.features.modules.schemas import ModulePermissionCreate
from app.features.organizations.dependencies import get_member
from app.features.organizations.models import Organization
from app.features.permissions.errors import ActionResult, ErrorCode
from app.features.permissions.models import CustomRole, RolePermission, MemberModuleRole
from app.features.permissions.roles import create_predefined_roles
from app.features.permissions.types import PREDEFINED_ROLE_NAMES
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Module catalog
# ============================================================================

async def get_module(db: AsyncSession, module_id: str) -> Optional[Module]:
    result = await db.execute(
        select(Module).where(Module.id == module_id).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_module_by_slug(db: AsyncSession, slug: str) -> Optional[Module]:
    result = await db.execute(
        select(Module).where(Module.slug == slug).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def list_modules(db: AsyncSession, include_inactive: bool = False) -> list[Module]:
    """Modules ordered by name; inactive ones only on request."""
    stmt = select(Module).order_by(Module.name)
    if not include_inactive:
        stmt = stmt.where(Module.is_active.is_(True))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def create_module(
    db: AsyncSession,
    name: str,
    slug: str,
    description: Optional[str] = None,
    icon: Optional[str] = None,
    default_permissions: Optional[Iterable[ModulePermissionCreate]] = None
) -> ActionResult:
    """
    Create a module and, optionally, its permission catalog.
    
    A slug already in use is a conflict.
    """
    try:
        if await get_module_by_slug(db, slug) is not None:
            return ActionResult.fail(ErrorCode.CONFLICT, f"Module with slug {slug!r} already exists")

        module = Module(name=name, slug=slug, description=description, icon=icon)
        db.add(module)
        await db.flush()
        
        seen = set()
        for permission in default_permissions or []:
            key = (permission.resource, permission.action)
            if key in seen:
                continue
            seen.add(key)
            db.add(ModulePermission(
                module_id=module.id,
                resource=permission.resource,
                action=permission.action,
                description=permission.description,
            ))
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return ActionResult.fail(ErrorCode.CONFLICT, f"Module with slug {slug!r} already exists")
    except SQLAlchemyError as e:
        await db.rollback()
        log.exception("Failed to create module %r: %s", slug, e)
        return ActionResult.fail(ErrorCode.TRANSIENT_STORE_ERROR, "Failed to create module")
    
    log.info("Created module %s (%r) with %d permission(s)", module.id, slug, len(seen))
    return ActionResult.ok(await get_module(db, module.id))


async def add_module_permissions(
    db: AsyncSession,
    module_id: str,
    permissions: Iterable[ModulePermissionCreate]
) -> ActionResult:
    """
    Append entries to a module's permission catalog.
    
    The catalog is append-only; entries that already exist are skipped.
    Returns the newly created entries.
    """
    created = []
    try:
        module = await get_module(db, module_id)
        if module is None:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Module not found")

        existing = {(permission.resource, permission.action) for permission in module.permissions}
        for permission in permissions:
            key = (permission.resource, permission.action)
            if key in existing:
                log.debug("Permission %s.%s already in module %s, skipping", *key, module.slug)
                continue
            existing.add(key)
            entry = ModulePermission(
                module_id=module.id,
                resource=permission.resource,
                action=permission.action,
                description=permission.description,
            )
            db.add(entry)
            created.append(entry)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return ActionResult.fail(ErrorCode.CONFLICT, "Permission already defined for this module")
    except SQLAlchemyError as e:
        await db.rollback()
        log.exception("Failed to add permissions to module %s: %s", module_id, e)
        return ActionResult.fail(ErrorCode.TRANSIENT_STORE_ERROR, "Failed to add module permissions")
    
    log.info("Added %d permission(s) to module %s", len(created), module.slug)
    return ActionResult.ok(created)


async def update_module(
    db: AsyncSession,
    module_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    icon: Optional[str] = None,
    is_active: Optional[bool] = None
) -> ActionResult:
    """Update display fields or soft-disable a module. The slug never changes."""
    try:
        module = await get_module(db, module_id)
        if module is None:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Module not found")

        if name is not None:
            module.name = name
        if description is not None:
            module.description = description
        if icon is not None:
            module.icon = icon
        if is_active is not None:
            module.is_active = is_active
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.exception("Failed to update module %s: %s", module_id, e)
        return ActionResult.fail(ErrorCode.TRANSIENT_STORE_ERROR, "Failed to update module")
    
    return ActionResult.ok(await get_module(db, module_id))


# ============================================================================
# Organization-module bindings
# ============================================================================

async def get_organization_module(
    db: AsyncSession,
    organization_id: str,
    module_slug: str,
    enabled_only: bool = True
) -> Optional[OrganizationModule]:
    """Binding of a module (by slug) to an organization."""
    stmt = (
        select(OrganizationModule)
        .join(Module, Module.id == OrganizationModule.module_id)
        .where(
            OrganizationModule.organization_id == organization_id,
            Module.slug == module_slug
        )
        .execution_options(populate_existing=True)
    )
    if enabled_only:
        stmt = stmt.where(OrganizationModule.is_enabled.is_(True))
    result = await db.execute(stmt)
    return result.scalars().first()


async def get_organization_module_by_module_id(
    db: AsyncSession,
    organization_id: str,
    module_id: str
) -> Optional[OrganizationModule]:
    result = await db.execute(
        select(OrganizationModule)
        .where(
            OrganizationModule.organization_id == organization_id,
            OrganizationModule.module_id == module_id
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def list_organization_modules(db: AsyncSession, organization_id: str) -> list[OrganizationModule]:
    """Enabled bindings of an organization, ordered by module name."""
    result = await db.execute(
        select(OrganizationModule)
        .join(Module, Module.id == OrganizationModule.module_id)
        .where(
            OrganizationModule.organization_id == organization_id,
            OrganizationModule.is_enabled.is_(True)
        )
        .options(selectinload(OrganizationModule.module))
        .order_by(Module.name)
    )
    return list(result.scalars().all())


async def assign_module_to_organization(
    db: AsyncSession,
    organization_id: str,
    module_id: str,
    background_tasks: BackgroundTasks,
    assigned_by: Optional[str] = None,
    settings: Optional[Dict[str, Any]] = None
) -> ActionResult:
    """
    Bind a module to an organization.
    
    Fails if the organization or module does not exist or the module is already
    assigned. On success the binding is committed and predefined-role
    provisioning is scheduled on `background_tasks`; the caller does not wait
    for it and its failure does not undo the binding.
    """
    try:
        if await db.get(Organization, organization_id) is None:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Organization not found")

        module = await get_module(db, module_id)
        if module is None:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Module not found")

        if await get_organization_module_by_module_id(db, organization_id, module_id):
            return ActionResult.fail(ErrorCode.CONFLICT, "Module already assigned to this organization")

        binding = OrganizationModule(
            organization_id=organization_id,
            module_id=module_id,
            settings=settings,
            assigned_by=assigned_by,
        )
        db.add(binding)
        await db.commit()
        binding_id = binding.id
    except IntegrityError:
        await db.rollback()
        return ActionResult.fail(ErrorCode.CONFLICT, "Module already assigned to this organization")
    except SQLAlchemyError as e:
        await db.rollback()
        log.exception("Failed to assign module %s to organization %s: %s", module_id, organization_id, e)
        return ActionResult.fail(ErrorCode.TRANSIENT_STORE_ERROR, "Failed to assign module")
    
    log.info("Assigned module %s to organization %s", module.slug, organization_id)
    
    if config.PROVISION_PREDEFINED_ROLES:
        background_tasks.add_task(
            provision_predefined_roles,
            organization_module_id=binding_id,
            module_slug=module.slug,
            created_by=assigned_by,
        )
    
    return ActionResult.ok(await get_organization_module_by_module_id(db, organization_id, module_id))


async def remove_module_from_organization(
    db: AsyncSession,
    organization_id: str,
    module_id: str
) -> ActionResult:
    """
    Delete a binding together with every role, grant and assignment scoped to it.
    """
    try:
        binding = await get_organization_module_by_module_id(db, organization_id, module_id)
        if binding is None:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Module not assigned to this organization")

        binding_id = binding.id
        role_ids = select(CustomRole.id).where(CustomRole.organization_module_id == binding_id)
        await db.execute(delete(MemberModuleRole).where(MemberModuleRole.custom_role_id.in_(role_ids)))
        await db.execute(delete(RolePermission).where(RolePermission.custom_role_id.in_(role_ids)))
        await db.execute(delete(CustomRole).where(CustomRole.organization_module_id == binding_id))
        await db.execute(delete(OrganizationModule).where(OrganizationModule.id == binding_id))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.exception("Failed to remove module %s from organization %s: %s", module_id, organization_id, e)
        return ActionResult.fail(ErrorCode.TRANSIENT_STORE_ERROR, "Failed to remove module")
    
    db.expunge(binding)
    log.info("Removed module %s from organization %s", module_id, organization_id)
    return ActionResult.ok()


async def set_organization_module_enabled(
    db: AsyncSession,
    organization_id: str,
    module_id: str,
    enabled: bool
) -> ActionResult:
    """Enable or disable a binding without touching its roles."""
    try:
        binding = await get_organization_module_by_module_id(db, organization_id, module_id)
        if binding is None:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Module not assigned to this organization")

        binding.is_enabled = enabled
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        log.exception("Failed to update module %s for organization %s: %s", module_id, organization_id, e)
        return ActionResult.fail(ErrorCode.TRANSIENT_STORE_ERROR, "Failed to update module binding")
    
    log.info("%s module %s for organization %s", "Enabled" if enabled else "Disabled", module_id, organization_id)
    return ActionResult.ok(await get_organization_module_by_module_id(db, organization_id, module_id))


async def check_module_access(
    db: AsyncSession,
    user_id: str,
    organization_id: str,
    module_slug: str
) -> bool:
    """True when the user is a member and the module is active and enabled for the org."""
    if await get_member(db, user_id, organization_id) is None:
        return False
    
    binding = await get_organization_module(db, organization_id, module_slug)
    return binding is not None and binding.module.is_active


# ============================================================================
# Predefined role provisioning
# ============================================================================

async def existing_predefined_role_names(db: AsyncSession, organization_module_id: str) -> set[str]:
    result = await db.execute(
        select(CustomRole.name).where(
            CustomRole.organization_module_id == organization_module_id,
            CustomRole.name.in_(PREDEFINED_ROLE_NAMES)
        )
    )
    return set(result.scalars().all())


async def provision_predefined_roles(
    organization_module_id: str,
    module_slug: str,
    created_by: Optional[str] = None
) -> None:
    """
    Background job creating Admin/Editor/Viewer for a fresh binding.
    
    Runs in its own session after the binding commits. Skips bindings that
    already have any predefined role. Failures are logged, never raised.
    """
    log.info("Provisioning predefined roles for organization module %s", organization_module_id)
    try:
        async with AsyncSessionLocal() as db:
            existing = await existing_predefined_role_names(db, organization_module_id)
            if existing:
                log.warning(
                    "Organization module %s already has predefined roles %s, skipping",
                    organization_module_id,
                    sorted(existing)
                )
                return
            
            result = await create_predefined_roles(db, organization_module_id, module_slug, created_by)
            if not result.success:
                log.error(
                    "Failed to create predefined roles for organization module %s: %s",
                    organization_module_id,
                    result.error
                )
    except Exception:
        log.exception("Predefined role provisioning crashed for organization module %s", organization_module_id)


async def backfill_predefined_roles(db: AsyncSession) -> dict[str, int]:
    """
    Create the predefined triplet for bindings missing it.
    
    Bindings that already have all three roles are skipped; bindings with only
    some of them are reported as errors rather than partially filled.
    """
    result = await db.execute(
        select(OrganizationModule).options(selectinload(OrganizationModule.module))
    )
    bindings = [
        (binding.id, binding.module.slug, binding.assigned_by)
        for binding in result.scalars().all()
    ]
    summary = {"bindings": len(bindings), "created": 0, "skipped": 0, "errors": 0}
    
    for binding_id, module_slug, assigned_by in bindings:
        existing = await existing_predefined_role_names(db, binding_id)
        if existing == PREDEFINED_ROLE_NAMES:
            summary["skipped"] += 1
            continue
        if existing:
            log.warning("Organization module %s has partial predefined roles %s", binding_id, sorted(existing))
            summary["errors"] += 1
            continue
        
        outcome = await create_predefined_roles(db, binding_id, module_slug, assigned_by)
        if outcome.success:
            summary["created"] += len(outcome.data)
        else:
            log.error("Backfill failed for organization module %s: %s", binding_id, outcome.error)
            summary["errors"] += 1
    
    log.info("Predefined role backfill finished: %s", summary)
    return summary
