"""
Permission resolver.

Decides whether a member may perform an action on a resource of a module.
Tiers are evaluated in order and the first one that allows wins:

1. Global admin (User.role == "admin")
2. Organization owner (Member.role == "owner")
3. Organization admin (Member.role == "admin")
4. Custom roles assigned to the member within the enabled module binding
5. Default deny

Resolution fails closed: any error while resolving yields a denial.
"""
from typing import Iterable, Optional
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.features.modules.models import Module, ModulePermission, OrganizationModule
from app.features.organizations.models import Member, MemberRole
from app.features.permissions.models import CustomRole, RolePermission, MemberModuleRole
from app.features.permissions.schemas import (
    PermissionCheckResult,
    MemberPermissions,
    RolePermissionSet,
    EffectivePermission,
)
from app.features.permissions.types import PermissionKey, PermissionSource
from app.utils import get_logger


log = get_logger(__name__)

ERROR_REASON = "Error checking permission"


class RoleGrants(BaseModel):
    role_id: str
    role_name: str
    keys: set[PermissionKey]


# ============================================================================
# Lookups
# ============================================================================

async def _load_member(db: AsyncSession, member_id: str) -> Optional[Member]:
    result = await db.execute(
        select(Member).where(Member.id == member_id).options(selectinload(Member.user))
    )
    return result.scalars().first()


async def _find_enabled_binding(
    db: AsyncSession,
    organization_id: str,
    module_slug: str
) -> Optional[str]:
    result = await db.execute(
        select(OrganizationModule.id)
        .join(Module, Module.id == OrganizationModule.module_id)
        .where(
            OrganizationModule.organization_id == organization_id,
            OrganizationModule.is_enabled.is_(True),
            Module.slug == module_slug
        )
    )
    return result.scalars().first()


async def _load_role_grants(
    db: AsyncSession,
    member_id: str,
    organization_module_id: str
) -> list[RoleGrants]:
    """
    Granted keys of every role the member holds in the binding.
    
    All assignments are read and filtered on the role's binding, so a stale
    assignment pointing at another binding never grants anything here.
    """
    result = await db.execute(
        select(
            CustomRole.id,
            CustomRole.name,
            CustomRole.organization_module_id,
            ModulePermission.resource,
            ModulePermission.action,
            RolePermission.granted,
        )
        .select_from(MemberModuleRole)
        .join(CustomRole, CustomRole.id == MemberModuleRole.custom_role_id)
        .outerjoin(RolePermission, RolePermission.custom_role_id == CustomRole.id)
        .outerjoin(ModulePermission, ModulePermission.id == RolePermission.module_permission_id)
        .where(MemberModuleRole.member_id == member_id)
        .order_by(MemberModuleRole.assigned_at)
    )
    
    roles: dict[str, RoleGrants] = {}
    for role_id, role_name, binding_id, resource, action, granted in result.all():
        if binding_id != organization_module_id:
            continue
        grants = roles.setdefault(role_id, RoleGrants(role_id=role_id, role_name=role_name, keys=set()))
        if granted is True and resource is not None:
            grants.keys.add(PermissionKey(resource=resource, action=action))
    
    return list(roles.values())


def _privileged_decision(member: Member, organization_id: str) -> Optional[PermissionCheckResult]:
    """Tiers 1-3. Returns None when custom roles have to be consulted."""
    if member.user is not None and member.user.is_admin:
        return PermissionCheckResult(
            allowed=True,
            source=PermissionSource.GLOBAL_ADMIN,
            reason="Global admin has full access"
        )
    
    if member.organization_id != organization_id:
        return PermissionCheckResult(
            allowed=False,
            source=PermissionSource.DEFAULT,
            reason="Member does not belong to this organization"
        )
    
    if member.role == MemberRole.OWNER.value:
        return PermissionCheckResult(
            allowed=True,
            source=PermissionSource.ORG_OWNER,
            reason="Organization owner has full access"
        )
    
    if member.role == MemberRole.ADMIN.value:
        return PermissionCheckResult(
            allowed=True,
            source=PermissionSource.ORG_ADMIN,
            reason="Organization admin has full module access"
        )
    
    return None


def _valid_identifier(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


async def _evaluate(
    db: AsyncSession,
    member_id: str,
    organization_id: str,
    module_slug: str,
    keys: list[PermissionKey]
) -> dict[PermissionKey, PermissionCheckResult]:
    """Decide every key against one snapshot of the member's tier and grants."""
    def everywhere(result: PermissionCheckResult) -> dict[PermissionKey, PermissionCheckResult]:
        return {key: result for key in keys}
    
    if not all(_valid_identifier(value) for value in (member_id, organization_id, module_slug)):
        return everywhere(PermissionCheckResult(
            allowed=False,
            source=PermissionSource.DEFAULT,
            reason="Invalid permission check input"
        ))
    
    member = await _load_member(db, member_id)
    if member is None:
        return everywhere(PermissionCheckResult(
            allowed=False,
            source=PermissionSource.DEFAULT,
            reason="Member not found"
        ))
    
    decision = _privileged_decision(member, organization_id)
    if decision is not None:
        return everywhere(decision)
    
    binding_id = await _find_enabled_binding(db, organization_id, module_slug)
    if binding_id is None:
        return everywhere(PermissionCheckResult(
            allowed=False,
            source=PermissionSource.DEFAULT,
            reason="Module is not enabled for this organization"
        ))
    
    roles = await _load_role_grants(db, member_id, binding_id)
    granted = set().union(*(role.keys for role in roles))
    
    return {
        key: PermissionCheckResult(
            allowed=True,
            source=PermissionSource.CUSTOM_ROLE,
            reason="Permission granted via custom role"
        ) if key in granted else PermissionCheckResult(
            allowed=False,
            source=PermissionSource.DEFAULT,
            reason="No permission found for this action"
        )
        for key in keys
    }


# ============================================================================
# Public API
# ============================================================================

async def check_permission(
    db: AsyncSession,
    member_id: str,
    organization_id: str,
    module_slug: str,
    resource: str,
    action: str
) -> PermissionCheckResult:
    """
    Check if a member may perform `action` on `resource` in a module.
    
    Never raises. Example:
        result = await check_permission(db, member.id, org.id, "todolist", "todolist", "delete")
        if result.allowed:
            ...
    """
    try:
        key = PermissionKey(resource=resource, action=action)
        result = (await _evaluate(db, member_id, organization_id, module_slug, [key]))[key]
    except Exception:
        log.exception(
            "Permission check failed for member %s in organization %s (%s: %s.%s)",
            member_id, organization_id, module_slug, resource, action
        )
        return PermissionCheckResult(allowed=False, reason=ERROR_REASON)
    
    log.debug(
        "Permission %s for member %s on %s:%s.%s via %s",
        "granted" if result.allowed else "denied",
        member_id, module_slug, resource, action,
        result.source.value if result.source else None
    )
    return result


async def check_permissions(
    db: AsyncSession,
    member_id: str,
    organization_id: str,
    module_slug: str,
    permissions: Iterable[PermissionKey]
) -> dict[str, bool]:
    """
    Check several permissions at once.
    
    Returns:
        {"todolist.view": True, "todolist.delete": False, ...}
        An unreadable permission list yields {}.
    """
    keys: list[PermissionKey] = []
    try:
        keys = list(permissions)
        decisions = await _evaluate(db, member_id, organization_id, module_slug, keys)
        return {str(key): decisions[key].allowed for key in keys}
    except Exception:
        log.exception(
            "Batch permission check failed for member %s in organization %s (%s)",
            member_id, organization_id, module_slug
        )
        return {str(key): False for key in keys}


async def get_member_permissions(
    db: AsyncSession,
    member_id: str,
    organization_id: str,
    module_slug: str
) -> MemberPermissions:
    """
    Describe a member's permissions in a module for display and audit.
    
    Privileged tiers report the whole module catalog. Enforcement always goes
    through `check_permission`.
    """
    try:
        member = await _load_member(db, member_id)
        if member is None:
            return MemberPermissions()
        
        in_organization = member.organization_id == organization_id
        is_global_admin = member.user is not None and member.user.is_admin
        is_org_owner = in_organization and member.role == MemberRole.OWNER.value
        is_org_admin = in_organization and member.role == MemberRole.ADMIN.value
        
        if is_global_admin or is_org_owner or is_org_admin:
            result = await db.execute(
                select(ModulePermission.resource, ModulePermission.action)
                .join(Module, Module.id == ModulePermission.module_id)
                .where(Module.slug == module_slug)
                .order_by(ModulePermission.resource, ModulePermission.action)
            )
            return MemberPermissions(
                is_global_admin=is_global_admin,
                is_org_owner=is_org_owner,
                is_org_admin=is_org_admin,
                effective_permissions=[
                    EffectivePermission(resource=resource, action=action)
                    for resource, action in result.all()
                ],
            )
        
        binding_id = await _find_enabled_binding(db, organization_id, module_slug) if in_organization else None
        if binding_id is None:
            return MemberPermissions()
        
        roles = await _load_role_grants(db, member_id, binding_id)
    except Exception:
        log.exception("Failed to load permissions of member %s in organization %s", member_id, organization_id)
        return MemberPermissions()
    
    granted_by: dict[PermissionKey, list[str]] = {}
    for role in roles:
        for key in role.keys:
            granted_by.setdefault(key, []).append(role.role_name)
    
    return MemberPermissions(
        custom_roles=[
            RolePermissionSet(
                role_id=role.role_id,
                role_name=role.role_name,
                permissions=sorted(role.keys, key=str),
            )
            for role in roles
        ],
        effective_permissions=[
            EffectivePermission(resource=key.resource, action=key.action, granted_by=names)
            for key, names in sorted(granted_by.items(), key=lambda item: str(item[0]))
        ],
    )
