"""
Role lifecycle and assignment management.

Every function here takes an explicit session and returns an ActionResult;
store errors are rolled back and reported, never raised.

Edge tables (role_permissions, member_module_roles) are written with Core
DML inside the session transaction so a permission set is replaced as a whole
and duplicate assignments surface as unique-constraint violations.
"""
from typing import Iterable, Optional
from sqlalchemy import select, delete, insert, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.features.modules.models import Module, ModulePermission, OrganizationModule
from app.features.organizations.models import Member
from app.features.permissions.errors import ActionResult, ErrorCode
from app.features.permissions.models import CustomRole, RolePermission, MemberModuleRole
from app.features.permissions.types import ROLE_TEMPLATES
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Lookups
# ============================================================================

def _role_query():
    return (
        select(CustomRole)
        .options(
            selectinload(CustomRole.organization_module),
            selectinload(CustomRole.permissions).selectinload(RolePermission.module_permission),
        )
        .execution_options(populate_existing=True)
    )


async def get_custom_role(db: AsyncSession, role_id: str) -> Optional[CustomRole]:
    """Role with its binding and grants freshly loaded."""
    result = await db.execute(_role_query().where(CustomRole.id == role_id))
    return result.scalars().first()


async def list_custom_roles(
    db: AsyncSession,
    organization_module_id: str
) -> list[tuple[CustomRole, int]]:
    """Roles of a binding in creation order, each with its assigned member count."""
    result = await db.execute(
        _role_query()
        .where(CustomRole.organization_module_id == organization_module_id)
        .order_by(CustomRole.created_at, CustomRole.name)
    )
    roles = result.scalars().all()
    
    counts_result = await db.execute(
        select(MemberModuleRole.custom_role_id, func.count())
        .where(MemberModuleRole.custom_role_id.in_([role.id for role in roles]))
        .group_by(MemberModuleRole.custom_role_id)
    )
    counts = dict(counts_result.all())
    
    return [(role, counts.get(role.id, 0)) for role in roles]


async def count_role_members(db: AsyncSession, role_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(MemberModuleRole).where(MemberModuleRole.custom_role_id == role_id)
    )
    return result.scalar_one()


async def get_member_module_roles(
    db: AsyncSession,
    member_id: str,
    organization_module_id: str
) -> list[MemberModuleRole]:
    """Assignments a member holds within one binding."""
    result = await db.execute(
        select(MemberModuleRole)
        .join(CustomRole, CustomRole.id == MemberModuleRole.custom_role_id)
        .where(
            MemberModuleRole.member_id == member_id,
            CustomRole.organization_module_id == organization_module_id
        )
        .options(
            selectinload(MemberModuleRole.custom_role)
            .selectinload(CustomRole.permissions)
            .selectinload(RolePermission.module_permission)
        )
        .order_by(MemberModuleRole.assigned_at)
    )
    return list(result.scalars().all())


async def _validate_permission_ids(
    db: AsyncSession,
    module_id: str,
    permission_ids: Iterable[str]
) -> tuple[list[str], Optional[str]]:
    """
    Deduplicate permission IDs and check they all belong to the module's catalog.
    
    Returns:
        (unique ids in input order, error message or None)
    """
    unique_ids = list(dict.fromkeys(permission_ids))
    if not unique_ids:
        return unique_ids, None
    
    result = await db.execute(
        select(ModulePermission.id).where(
            ModulePermission.id.in_(unique_ids),
            ModulePermission.module_id == module_id
        )
    )
    found = set(result.scalars().all())
    missing = [pid for pid in unique_ids if pid not in found]
    if missing:
        return unique_ids, f"Permissions not defined by this module: {', '.join(missing)}"
    
    return unique_ids, None


async def _replace_grants(db: AsyncSession, role_id: str, permission_ids: list[str]) -> None:
    await db.execute(delete(RolePermission).where(RolePermission.custom_role_id == role_id))
    if permission_ids:
        await db.execute(
            insert(RolePermission),
            [
                {"custom_role_id": role_id, "module_permission_id": pid, "granted": True}
                for pid in permission_ids
            ]
        )


def _store_failure(action: str, exc: SQLAlchemyError) -> ActionResult:
    log.exception("Store error while trying to %s: %s", action, exc)
    return ActionResult.fail(ErrorCode.TRANSIENT_STORE_ERROR, f"Failed to {action}")


# ============================================================================
# Role lifecycle
# ============================================================================

async def create_predefined_roles(
    db: AsyncSession,
    organization_module_id: str,
    module_slug: str,
    created_by: Optional[str] = None
) -> ActionResult:
    """
    Create the Admin, Editor and Viewer roles for a module binding.
    
    Each template grants its actions on every resource of the module; template
    keys the module does not define are skipped. The triplet is created in one
    transaction.
    
    Not idempotent by itself: callers check for existing predefined roles
    before invoking (see modules.service.provision_predefined_roles). A second
    concurrent run fails on the (organization_module_id, name) unique
    constraint instead of duplicating roles.
    """
    try:
        result = await db.execute(select(Module).where(Module.slug == module_slug))
        module = result.scalars().first()
        if module is None:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Module not found")

        binding = await db.get(OrganizationModule, organization_module_id)
        if binding is None or binding.module_id != module.id:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Organization module not found")

        resources = {permission.resource for permission in module.permissions}
        role_ids = []
        for template in ROLE_TEMPLATES.values():
            keys = template.permission_keys(resources)
            role = CustomRole(
                organization_module_id=organization_module_id,
                name=template.name,
                description=template.description,
                is_predefined=True,
                is_active=True,
                created_by=created_by,
            )
            db.add(role)
            await db.flush()
            await _replace_grants(
                db,
                role.id,
                [permission.id for permission in module.permissions if permission.key in keys]
            )
            role_ids.append(role.id)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        log.warning("Predefined roles already exist for organization module %s", organization_module_id)
        return ActionResult.fail(ErrorCode.CONFLICT, "Predefined roles already exist for this module")
    except SQLAlchemyError as e:
        await db.rollback()
        return _store_failure("create predefined roles", e)
    
    roles = [await get_custom_role(db, role_id) for role_id in role_ids]
    log.info(
        "Created predefined roles for organization module %s: %s",
        organization_module_id,
        {role.name: len(role.permissions) for role in roles}
    )
    return ActionResult.ok(roles)


async def create_custom_role(
    db: AsyncSession,
    organization_module_id: str,
    name: str,
    description: Optional[str] = None,
    permission_ids: Iterable[str] = (),
    created_by: Optional[str] = None
) -> ActionResult:
    """Create a non-predefined role with an initial permission set."""
    try:
        binding = await db.get(OrganizationModule, organization_module_id)
        if binding is None:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Organization module not found")

        unique_ids, error = await _validate_permission_ids(db, binding.module_id, permission_ids)
        if error:
            log.warning("Rejected role %r for organization module %s: %s", name, organization_module_id, error)
            return ActionResult.fail(ErrorCode.INVARIANT_VIOLATION, error)

        role = CustomRole(
            organization_module_id=organization_module_id,
            name=name,
            description=description,
            is_predefined=False,
            created_by=created_by,
        )
        db.add(role)
        await db.flush()
        await _replace_grants(db, role.id, unique_ids)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return ActionResult.fail(ErrorCode.CONFLICT, f"A role named {name!r} already exists in this module")
    except SQLAlchemyError as e:
        await db.rollback()
        return _store_failure("create custom role", e)
    
    log.info("Created custom role %s (%r) with %d permission(s)", role.id, name, len(unique_ids))
    return ActionResult.ok(await get_custom_role(db, role.id))


async def _lock_role(db: AsyncSession, role_id: str) -> Optional[CustomRole]:
    result = await db.execute(
        _role_query().where(CustomRole.id == role_id).with_for_update(of=CustomRole)
    )
    return result.scalars().first()


async def update_role_permissions(
    db: AsyncSession,
    custom_role_id: str,
    permission_ids: Iterable[str]
) -> ActionResult:
    """
    Replace a role's permission set.
    
    Full-replace semantics: every existing grant is removed and the given set
    inserted in one transaction. Callers always submit the complete set.
    """
    return await update_custom_role(db, custom_role_id, permission_ids=permission_ids)


async def update_custom_role(
    db: AsyncSession,
    custom_role_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    is_active: Optional[bool] = None,
    permission_ids: Optional[Iterable[str]] = None
) -> ActionResult:
    """
    Update role fields and optionally replace its permission set.
    
    Predefined role names are immutable; their permission sets are editable.
    """
    try:
        role = await _lock_role(db, custom_role_id)
        if role is None:
            await db.rollback()
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Role not found")
        
        if name is not None and name != role.name and role.is_predefined:
            await db.rollback()
            return ActionResult.fail(ErrorCode.INVARIANT_VIOLATION, "Predefined role names cannot be changed")
        
        unique_ids = None
        if permission_ids is not None:
            unique_ids, error = await _validate_permission_ids(
                db, role.organization_module.module_id, permission_ids
            )
            if error:
                await db.rollback()
                log.warning("Rejected permission update for role %s: %s", custom_role_id, error)
                return ActionResult.fail(ErrorCode.INVARIANT_VIOLATION, error)
        
        if name is not None:
            role.name = name
        if description is not None:
            role.description = description
        if is_active is not None:
            role.is_active = is_active
        await db.flush()
        
        if unique_ids is not None:
            await _replace_grants(db, role.id, unique_ids)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if name is None:
            return ActionResult.fail(ErrorCode.CONFLICT, "Role update conflicts with existing data")
        return ActionResult.fail(ErrorCode.CONFLICT, f"A role named {name!r} already exists in this module")
    except SQLAlchemyError as e:
        await db.rollback()
        return _store_failure("update role", e)
    
    log.info(
        "Updated role %s%s",
        custom_role_id,
        f" with {len(unique_ids)} permission(s)" if unique_ids is not None else ""
    )
    return ActionResult.ok(await get_custom_role(db, custom_role_id))


async def delete_custom_role(db: AsyncSession, custom_role_id: str) -> ActionResult:
    """
    Delete a role that no member holds.
    
    Predefined roles are always refused. The member count is checked with the
    role row locked and re-checked after the delete inside the same
    transaction; the RESTRICT foreign key on assignments backs both checks.
    """
    try:
        role = await _lock_role(db, custom_role_id)
        if role is None:
            await db.rollback()
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Role not found")
        
        if role.is_predefined:
            await db.rollback()
            return ActionResult.fail(ErrorCode.INVARIANT_VIOLATION, "Predefined roles cannot be deleted")
        
        member_count = await count_role_members(db, custom_role_id)
        if member_count > 0:
            await db.rollback()
            log.warning("Refused to delete role %s: %d member(s) assigned", custom_role_id, member_count)
            return ActionResult.fail(
                ErrorCode.INVARIANT_VIOLATION,
                f"Cannot delete role: {member_count} member(s) are assigned to this role"
            )
        
        await db.execute(delete(RolePermission).where(RolePermission.custom_role_id == custom_role_id))
        await db.execute(delete(CustomRole).where(CustomRole.id == custom_role_id))
        
        member_count = await count_role_members(db, custom_role_id)
        if member_count > 0:
            await db.rollback()
            return ActionResult.fail(
                ErrorCode.INVARIANT_VIOLATION,
                f"Cannot delete role: {member_count} member(s) are assigned to this role"
            )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        log.warning("Role %s gained a member while being deleted", custom_role_id)
        return ActionResult.fail(
            ErrorCode.INVARIANT_VIOLATION,
            "Cannot delete role: member(s) are assigned to this role"
        )
    except SQLAlchemyError as e:
        await db.rollback()
        return _store_failure("delete role", e)
    
    db.expunge(role)
    log.info("Deleted role %s (%r)", custom_role_id, role.name)
    return ActionResult.ok()


# ============================================================================
# Assignments
# ============================================================================

async def assign_role_to_member(
    db: AsyncSession,
    member_id: str,
    custom_role_id: str,
    assigned_by: Optional[str] = None
) -> ActionResult:
    """
    Give a member a custom role.
    
    The member must belong to the organization owning the role's binding.
    Assigning a role the member already holds is a conflict.
    """
    try:
        member = await db.get(Member, member_id)
        if member is None:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Member not found")

        role = await get_custom_role(db, custom_role_id)
        if role is None:
            return ActionResult.fail(ErrorCode.NOT_FOUND, "Role not found")

        if role.organization_module.organization_id != member.organization_id:
            log.warning(
                "Refused cross-organization assignment of role %s to member %s",
                custom_role_id,
                member_id
            )
            return ActionResult.fail(
                ErrorCode.INVARIANT_VIOLATION,
                "Role belongs to a different organization than the member"
            )

        await db.execute(
            insert(MemberModuleRole).values(
                member_id=member_id,
                custom_role_id=custom_role_id,
                assigned_by=assigned_by,
            )
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return ActionResult.fail(ErrorCode.CONFLICT, "Member already has this role")
    except SQLAlchemyError as e:
        await db.rollback()
        return _store_failure("assign role", e)
    
    log.info("Assigned role %s to member %s", custom_role_id, member_id)
    return ActionResult.ok()


async def remove_role_from_member(
    db: AsyncSession,
    member_id: str,
    custom_role_id: str
) -> ActionResult:
    """Take a role away from a member. Removing an absent assignment succeeds."""
    try:
        result = await db.execute(
            delete(MemberModuleRole).where(
                MemberModuleRole.member_id == member_id,
                MemberModuleRole.custom_role_id == custom_role_id
            )
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        return _store_failure("remove role", e)
    
    if result.rowcount:
        log.info("Removed role %s from member %s", custom_role_id, member_id)
    return ActionResult.ok()
