from fastapi import BackgroundTasks
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError

from app.core import config
from app.features.modules.schemas import ModulePermissionCreate
from app.features.modules.service import (
    create_module,
    add_module_permissions,
    update_module,
    get_module_by_slug,
    list_modules,
    assign_module_to_organization,
    remove_module_from_organization,
    set_organization_module_enabled,
    get_organization_module,
    list_organization_modules,
    check_module_access,
    provision_predefined_roles,
    backfill_predefined_roles,
)
from app.features.permissions.checker import check_permission
from app.features.permissions.errors import ErrorCode
from app.features.permissions.models import CustomRole, RolePermission, MemberModuleRole
from app.features.permissions.roles import assign_role_to_member, list_custom_roles
from app.features.permissions.types import PermissionSource


async def count(db, model, *criteria) -> int:
    return (await db.execute(select(func.count()).select_from(model).where(*criteria))).scalar_one()


# ============================================================================
# Module catalog
# ============================================================================

async def test_create_module_with_catalog(db, todolist_module):
    module = await get_module_by_slug(db, "todolist")
    
    assert module.id == todolist_module
    assert len(module.permissions) == 10
    assert {permission.key for permission in module.permissions} >= {"todolist.view", "todoitem.complete"}


async def test_create_module_rejects_duplicate_slug(db, todolist_module):
    result = await create_module(db, name="Another", slug="todolist")
    
    assert not result.success
    assert result.code == ErrorCode.CONFLICT


async def test_create_module_ignores_repeated_permissions(db):
    result = await create_module(
        db,
        name="Notes",
        slug="notes",
        default_permissions=[
            ModulePermissionCreate(resource="note", action="view"),
            ModulePermissionCreate(resource="Note", action="VIEW"),
        ],
    )
    
    assert result.success
    assert len(result.data.permissions) == 1


async def test_add_module_permissions_skips_existing(db, todolist_module):
    result = await add_module_permissions(db, todolist_module, [
        ModulePermissionCreate(resource="todolist", action="view"),
        ModulePermissionCreate(resource="todolist", action="export"),
    ])
    
    assert result.success
    assert [permission.key for permission in result.data] == ["todolist.export"]
    module = await get_module_by_slug(db, "todolist")
    assert len(module.permissions) == 11


async def test_add_module_permissions_unknown_module(db):
    result = await add_module_permissions(db, "missing", [ModulePermissionCreate(resource="a", action="b")])
    
    assert result.code == ErrorCode.NOT_FOUND


async def test_inactive_modules_hidden_from_default_listing(db, todolist_module, factory):
    await factory.module("notes", [("note", "view")])
    
    result = await update_module(db, todolist_module, is_active=False)
    
    assert result.success
    assert [module.slug for module in await list_modules(db)] == ["notes"]
    assert len(await list_modules(db, include_inactive=True)) == 2


# ============================================================================
# Organization bindings
# ============================================================================

async def test_assign_unknown_module(db, org_id):
    result = await assign_module_to_organization(db, org_id, "missing", BackgroundTasks())
    
    assert result.code == ErrorCode.NOT_FOUND


async def test_assign_module_twice_conflicts(db, org_id, todolist_module, todolist_binding):
    tasks = BackgroundTasks()
    result = await assign_module_to_organization(db, org_id, todolist_module, tasks)
    
    assert result.code == ErrorCode.CONFLICT
    assert tasks.tasks == []


async def test_roles_appear_only_after_provisioning_runs(db, factory, org_id, todolist_module):
    member_id = await factory.member(org_id)
    tasks = BackgroundTasks()
    
    result = await assign_module_to_organization(db, org_id, todolist_module, tasks)
    binding_id = result.data.id
    
    assert result.success
    assert result.data.module.slug == "todolist"
    assert await list_custom_roles(db, binding_id) == []
    check = await check_permission(db, member_id, org_id, "todolist", "todolist", "view")
    assert not check.allowed
    assert check.source == PermissionSource.DEFAULT
    
    await tasks()
    
    assert set(await factory.roles_by_name(binding_id)) == {"Admin", "Editor", "Viewer"}


async def test_provisioning_can_be_disabled(db, org_id, todolist_module, monkeypatch):
    monkeypatch.setattr(config, "PROVISION_PREDEFINED_ROLES", False)
    tasks = BackgroundTasks()
    
    result = await assign_module_to_organization(db, org_id, todolist_module, tasks)
    
    assert result.success
    assert tasks.tasks == []


async def test_provisioning_runs_once(db, factory, org_id, todolist_module):
    binding_id = await factory.binding(org_id, todolist_module)
    
    await provision_predefined_roles(binding_id, "todolist")
    
    assert await count(db, CustomRole, CustomRole.organization_module_id == binding_id) == 3


async def test_provisioning_failure_is_swallowed(db, org_id):
    await provision_predefined_roles("missing", "todolist")
    
    assert await count(db, CustomRole) == 0


async def test_backfill_fills_unprovisioned_bindings(db, factory, org_id, todolist_module):
    provisioned = await factory.binding(org_id, todolist_module)
    other_org = await factory.organization("Globex")
    bare = await factory.binding(other_org, todolist_module, provision=False)
    
    summary = await backfill_predefined_roles(db)
    
    assert summary == {"bindings": 2, "created": 3, "skipped": 1, "errors": 0}
    assert await count(db, CustomRole, CustomRole.organization_module_id == bare) == 3
    assert await count(db, CustomRole, CustomRole.organization_module_id == provisioned) == 3


async def test_disabled_binding_denies_custom_role_grants(db, factory, org_id, todolist_module, todolist_binding):
    member_id = await factory.member(org_id)
    viewer_id = (await factory.roles_by_name(todolist_binding))["Viewer"]
    await assign_role_to_member(db, member_id, viewer_id)
    
    result = await set_organization_module_enabled(db, org_id, todolist_module, False)
    
    assert result.success
    assert result.data.is_enabled is False
    assert await get_organization_module(db, org_id, "todolist") is None
    assert await get_organization_module(db, org_id, "todolist", enabled_only=False) is not None
    assert await list_organization_modules(db, org_id) == []
    check = await check_permission(db, member_id, org_id, "todolist", "todolist", "view")
    assert not check.allowed
    assert check.reason == "Module is not enabled for this organization"


async def test_remove_module_deletes_scoped_roles(db, factory, org_id, todolist_module, todolist_binding):
    member_id = await factory.member(org_id)
    viewer_id = (await factory.roles_by_name(todolist_binding))["Viewer"]
    await assign_role_to_member(db, member_id, viewer_id)
    
    result = await remove_module_from_organization(db, org_id, todolist_module)
    
    assert result.success
    assert await count(db, CustomRole) == 0
    assert await count(db, RolePermission) == 0
    assert await count(db, MemberModuleRole) == 0
    assert (await get_module_by_slug(db, "todolist")) is not None


async def test_remove_unassigned_module(db, org_id, todolist_module):
    result = await remove_module_from_organization(db, org_id, todolist_module)
    
    assert result.code == ErrorCode.NOT_FOUND


async def test_check_module_access(db, factory, org_id, todolist_module, todolist_binding):
    user_id = await factory.user()
    await factory.member(org_id, user_id=user_id)
    outsider_id = await factory.user("Mallory")
    
    assert await check_module_access(db, user_id, org_id, "todolist")
    assert not await check_module_access(db, outsider_id, org_id, "todolist")
    
    await update_module(db, todolist_module, is_active=False)
    
    assert not await check_module_access(db, user_id, org_id, "todolist")


async def test_assign_to_unknown_organization(db, todolist_module):
    tasks = BackgroundTasks()
    
    result = await assign_module_to_organization(db, "missing", todolist_module, tasks)
    
    assert result.code == ErrorCode.NOT_FOUND
    assert result.error == "Organization not found"
    assert tasks.tasks == []


async def test_store_error_during_lookup_is_reported(db, org_id, todolist_module, todolist_binding, monkeypatch):
    async def locked(*_args, **_kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))
    
    monkeypatch.setattr(db, "execute", locked)
    
    results = [
        await create_module(db, name="Notes", slug="notes"),
        await add_module_permissions(db, todolist_module, [ModulePermissionCreate(resource="note", action="view")]),
        await update_module(db, todolist_module, name="Todos"),
        await assign_module_to_organization(db, org_id, todolist_module, BackgroundTasks()),
        await set_organization_module_enabled(db, org_id, todolist_module, False),
        await remove_module_from_organization(db, org_id, todolist_module),
    ]
    
    assert [result.code for result in results] == [ErrorCode.TRANSIENT_STORE_ERROR] * 6
    monkeypatch.undo()
    assert await get_organization_module(db, org_id, "todolist") is not None
