from sqlalchemy import select

from app.features.permissions.models import AuditLog


async def setup_org(factory):
    """Organization with the todolist module assigned and one member per tier."""
    org_id = await factory.organization()
    module_id = await factory.todolist_module()
    binding_id = await factory.binding(org_id, module_id)
    users = {}
    members = {}
    for tier in ("owner", "admin", "member"):
        users[tier] = await factory.user(tier.title())
        members[tier] = await factory.member(org_id, role=tier, user_id=users[tier])
    return org_id, module_id, binding_id, users, members


# ============================================================================
# Module catalog and assignment
# ============================================================================

async def test_only_global_admin_creates_modules(client, factory):
    client.user_id = await factory.user()
    payload = {
        "name": "Notes",
        "slug": "notes",
        "default_permissions": [{"resource": "note", "action": "view"}],
    }
    
    denied = await client.post("/modules/", json=payload)
    client.user_id = await factory.global_admin()
    created = await client.post("/modules/", json=payload)
    duplicate = await client.post("/modules/", json=payload)
    
    assert denied.status_code == 403
    assert created.status_code == 201
    assert [permission["action"] for permission in created.json()["permissions"]] == ["view"]
    assert duplicate.status_code == 409


async def test_org_admin_assigns_module_and_gets_predefined_roles(client, factory):
    org_id = await factory.organization()
    module_id = await factory.todolist_module()
    client.user_id = await factory.user()
    await factory.member(org_id, role="admin", user_id=client.user_id)
    
    assigned = await client.post(f"/organizations/{org_id}/modules/", json={"module_id": module_id})
    again = await client.post(f"/organizations/{org_id}/modules/", json={"module_id": module_id})
    roles = await client.get(f"/organizations/{org_id}/roles", params={"module_id": module_id})
    
    assert assigned.status_code == 201
    assert assigned.json()["module"]["slug"] == "todolist"
    assert again.status_code == 409
    assert roles.status_code == 200
    assert {role["name"]: len(role["permissions"]) for role in roles.json()} == {
        "Admin": 10, "Editor": 7, "Viewer": 2
    }


async def test_plain_member_cannot_assign_modules(client, factory):
    org_id = await factory.organization()
    module_id = await factory.todolist_module()
    client.user_id = await factory.user()
    await factory.member(org_id, user_id=client.user_id)
    
    response = await client.post(f"/organizations/{org_id}/modules/", json={"module_id": module_id})
    
    assert response.status_code == 403


async def test_assign_module_to_unknown_organization(client, factory):
    module_id = await factory.todolist_module()
    client.user_id = await factory.global_admin()
    
    response = await client.post("/organizations/missing/modules/", json={"module_id": module_id})
    
    assert response.status_code == 404
    assert response.json()["detail"] == "Organization not found"


async def test_remove_module(client, factory):
    org_id, module_id, _, users, _ = await setup_org(factory)
    client.user_id = users["owner"]
    
    removed = await client.delete(f"/organizations/{org_id}/modules/{module_id}")
    listed = await client.get(f"/organizations/{org_id}/modules/")
    
    assert removed.status_code == 204
    assert listed.json() == []


# ============================================================================
# Roles
# ============================================================================

async def test_role_crud(client, factory):
    org_id, module_id, _, users, _ = await setup_org(factory)
    client.user_id = users["admin"]
    catalog = (await client.get(f"/modules/{module_id}")).json()["permissions"]
    view_id = next(p["id"] for p in catalog if (p["resource"], p["action"]) == ("todolist", "view"))
    delete_id = next(p["id"] for p in catalog if (p["resource"], p["action"]) == ("todolist", "delete"))
    
    created = await client.post(f"/organizations/{org_id}/roles", json={
        "module_id": module_id, "name": "  Reviewer ", "permission_ids": [view_id]
    })
    role_id = created.json()["id"]
    duplicate = await client.post(f"/organizations/{org_id}/roles", json={
        "module_id": module_id, "name": "Reviewer"
    })
    replaced = await client.put(f"/organizations/{org_id}/roles/{role_id}/permissions", json={
        "permission_ids": [delete_id]
    })
    renamed = await client.patch(f"/organizations/{org_id}/roles/{role_id}", json={"name": "Auditor"})
    blank = await client.patch(f"/organizations/{org_id}/roles/{role_id}", json={"name": "   "})
    deleted = await client.delete(f"/organizations/{org_id}/roles/{role_id}")
    missing = await client.get(f"/organizations/{org_id}/roles/{role_id}")
    
    assert created.status_code == 201
    assert created.json()["name"] == "Reviewer"
    assert duplicate.status_code == 409
    assert [p["action"] for p in replaced.json()["permissions"]] == ["delete"]
    assert renamed.json()["name"] == "Auditor"
    assert blank.status_code == 400
    assert deleted.status_code == 204
    assert missing.status_code == 404


async def test_role_with_foreign_permission_rejected(client, factory):
    org_id, module_id, _, users, _ = await setup_org(factory)
    notes_id = await factory.module("notes", [("note", "view")])
    client.user_id = users["owner"]
    foreign_id = (await client.get(f"/modules/{notes_id}")).json()["permissions"][0]["id"]
    
    response = await client.post(f"/organizations/{org_id}/roles", json={
        "module_id": module_id, "name": "Mixed", "permission_ids": [foreign_id]
    })
    
    assert response.status_code == 400


async def test_plain_member_cannot_manage_roles(client, factory):
    org_id, module_id, _, users, _ = await setup_org(factory)
    client.user_id = users["member"]
    
    response = await client.post(f"/organizations/{org_id}/roles", json={"module_id": module_id, "name": "Mine"})
    
    assert response.status_code == 403


async def test_predefined_role_cannot_be_deleted(client, factory):
    org_id, _, binding_id, users, _ = await setup_org(factory)
    viewer_id = (await factory.roles_by_name(binding_id))["Viewer"]
    client.user_id = users["owner"]
    
    response = await client.delete(f"/organizations/{org_id}/roles/{viewer_id}")
    
    assert response.status_code == 400
    assert response.json()["detail"] == "Predefined roles cannot be deleted"


async def test_role_of_other_organization_not_found(client, factory):
    _, _, binding_id, _, _ = await setup_org(factory)
    viewer_id = (await factory.roles_by_name(binding_id))["Viewer"]
    other_org = await factory.organization("Globex")
    client.user_id = await factory.user()
    await factory.member(other_org, role="owner", user_id=client.user_id)
    
    response = await client.get(f"/organizations/{other_org}/roles/{viewer_id}")
    
    assert response.status_code == 404


async def test_assignment_and_delete_guard(client, factory):
    org_id, module_id, _, users, members = await setup_org(factory)
    client.user_id = users["owner"]
    role_id = (await client.post(f"/organizations/{org_id}/roles", json={
        "module_id": module_id, "name": "Reviewer"
    })).json()["id"]
    
    assigned = await client.post(f"/organizations/{org_id}/roles/{role_id}/members", json={
        "member_id": members["member"]
    })
    again = await client.post(f"/organizations/{org_id}/roles/{role_id}/members", json={
        "member_id": members["member"]
    })
    refused = await client.delete(f"/organizations/{org_id}/roles/{role_id}")
    member_roles = await client.get(
        f"/organizations/{org_id}/members/{members['member']}/roles", params={"module_id": module_id}
    )
    removed = await client.delete(f"/organizations/{org_id}/roles/{role_id}/members/{members['member']}")
    deleted = await client.delete(f"/organizations/{org_id}/roles/{role_id}")
    
    assert assigned.status_code == 201
    assert again.status_code == 409
    assert refused.status_code == 400
    assert refused.json()["detail"] == "Cannot delete role: 1 member(s) are assigned to this role"
    assert [entry["role"]["name"] for entry in member_roles.json()] == ["Reviewer"]
    assert removed.status_code == 204
    assert deleted.status_code == 204


# ============================================================================
# Permission checks
# ============================================================================

async def test_member_checks_own_permissions_only(client, factory):
    org_id, _, binding_id, users, members = await setup_org(factory)
    client.user_id = users["member"]
    
    own = await client.post(f"/organizations/{org_id}/permissions/check", json={
        "member_id": members["member"], "module_slug": "todolist", "resource": "todolist", "action": "view"
    })
    other = await client.post(f"/organizations/{org_id}/permissions/check", json={
        "member_id": members["admin"], "module_slug": "todolist", "resource": "todolist", "action": "view"
    })
    
    assert own.status_code == 200
    assert own.json()["allowed"] is False
    assert own.json()["source"] == "default"
    assert other.status_code == 403


async def test_admin_checks_other_members(client, factory):
    org_id, _, binding_id, users, members = await setup_org(factory)
    editor_id = (await factory.roles_by_name(binding_id))["Editor"]
    client.user_id = users["admin"]
    await client.post(f"/organizations/{org_id}/roles/{editor_id}/members", json={"member_id": members["member"]})
    
    batch = await client.post(f"/organizations/{org_id}/permissions/check-batch", json={
        "member_id": members["member"],
        "module_slug": "todolist",
        "permissions": [
            {"resource": "todolist", "action": "update"},
            {"resource": "todolist", "action": "manage"},
        ],
    })
    summary = await client.get(
        f"/organizations/{org_id}/members/{members['member']}/permissions", params={"module_slug": "todolist"}
    )
    
    assert batch.json() == {"todolist.update": True, "todolist.manage": False}
    assert [role["role_name"] for role in summary.json()["custom_roles"]] == ["Editor"]
    assert len(summary.json()["effective_permissions"]) == 7


async def test_audit_log_records_role_changes(client, factory):
    org_id, module_id, _, users, _ = await setup_org(factory)
    client.user_id = users["owner"]
    
    await client.post(f"/organizations/{org_id}/roles", json={"module_id": module_id, "name": "Reviewer"})
    logs = await client.get(f"/organizations/{org_id}/audit-logs")
    
    assert logs.status_code == 200
    assert [(entry["action"], entry["resource_type"]) for entry in logs.json()] == [("create", "role")]
    assert logs.json()[0]["user_id"] == users["owner"]


async def test_audit_log_rows_written(client, factory, db):
    org_id, module_id, _, users, _ = await setup_org(factory)
    client.user_id = users["owner"]
    
    await client.patch(f"/organizations/{org_id}/modules/{module_id}", json={"is_enabled": False})
    
    entries = (await db.execute(select(AuditLog).where(AuditLog.organization_id == org_id))).scalars().all()
    assert [entry.action for entry in entries] == ["disable"]


# ============================================================================
# Todo-list consumer
# ============================================================================

async def test_todolist_routes_follow_module_permissions(client, factory):
    org_id, _, binding_id, users, members = await setup_org(factory)
    roles = await factory.roles_by_name(binding_id)
    base = f"/organizations/{org_id}/todolists"
    
    client.user_id = users["member"]
    assert (await client.get(base)).status_code == 403
    
    client.user_id = users["owner"]
    await client.post(f"/organizations/{org_id}/roles/{roles['Editor']}/members", json={
        "member_id": members["member"]
    })
    
    client.user_id = users["member"]
    created = await client.post(base, json={"title": "Launch"})
    todo_list_id = created.json()["id"]
    item = await client.post(f"{base}/{todo_list_id}/items", json={"title": "Write notes"})
    completed = await client.post(f"{base}/{todo_list_id}/items/{item.json()['id']}/complete")
    fetched = await client.get(f"{base}/{todo_list_id}")
    delete_denied = await client.delete(f"{base}/{todo_list_id}")
    
    assert created.status_code == 201
    assert item.status_code == 201
    assert completed.json()["completed"] is True
    assert completed.json()["completed_at"] is not None
    assert [entry["title"] for entry in fetched.json()["items"]] == ["Write notes"]
    assert delete_denied.status_code == 403
    
    client.user_id = users["admin"]
    assert (await client.delete(f"{base}/{todo_list_id}")).status_code == 204
    assert (await client.get(f"{base}/{todo_list_id}")).status_code == 404


async def test_disabled_module_denies_role_holders_but_not_owner(client, factory):
    org_id, module_id, binding_id, users, members = await setup_org(factory)
    viewer_id = (await factory.roles_by_name(binding_id))["Viewer"]
    client.user_id = users["owner"]
    await client.post(f"/organizations/{org_id}/roles/{viewer_id}/members", json={"member_id": members["member"]})

    disabled = await client.patch(f"/organizations/{org_id}/modules/{module_id}", json={"is_enabled": False})
    owner_access = await client.get(f"/organizations/{org_id}/todolists")
    client.user_id = users["member"]
    member_access = await client.get(f"/organizations/{org_id}/todolists")

    assert disabled.json()["is_enabled"] is False
    assert owner_access.status_code == 200
    assert member_access.status_code == 403


async def test_outsider_cannot_reach_organization(client, factory):
    org_id, _, _, _, _ = await setup_org(factory)
    client.user_id = await factory.user("Mallory")
    
    response = await client.get(f"/organizations/{org_id}/todolists")
    
    assert response.status_code == 403
