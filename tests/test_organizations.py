from app.features.permissions.checker import check_permission
from app.features.permissions.roles import assign_role_to_member, count_role_members


async def test_global_admin_creates_organization_with_owner(client, factory):
    owner_id = await factory.user("Olivia")
    client.user_id = await factory.global_admin()
    
    created = await client.post("/organizations/", json={"name": "Acme", "slug": "acme", "owner_user_id": owner_id})
    duplicate = await client.post("/organizations/", json={"name": "Acme 2", "slug": "acme"})
    
    assert created.status_code == 201
    assert duplicate.status_code == 409
    
    client.user_id = owner_id
    me = await client.get("/users/me")
    
    assert me.json()["memberships"] == [
        {"id": me.json()["memberships"][0]["id"], "organization_id": created.json()["id"], "role": "owner"}
    ]
    assert me.json()["is_admin"] is False


async def test_regular_user_cannot_create_organization(client, factory):
    client.user_id = await factory.user()
    
    response = await client.post("/organizations/", json={"name": "Acme", "slug": "acme"})
    
    assert response.status_code == 403


async def test_owner_adds_members(client, factory, org_id):
    client.user_id = await factory.user("Olivia")
    await factory.member(org_id, role="owner", user_id=client.user_id)
    newcomer_id = await factory.user("Nina")
    
    added = await client.post(f"/organizations/{org_id}/members", json={"user_id": newcomer_id, "role": "admin"})
    again = await client.post(f"/organizations/{org_id}/members", json={"user_id": newcomer_id})
    members = await client.get(f"/organizations/{org_id}/members")
    
    assert added.status_code == 201
    assert added.json()["role"] == "admin"
    assert again.status_code == 409
    assert sorted(member["role"] for member in members.json()) == ["admin", "owner"]


async def test_plain_member_cannot_add_members(client, factory, org_id):
    client.user_id = await factory.user()
    await factory.member(org_id, user_id=client.user_id)
    
    response = await client.post(f"/organizations/{org_id}/members", json={"user_id": await factory.user("Nina")})
    
    assert response.status_code == 403


async def test_non_member_cannot_view_organization(client, factory, org_id):
    client.user_id = await factory.user()
    
    assert (await client.get(f"/organizations/{org_id}")).status_code == 403
    assert (await client.get("/organizations/missing")).status_code == 404


async def test_global_admin_grants_global_role(client, factory):
    target_id = await factory.user("Nina")
    admin_id = await factory.global_admin()
    client.user_id = admin_id
    
    granted = await client.put(f"/users/{target_id}/role", json={"role": "admin"})
    self_change = await client.put(f"/users/{admin_id}/role", json={"role": None})
    invalid = await client.put(f"/users/{target_id}/role", json={"role": "superuser"})
    
    assert granted.status_code == 200
    assert granted.json()["is_admin"] is True
    assert self_change.status_code == 400
    assert invalid.status_code == 400
    
    client.user_id = target_id
    assert (await client.put(f"/users/{admin_id}/role", json={"role": None})).status_code == 200


async def test_owner_changes_member_tier(client, factory, org_id):
    owner_id = await factory.user("Olivia")
    owner_member = await factory.member(org_id, role="owner", user_id=owner_id)
    member_id = await factory.member(org_id)
    co_owner = await factory.member(org_id, role="owner")
    client.user_id = owner_id
    
    promoted = await client.patch(f"/organizations/{org_id}/members/{member_id}", json={"role": "admin"})
    demoted = await client.patch(f"/organizations/{org_id}/members/{member_id}", json={"role": "member"})
    to_owner = await client.patch(f"/organizations/{org_id}/members/{member_id}", json={"role": "owner"})
    own = await client.patch(f"/organizations/{org_id}/members/{owner_member}", json={"role": "member"})
    other_owner = await client.patch(f"/organizations/{org_id}/members/{co_owner}", json={"role": "member"})
    missing = await client.patch(f"/organizations/{org_id}/members/missing", json={"role": "admin"})
    
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "admin"
    assert demoted.json()["role"] == "member"
    assert to_owner.status_code == 400
    assert own.status_code == 400
    assert other_owner.status_code == 400
    assert missing.status_code == 404


async def test_plain_member_cannot_change_tiers(client, factory, org_id):
    client.user_id = await factory.user()
    await factory.member(org_id, user_id=client.user_id)
    member_id = await factory.member(org_id)
    
    response = await client.patch(f"/organizations/{org_id}/members/{member_id}", json={"role": "admin"})
    
    assert response.status_code == 403


async def test_removing_member_drops_module_roles(client, factory, db, org_id, todolist_binding):
    client.user_id = await factory.user("Olivia")
    await factory.member(org_id, role="owner", user_id=client.user_id)
    member_id = await factory.member(org_id)
    role_id = (await factory.roles_by_name(todolist_binding))["Viewer"]
    assert (await assign_role_to_member(db, member_id, role_id)).success
    
    removed = await client.delete(f"/organizations/{org_id}/members/{member_id}")
    again = await client.delete(f"/organizations/{org_id}/members/{member_id}")
    
    assert removed.status_code == 204
    assert again.status_code == 404
    assert await count_role_members(db, role_id) == 0
    assert not (await check_permission(db, member_id, org_id, "todolist", "todolist", "view")).allowed


async def test_member_removal_guards(client, factory, org_id):
    owner_id = await factory.user("Olivia")
    owner_member = await factory.member(org_id, role="owner", user_id=owner_id)
    other_org = await factory.organization("Globex")
    outsider = await factory.member(other_org)
    
    client.user_id = owner_id
    itself = await client.delete(f"/organizations/{org_id}/members/{owner_member}")
    foreign = await client.delete(f"/organizations/{org_id}/members/{outsider}")
    
    client.user_id = await factory.global_admin()
    last_owner = await client.delete(f"/organizations/{org_id}/members/{owner_member}")
    
    assert itself.status_code == 400
    assert foreign.status_code == 404
    assert last_owner.status_code == 400
    assert last_owner.json()["detail"] == "Cannot remove the last owner of the organization"
