"""Administration API: permissions, roles, mappings, users, audit logs.

Pattern: test_<verb>_<noun>_<scenario>
"""
import pytest

import app.features.permissions.routes as permission_routes
import app.features.users.routes as user_routes


@pytest.fixture
def admin_headers(admin, auth_headers):
    return auth_headers(admin)


async def create_permission(client, headers, name, description=None):
    return await client.post("/permissions", json={"name": name, "description": description}, headers=headers)


async def create_role(client, headers, name, description=None):
    return await client.post("/roles", json={"name": name, "description": description}, headers=headers)


# ═══════════════════════════════════════════════════════════
# Access control
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
@pytest.mark.parametrize("method,path", [
    ("get", "/permissions"),
    ("get", "/roles"),
    ("get", "/users"),
    ("get", "/users/summary"),
    ("get", "/audit-logs"),
])
async def test_admin_routes_reject_non_admin(client, editor, auth_headers, method, path):
    resp = await getattr(client, method)(path, headers=auth_headers(editor))
    assert resp.status_code == 403
    assert resp.json() == {"detail": "Forbidden: admin only"}


@pytest.mark.asyncio
async def test_admin_routes_require_authentication(client, rbac):
    resp = await client.get("/permissions")
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Not authenticated"}


@pytest.mark.asyncio
async def test_create_permission_as_non_admin(client, editor, auth_headers):
    resp = await create_permission(client, auth_headers(editor), "report:view")
    assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════
# Permissions
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_permission(client, admin_headers):
    resp = await create_permission(client, admin_headers, "report:view", "View reports")
    assert resp.status_code == 201
    data = resp.json()
    assert data["name"] == "report:view"
    assert data["description"] == "View reports"
    assert "id" in data
    assert "created_at" in data


@pytest.mark.asyncio
async def test_create_permission_duplicate(client, admin_headers):
    await create_permission(client, admin_headers, "report:view")
    resp = await create_permission(client, admin_headers, "report:view")
    assert resp.status_code == 409
    assert resp.json() == {"detail": "Permission name already exists"}


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["", "   ", "report view", "report/view"])
async def test_create_permission_validates_name(client, admin_headers, name):
    resp = await create_permission(client, admin_headers, name)
    assert resp.status_code == 400
    assert "name" in resp.json()


@pytest.mark.asyncio
async def test_list_and_get_permission(client, rbac, admin_headers):
    resp = await client.get("/permissions", headers=admin_headers)
    assert resp.status_code == 200
    names = {p["name"] for p in resp.json()}
    assert {"journal:create", "journal:edit:own", "user:grant:editor"} <= names

    permission_id = rbac.permissions["journal:create"]
    resp = await client.get(f"/permissions/{permission_id}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "journal:create"


@pytest.mark.asyncio
async def test_get_permission_not_found(client, admin_headers):
    resp = await client.get("/permissions/01HZXNOSUCHPERMISSION00000", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Permission not found"}


@pytest.mark.asyncio
async def test_update_permission(client, admin_headers):
    permission_id = (await create_permission(client, admin_headers, "report:view")).json()["id"]
    resp = await client.put(
        f"/permissions/{permission_id}",
        json={"name": "report:read", "description": "Read reports"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["name"] == "report:read"
    assert resp.json()["description"] == "Read reports"


@pytest.mark.asyncio
async def test_update_permission_to_existing_name(client, rbac, admin_headers):
    permission_id = (await create_permission(client, admin_headers, "report:view")).json()["id"]
    resp = await client.put(f"/permissions/{permission_id}", json={"name": "journal:create"}, headers=admin_headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_delete_permission_removes_mappings(client, rbac, admin_headers, editor, auth_headers):
    permission_id = rbac.permissions["journal:create"]
    resp = await client.delete(f"/permissions/{permission_id}", headers=admin_headers)
    assert resp.status_code == 204

    resp = await client.get(f"/permissions/{permission_id}", headers=admin_headers)
    assert resp.status_code == 404

    resp = await client.get(f"/roles/{rbac.roles['editor']}/permissions", headers=admin_headers)
    assert "journal:create" not in {p["name"] for p in resp.json()["permissions"]}

    resp = await client.get("/auth/has", params={"permission": "journal:create"}, headers=auth_headers(editor))
    assert resp.json() == {"allowed": False}


@pytest.mark.asyncio
async def test_list_permission_roles_any_user(client, rbac, viewer, auth_headers):
    permission_id = rbac.permissions["journal:view"]
    resp = await client.get(f"/permissions/{permission_id}/roles", headers=auth_headers(viewer))
    assert resp.status_code == 200
    data = resp.json()
    assert data["permission"] == {"id": permission_id, "name": "journal:view"}
    assert [r["name"] for r in data["roles"]] == ["admin", "editor", "viewer"]


# ═══════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_role(client, admin_headers):
    resp = await create_role(client, admin_headers, "moderator", "Moderates comments")
    assert resp.status_code == 201
    assert resp.json()["name"] == "moderator"


@pytest.mark.asyncio
async def test_create_role_duplicate(client, admin_headers):
    resp = await create_role(client, admin_headers, "editor")
    assert resp.status_code == 409
    assert resp.json() == {"detail": "Role name already exists"}


@pytest.mark.asyncio
async def test_list_roles_with_permissions(client, admin_headers):
    resp = await client.get("/roles", headers=admin_headers)
    assert resp.status_code == 200
    roles = {r["name"]: r for r in resp.json()}
    assert set(roles) == {"admin", "editor", "viewer"}
    assert [p["name"] for p in roles["viewer"]["permissions"]] == ["journal:view"]


@pytest.mark.asyncio
async def test_get_role_not_found(client, admin_headers):
    resp = await client.get("/roles/01HZXNOSUCHROLE00000000000", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Role not found"}


@pytest.mark.asyncio
async def test_rename_role(client, rbac, admin_headers):
    resp = await client.put(f"/roles/{rbac.roles['viewer']}", json={"name": "reader"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "reader"


@pytest.mark.asyncio
async def test_admin_role_is_protected(client, rbac, admin_headers):
    admin_role_id = rbac.roles["admin"]

    resp = await client.put(f"/roles/{admin_role_id}", json={"name": "root"}, headers=admin_headers)
    assert resp.status_code == 409

    resp = await client.delete(f"/roles/{admin_role_id}", headers=admin_headers)
    assert resp.status_code == 409

    # Description changes are fine
    resp = await client.put(
        f"/roles/{admin_role_id}", json={"name": "admin", "description": "Superuser"}, headers=admin_headers
    )
    assert resp.status_code == 200
    assert resp.json()["description"] == "Superuser"


@pytest.mark.asyncio
async def test_delete_role_removes_assignments(client, rbac, admin_headers, editor, auth_headers):
    resp = await client.delete(f"/roles/{rbac.roles['editor']}", headers=admin_headers)
    assert resp.status_code == 204

    resp = await client.get("/auth/me", headers=auth_headers(editor))
    assert resp.json()["user"]["roles"] == []

    resp = await client.get(f"/roles/{rbac.roles['editor']}", headers=admin_headers)
    assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════
# Role-permission mappings
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_assign_and_remove_permission(client, rbac, admin_headers):
    role_id = rbac.roles["viewer"]
    permission_id = rbac.permissions["journal:create"]

    resp = await client.post(f"/roles/{role_id}/permissions", json={"permission_id": permission_id}, headers=admin_headers)
    assert resp.status_code == 201

    resp = await client.post(f"/roles/{role_id}/permissions", json={"permission_id": permission_id}, headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json() == {"detail": "Permission already assigned to role"}

    resp = await client.get(f"/roles/{role_id}/permissions", headers=admin_headers)
    assert resp.json()["role"] == {"id": role_id, "name": "viewer"}
    assert [p["name"] for p in resp.json()["permissions"]] == ["journal:create", "journal:view"]

    resp = await client.delete(f"/roles/{role_id}/permissions/{permission_id}", headers=admin_headers)
    assert resp.status_code == 200

    resp = await client.delete(f"/roles/{role_id}/permissions/{permission_id}", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Role or permission mapping not found"}


@pytest.mark.asyncio
async def test_assign_unknown_permission(client, rbac, admin_headers):
    resp = await client.post(
        f"/roles/{rbac.roles['viewer']}/permissions",
        json={"permission_id": "01HZXNOSUCHPERMISSION00000"},
        headers=admin_headers,
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_replace_role_permissions(client, rbac, admin_headers):
    role_id = (await create_role(client, admin_headers, "reviewer")).json()["id"]
    view, create, edit_any = (
        rbac.permissions["journal:view"], rbac.permissions["journal:create"], rbac.permissions["journal:edit:any"]
    )

    resp = await client.put(f"/roles/{role_id}/permissions", json={"permission_ids": [view, create]}, headers=admin_headers)
    assert resp.status_code == 200
    assert sorted(resp.json()["added"]) == sorted([view, create])
    assert resp.json()["removed"] == []

    resp = await client.put(f"/roles/{role_id}/permissions", json={"permission_ids": [create, edit_any]}, headers=admin_headers)
    assert resp.json() == {"added": [edit_any], "removed": [view]}

    resp = await client.get(f"/roles/{role_id}/permissions", headers=admin_headers)
    assert {p["name"] for p in resp.json()["permissions"]} == {"journal:create", "journal:edit:any"}


@pytest.mark.asyncio
async def test_replace_role_permissions_is_all_or_nothing(client, rbac, admin_headers):
    role_id = rbac.roles["viewer"]
    resp = await client.put(
        f"/roles/{role_id}/permissions",
        json={"permission_ids": [rbac.permissions["journal:create"], "01HZXNOSUCHPERMISSION00000"]},
        headers=admin_headers,
    )
    assert resp.status_code == 404

    resp = await client.get(f"/roles/{role_id}/permissions", headers=admin_headers)
    assert [p["name"] for p in resp.json()["permissions"]] == ["journal:view"]


@pytest.mark.asyncio
async def test_replace_role_permissions_conflicting_write(client, rbac, admin_headers, monkeypatch):
    """A mapping added between the read and the insert turns into 409 and nothing changes."""
    role_id = rbac.roles["viewer"]

    async def stale_read(db, role_id):
        return set()

    monkeypatch.setattr(permission_routes, "get_role_permission_ids", stale_read)

    resp = await client.put(
        f"/roles/{role_id}/permissions",
        json={"permission_ids": [rbac.permissions["journal:view"], rbac.permissions["journal:create"]]},
        headers=admin_headers,
    )
    assert resp.status_code == 409

    resp = await client.get(f"/roles/{role_id}/permissions", headers=admin_headers)
    assert [p["name"] for p in resp.json()["permissions"]] == ["journal:view"]


# ═══════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_users_with_roles(client, admin_headers, editor, viewer):
    resp = await client.get("/users", headers=admin_headers)
    assert resp.status_code == 200
    users = {u["email"]: u for u in resp.json()["users"]}
    assert users["admin@example.com"]["roles"] == ["admin"]
    assert users["editor@example.com"]["roles"] == ["editor"]
    assert users["viewer@example.com"]["roles"] == ["viewer"]
    assert "password_hash" not in users["viewer@example.com"]


@pytest.mark.asyncio
async def test_role_summary(client, admin_headers, editor):
    resp = await client.get("/users/summary", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"counts": {"admin": 1, "editor": 1, "viewer": 0}}


@pytest.mark.asyncio
async def test_assign_role_to_user(client, rbac, admin_headers, viewer):
    url = f"/users/{viewer.id}/roles"
    resp = await client.post(url, json={"role_id": rbac.roles["editor"]}, headers=admin_headers)
    assert resp.status_code == 201

    resp = await client.post(url, json={"role_id": rbac.roles["editor"]}, headers=admin_headers)
    assert resp.status_code == 409

    resp = await client.post(url, json={"role_id": "01HZXNOSUCHROLE00000000000"}, headers=admin_headers)
    assert resp.status_code == 404

    resp = await client.post(
        "/users/01HZXNOSUCHUSER00000000000/roles", json={"role_id": rbac.roles["editor"]}, headers=admin_headers
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_revoke_missing_role_assignment(client, rbac, admin_headers, viewer):
    resp = await client.delete(f"/users/{viewer.id}/roles/{rbac.roles['editor']}", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Role assignment not found"}


@pytest.mark.asyncio
async def test_admin_cannot_remove_own_admin_role(client, rbac, admin, admin_headers):
    resp = await client.delete(f"/users/{admin.id}/roles/{rbac.roles['admin']}", headers=admin_headers)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_admin_can_remove_another_admin(client, rbac, admin_headers, make_user):
    other = await make_user("second-admin@example.com", roles=["admin"])
    resp = await client.delete(f"/users/{other.id}/roles/{rbac.roles['admin']}", headers=admin_headers)
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_admin_cannot_delete_self(client, admin, admin_headers):
    resp = await client.delete(f"/users/{admin.id}", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json() == {"detail": "Cannot delete yourself"}


@pytest.mark.asyncio
async def test_delete_user_removes_their_editorials(client, admin_headers, editor, auth_headers):
    resp = await client.post("/editorials", json={"title": "Mine", "content": "x"}, headers=auth_headers(editor))
    editorial_id = resp.json()["id"]

    resp = await client.delete(f"/users/{editor.id}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"message": "User deleted"}

    assert (await client.get(f"/editorials/{editorial_id}")).status_code == 404
    resp = await client.get("/users", headers=admin_headers)
    assert "editor@example.com" not in {u["email"] for u in resp.json()["users"]}


@pytest.mark.asyncio
async def test_delete_unknown_user(client, admin_headers):
    resp = await client.delete("/users/01HZXNOSUCHUSER00000000000", headers=admin_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_count_admins(db, admin, make_user):
    assert await user_routes.count_admins(db) == 1
    await make_user("second-admin@example.com", roles=["admin"])
    assert await user_routes.count_admins(db) == 2


@pytest.mark.asyncio
async def test_last_admin_guards(client, rbac, admin_headers, make_user, monkeypatch):
    """
    With a single admin left (as seen after a concurrent demotion), the other
    admin can be neither deleted nor stripped of the role.
    """
    other = await make_user("second-admin@example.com", roles=["admin"])

    async def one_admin(db):
        return 1

    monkeypatch.setattr(user_routes, "count_admins", one_admin)

    resp = await client.delete(f"/users/{other.id}", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json() == {"detail": "Cannot delete the last admin"}

    resp = await client.delete(f"/users/{other.id}/roles/{rbac.roles['admin']}", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json() == {"detail": "Cannot remove the last admin"}


# ═══════════════════════════════════════════════════════════
# Editor grants
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_grant_and_revoke_editor(client, admin_headers, viewer, auth_headers):
    resp = await client.post(f"/users/{viewer.id}/grant-editor", headers=admin_headers)
    assert resp.status_code == 201
    assert resp.json() == {"message": "Editor role granted"}

    resp = await client.post(f"/users/{viewer.id}/grant-editor", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"message": "User already has editor role"}

    me = await client.get("/auth/me", headers=auth_headers(viewer))
    assert me.json()["user"]["roles"] == ["editor", "viewer"]

    resp = await client.post(f"/users/{viewer.id}/revoke-editor", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"message": "Editor role revoked"}

    resp = await client.post(f"/users/{viewer.id}/revoke-editor", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"message": "User did not have editor role"}


@pytest.mark.asyncio
async def test_grant_editor_requires_permission(client, editor, viewer, auth_headers):
    resp = await client.post(f"/users/{viewer.id}/grant-editor", headers=auth_headers(editor))
    assert resp.status_code == 403
    assert resp.json() == {"detail": "Forbidden: missing permission"}


@pytest.mark.asyncio
async def test_grant_editor_unknown_user(client, admin_headers):
    resp = await client.post("/users/01HZXNOSUCHUSER00000000000/grant-editor", headers=admin_headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_grant_editor_racing_duplicate_is_not_an_error(client, admin_headers, viewer, monkeypatch):
    """The unique key on user_roles catches a grant that slipped past the existence check."""
    url = f"/users/{viewer.id}/grant-editor"
    assert (await client.post(url, headers=admin_headers)).status_code == 201

    async def stale_check(db, user_id, role_id):
        return False

    monkeypatch.setattr(user_routes, "user_has_role", stale_check)

    resp = await client.post(url, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"message": "User already has editor role"}

    resp = await client.get("/audit-logs", params={"action": "assign_role"}, headers=admin_headers)
    assert resp.json()["total"] == 1


# ═══════════════════════════════════════════════════════════
# Audit logs
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_audit_log_records_changes(client, admin, admin_headers):
    permission_id = (await create_permission(client, admin_headers, "report:view")).json()["id"]
    await create_role(client, admin_headers, "moderator")

    resp = await client.get("/audit-logs", params={"resource_type": "permission"}, headers=admin_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 1
    entry = data["items"][0]
    assert entry["action"] == "create"
    assert entry["resource_id"] == permission_id
    assert entry["user_id"] == admin.id
    assert entry["details"]["name"] == "report:view"

    resp = await client.get("/audit-logs", headers=admin_headers)
    assert resp.json()["total"] == 2
    assert resp.json()["page"] == 1


@pytest.mark.asyncio
async def test_failed_change_leaves_no_audit_entry(client, admin_headers):
    await create_permission(client, admin_headers, "report:view")
    await create_permission(client, admin_headers, "report:view")

    resp = await client.get("/audit-logs", params={"action": "create"}, headers=admin_headers)
    assert resp.json()["total"] == 1
