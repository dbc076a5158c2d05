"""
Integration tests for role and permission management.
"""

import pytest
from sqlalchemy import select

from backoffice.app.core.exceptions import Conflict, NotFound
from backoffice.app.models.permission import Permission, RolePermission
from backoffice.app.models.role import Role
from backoffice.app.services.audit import AuditAction
from backoffice.app.services.permissions import PermissionModel


@pytest.fixture
async def admin_headers(login_as, bearer):
    _, data = await login_as("admin", roles=["Admin"])
    return bearer(data["token"])


async def role_by_name(db_session, name):
    return (await db_session.execute(select(Role).where(Role.name == name))).scalar_one()


async def permission_ids(db_session, resource=None):
    query = select(Permission.id).order_by(Permission.id)
    if resource:
        query = query.where(Permission.resource == resource)
    return list((await db_session.execute(query)).scalars().all())


@pytest.mark.asyncio
async def test_list_roles_with_counts(client, admin_headers):
    response = await client.get("/api/roles", headers=admin_headers)
    assert response.status_code == 200
    roles = {role["name"]: role for role in response.json()["data"]}
    assert set(roles) == {"Admin", "Accountant", "Manager", "Viewer"}
    assert roles["Admin"]["user_count"] == 1
    assert len(roles["Admin"]["permissions"]) == 32
    assert all(role["is_system"] for role in roles.values())


@pytest.mark.asyncio
async def test_create_role_and_duplicate_name(client, admin_headers, db_session, audit_rows):
    ids = await permission_ids(db_session, "reports")
    response = await client.post("/api/roles", headers=admin_headers, json={
        "name": "Auditor",
        "description": "Reads reports",
        "permission_ids": ids,
    })
    assert response.status_code == 201
    created = response.json()["data"]
    assert created["is_system"] is False
    assert sorted(created["permission_ids"]) == ids

    rows = await audit_rows(AuditAction.CREATED)
    assert rows[-1].resource == "roles"
    assert rows[-1].resource_id == str(created["id"])

    response = await client.post("/api/roles", headers=admin_headers, json={"name": "Auditor"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_system_role_cannot_be_renamed_or_deleted(client, admin_headers, db_session):
    viewer = await role_by_name(db_session, "Viewer")

    response = await client.put(f"/api/roles/{viewer.id}", headers=admin_headers, json={"name": "Watcher"})
    assert response.status_code == 400

    response = await client.put(
        f"/api/roles/{viewer.id}", headers=admin_headers, json={"description": "Read-only access"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["description"] == "Read-only access"

    response = await client.delete(f"/api/roles/{viewer.id}", headers=admin_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_assigned_role_cannot_be_deleted(db_session, make_user):
    model = PermissionModel(db_session)
    role = await model.create_role("Temp")
    user = await make_user("holder")
    await model.assign_role(user.id, role.id)

    with pytest.raises(Conflict):
        await model.delete_role(role.id)

    await model.revoke_role(user.id, role.id)
    await model.delete_role(role.id)
    assert await model.get_role_by_name("Temp") is None


@pytest.mark.asyncio
async def test_set_permissions_replaces_grants(client, admin_headers, db_session, audit_rows):
    model = PermissionModel(db_session)
    role = await model.create_role("Swap", permission_ids=await permission_ids(db_session, "reports"))
    new_ids = await permission_ids(db_session, "charges")

    response = await client.put(
        f"/api/roles/{role.id}/permissions", headers=admin_headers, json={"permission_ids": new_ids}
    )
    assert response.status_code == 200
    assert sorted(p["id"] for p in response.json()["data"]) == new_ids

    rows = await audit_rows(AuditAction.UPDATED)
    assert rows[-1].resource == "role_permissions"
    assert sorted(rows[-1].new_values["permission_ids"]) == new_ids


@pytest.mark.asyncio
async def test_set_permissions_with_unknown_id_changes_nothing(client, admin_headers, db_session):
    original = await permission_ids(db_session, "reports")
    role = await PermissionModel(db_session).create_role("Stable", permission_ids=original)

    response = await client.put(
        f"/api/roles/{role.id}/permissions", headers=admin_headers, json={"permission_ids": [original[0], 99999]}
    )
    assert response.status_code == 404

    grants = await db_session.execute(
        select(RolePermission.permission_id).where(RolePermission.role_id == role.id).order_by(RolePermission.permission_id)
    )
    assert list(grants.scalars().all()) == original


@pytest.mark.asyncio
async def test_assign_and_revoke_errors(db_session, make_user):
    model = PermissionModel(db_session)
    user = await make_user("target", roles=["Viewer"])
    viewer = await role_by_name(db_session, "Viewer")
    manager = await role_by_name(db_session, "Manager")

    with pytest.raises(Conflict):
        await model.assign_role(user.id, viewer.id)
    with pytest.raises(NotFound):
        await model.revoke_role(user.id, manager.id)
    with pytest.raises(NotFound):
        await model.assign_role(user.id, 99999)
    with pytest.raises(NotFound):
        await model.assign_role(99999, viewer.id)


@pytest.mark.asyncio
async def test_list_permissions_grouped(client, admin_headers):
    response = await client.get("/api/permissions", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data["permissions"]) == 32
    assert len(data["grouped"]) == 8
    salaries_read = next(p for p in data["grouped"]["salaries"] if p["action"] == "READ")
    # Admin, Accountant, Manager, Viewer
    assert salaries_read["role_count"] == 4


@pytest.mark.asyncio
async def test_permission_detail_lists_roles(client, admin_headers, db_session):
    permission = (await db_session.execute(
        select(Permission).where(Permission.resource == "salaries", Permission.name == "delete_salaries")
    )).scalar_one()

    response = await client.get(f"/api/permissions/{permission.id}", headers=admin_headers)
    assert response.status_code == 200
    assert [r["name"] for r in response.json()["data"]["roles"]] == ["Admin"]

    response = await client.get("/api/permissions/99999", headers=admin_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_role_detail_lists_users(client, admin_headers, db_session):
    admin_role = await role_by_name(db_session, "Admin")
    response = await client.get(f"/api/roles/{admin_role.id}", headers=admin_headers)
    assert response.status_code == 200
    assert [u["username"] for u in response.json()["data"]["users"]] == ["admin"]
