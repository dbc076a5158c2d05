"""
Integration tests for the authorization gate and the permission model.

Tests permission guards, role guards and effective permission computation.
"""

import pytest
from fastapi import Depends, FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select

from backoffice.app.core.dependencies import IdentityContext
from backoffice.app.core.exceptions import Forbidden, register_exception_handlers
from backoffice.app.core.guards import require_permission, require_roles
from backoffice.app.main import app
from backoffice.app.models.enums import PermissionAction, UserStatus
from backoffice.app.models.permission import Permission
from backoffice.app.models.role import Role
from backoffice.app.services.permissions import PermissionModel


@pytest.fixture
async def guarded_client():
    """A small app exposing guarded routes on resources without their own endpoints."""
    guarded = FastAPI()
    register_exception_handlers(guarded)

    @guarded.delete("/salaries/{salary_id}")
    async def delete_salary(
        salary_id: int,
        current_user: IdentityContext = Depends(require_permission("salaries", PermissionAction.DELETE)),
    ):
        return {"deleted": salary_id}

    @guarded.get("/salaries")
    async def list_salaries(
        current_user: IdentityContext = Depends(require_permission("salaries", PermissionAction.READ)),
    ):
        return {"items": []}

    @guarded.get("/management")
    async def management(current_user: IdentityContext = Depends(require_roles("Admin", "Manager"))):
        return {"user": current_user.username}

    guarded.dependency_overrides = app.dependency_overrides
    async with AsyncClient(transport=ASGITransport(app=guarded), base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_accountant_cannot_delete_salaries(guarded_client, login_as, bearer):
    user, data = await login_as("acct", roles=["Accountant"])

    response = await guarded_client.delete("/salaries/1", headers=bearer(data["token"]))
    assert response.status_code == 403
    assert response.json()["requiredPermission"] == {"resource": "salaries", "action": "DELETE"}

    response = await guarded_client.get("/salaries", headers=bearer(data["token"]))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_role_guard(guarded_client, login_as, bearer):
    _, viewer = await login_as("viewer1", roles=["Viewer"])
    _, manager = await login_as("manager1", roles=["Manager"])

    response = await guarded_client.get("/management", headers=bearer(viewer["token"]))
    assert response.status_code == 403
    assert response.json()["requiredRoles"] == ["Admin", "Manager"]

    response = await guarded_client.get("/management", headers=bearer(manager["token"]))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_user_without_roles_is_denied(guarded_client, login_as, bearer):
    _, data = await login_as("nobody")
    response = await guarded_client.get("/salaries", headers=bearer(data["token"]))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_missing_permission_set_fails_closed():
    checker = require_permission("salaries", PermissionAction.READ)
    identity = IdentityContext(id=1, email="x@example.com", username="x", roles=["Admin"])
    with pytest.raises(Forbidden):
        await checker(current_user=identity)


@pytest.mark.asyncio
async def test_viewer_blocked_from_role_deletion(client, login_as, bearer, db_session):
    _, data = await login_as("viewer2", roles=["Viewer"])
    role = (await db_session.execute(select(Role).where(Role.name == "Manager"))).scalar_one()

    response = await client.delete(f"/api/roles/{role.id}", headers=bearer(data["token"]))
    assert response.status_code == 403
    body = response.json()
    assert body["success"] is False
    assert body["requiredPermission"] == {"resource": "roles", "action": "DELETE"}


@pytest.mark.asyncio
async def test_effective_permissions_are_a_deduplicated_union(db_session, make_user):
    user = await make_user("multi", roles=["Viewer", "Accountant"])
    permissions = await PermissionModel(db_session).effective_permissions(user.id)

    # Viewer: 4 READs; Accountant: salaries/charges CRU, reports/dashboard/audit_logs READ
    assert permissions == {
        ("dashboard", "READ"),
        ("reports", "READ"),
        ("salaries", "CREATE"), ("salaries", "READ"), ("salaries", "UPDATE"),
        ("charges", "CREATE"), ("charges", "READ"), ("charges", "UPDATE"),
        ("audit_logs", "READ"),
    }


@pytest.mark.asyncio
async def test_admin_has_every_permission(db_session, make_user):
    user = await make_user("root", roles=["Admin"])
    permissions = await PermissionModel(db_session).effective_permissions(user.id)
    total = len((await db_session.execute(select(Permission))).scalars().all())
    assert len(permissions) == total == 32


@pytest.mark.asyncio
async def test_role_changes_apply_on_next_request(client, login_as, make_user, bearer, db_session):
    admin, admin_data = await login_as("boss", roles=["Admin"])
    user, data = await login_as("worker", roles=["Viewer"])
    accountant = (await db_session.execute(select(Role).where(Role.name == "Accountant"))).scalar_one()

    me = (await client.get("/api/auth/me", headers=bearer(data["token"]))).json()["data"]
    assert {"resource": "salaries", "action": "UPDATE"} not in me["permissions"]

    response = await client.post(
        "/api/users/assign-role",
        headers=bearer(admin_data["token"]),
        json={"user_id": user.id, "role_id": accountant.id},
    )
    assert response.status_code == 200

    # Same token, new permissions
    me = (await client.get("/api/auth/me", headers=bearer(data["token"]))).json()["data"]
    assert {"resource": "salaries", "action": "UPDATE"} in me["permissions"]
    assert sorted(me["roles"]) == ["Accountant", "Viewer"]

    response = await client.post(
        "/api/users/revoke-role",
        headers=bearer(admin_data["token"]),
        json={"user_id": user.id, "role_id": accountant.id},
    )
    assert response.status_code == 200

    me = (await client.get("/api/auth/me", headers=bearer(data["token"]))).json()["data"]
    assert {"resource": "salaries", "action": "UPDATE"} not in me["permissions"]


@pytest.mark.asyncio
async def test_deactivated_user_loses_access_immediately(client, login_as, bearer):
    admin, admin_data = await login_as("chief", roles=["Admin"])
    user, data = await login_as("leaver", roles=["Viewer"])

    response = await client.put(
        f"/api/users/{user.id}",
        headers=bearer(admin_data["token"]),
        json={"status": UserStatus.SUSPENDED.value},
    )
    assert response.status_code == 200

    response = await client.get("/api/auth/me", headers=bearer(data["token"]))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_error_responses_are_consistent(client):
    response = await client.get("/api/users")
    assert response.status_code == 401
    body = response.json()
    assert set(body) >= {"success", "error_code", "message", "details"}
    assert body["success"] is False
