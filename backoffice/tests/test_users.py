"""
Integration tests for user management.
"""

import pytest
from sqlalchemy import select

from backoffice.app.models.enums import UserStatus
from backoffice.app.models.role import Role
from backoffice.app.models.session import UserSession
from backoffice.app.models.user import User
from backoffice.app.services.audit import AuditAction


@pytest.fixture
async def admin(login_as, bearer):
    user, data = await login_as("admin", roles=["Admin"])
    return user, bearer(data["token"])


@pytest.mark.asyncio
async def test_create_update_and_list_users(client, admin, db_session, audit_rows):
    _, headers = admin
    manager = (await db_session.execute(select(Role).where(Role.name == "Manager"))).scalar_one()

    response = await client.post("/api/users", headers=headers, json={
        "email": "Staff@Example.com",
        "username": "staff",
        "password": "password123",
        "role_ids": [manager.id],
    })
    assert response.status_code == 201
    created = response.json()["data"]
    assert created["email"] == "staff@example.com"

    response = await client.put(f"/api/users/{created['id']}", headers=headers, json={
        "first_name": "Stan",
        "hashed_password": "ignored",
        "email_verified": True,
    })
    assert response.status_code == 200
    assert response.json()["data"]["first_name"] == "Stan"
    assert response.json()["data"]["email_verified"] is False

    response = await client.get("/api/users", headers=headers, params={"search": "staff"})
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert [r["name"] for r in body["data"][0]["roles"]] == ["Manager"]

    updated = await audit_rows(AuditAction.UPDATED)
    assert updated[0].old_values["first_name"] is None
    assert updated[0].new_values == {"first_name": "Stan"}


@pytest.mark.asyncio
async def test_user_detail_and_not_found(client, admin, make_user):
    _, headers = admin
    user = await make_user("detail", roles=["Viewer"])

    response = await client.get(f"/api/users/{user.id}", headers=headers)
    assert response.status_code == 200
    roles = response.json()["data"]["roles"]
    assert roles[0]["name"] == "Viewer"
    assert len(roles[0]["permissions"]) == 4

    response = await client.get("/api/users/99999", headers=headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_self_deletion_is_rejected(client, admin):
    user, headers = admin
    response = await client.delete(f"/api/users/{user.id}", headers=headers)
    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_CONFLICT_005"


@pytest.mark.asyncio
async def test_user_without_history_is_deleted(client, admin, make_user, db_session, audit_rows):
    _, headers = admin
    user = await make_user("fresh", roles=["Viewer"])

    response = await client.delete(f"/api/users/{user.id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"] == {"deactivated": False}
    assert await db_session.get(User, user.id) is None

    deleted = await audit_rows(AuditAction.DELETED)
    assert deleted[0].resource_id == str(user.id)
    assert deleted[0].old_values["username"] == "fresh"


@pytest.mark.asyncio
async def test_user_with_history_is_deactivated(client, admin, login_as, db_session):
    _, headers = admin
    user, data = await login_as("veteran", roles=["Viewer"])  # login writes an audit row

    response = await client.delete(f"/api/users/{user.id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"] == {"deactivated": True}

    stored = await db_session.get(User, user.id)
    assert stored.status == UserStatus.INACTIVE
    sessions = await db_session.execute(select(UserSession).where(UserSession.user_id == user.id))
    assert sessions.scalars().all() == []


@pytest.mark.asyncio
async def test_assign_role_is_recorded_by_decorator(client, admin, make_user, db_session, audit_rows):
    admin_user, headers = admin
    user = await make_user("promoted")
    accountant = (await db_session.execute(select(Role).where(Role.name == "Accountant"))).scalar_one()

    response = await client.post(
        "/api/users/assign-role", headers=headers, json={"user_id": user.id, "role_id": accountant.id}
    )
    assert response.status_code == 200

    rows = await audit_rows(AuditAction.ASSIGNED_ROLE)
    assert len(rows) == 1
    row = rows[0]
    assert row.user_id == admin_user.id
    assert row.resource == "user_roles"
    assert row.new_values["data"]["role_id"] == accountant.id
    assert row.ip_address == "127.0.0.1"

    # Duplicate assignment is a conflict and is not recorded
    response = await client.post(
        "/api/users/assign-role", headers=headers, json={"user_id": user.id, "role_id": accountant.id}
    )
    assert response.status_code == 400
    assert len(await audit_rows(AuditAction.ASSIGNED_ROLE)) == 1


@pytest.mark.asyncio
async def test_revoke_unassigned_role_is_not_found(client, admin, make_user, db_session):
    _, headers = admin
    user = await make_user("plain")
    manager = (await db_session.execute(select(Role).where(Role.name == "Manager"))).scalar_one()

    response = await client.post(
        "/api/users/revoke-role", headers=headers, json={"user_id": user.id, "role_id": manager.id}
    )
    assert response.status_code == 404
