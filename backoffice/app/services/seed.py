"""
Idempotent RBAC seeding: permissions, system roles and the default admin.

Safe to run on every startup; existing rows are left untouched and only
missing ones are created.
"""

import logging
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.config import settings
from backoffice.app.core.security import get_password_hash
from backoffice.app.models.enums import PermissionAction, UserStatus
from backoffice.app.models.permission import Permission, RolePermission
from backoffice.app.models.role import Role, UserRole
from backoffice.app.models.user import User

logger = logging.getLogger(__name__)

RESOURCES = [
    "users",
    "roles",
    "permissions",
    "salaries",
    "charges",
    "reports",
    "audit_logs",
    "dashboard",
]

ALL_ACTIONS = list(PermissionAction)
CRU = [PermissionAction.CREATE, PermissionAction.READ, PermissionAction.UPDATE]
READ = [PermissionAction.READ]

SYSTEM_ROLES: Dict[str, dict] = {
    "Admin": {
        "description": "Full access to every resource",
        "grants": {resource: ALL_ACTIONS for resource in RESOURCES},
    },
    "Accountant": {
        "description": "Manages salaries and charges, reads reports",
        "grants": {
            "salaries": CRU,
            "charges": CRU,
            "reports": READ,
            "dashboard": READ,
            "audit_logs": READ,
        },
    },
    "Manager": {
        "description": "Read access to every resource",
        "grants": {resource: READ for resource in RESOURCES},
    },
    "Viewer": {
        "description": "Read access to dashboards and financial data",
        "grants": {
            "dashboard": READ,
            "reports": READ,
            "salaries": READ,
            "charges": READ,
        },
    },
}


def permission_name(resource: str, action: PermissionAction) -> str:
    return f"{action.value.lower()}_{resource}"


async def _seed_permissions(db: AsyncSession) -> Dict[tuple, Permission]:
    result = await db.execute(select(Permission))
    existing = {(p.resource, p.action): p for p in result.scalars().all()}

    for resource in RESOURCES:
        for action in ALL_ACTIONS:
            if (resource, action) in existing:
                continue
            permission = Permission(
                name=permission_name(resource, action),
                resource=resource,
                action=action,
                description=f"{action.value.capitalize()} {resource.replace('_', ' ')}",
            )
            db.add(permission)
            existing[(resource, action)] = permission

    await db.flush()
    return existing


async def _seed_role(db: AsyncSession, name: str, config: dict, permissions: Dict[tuple, Permission]) -> Role:
    result = await db.execute(select(Role).where(Role.name == name))
    role = result.scalar_one_or_none()
    if role is not None:
        return role

    role = Role(name=name, description=config["description"], is_system=True, is_active=True)
    db.add(role)
    await db.flush()

    grants: List[RolePermission] = []
    for resource, actions in config["grants"].items():
        for action in actions:
            grants.append(RolePermission(role_id=role.id, permission_id=permissions[(resource, action)].id))
    db.add_all(grants)
    logger.info("Created role %s with %s permissions", name, len(grants))
    return role


async def _seed_admin(db: AsyncSession, admin_role: Role) -> None:
    result = await db.execute(select(User).where(User.email == settings.default_admin_email))
    admin = result.scalar_one_or_none()
    if admin is None:
        admin = User(
            email=settings.default_admin_email,
            username=settings.default_admin_username,
            hashed_password=get_password_hash(settings.default_admin_password),
            first_name="System",
            last_name="Administrator",
            status=UserStatus.ACTIVE,
            email_verified=True,
        )
        db.add(admin)
        await db.flush()
        logger.info("Created default admin user %s", admin.email)

    assigned = await db.execute(
        select(UserRole).where(UserRole.user_id == admin.id, UserRole.role_id == admin_role.id)
    )
    if assigned.scalar_one_or_none() is None:
        db.add(UserRole(user_id=admin.id, role_id=admin_role.id))


async def seed_rbac(db: AsyncSession, with_admin: bool = True) -> None:
    """Create whatever part of the permission catalogue, system roles and admin is missing."""
    permissions = await _seed_permissions(db)
    roles = {}
    for name, config in SYSTEM_ROLES.items():
        roles[name] = await _seed_role(db, name, config, permissions)
    if with_admin:
        await _seed_admin(db, roles["Admin"])
    await db.commit()
