"""
Permission model: roles, grants and effective permissions.

Effective permissions are the union of the grants of every role assigned to a
user. There are no deny rules and no precedence, and nothing is cached: the
set is recomputed on every authenticated request.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.exceptions import (
    AlreadyAssigned,
    Conflict,
    NotAssigned,
    NotFound,
)
from backoffice.app.models.permission import Permission, RolePermission
from backoffice.app.models.role import Role, UserRole
from backoffice.app.models.user import User

logger = logging.getLogger(__name__)

PermissionKey = Tuple[str, str]


def permission_key(resource: str, action: Any) -> PermissionKey:
    return resource, getattr(action, "value", action)


def serialize_permission(permission: Permission) -> Dict[str, Any]:
    return {
        "id": permission.id,
        "name": permission.name,
        "resource": permission.resource,
        "action": permission.action.value,
        "description": permission.description,
    }


def serialize_role(role: Role) -> Dict[str, Any]:
    return {
        "id": role.id,
        "name": role.name,
        "description": role.description,
        "is_system": role.is_system,
        "is_active": role.is_active,
        "created_at": role.created_at,
        "updated_at": role.updated_at,
    }


class PermissionModel:

    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Effective permissions ───────────────────────────────────────

    async def effective_permissions(self, user_id: int) -> Set[PermissionKey]:
        """Set of (resource, action) granted through any of the user's roles."""
        result = await self.db.execute(
            select(Permission.resource, Permission.action)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .join(UserRole, UserRole.role_id == RolePermission.role_id)
            .where(UserRole.user_id == user_id)
            .distinct()
        )
        return {permission_key(resource, action) for resource, action in result.all()}

    async def role_names(self, user_id: int) -> List[str]:
        result = await self.db.execute(
            select(Role.name)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id)
            .order_by(Role.name)
        )
        return list(result.scalars().all())

    async def user_roles(self, user_id: int) -> List[Role]:
        result = await self.db.execute(
            select(Role)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id)
            .order_by(Role.name)
        )
        return list(result.scalars().all())

    # ── Lookups ─────────────────────────────────────────────────────

    async def get_role(self, role_id: int) -> Role:
        role = await self.db.get(Role, role_id)
        if role is None:
            raise NotFound("Role", role_id)
        return role

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        result = await self.db.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    async def _get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User", user_id)
        return user

    async def _validate_permission_ids(self, permission_ids: Iterable[int]) -> List[int]:
        wanted = sorted(set(permission_ids))
        if not wanted:
            return []
        result = await self.db.execute(select(Permission.id).where(Permission.id.in_(wanted)))
        found = set(result.scalars().all())
        missing = [pid for pid in wanted if pid not in found]
        if missing:
            raise NotFound("Permission", missing[0])
        return wanted

    # ── Role assignment ─────────────────────────────────────────────

    async def assign_role(self, user_id: int, role_id: int, assigned_by: Optional[int] = None) -> UserRole:
        """
        Give a role to a user.

        Raises:
            NotFound: unknown user or role
            AlreadyAssigned: the user already holds the role
        """
        await self._get_user(user_id)
        await self.get_role(role_id)

        existing = await self.db.execute(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise AlreadyAssigned()

        user_role = UserRole(user_id=user_id, role_id=role_id, assigned_by=assigned_by)
        self.db.add(user_role)
        await self.db.commit()
        await self.db.refresh(user_role)
        logger.info("Role %s assigned to user %s by %s", role_id, user_id, assigned_by)
        return user_role

    async def revoke_role(self, user_id: int, role_id: int) -> None:
        """
        Take a role away from a user.

        Raises:
            NotAssigned: the user does not hold the role
        """
        result = await self.db.execute(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
        )
        user_role = result.scalar_one_or_none()
        if user_role is None:
            raise NotAssigned(user_id, role_id)

        await self.db.delete(user_role)
        await self.db.commit()
        logger.info("Role %s revoked from user %s", role_id, user_id)

    # ── Role lifecycle ──────────────────────────────────────────────

    async def create_role(
        self,
        name: str,
        description: Optional[str] = None,
        permission_ids: Optional[List[int]] = None,
    ) -> Role:
        if await self.get_role_by_name(name) is not None:
            raise Conflict("Role name already exists")

        wanted = await self._validate_permission_ids(permission_ids or [])
        try:
            role = Role(name=name, description=description, is_system=False, is_active=True)
            self.db.add(role)
            await self.db.flush()
            for permission_id in wanted:
                self.db.add(RolePermission(role_id=role.id, permission_id=permission_id))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(role)
        return role

    async def update_role(
        self,
        role_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
        permission_ids: Optional[List[int]] = None,
    ) -> Role:
        """
        Update a role's attributes and, when permission_ids is given, its grants.

        Raises:
            NotFound: unknown role or permission id
            Conflict: renaming a system role, or taking another role's name
        """
        role = await self.get_role(role_id)

        if name is not None and name != role.name:
            if role.is_system:
                raise Conflict("Cannot rename system roles")
            other = await self.get_role_by_name(name)
            if other is not None and other.id != role.id:
                raise Conflict("Role name already exists")

        wanted = None
        if permission_ids is not None:
            wanted = await self._validate_permission_ids(permission_ids)

        try:
            if name is not None:
                role.name = name
            if description is not None:
                role.description = description
            if is_active is not None:
                role.is_active = is_active
            if wanted is not None:
                await self._replace_grants(role.id, wanted)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.db.refresh(role)
        return role

    async def _replace_grants(self, role_id: int, permission_ids: List[int]) -> None:
        await self.db.execute(
            delete(RolePermission)
            .where(RolePermission.role_id == role_id)
            .execution_options(synchronize_session=False)
        )
        self.db.add_all(
            [RolePermission(role_id=role_id, permission_id=pid) for pid in permission_ids]
        )
        await self.db.flush()

    async def set_permissions(self, role_id: int, permission_ids: List[int]) -> List[Permission]:
        """
        Replace a role's grants in one transaction.

        Either every old grant is removed and every new one inserted, or
        nothing changes.
        """
        await self.get_role(role_id)
        wanted = await self._validate_permission_ids(permission_ids)

        try:
            await self._replace_grants(role_id, wanted)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.exception("Replacing permissions of role %s failed", role_id)
            raise

        return await self.role_permissions(role_id)

    async def delete_role(self, role_id: int) -> None:
        """
        Raises:
            Conflict: the role is a system role or is still assigned to users
        """
        role = await self.get_role(role_id)
        if role.is_system:
            raise Conflict("Cannot delete system roles")

        assigned = await self.db.execute(
            select(func.count(UserRole.id)).where(UserRole.role_id == role_id)
        )
        if assigned.scalar():
            raise Conflict("Cannot delete role that is assigned to users")

        try:
            await self.db.execute(
                delete(RolePermission)
                .where(RolePermission.role_id == role_id)
                .execution_options(synchronize_session=False)
            )
            await self.db.delete(role)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info("Role %s deleted", role_id)

    # ── Read side ───────────────────────────────────────────────────

    async def role_permissions(self, role_id: int) -> List[Permission]:
        result = await self.db.execute(
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.resource, Permission.action)
        )
        return list(result.scalars().all())

    async def _user_counts(self) -> Dict[int, int]:
        result = await self.db.execute(
            select(UserRole.role_id, func.count(UserRole.id)).group_by(UserRole.role_id)
        )
        return {role_id: count for role_id, count in result.all()}

    async def list_roles(self) -> List[Dict[str, Any]]:
        """All roles with their grants and the number of users holding them."""
        result = await self.db.execute(select(Role).order_by(Role.name))
        counts = await self._user_counts()

        roles = []
        for role in result.scalars().all():
            data = serialize_role(role)
            data["user_count"] = counts.get(role.id, 0)
            data["permissions"] = [
                serialize_permission(p) for p in await self.role_permissions(role.id)
            ]
            roles.append(data)
        return roles

    async def role_detail(self, role_id: int) -> Dict[str, Any]:
        role = await self.get_role(role_id)
        users = await self.db.execute(
            select(User)
            .join(UserRole, UserRole.user_id == User.id)
            .where(UserRole.role_id == role_id)
            .order_by(User.username)
        )

        data = serialize_role(role)
        data["permissions"] = [serialize_permission(p) for p in await self.role_permissions(role_id)]
        data["users"] = [
            {"id": u.id, "email": u.email, "username": u.username, "status": u.status.value}
            for u in users.scalars().all()
        ]
        data["user_count"] = len(data["users"])
        return data

    async def list_permissions(self, resource: Optional[str] = None) -> Dict[str, Any]:
        """Flat list plus the same permissions grouped by resource, each with a role count."""
        query = select(Permission).order_by(Permission.resource, Permission.action)
        if resource:
            query = query.where(Permission.resource == resource)
        result = await self.db.execute(query)

        role_counts = await self.db.execute(
            select(RolePermission.permission_id, func.count(RolePermission.id))
            .group_by(RolePermission.permission_id)
        )
        counts = {pid: count for pid, count in role_counts.all()}

        flat = []
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for permission in result.scalars().all():
            data = serialize_permission(permission)
            data["role_count"] = counts.get(permission.id, 0)
            flat.append(data)
            grouped.setdefault(permission.resource, []).append(data)

        return {"permissions": flat, "grouped": grouped}

    async def permission_detail(self, permission_id: int) -> Dict[str, Any]:
        permission = await self.db.get(Permission, permission_id)
        if permission is None:
            raise NotFound("Permission", permission_id)

        roles = await self.db.execute(
            select(Role)
            .join(RolePermission, RolePermission.role_id == Role.id)
            .where(RolePermission.permission_id == permission_id)
            .order_by(Role.name)
        )
        data = serialize_permission(permission)
        data["roles"] = [{"id": r.id, "name": r.name} for r in roles.scalars().all()]
        return data
