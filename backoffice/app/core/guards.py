"""
Security guards for permission-based and role-based access control.

Provides dependency factories for protecting endpoints. Both guards fail
closed: a caller without a permission set or role list is denied.
"""

from fastapi import Depends

from backoffice.app.core.dependencies import IdentityContext, get_current_user
from backoffice.app.core.exceptions import Forbidden
from backoffice.app.models.enums import PermissionAction


def require_permission(resource: str, action: PermissionAction):
    """
    Dependency factory for permission-based access control.

    Usage:
        @router.delete("/{role_id}")
        async def delete_role(
            current_user: IdentityContext = Depends(require_permission("roles", PermissionAction.DELETE))
        ):
            ...

    Raises:
        Forbidden: 403 with requiredPermission in the body
    """
    action_value = getattr(action, "value", action)

    async def permission_checker(current_user: IdentityContext = Depends(get_current_user)) -> IdentityContext:
        permissions = current_user.permissions
        if not permissions or (resource, action_value) not in permissions:
            raise Forbidden(
                "Insufficient permissions",
                extra={"requiredPermission": {"resource": resource, "action": action_value}},
            )
        return current_user

    return permission_checker


def require_roles(*role_names: str):
    """
    Dependency factory for role-based access control. Any one role suffices.

    Usage:
        @router.get("/admin-only")
        async def admin_only(current_user: IdentityContext = Depends(require_roles("Admin"))):
            ...

    Raises:
        Forbidden: 403 with requiredRoles in the body
    """
    required = list(role_names)

    async def role_checker(current_user: IdentityContext = Depends(get_current_user)) -> IdentityContext:
        if not current_user.roles or not set(current_user.roles) & set(required):
            raise Forbidden(
                f"Access denied. Required role: {', '.join(required)}",
                extra={"requiredRoles": required},
            )
        return current_user

    return role_checker
