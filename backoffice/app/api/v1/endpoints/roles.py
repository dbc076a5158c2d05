"""
Role management API endpoints.

Guarded by the `roles` permissions. System roles can be edited (description,
grants) but never renamed or deleted.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.dependencies import IdentityContext
from backoffice.app.core.guards import require_permission
from backoffice.app.db.session import get_db
from backoffice.app.models.enums import PermissionAction
from backoffice.app.schemas.auth import DataResponse, MessageResponse
from backoffice.app.schemas.roles import RoleCreate, RolePermissionsUpdate, RoleUpdate
from backoffice.app.services.audit import (
    AuditAction,
    AuditRecorder,
    audited,
    get_audit_recorder,
)
from backoffice.app.services.permissions import (
    PermissionModel,
    serialize_permission,
    serialize_role,
)

router = APIRouter(prefix="/roles", tags=["Roles"])


async def _snapshot(permission_model: PermissionModel, role_id: int) -> dict:
    role = await permission_model.get_role(role_id)
    data = serialize_role(role)
    data["permission_ids"] = [p.id for p in await permission_model.role_permissions(role_id)]
    return data


@router.get("", response_model=DataResponse)
async def list_roles(
    current_user: IdentityContext = Depends(require_permission("roles", PermissionAction.READ)),
    db: AsyncSession = Depends(get_db),
):
    """All roles with grants and user counts."""
    return DataResponse(data=await PermissionModel(db).list_roles())


@router.get("/{role_id}", response_model=DataResponse)
async def get_role(
    role_id: int,
    current_user: IdentityContext = Depends(require_permission("roles", PermissionAction.READ)),
    db: AsyncSession = Depends(get_db),
):
    return DataResponse(data=await PermissionModel(db).role_detail(role_id))


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
@audited("roles", AuditAction.CREATED)
async def create_role(
    body: RoleCreate,
    request: Request,
    current_user: IdentityContext = Depends(require_permission("roles", PermissionAction.CREATE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Create a custom role, optionally with an initial set of permissions."""
    permission_model = PermissionModel(db)
    role = await permission_model.create_role(body.name, body.description, body.permission_ids)
    return MessageResponse(
        message="Role created successfully",
        data=await _snapshot(permission_model, role.id),
    )


@router.put("/{role_id}", response_model=MessageResponse)
async def update_role(
    role_id: int,
    body: RoleUpdate,
    request: Request,
    current_user: IdentityContext = Depends(require_permission("roles", PermissionAction.UPDATE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    permission_model = PermissionModel(db)
    old_values = await _snapshot(permission_model, role_id)

    await permission_model.update_role(role_id, **body.model_dump(exclude_unset=True))
    new_values = await _snapshot(permission_model, role_id)

    await audit.record_request(
        request,
        action=AuditAction.UPDATED,
        resource="roles",
        user_id=current_user.id,
        resource_id=role_id,
        old_values=old_values,
        new_values=new_values,
    )
    return MessageResponse(message="Role updated successfully", data=new_values)


@router.put("/{role_id}/permissions", response_model=MessageResponse)
async def set_role_permissions(
    role_id: int,
    body: RolePermissionsUpdate,
    request: Request,
    current_user: IdentityContext = Depends(require_permission("roles", PermissionAction.UPDATE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Replace every grant of a role at once. All or nothing."""
    permission_model = PermissionModel(db)
    old_values = await _snapshot(permission_model, role_id)

    permissions = await permission_model.set_permissions(role_id, body.permission_ids)

    await audit.record_request(
        request,
        action=AuditAction.UPDATED,
        resource="role_permissions",
        user_id=current_user.id,
        resource_id=role_id,
        old_values={"permission_ids": old_values["permission_ids"]},
        new_values={"permission_ids": [p.id for p in permissions]},
    )
    return MessageResponse(
        message="Role permissions updated successfully",
        data=[serialize_permission(p) for p in permissions],
    )


@router.delete("/{role_id}", response_model=MessageResponse)
async def delete_role(
    role_id: int,
    request: Request,
    current_user: IdentityContext = Depends(require_permission("roles", PermissionAction.DELETE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Delete a custom role that no user holds."""
    permission_model = PermissionModel(db)
    old_values = await _snapshot(permission_model, role_id)

    await permission_model.delete_role(role_id)

    await audit.record_request(
        request,
        action=AuditAction.DELETED,
        resource="roles",
        user_id=current_user.id,
        resource_id=role_id,
        old_values=old_values,
    )
    return MessageResponse(message="Role deleted successfully")
