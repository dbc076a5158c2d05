"""
User management API endpoints.

Guarded by the `users` permissions. Every mutation is audited.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select, func, or_, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.dependencies import IdentityContext
from backoffice.app.core.exceptions import Conflict, NotFound
from backoffice.app.core.guards import require_permission
from backoffice.app.core.security import get_password_hash
from backoffice.app.db.session import get_db
from backoffice.app.models.audit_log import AuditLog
from backoffice.app.models.enums import PermissionAction, UserStatus
from backoffice.app.models.role import UserRole
from backoffice.app.models.session import PasswordReset
from backoffice.app.models.user import User
from backoffice.app.schemas.auth import DataResponse, MessageResponse
from backoffice.app.schemas.users import (
    RoleAssignment,
    RoleSummary,
    UserCreate,
    UserListItem,
    UserListResponse,
    UserUpdate,
)
from backoffice.app.services.audit import (
    AuditAction,
    AuditRecorder,
    audited,
    get_audit_recorder,
)
from backoffice.app.services.auth import serialize_user
from backoffice.app.services.permissions import PermissionModel, serialize_permission
from backoffice.app.services.sessions import SessionRegistry

router = APIRouter(prefix="/users", tags=["Users"])


async def _get_user_or_404(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User", user_id)
    return user


async def _list_item(db: AsyncSession, user: User) -> UserListItem:
    roles = await PermissionModel(db).user_roles(user.id)
    item = UserListItem.model_validate(user)
    item.roles = [RoleSummary.model_validate(role) for role in roles]
    return item


async def _ensure_unique(db: AsyncSession, email: Optional[str], username: Optional[str], exclude_id: int = None):
    clauses = []
    if email:
        clauses.append(User.email == email)
    if username:
        clauses.append(User.username == username)
    if not clauses:
        return
    query = select(User.id).where(or_(*clauses))
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise Conflict("Email or username already in use", error_code="ERR_CONFLICT_004")


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    status_filter: Optional[UserStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, description="Match on email or username"),
    current_user: IdentityContext = Depends(require_permission("users", PermissionAction.READ)),
    db: AsyncSession = Depends(get_db),
):
    """List users with their roles, newest first."""
    filters = []
    if status_filter is not None:
        filters.append(User.status == status_filter)
    if search:
        pattern = f"%{search}%"
        filters.append(or_(User.email.ilike(pattern), User.username.ilike(pattern)))

    total = (await db.execute(select(func.count(User.id)).where(*filters))).scalar()

    offset = (page - 1) * page_size
    result = await db.execute(
        select(User).where(*filters).order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(page_size)
    )
    users = result.scalars().all()

    return UserListResponse(
        data=[await _list_item(db, user) for user in users],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{user_id}", response_model=DataResponse)
async def get_user(
    user_id: int,
    current_user: IdentityContext = Depends(require_permission("users", PermissionAction.READ)),
    db: AsyncSession = Depends(get_db),
):
    """User detail with each role's grants and assignment metadata."""
    user = await _get_user_or_404(db, user_id)
    permission_model = PermissionModel(db)

    assignments = await db.execute(
        select(UserRole).where(UserRole.user_id == user_id).order_by(UserRole.assigned_at)
    )
    roles = []
    for assignment in assignments.scalars().all():
        role = await permission_model.get_role(assignment.role_id)
        roles.append({
            **RoleSummary.model_validate(role).model_dump(),
            "assigned_at": assignment.assigned_at,
            "assigned_by": assignment.assigned_by,
            "permissions": [serialize_permission(p) for p in await permission_model.role_permissions(role.id)],
        })

    return DataResponse(data={**serialize_user(user), "roles": roles})


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    request: Request,
    current_user: IdentityContext = Depends(require_permission("users", PermissionAction.CREATE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Create an account directly (no verification link), optionally with roles."""
    email = body.email.lower()
    await _ensure_unique(db, email, body.username)

    permission_model = PermissionModel(db)
    for role_id in set(body.role_ids):
        await permission_model.get_role(role_id)

    user = User(
        email=email,
        username=body.username,
        hashed_password=get_password_hash(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        status=UserStatus.ACTIVE,
        email_verified=False,
    )
    db.add(user)
    await db.flush()
    for role_id in sorted(set(body.role_ids)):
        db.add(UserRole(user_id=user.id, role_id=role_id, assigned_by=current_user.id))
    await db.commit()
    await db.refresh(user)

    await audit.record_request(
        request,
        action=AuditAction.CREATED,
        resource="users",
        user_id=current_user.id,
        resource_id=user.id,
        new_values={
            "email": user.email,
            "username": user.username,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "role_ids": sorted(set(body.role_ids)),
        },
    )
    return MessageResponse(message="User created successfully", data=serialize_user(user))


@router.put("/{user_id}", response_model=MessageResponse)
async def update_user(
    user_id: int,
    body: UserUpdate,
    request: Request,
    current_user: IdentityContext = Depends(require_permission("users", PermissionAction.UPDATE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Update allow-listed fields of a user.

    Moving a user out of `active` revokes all of their sessions.
    """
    user = await _get_user_or_404(db, user_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
    await _ensure_unique(db, changes.get("email"), changes.get("username"), exclude_id=user_id)

    old_values = serialize_user(user)
    for field, value in changes.items():
        setattr(user, field, value)

    if user.status != UserStatus.ACTIVE:
        await SessionRegistry(db).revoke_all(user.id)
    await db.commit()
    await db.refresh(user)

    await audit.record_request(
        request,
        action=AuditAction.UPDATED,
        resource="users",
        user_id=current_user.id,
        resource_id=user.id,
        old_values=old_values,
        new_values=changes,
    )
    return MessageResponse(message="User updated successfully", data=serialize_user(user))


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int,
    request: Request,
    current_user: IdentityContext = Depends(require_permission("users", PermissionAction.DELETE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Delete a user.

    A user referenced by the audit trail is deactivated instead (status
    inactive, every session revoked). Deleting your own account is rejected.
    """
    if user_id == current_user.id:
        raise Conflict("You cannot delete your own account", error_code="ERR_CONFLICT_005")

    user = await _get_user_or_404(db, user_id)
    old_values = serialize_user(user)

    referenced = (
        await db.execute(select(func.count(AuditLog.id)).where(AuditLog.user_id == user_id))
    ).scalar()

    await SessionRegistry(db).revoke_all(user_id)
    if referenced:
        user.status = UserStatus.INACTIVE
        message = "User has audit history and was deactivated instead of deleted"
        new_values = {"status": UserStatus.INACTIVE.value}
    else:
        await db.execute(
            update(UserRole)
            .where(UserRole.assigned_by == user_id)
            .values(assigned_by=None)
            .execution_options(synchronize_session=False)
        )
        for model in (UserRole, PasswordReset):
            await db.execute(
                delete(model).where(model.user_id == user_id).execution_options(synchronize_session=False)
            )
        await db.delete(user)
        message = "User deleted successfully"
        new_values = None
    await db.commit()

    await audit.record_request(
        request,
        action=AuditAction.DELETED,
        resource="users",
        user_id=current_user.id,
        resource_id=user_id,
        old_values=old_values,
        new_values=new_values,
    )
    return MessageResponse(message=message, data={"deactivated": bool(referenced)})


@router.post("/assign-role", response_model=MessageResponse)
@audited("user_roles", AuditAction.ASSIGNED_ROLE)
async def assign_role(
    body: RoleAssignment,
    request: Request,
    current_user: IdentityContext = Depends(require_permission("users", PermissionAction.UPDATE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Give a role to a user. Takes effect on the user's next request."""
    user_role = await PermissionModel(db).assign_role(body.user_id, body.role_id, assigned_by=current_user.id)
    return MessageResponse(
        message="Role assigned successfully",
        data={"id": user_role.id, "user_id": user_role.user_id, "role_id": user_role.role_id},
    )


@router.post("/revoke-role", response_model=MessageResponse)
@audited("user_roles", AuditAction.REVOKED_ROLE)
async def revoke_role(
    body: RoleAssignment,
    request: Request,
    current_user: IdentityContext = Depends(require_permission("users", PermissionAction.UPDATE)),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Take a role away from a user."""
    await PermissionModel(db).revoke_role(body.user_id, body.role_id)
    return MessageResponse(
        message="Role revoked successfully",
        data={"user_id": body.user_id, "role_id": body.role_id},
    )
