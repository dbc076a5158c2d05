"""
Permission catalogue API endpoints (read-only).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.dependencies import IdentityContext
from backoffice.app.core.guards import require_permission
from backoffice.app.db.session import get_db
from backoffice.app.models.enums import PermissionAction
from backoffice.app.schemas.auth import DataResponse
from backoffice.app.services.permissions import PermissionModel

router = APIRouter(prefix="/permissions", tags=["Permissions"])


@router.get("", response_model=DataResponse)
async def list_permissions(
    resource: Optional[str] = Query(None, description="Only permissions on this resource"),
    current_user: IdentityContext = Depends(require_permission("permissions", PermissionAction.READ)),
    db: AsyncSession = Depends(get_db),
):
    """Flat list and the same list grouped by resource."""
    return DataResponse(data=await PermissionModel(db).list_permissions(resource))


@router.get("/{permission_id}", response_model=DataResponse)
async def get_permission(
    permission_id: int,
    current_user: IdentityContext = Depends(require_permission("permissions", PermissionAction.READ)),
    db: AsyncSession = Depends(get_db),
):
    """Permission detail with the roles granting it."""
    return DataResponse(data=await PermissionModel(db).permission_detail(permission_id))
