"""
Audit trail API endpoints (read-only).
"""

import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.dependencies import IdentityContext
from backoffice.app.core.exceptions import NotFound
from backoffice.app.core.guards import require_permission
from backoffice.app.db.session import get_db
from backoffice.app.models.audit_log import AuditLog
from backoffice.app.models.enums import PermissionAction
from backoffice.app.models.user import User
from backoffice.app.schemas.audit import AuditLogResponse, AuditTrailResponse
from backoffice.app.schemas.auth import DataResponse
from backoffice.app.services.audit import get_audit_logs, get_audit_stats

router = APIRouter(prefix="/audit-logs", tags=["Audit Logs"])


async def _with_usernames(db: AsyncSession, logs):
    user_ids = {log.user_id for log in logs if log.user_id is not None}
    usernames = {}
    if user_ids:
        result = await db.execute(select(User.id, User.username).where(User.id.in_(user_ids)))
        usernames = dict(result.all())

    items = []
    for log in logs:
        item = AuditLogResponse.model_validate(log)
        item.username = usernames.get(log.user_id)
        items.append(item)
    return items


@router.get("", response_model=AuditTrailResponse)
async def list_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: Optional[int] = Query(None),
    resource: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    current_user: IdentityContext = Depends(require_permission("audit_logs", PermissionAction.READ)),
    db: AsyncSession = Depends(get_db),
):
    """Audit trail, most recent first, with optional filters."""
    logs, total = await get_audit_logs(
        db,
        user_id=user_id,
        resource=resource,
        action=action,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return AuditTrailResponse(
        data=await _with_usernames(db, logs),
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/stats", response_model=DataResponse)
async def audit_stats(
    current_user: IdentityContext = Depends(require_permission("audit_logs", PermissionAction.READ)),
    db: AsyncSession = Depends(get_db),
):
    stats = await get_audit_stats(db)
    stats["recent_logs"] = await _with_usernames(db, stats["recent_logs"])
    return DataResponse(data=stats)


@router.get("/{log_id}", response_model=DataResponse)
async def get_audit_log(
    log_id: int,
    current_user: IdentityContext = Depends(require_permission("audit_logs", PermissionAction.READ)),
    db: AsyncSession = Depends(get_db),
):
    log = await db.get(AuditLog, log_id)
    if log is None:
        raise NotFound("AuditLog", log_id)
    items = await _with_usernames(db, [log])
    return DataResponse(data=items[0])
