"""
Audit logging service for tracking authentication events and data mutations.

Provides centralized, append-only logging for compliance and security monitoring.
Writes never raise into the caller: an audit fault must not block or roll back
the operation being audited.
"""

import logging
from datetime import datetime
from functools import wraps
from typing import Optional, Dict, Any, List, Tuple

from fastapi import Depends, Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy import select, desc, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.app.db.session import get_session_factory
from backoffice.app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Authentication
    REGISTERED = "REGISTERED"
    LOGIN = "LOGIN"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    LOGOUT_ALL = "LOGOUT_ALL"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    SESSION_REVOKED = "SESSION_REVOKED"

    # Credentials
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET = "PASSWORD_RESET"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_CHANGE_FAILED = "PASSWORD_CHANGE_FAILED"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    VERIFICATION_EMAIL_RESENT = "VERIFICATION_EMAIL_RESENT"
    PROFILE_UPDATED = "PROFILE_UPDATED"

    # Data mutations
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"
    ASSIGNED_ROLE = "ASSIGNED_ROLE"
    REVOKED_ROLE = "REVOKED_ROLE"


def client_ip(request: Optional[Request]) -> Optional[str]:
    if request is None or request.client is None:
        return None
    return request.client.host


def client_user_agent(request: Optional[Request]) -> Optional[str]:
    if request is None:
        return None
    return request.headers.get("user-agent")


class AuditRecorder:
    """
    Appends AuditLog rows in a session of its own.

    The recorder is independent of the request's transaction, so a failed
    login is recorded even though nothing else commits, and a broken audit
    write never poisons the caller's session.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def record(
        self,
        action: str,
        resource: str,
        user_id: Optional[int] = None,
        resource_id: Any = None,
        old_values: Any = None,
        new_values: Any = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """
        Log an event to the audit trail.

        Args:
            action: Action being performed (use AuditAction constants)
            resource: Resource name (e.g. "auth", "roles", "users")
            user_id: ID of the acting identity (None for anonymous events)
            resource_id: ID of the affected record, if any
            old_values: Snapshot before the change
            new_values: Snapshot after the change
            ip_address: IP address of the request
            user_agent: User agent of the request

        Returns:
            Created AuditLog instance, or None if the write failed
        """
        try:
            audit_log = AuditLog(
                user_id=user_id,
                action=action,
                resource=resource,
                resource_id=str(resource_id) if resource_id is not None else None,
                old_values=jsonable_encoder(old_values) if old_values is not None else None,
                new_values=jsonable_encoder(new_values) if new_values is not None else None,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            async with self.session_factory() as session:
                session.add(audit_log)
                await session.commit()
                await session.refresh(audit_log)
            return audit_log
        except Exception:
            logger.exception("Failed to write audit log (action=%s, resource=%s)", action, resource)
            return None

    async def record_request(
        self,
        request: Optional[Request],
        action: str,
        resource: str,
        user_id: Optional[int] = None,
        resource_id: Any = None,
        old_values: Any = None,
        new_values: Any = None,
    ) -> Optional[AuditLog]:
        """Shortcut taking IP and user agent from the request."""
        return await self.record(
            action=action,
            resource=resource,
            user_id=user_id,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=client_ip(request),
            user_agent=client_user_agent(request),
        )


def get_audit_recorder(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AuditRecorder:
    """FastAPI dependency for the audit recorder."""
    return AuditRecorder(session_factory)


def _resource_id_from(kwargs: Dict[str, Any], encoded: Any) -> Any:
    for name, value in kwargs.items():
        if name.endswith("_id") and isinstance(value, (int, str)):
            return value
    if not isinstance(encoded, dict):
        return None
    data = encoded.get("data")
    if isinstance(data, dict):
        for key in ("id", "user_id"):
            if data.get(key) is not None:
                return data[key]
    return encoded.get("id")


def audited(resource: str, action: str):
    """
    Decorator recording a route handler's successful result in the audit trail.

    The wrapped handler must declare `request`, `current_user` and `audit`
    parameters (FastAPI fills them). When the handler returns normally and a
    caller identity is present, the JSON-encoded return value is stored as
    new_values and the first `*_id` path parameter (or the result's id) as
    resource_id. Errors raised by the handler propagate untouched and nothing
    is recorded.

    Usage:
        @router.post("/assign-role")
        @audited("user_roles", AuditAction.ASSIGNED_ROLE)
        async def assign_role(body: ..., request: Request,
                              current_user: IdentityContext = Depends(...),
                              audit: AuditRecorder = Depends(get_audit_recorder)):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            result = await func(*args, **kwargs)

            current_user = kwargs.get("current_user")
            audit: Optional[AuditRecorder] = kwargs.get("audit")
            if current_user is not None and audit is not None:
                encoded = jsonable_encoder(result)
                await audit.record_request(
                    kwargs.get("request"),
                    action=action,
                    resource=resource,
                    user_id=current_user.id,
                    resource_id=_resource_id_from(kwargs, encoded),
                    new_values=encoded,
                )
            return result
        return wrapper
    return decorator


async def get_audit_logs(
    db: AsyncSession,
    user_id: Optional[int] = None,
    resource: Optional[str] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[AuditLog], int]:
    """
    Retrieve the audit trail with optional filtering.

    Returns:
        (logs most recent first, total matching count)
    """
    filters = []
    if user_id is not None:
        filters.append(AuditLog.user_id == user_id)
    if resource:
        filters.append(AuditLog.resource == resource)
    if action:
        filters.append(AuditLog.action == action)
    if start_date:
        filters.append(AuditLog.timestamp >= start_date)
    if end_date:
        filters.append(AuditLog.timestamp <= end_date)

    total = (await db.execute(select(func.count(AuditLog.id)).where(*filters))).scalar()

    query = (
        select(AuditLog)
        .where(*filters)
        .order_by(desc(AuditLog.timestamp), desc(AuditLog.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def get_audit_stats(db: AsyncSession) -> Dict[str, Any]:
    """Totals by action and resource plus the ten latest entries."""
    total = (await db.execute(select(func.count(AuditLog.id)))).scalar()

    by_action = await db.execute(
        select(AuditLog.action, func.count(AuditLog.id)).group_by(AuditLog.action)
    )
    by_resource = await db.execute(
        select(AuditLog.resource, func.count(AuditLog.id)).group_by(AuditLog.resource)
    )
    recent = await db.execute(
        select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(10)
    )

    return {
        "total_logs": total,
        "by_action": {action: count for action, count in by_action.all()},
        "by_resource": {resource: count for resource, count in by_resource.all()},
        "recent_logs": list(recent.scalars().all()),
    }
