"""
Authentication dependencies for FastAPI.

This module provides the dependency that authenticates a request from its
bearer token and builds the caller's identity context.
"""

from typing import List, Optional, Set, Tuple

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.exceptions import SessionNotFound, Unauthenticated
from backoffice.app.core.jwt import ACCESS, TokenIssuer, get_token_issuer
from backoffice.app.db.session import get_db
from backoffice.app.models.user import User
from backoffice.app.services.permissions import PermissionModel
from backoffice.app.services.sessions import SessionRegistry

# HTTP Bearer security scheme; missing headers are reported as our own 401
security = HTTPBearer(auto_error=False)


class IdentityContext(BaseModel):
    """Authenticated caller, attached to every protected request."""
    id: int
    email: str
    username: str
    roles: List[str] = Field(default_factory=list)
    permissions: Set[Tuple[str, str]] = Field(default_factory=set)

    # Internal: never serialized into responses
    token: str = Field(default="", exclude=True)
    session_id: Optional[int] = Field(default=None, exclude=True)

    def has_permission(self, resource: str, action: str) -> bool:
        return (resource, action) in self.permissions


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> IdentityContext:
    """
    FastAPI dependency authenticating a request.

    Checks, in order:
    1. A bearer token is present
    2. It verifies as an access token (signature, type, expiry)
    3. A live session is bound to this exact token (logout, password change
       and password reset revoke sessions, and with them their tokens)
    4. The user exists and is active
    Then loads role names and effective permissions fresh from the database,
    so role edits apply on the very next request.

    Raises:
        Unauthenticated: 401 if any check fails
    """
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise Unauthenticated("Access token required")

    token = credentials.credentials
    claims = issuer.verify(token, ACCESS)

    session = await SessionRegistry(db).get_active(token)
    if session is None or session.user_id != claims["user_id"]:
        raise SessionNotFound()

    user = await db.get(User, claims["user_id"])
    if user is None:
        raise Unauthenticated("User not found")
    if not user.is_active:
        raise Unauthenticated("Account is not active")

    # Read by the access log
    request.state.user_id = user.id
    request.state.session_id = session.id

    permission_model = PermissionModel(db)
    return IdentityContext(
        id=user.id,
        email=user.email,
        username=user.username,
        roles=await permission_model.role_names(user.id),
        permissions=await permission_model.effective_permissions(user.id),
        token=token,
        session_id=session.id,
    )


async def get_current_user_record(
    current_user: IdentityContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    """The authenticated caller's User row, bound to the request's db session."""
    user = await db.get(User, current_user.id)
    if user is None:
        raise Unauthenticated("User not found")
    return user
