"""
Authentication orchestration: registration, login, refresh and logout.

Composes the credential helpers, the token issuer, the session registry,
the permission model and the audit recorder.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.config import settings
from backoffice.app.core.exceptions import (
    Conflict,
    Forbidden,
    SessionNotFound,
    Unauthenticated,
)
from backoffice.app.core.jwt import REFRESH, TokenIssuer
from backoffice.app.core.rate_limit import RateLimiter
from backoffice.app.core.security import get_password_hash, verify_password
from backoffice.app.core.timeutils import utcnow
from backoffice.app.models.enums import UserStatus
from backoffice.app.models.role import UserRole
from backoffice.app.models.user import User
from backoffice.app.services.audit import AuditAction, AuditRecorder
from backoffice.app.services.credentials import CredentialStore, verification_link
from backoffice.app.services.permissions import PermissionModel
from backoffice.app.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)

# One public message for unknown email and wrong password
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"
DEFAULT_ROLE = "Viewer"


def serialize_permissions(permissions) -> List[Dict[str, str]]:
    return [{"resource": resource, "action": action} for resource, action in sorted(permissions)]


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "status": user.status.value,
        "email_verified": user.email_verified,
        "last_login_at": user.last_login_at,
        "created_at": user.created_at,
    }


class AuthService:

    def __init__(
        self,
        db: AsyncSession,
        issuer: TokenIssuer,
        audit: AuditRecorder,
        login_limiter: Optional[RateLimiter] = None,
    ):
        self.db = db
        self.issuer = issuer
        self.audit = audit
        self.login_limiter = login_limiter
        self.sessions = SessionRegistry(db)
        self.permissions = PermissionModel(db)
        self.credentials = CredentialStore(db)

    async def describe(self, user: User) -> Dict[str, Any]:
        """User payload with role names and effective permissions."""
        data = serialize_user(user)
        data["roles"] = await self.permissions.role_names(user.id)
        data["permissions"] = serialize_permissions(
            await self.permissions.effective_permissions(user.id)
        )
        return data

    async def register(
        self,
        email: str,
        username: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[User, str]:
        """
        Create an active, unverified account holding the default role.

        Returns:
            (user, verification link)

        Raises:
            Conflict: email or username already taken
        """
        email = email.lower()
        existing = await self.db.execute(
            select(User).where(or_(User.email == email, User.username == username))
        )
        if existing.scalars().first() is not None:
            raise Conflict("Email or username already in use", error_code="ERR_CONFLICT_004")

        user = User(
            email=email,
            username=username,
            hashed_password=get_password_hash(password),
            first_name=first_name,
            last_name=last_name,
            status=UserStatus.ACTIVE,
            email_verified=False,
        )
        self.db.add(user)
        await self.db.flush()

        default_role = await self.permissions.get_role_by_name(DEFAULT_ROLE)
        if default_role is not None:
            self.db.add(UserRole(user_id=user.id, role_id=default_role.id))
        else:
            logger.warning("Default role %s missing; user %s registered without roles", DEFAULT_ROLE, user.id)

        raw_token = await self.credentials.issue_verification(user)
        await self.db.commit()
        await self.db.refresh(user)

        await self.audit.record(
            action=AuditAction.REGISTERED,
            resource="users",
            user_id=user.id,
            resource_id=user.id,
            new_values={
                "email": user.email,
                "username": user.username,
                "first_name": user.first_name,
                "last_name": user.last_name,
            },
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return user, verification_link(raw_token)

    async def _login_failed(
        self,
        email: str,
        reason: str,
        user_id: Optional[int],
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        if self.login_limiter is not None:
            await self.login_limiter.hit(ip_address)
        await self.audit.record(
            action=AuditAction.LOGIN_FAILED,
            resource="auth",
            user_id=user_id,
            new_values={"email": email, "reason": reason},
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        device_info: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Authenticate with email and password and open a new session.

        Raises:
            RateLimitExceeded: too many failed attempts from this IP
            Unauthenticated: unknown email, wrong password or disabled account
            Forbidden: email not verified (only when verification is required)
        """
        if self.login_limiter is not None:
            await self.login_limiter.check(ip_address)

        email = email.lower()
        result = await self.db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user is None:
            await self._login_failed(email, "User not found", None, ip_address, user_agent)
            raise Unauthenticated(INVALID_CREDENTIALS_MESSAGE)

        if not verify_password(password, user.hashed_password):
            await self._login_failed(email, "Invalid password", user.id, ip_address, user_agent)
            raise Unauthenticated(INVALID_CREDENTIALS_MESSAGE)

        if not user.is_active:
            await self._login_failed(email, f"Account {user.status.value}", user.id, ip_address, user_agent)
            raise Unauthenticated("Account is not active. Please contact an administrator.")

        if settings.require_email_verification and not user.email_verified:
            raise Forbidden(
                "Please verify your email address first",
                extra={"requiresVerification": True},
            )

        pair = self.issuer.create_pair(user.id)
        await self.sessions.create(
            user_id=user.id,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            device_info=device_info or user_agent,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        user.last_login_at = utcnow()
        await self.sessions.sweep_expired()
        await self.db.commit()
        await self.db.refresh(user)

        await self.audit.record(
            action=AuditAction.LOGIN,
            resource="auth",
            user_id=user.id,
            new_values={"email": email, "device_info": device_info or user_agent},
            ip_address=ip_address,
            user_agent=user_agent,
        )

        return {
            "token": pair.access_token,
            "refresh_token": pair.refresh_token,
            "user": await self.describe(user),
        }

    async def refresh(
        self,
        raw_refresh_token: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Rotate a session's token pair.

        Raises:
            InvalidToken: not a valid refresh token
            SessionNotFound: no live session holds this refresh token, or a
                concurrent refresh already rotated it
            Unauthenticated: the account is no longer active
        """
        claims = self.issuer.verify(raw_refresh_token, REFRESH)
        user_id = claims["user_id"]

        session = await self.sessions.find_for_refresh(user_id, raw_refresh_token)
        if session is None:
            raise SessionNotFound()

        user = await self.db.get(User, user_id)
        if user is None or not user.is_active:
            raise Unauthenticated("Account is not active")

        pair = self.issuer.create_pair(user_id)
        rotated = await self.sessions.rotate(
            session.id, raw_refresh_token, pair.access_token, pair.refresh_token
        )
        if not rotated:
            await self.db.rollback()
            raise SessionNotFound()
        await self.db.commit()

        await self.audit.record(
            action=AuditAction.TOKEN_REFRESHED,
            resource="auth",
            user_id=user_id,
            resource_id=session.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return {"token": pair.access_token, "refresh_token": pair.refresh_token}

    async def logout(self, user_id: int, access_token: str, ip_address=None, user_agent=None) -> None:
        await self.sessions.revoke(access_token)
        await self.db.commit()
        await self.audit.record(
            action=AuditAction.LOGOUT,
            resource="auth",
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    async def logout_all(self, user_id: int, ip_address=None, user_agent=None) -> int:
        revoked = await self.sessions.revoke_all(user_id)
        await self.db.commit()
        await self.audit.record(
            action=AuditAction.LOGOUT_ALL,
            resource="auth",
            user_id=user_id,
            new_values={"sessions_revoked": revoked},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return revoked
