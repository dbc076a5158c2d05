"""
Session registry.

One row per active login. Revocation is deletion; a revoked or expired
session can never be resurrected, a new login always creates a new row.
Methods flush but do not commit: the caller owns the transaction.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import select, delete, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.config import settings
from backoffice.app.core.exceptions import NotFound
from backoffice.app.core.timeutils import utcnow
from backoffice.app.models.session import UserSession

logger = logging.getLogger(__name__)


class SessionRegistry:

    def __init__(self, db: AsyncSession):
        self.db = db

    def _new_expiry(self):
        return utcnow() + timedelta(days=settings.session_expire_days)

    async def create(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UserSession:
        """Insert a session expiring session_expire_days from now."""
        session = UserSession(
            user_id=user_id,
            token=access_token,
            refresh_token=refresh_token,
            device_info=device_info or "Unknown",
            ip_address=ip_address or "Unknown",
            user_agent=user_agent,
            created_at=utcnow(),
            expires_at=self._new_expiry(),
        )
        self.db.add(session)
        await self.db.flush()
        return session

    async def get_active(self, access_token: str) -> Optional[UserSession]:
        """Live (unexpired) session bound to this access token, if any."""
        result = await self.db.execute(
            select(UserSession).where(
                UserSession.token == access_token,
                UserSession.expires_at > utcnow(),
            )
        )
        return result.scalar_one_or_none()

    async def find_for_refresh(self, user_id: int, refresh_token: str) -> Optional[UserSession]:
        result = await self.db.execute(
            select(UserSession).where(
                UserSession.user_id == user_id,
                UserSession.refresh_token == refresh_token,
                UserSession.expires_at > utcnow(),
            )
        )
        return result.scalar_one_or_none()

    async def rotate(
        self,
        session_id: int,
        old_refresh_token: str,
        new_access_token: str,
        new_refresh_token: str,
    ) -> bool:
        """
        Swap in a new token pair only if the row still holds old_refresh_token.

        The WHERE clause on the old refresh token makes this a compare-and-set:
        of two concurrent refreshes with the same token, exactly one matches.

        Returns:
            True if the row was rotated, False if another refresh won
        """
        result = await self.db.execute(
            update(UserSession)
            .where(
                and_(
                    UserSession.id == session_id,
                    UserSession.refresh_token == old_refresh_token,
                )
            )
            .values(
                token=new_access_token,
                refresh_token=new_refresh_token,
                expires_at=self._new_expiry(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke(self, access_token: str) -> int:
        """Delete the session bound to an access token (logout)."""
        result = await self.db.execute(
            delete(UserSession)
            .where(UserSession.token == access_token)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def revoke_by_id(self, user_id: int, session_id: int) -> None:
        """Delete one of the user's own sessions by id."""
        result = await self.db.execute(
            select(UserSession).where(
                UserSession.id == session_id,
                UserSession.user_id == user_id,
            )
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFound("Session", session_id)

        await self.db.delete(session)
        await self.db.flush()

    async def revoke_all(self, user_id: int, except_token: Optional[str] = None) -> int:
        """
        Delete every session of a user.

        Args:
            user_id: Owner of the sessions
            except_token: Access token of a session to keep (the caller's own)

        Returns:
            Number of sessions revoked
        """
        stmt = delete(UserSession).where(UserSession.user_id == user_id)
        if except_token is not None:
            stmt = stmt.where(UserSession.token != except_token)
        result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount

    async def list_active(self, user_id: int) -> List[UserSession]:
        """Non-expired sessions of a user, newest first."""
        result = await self.db.execute(
            select(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.expires_at > utcnow(),
            )
            .order_by(UserSession.created_at.desc(), UserSession.id.desc())
        )
        return list(result.scalars().all())

    async def sweep_expired(self) -> int:
        """Delete sessions whose expiry has passed. Run opportunistically after login."""
        result = await self.db.execute(
            delete(UserSession)
            .where(UserSession.expires_at < utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("Swept %s expired sessions", result.rowcount)
        return result.rowcount
