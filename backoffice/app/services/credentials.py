"""
Credential store: password changes, password resets and email verification.

Opaque tokens (reset links, verification links) are 256-bit random values.
Only their SHA-256 digest is persisted, so a database leak does not leak
usable links. Mail delivery is out of scope; links are logged instead.
"""

import logging
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import select, delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.config import settings
from backoffice.app.core.exceptions import (
    Conflict,
    InvalidCredential,
    InvalidOrExpiredToken,
    SamePassword,
)
from backoffice.app.core.security import (
    digest_token,
    generate_raw_token,
    get_password_hash,
    verify_password,
)
from backoffice.app.core.timeutils import utcnow
from backoffice.app.models.session import PasswordReset
from backoffice.app.models.user import User
from backoffice.app.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)


def reset_link(raw_token: str) -> str:
    return f"{settings.frontend_url}/auth/reset-password?token={raw_token}"


def verification_link(raw_token: str) -> str:
    return f"{settings.frontend_url}/auth/verify-email?token={raw_token}"


class CredentialStore:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sessions = SessionRegistry(db)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    # ── Password reset ──────────────────────────────────────────────

    async def request_reset(self, email: str) -> Optional[Tuple[User, str]]:
        """
        Issue a single-use reset token for the account behind `email`.

        Earlier reset rows of the same user are deleted, so only the newest
        link works.

        Returns:
            (user, reset link) or None when no account matches. Callers must
            answer both cases identically.
        """
        user = await self.get_user_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return None

        raw_token = generate_raw_token()
        await self.db.execute(
            delete(PasswordReset)
            .where(PasswordReset.user_id == user.id)
            .execution_options(synchronize_session=False)
        )
        self.db.add(
            PasswordReset(
                user_id=user.id,
                token_hash=digest_token(raw_token),
                expires_at=utcnow() + timedelta(minutes=settings.password_reset_expire_minutes),
            )
        )
        await self.db.commit()

        link = reset_link(raw_token)
        logger.info("Password reset link for user %s: %s", user.id, link)
        return user, link

    async def consume_reset(self, raw_token: str, new_password: str) -> User:
        """
        Set a new password from a reset token and revoke every session.

        The row is claimed with `UPDATE ... WHERE used_at IS NULL`; of two
        concurrent consumers only one sees a matched row.

        Raises:
            InvalidOrExpiredToken: unknown, expired or already used token
        """
        now = utcnow()
        result = await self.db.execute(
            select(PasswordReset).where(
                PasswordReset.token_hash == digest_token(raw_token),
                PasswordReset.used_at.is_(None),
                PasswordReset.expires_at > now,
            )
        )
        reset = result.scalar_one_or_none()
        if reset is None:
            raise InvalidOrExpiredToken()

        claimed = await self.db.execute(
            update(PasswordReset)
            .where(PasswordReset.id == reset.id, PasswordReset.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self.db.rollback()
            raise InvalidOrExpiredToken()

        user = await self.db.get(User, reset.user_id)
        if user is None:
            await self.db.rollback()
            raise InvalidOrExpiredToken()

        user.hashed_password = get_password_hash(new_password)
        revoked = await self.sessions.revoke_all(user.id)
        await self.db.commit()

        logger.info("Password reset for user %s, %s sessions revoked", user.id, revoked)
        return user

    # ── Password change ─────────────────────────────────────────────

    async def change_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
        current_access_token: Optional[str] = None,
    ) -> int:
        """
        Change a password, keeping only the caller's own session alive.

        Returns:
            Number of other sessions revoked

        Raises:
            InvalidCredential: current password does not verify
            SamePassword: new password equals the current one
        """
        if not verify_password(current_password, user.hashed_password):
            raise InvalidCredential()
        if verify_password(new_password, user.hashed_password):
            raise SamePassword()

        user.hashed_password = get_password_hash(new_password)
        revoked = await self.sessions.revoke_all(user.id, except_token=current_access_token)
        await self.db.commit()

        logger.info("Password changed for user %s, %s other sessions revoked", user.id, revoked)
        return revoked

    # ── Email verification ──────────────────────────────────────────

    async def issue_verification(self, user: User) -> str:
        """Store a fresh verification digest on the user. Flushes, does not commit."""
        raw_token = generate_raw_token()
        user.email_verification_token = digest_token(raw_token)
        user.email_verification_sent_at = utcnow()
        await self.db.flush()
        logger.info("Verification link for user %s: %s", user.id, verification_link(raw_token))
        return raw_token

    async def verify_email(self, raw_token: str) -> User:
        """
        Raises:
            InvalidOrExpiredToken: unknown token or issued too long ago
        """
        oldest = utcnow() - timedelta(hours=settings.email_verification_expire_hours)
        result = await self.db.execute(
            select(User).where(
                User.email_verification_token == digest_token(raw_token),
                User.email_verification_sent_at > oldest,
            )
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise InvalidOrExpiredToken()

        user.email_verified = True
        user.email_verification_token = None
        await self.db.commit()
        return user

    async def resend_verification(self, user: User) -> str:
        """
        Returns:
            The new verification link

        Raises:
            Conflict: the email is already verified
        """
        if user.email_verified:
            raise Conflict("Email is already verified", error_code="ERR_CONFLICT_003")

        raw_token = await self.issue_verification(user)
        await self.db.commit()
        return verification_link(raw_token)
