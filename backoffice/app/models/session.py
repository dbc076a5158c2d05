"""
Login session and password reset models.

A UserSession is one active login; deleting the row revokes it.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from backoffice.app.db.session import Base
from backoffice.app.core.timeutils import utcnow


class UserSession(Base):
    """
    Session model.

    Holds the current access/refresh token pair. Refresh rotation overwrites
    both tokens in place; the row is deleted on logout, logout-all, password
    change (other sessions), password reset (all sessions) or expiry sweep.
    """
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    token = Column(String(1024), unique=True, nullable=False)
    refresh_token = Column(String(1024), unique=True, nullable=False)

    # Client metadata
    device_info = Column(String(512), nullable=True)
    ip_address = Column(String(50), nullable=True)
    user_agent = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<UserSession(id={self.id}, user_id={self.user_id}, expires_at={self.expires_at})>"


class PasswordReset(Base):
    """
    Password reset token.

    Only the SHA-256 digest of the emailed token is stored. A row is usable
    while used_at is NULL and expires_at is in the future.
    """
    __tablename__ = "password_resets"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<PasswordReset(id={self.id}, user_id={self.user_id}, used={self.used_at is not None})>"
