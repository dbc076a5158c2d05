"""
User database model.

This module defines the User SQLAlchemy model (the authenticated identity).
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from backoffice.app.db.session import Base
from backoffice.app.models.enums import UserStatus


class User(Base):
    """
    User model for authentication and user management.

    Roles are attached through UserRole; the account itself only carries
    credentials, status and email-verification state.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    status = Column(
        Enum(UserStatus, values_callable=lambda e: [m.value for m in e]),
        default=UserStatus.ACTIVE,
        nullable=False,
    )

    # Email verification (only the SHA-256 digest of the token is stored)
    email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_token = Column(String(64), index=True, nullable=True)
    email_verification_sent_at = Column(DateTime(timezone=True), nullable=True)

    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', email='{self.email}', status='{self.status}')>"
