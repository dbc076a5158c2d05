"""
Permission database models.

A Permission is one (resource, action) pair. Rows are seeded once and never
edited; only RolePermission links change.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, UniqueConstraint
from sqlalchemy.sql import func
from backoffice.app.db.session import Base
from backoffice.app.models.enums import PermissionAction


class Permission(Base):
    """Atomic (resource, action) grant."""
    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(150), unique=True, nullable=False)
    resource = Column(String(100), nullable=False, index=True)
    action = Column(Enum(PermissionAction), nullable=False)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    def __repr__(self):
        return f"<Permission(resource='{self.resource}', action='{self.action.value}')>"


class RolePermission(Base):
    """Grant of a permission to a role."""
    __tablename__ = "role_permissions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False, index=True)
    permission_id = Column(Integer, ForeignKey("permissions.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
    )
