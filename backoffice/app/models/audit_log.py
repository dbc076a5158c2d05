"""
Audit Log Database Model.

Tracks authentication events and data mutations for compliance and security monitoring.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from backoffice.app.db.session import Base
from backoffice.app.core.timeutils import utcnow


class AuditLog(Base):
    """
    Audit log model.

    Append-only: rows are never updated or deleted by the application.
    user_id is NULL for anonymous events (failed login for an unknown email).
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for anonymous events)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=True)

    # What action was performed, on what
    action = Column(String(100), nullable=False, index=True)
    resource = Column(String(100), nullable=False, index=True)
    resource_id = Column(String(100), nullable=True)

    # Before/after snapshots (opaque JSON)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    # Request metadata
    ip_address = Column(String(50), nullable=True)
    user_agent = Column(String(512), nullable=True)

    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', resource='{self.resource}', user={self.user_id})>"
