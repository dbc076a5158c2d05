"""
Audit log Pydantic schemas.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    """Schema for audit log entry."""
    id: int
    user_id: Optional[int] = None
    username: Optional[str] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class AuditTrailResponse(BaseModel):
    """Schema for audit trail list."""
    success: bool = True
    data: List[AuditLogResponse]
    total: int
    page: int
    limit: int
    pages: int
