"""
Role and permission Pydantic schemas.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    permission_ids: List[int] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    """Allow-listed role update; is_system can never be set through the API."""
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    permission_ids: Optional[List[int]] = None


class RolePermissionsUpdate(BaseModel):
    permission_ids: List[int]
