"""
User management Pydantic schemas.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from backoffice.app.models.enums import UserStatus


class UserCreate(BaseModel):
    """Administrator-created account. Roles are assigned directly."""
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=8)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    role_ids: List[int] = Field(default_factory=list)


class UserUpdate(BaseModel):
    """
    Allow-listed update payload.

    Anything outside these fields (password, email_verified, ...) is ignored.
    """
    email: Optional[EmailStr] = None
    username: Optional[str] = Field(default=None, min_length=3, max_length=50)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    status: Optional[UserStatus] = None


class RoleAssignment(BaseModel):
    user_id: int
    role_id: int


class RoleSummary(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    is_system: bool
    is_active: bool

    class Config:
        from_attributes = True


class UserListItem(BaseModel):
    """Schema for user in list response."""
    id: int
    email: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    status: UserStatus
    email_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    roles: List[RoleSummary] = []

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    """Schema for list users response."""
    success: bool = True
    data: List[UserListItem]
    total: int
    page: int
    page_size: int
