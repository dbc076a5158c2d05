"""
Authentication Pydantic schemas.

Defines request and response schemas for authentication endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator


class UserRegister(BaseModel):
    """
    Schema for user registration.

    Used by POST /auth/register endpoint.
    New accounts get the Viewer role.
    """
    email: EmailStr = Field(..., description="User email address")
    username: str = Field(..., min_length=3, max_length=50, description="Unique username")
    password: str = Field(..., min_length=8, description="Password (min 8 characters)")
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class UserLogin(BaseModel):
    """
    Schema for user login.

    Used by POST /auth/login endpoint.
    """
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=6, description="Password")
    device_info: Optional[str] = Field(default=None, max_length=512)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, description="Refresh token from login or a previous refresh")


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    """Only these fields can be changed by the account owner."""
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class PermissionItem(BaseModel):
    resource: str
    action: str


class CurrentUser(BaseModel):
    """
    Schema for the authenticated user.

    Used by login and GET /auth/me.
    """
    id: int
    email: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    status: str
    email_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    roles: List[str] = []
    permissions: List[PermissionItem] = []


class LoginData(BaseModel):
    token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="JWT refresh token")
    user: CurrentUser


class LoginResponse(BaseModel):
    success: bool = True
    message: str
    data: LoginData


class TokenPairData(BaseModel):
    token: str
    refresh_token: str


class RefreshResponse(BaseModel):
    success: bool = True
    message: str
    data: TokenPairData


class SessionItem(BaseModel):
    """A session as shown to its owner. Token values are never exposed."""
    id: int
    device_info: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    """
    Generic success envelope.

    `reset_link` / `verification_link` are only filled in development mode.
    """
    success: bool = True
    message: str
    data: Optional[Any] = None
    reset_link: Optional[str] = None
    verification_link: Optional[str] = None


class DataResponse(BaseModel):
    success: bool = True
    data: Any
    meta: Optional[Dict[str, Any]] = None
