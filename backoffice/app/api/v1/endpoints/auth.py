"""
Authentication API endpoints.

Provides registration, login, token refresh, logout, password and
email-verification flows, profile and session management for the caller.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.app.core.config import settings
from backoffice.app.core.dependencies import (
    IdentityContext,
    get_current_user,
    get_current_user_record,
)
from backoffice.app.core.exceptions import InvalidCredential
from backoffice.app.core.jwt import TokenIssuer, get_token_issuer
from backoffice.app.core.rate_limit import (
    LOGIN_RULE,
    PASSWORD_RESET_RULE,
    VERIFICATION_RULE,
    RateLimiter,
    limiter_for,
)
from backoffice.app.db.session import get_db
from backoffice.app.models.user import User
from backoffice.app.schemas.auth import (
    ChangePasswordRequest,
    CurrentUser,
    DataResponse,
    ForgotPasswordRequest,
    LoginResponse,
    MessageResponse,
    ProfileUpdate,
    RefreshRequest,
    RefreshResponse,
    ResetPasswordRequest,
    SessionItem,
    UserLogin,
    UserRegister,
    VerifyEmailRequest,
)
from backoffice.app.services.audit import (
    AuditAction,
    AuditRecorder,
    client_ip,
    client_user_agent,
    get_audit_recorder,
)
from backoffice.app.services.auth import AuthService, serialize_user
from backoffice.app.services.credentials import CredentialStore
from backoffice.app.services.sessions import SessionRegistry

router = APIRouter(prefix="/auth", tags=["Authentication"])

# Same answer whether or not the email exists
RESET_REQUESTED_MESSAGE = "If an account with that email exists, a password reset link has been sent"


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    audit: AuditRecorder = Depends(get_audit_recorder),
    login_limiter: RateLimiter = Depends(limiter_for(LOGIN_RULE)),
) -> AuthService:
    return AuthService(db, issuer, audit, login_limiter)


def get_credential_store(db: AsyncSession = Depends(get_db)) -> CredentialStore:
    return CredentialStore(db)


@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    request: Request,
    auth: AuthService = Depends(get_auth_service),
):
    """
    Register a new account.

    The account is active immediately and holds the Viewer role. A
    verification link is issued (logged; returned only in development).
    """
    user, link = await auth.register(
        email=user_data.email,
        username=user_data.username,
        password=user_data.password,
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        ip_address=client_ip(request),
        user_agent=client_user_agent(request),
    )
    return MessageResponse(
        message="Account created successfully. Please verify your email address.",
        data={
            "user": {
                "id": user.id,
                "email": user.email,
                "username": user.username,
                "first_name": user.first_name,
                "last_name": user.last_name,
            }
        },
        verification_link=link if settings.is_development else None,
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    auth: AuthService = Depends(get_auth_service),
):
    """
    Login with email and password.

    Returns an access/refresh token pair and the user with roles and
    effective permissions. Failed attempts count against the caller's IP.
    """
    data = await auth.login(
        email=credentials.email,
        password=credentials.password,
        ip_address=client_ip(request),
        user_agent=client_user_agent(request),
        device_info=credentials.device_info,
    )
    return LoginResponse(message="Logged in successfully", data=data)


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    body: RefreshRequest,
    request: Request,
    auth: AuthService = Depends(get_auth_service),
):
    """Exchange a refresh token for a new pair. The old refresh token stops working."""
    pair = await auth.refresh(
        body.refresh_token,
        ip_address=client_ip(request),
        user_agent=client_user_agent(request),
    )
    return RefreshResponse(message="Token refreshed successfully", data=pair)


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    request: Request,
    store: CredentialStore = Depends(get_credential_store),
    audit: AuditRecorder = Depends(get_audit_recorder),
    limiter: RateLimiter = Depends(limiter_for(PASSWORD_RESET_RULE)),
):
    """Request a password reset link. The response never reveals whether the email exists."""
    await limiter.consume(client_ip(request))

    issued = await store.request_reset(body.email)
    link = None
    if issued is not None:
        user, link = issued
        await audit.record_request(
            request,
            action=AuditAction.PASSWORD_RESET_REQUESTED,
            resource="auth",
            user_id=user.id,
            resource_id=user.id,
        )

    return MessageResponse(
        message=RESET_REQUESTED_MESSAGE,
        reset_link=link if settings.is_development else None,
    )


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    request: Request,
    store: CredentialStore = Depends(get_credential_store),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Set a new password from a reset token. Every session of the account is revoked."""
    user = await store.consume_reset(body.token, body.password)
    await audit.record_request(
        request,
        action=AuditAction.PASSWORD_RESET,
        resource="auth",
        user_id=user.id,
        resource_id=user.id,
    )
    return MessageResponse(message="Password has been reset successfully. Please log in again.")


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    body: VerifyEmailRequest,
    request: Request,
    store: CredentialStore = Depends(get_credential_store),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Mark the account behind a verification token as verified."""
    user = await store.verify_email(body.token)
    await audit.record_request(
        request,
        action=AuditAction.EMAIL_VERIFIED,
        resource="users",
        user_id=user.id,
        resource_id=user.id,
    )
    return MessageResponse(message="Email verified successfully")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    request: Request,
    user: User = Depends(get_current_user_record),
    store: CredentialStore = Depends(get_credential_store),
    audit: AuditRecorder = Depends(get_audit_recorder),
    limiter: RateLimiter = Depends(limiter_for(VERIFICATION_RULE)),
):
    """Issue a new verification link for the caller."""
    await limiter.consume(str(user.id))

    link = await store.resend_verification(user)
    await audit.record_request(
        request,
        action=AuditAction.VERIFICATION_EMAIL_RESENT,
        resource="users",
        user_id=user.id,
        resource_id=user.id,
    )
    return MessageResponse(
        message="Verification email sent",
        verification_link=link if settings.is_development else None,
    )


@router.get("/me", response_model=DataResponse)
async def get_me(
    user: User = Depends(get_current_user_record),
    auth: AuthService = Depends(get_auth_service),
):
    """Current user with roles and effective permissions."""
    return DataResponse(data=CurrentUser(**await auth.describe(user)))


@router.put("/profile", response_model=MessageResponse)
async def update_profile(
    body: ProfileUpdate,
    request: Request,
    user: User = Depends(get_current_user_record),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Update the caller's own name fields."""
    changes = body.model_dump(exclude_unset=True)
    old_values = {field: getattr(user, field) for field in changes}

    for field, value in changes.items():
        setattr(user, field, value)
    await db.commit()
    await db.refresh(user)

    await audit.record_request(
        request,
        action=AuditAction.PROFILE_UPDATED,
        resource="users",
        user_id=user.id,
        resource_id=user.id,
        old_values=old_values,
        new_values=changes,
    )
    return MessageResponse(message="Profile updated successfully", data=serialize_user(user))


@router.put("/password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    current_user: IdentityContext = Depends(get_current_user),
    user: User = Depends(get_current_user_record),
    store: CredentialStore = Depends(get_credential_store),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """
    Change the caller's password.

    Every other session is revoked; the session making this request stays
    logged in.
    """
    try:
        revoked = await store.change_password(
            user,
            body.current_password,
            body.new_password,
            current_access_token=current_user.token,
        )
    except InvalidCredential:
        await audit.record_request(
            request,
            action=AuditAction.PASSWORD_CHANGE_FAILED,
            resource="auth",
            user_id=user.id,
            new_values={"reason": "Invalid current password"},
        )
        raise

    await audit.record_request(
        request,
        action=AuditAction.PASSWORD_CHANGED,
        resource="auth",
        user_id=user.id,
        new_values={"sessions_revoked": revoked},
    )
    return MessageResponse(message="Password changed successfully")


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    current_user: IdentityContext = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    """Revoke the session of the presented access token."""
    await auth.logout(
        current_user.id,
        current_user.token,
        ip_address=client_ip(request),
        user_agent=client_user_agent(request),
    )
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    request: Request,
    current_user: IdentityContext = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    """Revoke every session of the caller, including this one."""
    revoked = await auth.logout_all(
        current_user.id,
        ip_address=client_ip(request),
        user_agent=client_user_agent(request),
    )
    return MessageResponse(
        message="Logged out from all devices successfully",
        data={"sessions_revoked": revoked},
    )


@router.get("/sessions", response_model=DataResponse)
async def list_sessions(
    current_user: IdentityContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's live sessions, newest first."""
    sessions = await SessionRegistry(db).list_active(current_user.id)
    return DataResponse(
        data=[
            dict(SessionItem.model_validate(s).model_dump(), current=(s.id == current_user.session_id))
            for s in sessions
        ]
    )


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def revoke_session(
    session_id: int,
    request: Request,
    current_user: IdentityContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    audit: AuditRecorder = Depends(get_audit_recorder),
):
    """Revoke one of the caller's own sessions."""
    await SessionRegistry(db).revoke_by_id(current_user.id, session_id)
    await db.commit()

    await audit.record_request(
        request,
        action=AuditAction.SESSION_REVOKED,
        resource="auth",
        user_id=current_user.id,
        resource_id=session_id,
    )
    return MessageResponse(message="Session revoked successfully")
