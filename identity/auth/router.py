"""
Identity service — auth router.

Only HTTP concerns live here:
  - Route declarations, HTTP methods, status codes, response_model
  - Dependency injection (session, settings, directory, notifier)
  - Forwarding to the controller

Zero business logic. Zero DB queries.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.constants import Role
from shared.models import Principal

from identity.accounts.directory import RoleDirectory
from identity.auth import controller
from identity.auth.dependencies import (
    get_bearer_token,
    get_current_principal,
    get_notifier,
    get_role_directory,
    get_settings,
)
from identity.auth.schemas import (
    LoginOTPRequest,
    LoginOTPVerifyRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    OTPIssuedResponse,
    PasswordLoginRequest,
    PasswordResetConfirmRequest,
    PasswordResetRequest,
    PasswordResetVerifyRequest,
    PrincipalResponse,
    RefreshRequest,
    ResetTokenResponse,
    TokenResponse,
)
from identity.config import Settings
from identity.database import get_db
from identity.notifications import Notifier
from identity.rate_limit import (
    LOGIN_OTP_LIMIT,
    PASSWORD_LOGIN_LIMIT,
    PASSWORD_RESET_LIMIT,
    limiter,
)

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Login OTP ─────────────────────────────────────────────────────────────────

@router.post(
    "/{role}/login-otp/request",
    response_model=OTPIssuedResponse,
    summary="Request a 6-digit login OTP sent via SMS",
)
@limiter.limit(LOGIN_OTP_LIMIT)
async def login_otp_request(
    request: Request,
    role: Role,
    body: LoginOTPRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    directory: RoleDirectory = Depends(get_role_directory),
    notifier: Notifier = Depends(get_notifier),
) -> OTPIssuedResponse:
    return await controller.login_otp_request(
        session, role, body, settings, directory, notifier, background_tasks
    )


@router.post(
    "/{role}/login-otp/verify",
    response_model=LoginResponse,
    summary="Verify a login OTP and receive an access + refresh token pair",
)
async def login_otp_verify(
    role: Role,
    body: LoginOTPVerifyRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    directory: RoleDirectory = Depends(get_role_directory),
) -> LoginResponse:
    return await controller.login_otp_verify(session, role, body, settings, directory)


# ── Email + Password ──────────────────────────────────────────────────────────

@router.post(
    "/{role}/login",
    response_model=LoginResponse,
    summary="Log in with email + password",
)
@limiter.limit(PASSWORD_LOGIN_LIMIT)
async def password_login(
    request: Request,
    role: Role,
    body: PasswordLoginRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    directory: RoleDirectory = Depends(get_role_directory),
) -> LoginResponse:
    return await controller.password_login(session, role, body, settings, directory)


# ── Password reset ────────────────────────────────────────────────────────────

@router.post(
    "/{role}/password-reset/request",
    response_model=MessageResponse,
    summary="Request a password reset OTP by email",
)
@limiter.limit(PASSWORD_RESET_LIMIT)
async def password_reset_request(
    request: Request,
    role: Role,
    body: PasswordResetRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    directory: RoleDirectory = Depends(get_role_directory),
    notifier: Notifier = Depends(get_notifier),
) -> MessageResponse:
    return await controller.password_reset_request(
        session, role, body, settings, directory, notifier, background_tasks
    )


@router.post(
    "/{role}/password-reset/verify",
    response_model=ResetTokenResponse,
    summary="Exchange the reset OTP for a single-use reset token",
)
@limiter.limit(PASSWORD_RESET_LIMIT)
async def password_reset_verify(
    request: Request,
    role: Role,
    body: PasswordResetVerifyRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    directory: RoleDirectory = Depends(get_role_directory),
) -> ResetTokenResponse:
    return await controller.password_reset_verify(session, role, body, settings, directory)


@router.post(
    "/{role}/password-reset/confirm",
    response_model=MessageResponse,
    summary="Set a new password with the reset token",
)
async def password_reset_confirm(
    role: Role,
    body: PasswordResetConfirmRequest,
    session: AsyncSession = Depends(get_db),
    directory: RoleDirectory = Depends(get_role_directory),
) -> MessageResponse:
    return await controller.password_reset_confirm(session, role, body, directory)


# ── Session tokens ────────────────────────────────────────────────────────────

@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Rotate refresh token and issue a new access + refresh pair",
)
async def refresh(
    body: RefreshRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    directory: RoleDirectory = Depends(get_role_directory),
) -> TokenResponse:
    return await controller.refresh(session, body, settings, directory)


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke the presented access and/or refresh token",
)
async def logout(
    body: LogoutRequest | None = None,
    access_token: str | None = Depends(get_bearer_token),
    session: AsyncSession = Depends(get_db),
) -> None:
    await controller.logout(session, body, access_token)


@router.get(
    "/me",
    response_model=PrincipalResponse,
    summary="Return the authenticated principal",
)
async def me(principal: Principal = Depends(get_current_principal)) -> PrincipalResponse:
    return PrincipalResponse(id=principal.id, role=principal.role)
