"""
Identity service — auth controller (request orchestration layer).

Responsibilities:
  - Receive validated input from the router.
  - Call service functions (which own business logic).
  - Hand issued OTPs to the notifier as background tasks.
  - Compose and return the response model.

No framework validation logic here — that belongs in schemas.py.
No business logic here — that belongs in service.py.
"""
from __future__ import annotations

from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession

from shared.constants import Role

from identity.accounts.directory import RoleDirectory
from identity.accounts.models import Account
from identity.auth import service
from identity.auth.schemas import (
    AccountResponse,
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
    RefreshRequest,
    ResetTokenResponse,
    TokenResponse,
)
from identity.config import Settings
from identity.notifications import Notifier


# ── Helper ────────────────────────────────────────────────────────────────────

def _token_response(pair: service.TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
    )


def _login_response(account: Account, role: Role, settings: Settings) -> LoginResponse:
    pair = service.issue_token_pair(account.id, role, settings)
    return LoginResponse(
        account=AccountResponse.model_validate(account),
        tokens=_token_response(pair),
    )


# ── Login OTP ─────────────────────────────────────────────────────────────────

async def login_otp_request(
    session: AsyncSession,
    role: Role,
    body: LoginOTPRequest,
    settings: Settings,
    directory: RoleDirectory,
    notifier: Notifier,
    background_tasks: BackgroundTasks,
) -> OTPIssuedResponse:
    issued = await service.request_login_otp(
        session, directory, settings, role=role, phone=body.phone
    )
    # Fire-and-forget: the challenge stands whether or not the SMS arrives.
    background_tasks.add_task(notifier.send_otp_sms, issued.destination, issued.code, role)
    return OTPIssuedResponse(message="OTP sent to your phone number.", phone=issued.destination)


async def login_otp_verify(
    session: AsyncSession,
    role: Role,
    body: LoginOTPVerifyRequest,
    settings: Settings,
    directory: RoleDirectory,
) -> LoginResponse:
    account = await service.verify_login_otp(
        session, directory, role=role, phone=body.phone, code=body.otp
    )
    return _login_response(account, role, settings)


# ── Email + Password ──────────────────────────────────────────────────────────

async def password_login(
    session: AsyncSession,
    role: Role,
    body: PasswordLoginRequest,
    settings: Settings,
    directory: RoleDirectory,
) -> LoginResponse:
    account = await service.authenticate_account(
        session, directory, role=role, email=body.email, password=body.password
    )
    return _login_response(account, role, settings)


# ── Password reset ────────────────────────────────────────────────────────────

async def password_reset_request(
    session: AsyncSession,
    role: Role,
    body: PasswordResetRequest,
    settings: Settings,
    directory: RoleDirectory,
    notifier: Notifier,
    background_tasks: BackgroundTasks,
) -> MessageResponse:
    issued = await service.request_password_reset(
        session, directory, settings, role=role, email=body.email
    )
    background_tasks.add_task(notifier.send_otp_email, issued.destination, issued.code, role)
    return MessageResponse(message="OTP sent to registered email address.")


async def password_reset_verify(
    session: AsyncSession,
    role: Role,
    body: PasswordResetVerifyRequest,
    settings: Settings,
    directory: RoleDirectory,
) -> ResetTokenResponse:
    reset_token = await service.verify_password_reset_otp(
        session, directory, settings, role=role, email=body.email, code=body.otp
    )
    return ResetTokenResponse(
        message="OTP verified successfully. Use the reset token to set a new password.",
        reset_token=reset_token,
    )


async def password_reset_confirm(
    session: AsyncSession,
    role: Role,
    body: PasswordResetConfirmRequest,
    directory: RoleDirectory,
) -> MessageResponse:
    await service.reset_password(
        session,
        directory,
        role=role,
        email=body.email,
        reset_token=body.reset_token,
        new_password=body.new_password,
    )
    return MessageResponse(message="Password has been reset successfully.")


# ── Refresh / Logout ──────────────────────────────────────────────────────────

async def refresh(
    session: AsyncSession,
    body: RefreshRequest,
    settings: Settings,
    directory: RoleDirectory,
) -> TokenResponse:
    pair = await service.refresh_session(session, directory, settings, body.refresh_token)
    return _token_response(pair)


async def logout(
    session: AsyncSession,
    body: LogoutRequest | None,
    access_token: str | None,
) -> None:
    await service.revoke_session_tokens(
        session,
        access_token=access_token,
        refresh_token=body.refresh_token if body else None,
    )
