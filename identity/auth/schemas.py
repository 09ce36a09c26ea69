"""
Identity service — Pydantic V2 request/response schemas for the auth domain.

Separation of concerns:
  - *Request  models:  input from the client (strict extra="forbid")
  - *Response models:  output to the client (no write-only fields exposed)
"""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from shared.constants import ApprovalStatus, Role


# ── Shared base ───────────────────────────────────────────────────────────────

class _Base(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
    )


# ── Login OTP ─────────────────────────────────────────────────────────────────

class LoginOTPRequest(_Base):
    """Body for POST /auth/{role}/login-otp/request — sends a 6-digit code via SMS."""

    # Any formatting is accepted; digits are extracted server-side.
    phone: str = Field(min_length=1, max_length=32)


class LoginOTPVerifyRequest(_Base):
    """Body for POST /auth/{role}/login-otp/verify."""

    phone: str = Field(min_length=1, max_length=32)
    otp: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


# ── Email + Password ──────────────────────────────────────────────────────────

class PasswordLoginRequest(_Base):
    """Body for POST /auth/{role}/login."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


# ── Password reset ────────────────────────────────────────────────────────────

class PasswordResetRequest(_Base):
    email: EmailStr


class PasswordResetVerifyRequest(_Base):
    email: EmailStr
    otp: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class PasswordResetConfirmRequest(_Base):
    email: EmailStr
    reset_token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


# ── Session tokens ────────────────────────────────────────────────────────────

class RefreshRequest(_Base):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(_Base):
    """The access token, if any, comes from the Authorization header."""

    refresh_token: str | None = None


# ── Responses ─────────────────────────────────────────────────────────────────

class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # access-token lifetime in seconds


class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    phone: str | None
    full_name: str
    role: Role
    is_active: bool
    # Only approval-gated roles carry a status
    status: ApprovalStatus | None = None
    last_login_at: datetime | None = None


class LoginResponse(BaseModel):
    account: AccountResponse
    tokens: TokenResponse


class OTPIssuedResponse(BaseModel):
    message: str
    phone: str


class ResetTokenResponse(BaseModel):
    message: str
    reset_token: str


class MessageResponse(BaseModel):
    message: str


class PrincipalResponse(BaseModel):
    id: uuid.UUID
    role: Role
