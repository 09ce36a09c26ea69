"""
Identity service — domain-specific HTTP exceptions.

All exceptions use preset status codes and detail messages so that callers
never need to specify these at the call site.  FastAPI's HTTPException handler
turns them into ``{"detail": ...}`` responses.  ``kind`` is for logs only and
is never sent to the client.
"""
from fastapi import HTTPException, status

from shared.constants import ApprovalStatus


# ── Invalid input ─────────────────────────────────────────────────────────────

class InvalidPhone(HTTPException):
    kind = "invalid_phone"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please provide a valid phone number.",
        )


class UnsupportedRole(HTTPException):
    kind = "unsupported_role"

    def __init__(self, role: str) -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"This operation is not available for role '{role}'.",
        )


class InvalidTokenPayload(HTTPException):
    """Raised when a token is minted without a subject id or role."""

    kind = "invalid_payload"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Token payload must include a subject id and role.",
        )


# ── Not found ─────────────────────────────────────────────────────────────────

class AccountNotFound(HTTPException):
    kind = "not_found"

    def __init__(self, detail: str = "Account not found.") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ChallengeNotFound(HTTPException):
    kind = "not_found"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No pending verification found. Please request a new OTP.",
        )


# ── OTP ───────────────────────────────────────────────────────────────────────

class InvalidOTP(HTTPException):
    kind = "invalid_code"

    def __init__(self, attempts_remaining: int) -> None:
        self.attempts_remaining = attempts_remaining
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid OTP code. {attempts_remaining} attempt(s) remaining.",
        )


class OTPExpired(HTTPException):
    kind = "expired"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_410_GONE,
            detail="OTP has expired. Please request a new code.",
        )


class OTPExhausted(HTTPException):
    """All verify attempts used up — user must request a new OTP."""

    kind = "attempts_exhausted"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many invalid attempts. Please request a new OTP.",
        )


# ── Password reset ────────────────────────────────────────────────────────────

class InvalidResetToken(HTTPException):
    kind = "invalid_token"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or already used reset token.",
        )


class ResetTokenExpired(HTTPException):
    kind = "expired"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_410_GONE,
            detail="Reset token has expired. Please restart the password reset.",
        )


# ── Session tokens ────────────────────────────────────────────────────────────
# Every rejection shows the caller the same message; ``kind`` is for logs only.

class TokenRejected(HTTPException):
    kind = "token_rejected"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session is no longer valid. Please log in again.",
            headers={"WWW-Authenticate": "Bearer"},
        )


class TokenExpired(TokenRejected):
    kind = "expired"


class TokenInvalid(TokenRejected):
    kind = "malformed"


class TokenWrongType(TokenRejected):
    kind = "wrong_type"


class TokenRevoked(TokenRejected):
    kind = "revoked"


class WeakSigningSecret(RuntimeError):
    """Raised at startup in production when a JWT signing secret fails the policy."""


# ── Authentication ────────────────────────────────────────────────────────────

class InvalidCredentials(HTTPException):
    kind = "invalid_credentials"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password.",
        )


class NotAuthenticated(HTTPException):
    kind = "not_authenticated"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
            headers={"WWW-Authenticate": "Bearer"},
        )


class Forbidden(HTTPException):
    kind = "forbidden"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this resource.",
        )


# ── Account state ─────────────────────────────────────────────────────────────

class UserInactive(HTTPException):
    kind = "account_inactive"

    def __init__(self) -> None:
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This account has been deactivated.",
        )


class AccountPendingApproval(HTTPException):
    kind = "pending_approval"

    def __init__(self, approval_status: ApprovalStatus | str | None) -> None:
        self.approval_status = approval_status
        if approval_status == ApprovalStatus.REJECTED:
            detail = "Your account registration was rejected. Please contact support."
        else:
            detail = "Your account is pending admin approval."
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
