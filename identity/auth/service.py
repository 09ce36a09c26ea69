"""
Identity service — pure business logic for authentication.

Rules:
  - Zero FastAPI imports (domain exceptions aside).
  - Zero direct DB driver calls — only SQLAlchemy async session.
  - All I/O functions are async def.
  - Account lookups go through the injected RoleDirectory.
  - Notification dispatch is the caller's job: request_* functions return the
    plain code in ``IssuedOTP`` and the controller hands it to the Notifier.

Failure paths that change a challenge (attempt increment, stale-record delete)
commit before raising: the request session rolls back on any exception.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.constants import ApprovalStatus, Role
from shared.database import upsert_statement
from shared.models import Principal

from identity.accounts.directory import RoleDirectory
from identity.accounts.models import Account
from identity.auth import otp, revocation, tokens
from identity.auth.constants import (
    LOGIN_OTP_ROLES,
    MIN_PHONE_DIGITS,
    RevocationReason,
    TokenType,
)
from identity.auth.models import LoginOTPChallenge, PasswordResetChallenge
from identity.auth.utils import mask_email, mask_phone, normalize_email, normalize_phone, utcnow, verify_secret
from identity.config import Settings
from identity.exceptions import (
    AccountNotFound,
    AccountPendingApproval,
    ChallengeNotFound,
    InvalidCredentials,
    InvalidOTP,
    InvalidPhone,
    InvalidResetToken,
    OTPExhausted,
    OTPExpired,
    ResetTokenExpired,
    TokenInvalid,
    TokenRevoked,
    UnsupportedRole,
    UserInactive,
)

logger = logging.getLogger(__name__)

# Same wording whether the phone is unknown or malformed-but-valid: no enumeration.
PHONE_NOT_FOUND_DETAIL = "Invalid phone number or account not found."
EMAIL_NOT_FOUND_DETAIL = "Account not found with provided email."

Challenge = LoginOTPChallenge | PasswordResetChallenge


@dataclass(frozen=True)
class IssuedOTP:
    """Result of an OTP request.  ``code`` goes to the notifier, never to the client."""

    destination: str
    code: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


# ── Guard: ensure account is usable ──────────────────────────────────────────

def assert_account_usable(account: Account) -> None:
    """
    Raise the appropriate HTTP exception for any account-level block.

    Applied after every credential check, on refresh and on each protected
    request, so that deactivation or a revoked approval takes effect immediately.
    """
    if not account.is_active:
        raise UserInactive()
    approval = getattr(account, "status", None)
    if approval is not None and approval != ApprovalStatus.APPROVED:
        raise AccountPendingApproval(approval)


def _ensure_login_otp_role(role: Role) -> Role:
    if role not in LOGIN_OTP_ROLES:
        raise UnsupportedRole(Role(role).value)
    return Role(role)


# ── Challenge helpers ─────────────────────────────────────────────────────────

async def _discard(session: AsyncSession, model: type[Challenge], challenge_id: uuid.UUID) -> int:
    """Delete and commit.  Returns the row count: 0 means another request got there first."""
    result = await session.execute(delete(model).where(model.id == challenge_id))
    await session.commit()
    return result.rowcount or 0


async def _consume_attempt(
    session: AsyncSession,
    model: type[Challenge],
    challenge: Challenge,
    code: str,
    now: datetime,
) -> None:
    """
    Check ``code`` against a live challenge.  Returns only on a match.

    Raises:
      OTPExpired        — past otp_expires_at (challenge deleted)
      OTPExhausted      — attempts used up, before or by this guess (challenge deleted)
      InvalidOTP        — wrong code; attempts incremented atomically
      ChallengeNotFound — challenge replaced or deleted concurrently
    """
    if now > challenge.otp_expires_at:
        await _discard(session, model, challenge.id)
        logger.info("%s %s expired; deleted", model.__name__, challenge.id)
        raise OTPExpired()

    if challenge.attempts >= challenge.max_attempts:
        await _discard(session, model, challenge.id)
        raise OTPExhausted()

    if otp.verify_code(code, challenge.otp_hash):
        return

    # UPDATE … SET attempts = attempts + 1 RETURNING attempts: concurrent wrong
    # guesses serialize on the row, so none of them can skip past max_attempts.
    result = await session.execute(
        update(model)
        .where(model.id == challenge.id)
        .values(attempts=model.attempts + 1, updated_at=now)
        .returning(model.attempts)
        .execution_options(synchronize_session=False)
    )
    attempts = result.scalar_one_or_none()
    if attempts is None:
        await session.commit()
        raise ChallengeNotFound()
    if attempts >= challenge.max_attempts:
        await _discard(session, model, challenge.id)
        logger.info("%s %s exhausted after %d attempts; deleted", model.__name__, challenge.id, attempts)
        raise OTPExhausted()
    await session.commit()
    raise InvalidOTP(attempts_remaining=challenge.max_attempts - attempts)


# ── Login OTP ─────────────────────────────────────────────────────────────────

async def _get_login_challenge(
    session: AsyncSession, phone: str, role: Role
) -> LoginOTPChallenge | None:
    result = await session.execute(
        select(LoginOTPChallenge)
        .where(LoginOTPChallenge.phone == phone, LoginOTPChallenge.role == role)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def request_login_otp(
    session: AsyncSession,
    directory: RoleDirectory,
    settings: Settings,
    *,
    role: Role,
    phone: str,
) -> IssuedOTP:
    """
    Issue a login OTP for ``(phone, role)``, replacing any live challenge.

    Raises:
      UnsupportedRole        — role cannot log in with a phone OTP
      InvalidPhone           — fewer than 10 digits after normalization
      AccountNotFound        — no account with this phone (generic wording)
      UserInactive / AccountPendingApproval
    """
    role = _ensure_login_otp_role(role)
    normalized = normalize_phone(phone)
    if len(normalized) < MIN_PHONE_DIGITS:
        raise InvalidPhone()

    account = await directory.find_by_phone(session, role, normalized)
    if account is None:
        raise AccountNotFound(detail=PHONE_NOT_FOUND_DETAIL)
    assert_account_usable(account)

    code = otp.generate_code(random_codes=settings.random_otp_enabled)
    now = utcnow()
    stmt = upsert_statement(session, LoginOTPChallenge).values(
        id=uuid.uuid4(),
        phone=normalized,
        role=role,
        otp_hash=otp.hash_code(code),
        otp_expires_at=otp.expiry_timestamp(settings.otp_expire_minutes, now),
        attempts=0,
        max_attempts=settings.otp_max_attempts,
        verified_at=None,
        created_at=now,
        updated_at=now,
    )
    # Wholesale replacement on the (phone, role) key in one statement.
    stmt = stmt.on_conflict_do_update(
        index_elements=["phone", "role"],
        set_={
            "otp_hash": stmt.excluded.otp_hash,
            "otp_expires_at": stmt.excluded.otp_expires_at,
            "attempts": 0,
            "max_attempts": stmt.excluded.max_attempts,
            "verified_at": None,
            "updated_at": now,
        },
    )
    await session.execute(stmt)
    logger.info("Login OTP issued for %s (%s)", mask_phone(normalized), role.value)
    return IssuedOTP(destination=normalized, code=code)


async def verify_login_otp(
    session: AsyncSession,
    directory: RoleDirectory,
    *,
    role: Role,
    phone: str,
    code: str,
) -> Account:
    """
    Verify a login OTP and return the account on success.

    The challenge is deleted on success, expiry and exhaustion.  The caller
    mints the token pair from the returned account.
    """
    role = _ensure_login_otp_role(role)
    normalized = normalize_phone(phone)

    challenge = await _get_login_challenge(session, normalized, role)
    if challenge is None:
        raise ChallengeNotFound()

    now = utcnow()
    await _consume_attempt(session, LoginOTPChallenge, challenge, code, now)

    # Single-use: the code is spent whatever happens to the account lookup.
    # Only the request whose DELETE removed the row may log in.
    if not await _discard(session, LoginOTPChallenge, challenge.id):
        raise ChallengeNotFound()

    account = await directory.find_by_phone(session, role, normalized)
    if account is None:
        raise AccountNotFound(detail=PHONE_NOT_FOUND_DETAIL)
    assert_account_usable(account)
    await directory.record_login(session, role, account)
    return account


# ── Password reset ────────────────────────────────────────────────────────────

async def _get_reset_challenge(
    session: AsyncSession, email: str, role: Role, reset_token: str | None = None
) -> PasswordResetChallenge | None:
    stmt = select(PasswordResetChallenge).where(
        PasswordResetChallenge.email == email,
        PasswordResetChallenge.role == role,
    )
    if reset_token is not None:
        stmt = stmt.where(PasswordResetChallenge.reset_token == reset_token)
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def request_password_reset(
    session: AsyncSession,
    directory: RoleDirectory,
    settings: Settings,
    *,
    role: Role,
    email: str,
) -> IssuedOTP:
    """
    Issue a password-reset OTP for ``(email, role)``.

    Any previous challenge, including a verified one with a live reset token,
    is replaced.  Unknown email raises AccountNotFound.
    """
    role = directory.for_role(role).role
    normalized = normalize_email(email)

    account = await directory.find_by_email(session, role, normalized)
    if account is None:
        raise AccountNotFound(detail=EMAIL_NOT_FOUND_DETAIL)

    code = otp.generate_code(random_codes=settings.random_otp_enabled)
    now = utcnow()
    stmt = upsert_statement(session, PasswordResetChallenge).values(
        id=uuid.uuid4(),
        email=normalized,
        role=role,
        otp_hash=otp.hash_code(code),
        otp_expires_at=otp.expiry_timestamp(settings.otp_expire_minutes, now),
        attempts=0,
        max_attempts=settings.otp_max_attempts,
        verified_at=None,
        reset_token=None,
        reset_token_expires_at=None,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["email", "role"],
        set_={
            "otp_hash": stmt.excluded.otp_hash,
            "otp_expires_at": stmt.excluded.otp_expires_at,
            "attempts": 0,
            "max_attempts": stmt.excluded.max_attempts,
            "verified_at": None,
            "reset_token": None,
            "reset_token_expires_at": None,
            "updated_at": now,
        },
    )
    await session.execute(stmt)
    logger.info("Password reset OTP issued for %s (%s)", mask_email(normalized), role.value)
    return IssuedOTP(destination=normalized, code=code)


async def verify_password_reset_otp(
    session: AsyncSession,
    directory: RoleDirectory,
    settings: Settings,
    *,
    role: Role,
    email: str,
    code: str,
) -> str:
    """
    Exchange a correct reset OTP for a single-use reset token.

    This is the only place the reset token is returned; it must never be logged.
    Same expiry / attempt rules as the login OTP.
    """
    role = directory.for_role(role).role
    normalized = normalize_email(email)

    challenge = await _get_reset_challenge(session, normalized, role)
    if challenge is None:
        raise ChallengeNotFound()

    now = utcnow()
    await _consume_attempt(session, PasswordResetChallenge, challenge, code, now)

    reset_token = otp.generate_reset_token()
    challenge.verified_at = now
    challenge.attempts = 0
    challenge.reset_token = reset_token
    challenge.reset_token_expires_at = otp.expiry_timestamp(settings.reset_token_expire_minutes, now)
    challenge.updated_at = now
    await session.flush()
    logger.info("Password reset OTP verified for %s (%s)", mask_email(normalized), role.value)
    return reset_token


async def reset_password(
    session: AsyncSession,
    directory: RoleDirectory,
    *,
    role: Role,
    email: str,
    reset_token: str,
    new_password: str,
) -> None:
    """
    Consume ``reset_token`` and set the new password.

    The challenge is deleted on success and on every stale path, so a reset
    token can be used at most once.

    Raises:
      InvalidResetToken — no challenge for (email, role, reset_token), or a
                          concurrent request consumed it first
      ResetTokenExpired — OTP step never completed or token past its expiry
      AccountNotFound   — the account disappeared since the request
    """
    role = directory.for_role(role).role
    normalized = normalize_email(email)
    if not reset_token:
        raise InvalidResetToken()

    challenge = await _get_reset_challenge(session, normalized, role, reset_token)
    if challenge is None:
        raise InvalidResetToken()

    now = utcnow()
    if (
        challenge.verified_at is None
        or challenge.reset_token_expires_at is None
        or now > challenge.reset_token_expires_at
    ):
        await _discard(session, PasswordResetChallenge, challenge.id)
        raise ResetTokenExpired()

    account = await directory.find_by_email(session, role, normalized)
    if account is None:
        await _discard(session, PasswordResetChallenge, challenge.id)
        raise AccountNotFound()

    # Claim the token before touching the password: of two concurrent
    # consumers only the one whose DELETE removes the row goes on.
    claimed = await session.execute(
        delete(PasswordResetChallenge).where(
            PasswordResetChallenge.id == challenge.id,
            PasswordResetChallenge.reset_token == reset_token,
        )
    )
    if claimed.rowcount != 1:
        raise InvalidResetToken()

    await directory.set_password(session, role, account, new_password)
    logger.info("Password reset completed for %s (%s)", mask_email(normalized), role.value)


# ── Email + password ──────────────────────────────────────────────────────────

async def authenticate_account(
    session: AsyncSession,
    directory: RoleDirectory,
    *,
    role: Role,
    email: str,
    password: str,
) -> Account:
    """
    Verify email + password and return the account.

    Unknown email, missing password and wrong password are indistinguishable
    (InvalidCredentials).  Account-state guards run only after the password
    matches so they do not leak which emails exist.
    """
    account = await directory.find_by_email(session, role, normalize_email(email))
    if account is None or not verify_secret(password, account.password_hash):
        raise InvalidCredentials()
    assert_account_usable(account)
    await directory.record_login(session, role, account)
    return account


# ── Session tokens ────────────────────────────────────────────────────────────

def issue_token_pair(subject_id: uuid.UUID, role: Role, settings: Settings) -> TokenPair:
    return TokenPair(
        access_token=tokens.create_access_token(subject_id, role, settings),
        refresh_token=tokens.create_refresh_token(subject_id, role, settings),
        expires_in=settings.jwt_expire_seconds,
    )


async def resolve_principal(
    session: AsyncSession,
    directory: RoleDirectory,
    settings: Settings,
    access_token: str | None,
) -> Principal:
    """Verify an access token and reload its account.  Used by the route guard."""
    claims = await tokens.verify_access_token(session, access_token, settings)
    account = await directory.find_by_id(session, claims.role, claims.subject_id)
    if account is None:
        raise TokenInvalid()
    assert_account_usable(account)
    return Principal(id=account.id, role=claims.role)


async def refresh_session(
    session: AsyncSession,
    directory: RoleDirectory,
    settings: Settings,
    refresh_token: str,
) -> TokenPair:
    """
    Rotate a refresh token: verify it, re-check the account, revoke it and mint
    a new pair.  The old refresh token fails as revoked from then on.
    """
    claims = await tokens.verify_refresh_token(session, refresh_token, settings)

    account = await directory.find_by_id(session, claims.role, claims.subject_id)
    if account is None:
        raise AccountNotFound()
    assert_account_usable(account)

    # Only the request that inserts the revocation record may rotate; a
    # concurrent refresh with the same token hits the conflict instead.
    claimed = await revocation.claim_token(
        session,
        refresh_token,
        token_type=TokenType.REFRESH,
        subject_id=claims.subject_id,
        role=claims.role,
        reason=RevocationReason.REFRESH,
        expires_at=claims.expires_at,
    )
    if not claimed:
        raise TokenRevoked()
    return issue_token_pair(claims.subject_id, claims.role, settings)


async def revoke_session_tokens(
    session: AsyncSession,
    *,
    access_token: str | None = None,
    refresh_token: str | None = None,
    reason: RevocationReason = RevocationReason.LOGOUT,
) -> int:
    """
    Best-effort logout: record whichever tokens were presented as revoked.

    Tokens are decoded without verification so that already-expired ones are
    still recorded.  Undecodable tokens and storage failures are logged and
    skipped; this never raises.  Returns how many tokens were recorded.
    """
    revoked = 0
    for raw, default_type in (
        (access_token, TokenType.ACCESS),
        (refresh_token, TokenType.REFRESH),
    ):
        if not raw:
            continue
        claims = tokens.decode_unverified(raw)
        if claims is None:
            logger.info("Logout: skipping undecodable %s token", default_type.value)
            continue
        try:
            subject_id = uuid.UUID(str(claims["sub"]))
            role = Role(claims["role"])
            token_type = TokenType(claims.get("type", default_type.value))
        except (KeyError, ValueError):
            logger.info("Logout: skipping %s token with incomplete claims", default_type.value)
            continue
        try:
            await revocation.revoke_token(
                session,
                raw,
                token_type=token_type,
                subject_id=subject_id,
                role=role,
                reason=reason,
            )
            await session.commit()
            revoked += 1
        except SQLAlchemyError:
            await session.rollback()
            logger.warning("Logout: failed to revoke %s token for %s", token_type.value, subject_id, exc_info=True)
    return revoked


# ── Housekeeping ──────────────────────────────────────────────────────────────

async def purge_expired_challenges(session: AsyncSession, now: datetime | None = None) -> int:
    """
    Delete challenges past their live deadline.  Returns the row count.

    A reset challenge lives until otp_expires_at before verification and until
    reset_token_expires_at afterwards.
    """
    now = now or utcnow()
    login = await session.execute(
        delete(LoginOTPChallenge).where(LoginOTPChallenge.otp_expires_at <= now)
    )
    reset = await session.execute(
        delete(PasswordResetChallenge).where(
            or_(
                and_(
                    PasswordResetChallenge.reset_token_expires_at.is_(None),
                    PasswordResetChallenge.otp_expires_at <= now,
                ),
                PasswordResetChallenge.reset_token_expires_at <= now,
            )
        )
    )
    return (login.rowcount or 0) + (reset.rowcount or 0)
