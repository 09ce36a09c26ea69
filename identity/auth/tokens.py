"""
Identity service — access / refresh token codec.

Tokens are HS256 JWTs carrying ``sub``, ``role``, ``type``, ``jti``, ``iat``,
``exp``, ``iss`` and ``aud``.  Access and refresh tokens are signed with
different secrets (``Settings.jwt_secret`` / ``Settings.refresh_secret``).

Verification order:
  1. revocation store (a revoked token is rejected before anything else)
  2. type claim, read unverified so that a token of the wrong kind is reported
     as such even though it was signed with the other secret
  3. signature, expiry, issuer and audience
"""
from __future__ import annotations

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from shared.constants import Role

from identity.auth import revocation
from identity.auth.constants import KNOWN_WEAK_SECRETS, MIN_SECRET_LENGTH, TokenType
from identity.config import Settings
from identity.exceptions import (
    InvalidTokenPayload,
    TokenExpired,
    TokenInvalid,
    TokenRevoked,
    TokenWrongType,
    WeakSigningSecret,
)

logger = logging.getLogger(__name__)


class TokenClaims(BaseModel):
    """Verified contents of an access or refresh token."""

    model_config = ConfigDict(frozen=True)

    subject_id: uuid.UUID
    role: Role
    token_type: TokenType
    token_id: str | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None


# ── Minting ───────────────────────────────────────────────────────────────────

def _encode(
    subject_id: uuid.UUID | str | None,
    role: Role | str | None,
    *,
    token_type: TokenType,
    token_id: str,
    secret: str,
    expire_seconds: int,
    settings: Settings,
) -> str:
    if not subject_id or not role:
        raise InvalidTokenPayload()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(subject_id),
        "role": Role(role).value,
        "type": token_type.value,
        "jti": token_id,
        "iat": now,
        "exp": now + timedelta(seconds=expire_seconds),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def create_access_token(
    subject_id: uuid.UUID | str | None,
    role: Role | str | None,
    settings: Settings,
) -> str:
    # jti on access tokens too: two tokens minted in the same second must differ.
    return _encode(
        subject_id,
        role,
        token_type=TokenType.ACCESS,
        token_id=secrets.token_hex(16),
        secret=settings.jwt_secret,
        expire_seconds=settings.jwt_expire_seconds,
        settings=settings,
    )


def create_refresh_token(
    subject_id: uuid.UUID | str | None,
    role: Role | str | None,
    settings: Settings,
    token_id: str | None = None,
) -> str:
    return _encode(
        subject_id,
        role,
        token_type=TokenType.REFRESH,
        token_id=token_id or secrets.token_hex(16),
        secret=settings.refresh_secret,
        expire_seconds=settings.jwt_refresh_expire_seconds,
        settings=settings,
    )


# ── Decoding ──────────────────────────────────────────────────────────────────

def decode_unverified(token: str | None) -> dict[str, Any] | None:
    """
    Return the claims without checking signature or expiry, or None if the
    token is not a structurally valid JWT.

    Only for bookkeeping (e.g. recording an already-expired token on logout).
    Never use the result for an authorization decision.
    """
    if not token:
        return None
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    return claims if isinstance(claims, dict) else None


def _timestamp(value: Any) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def _claims_from_payload(payload: dict[str, Any], token_type: TokenType) -> TokenClaims:
    try:
        return TokenClaims(
            subject_id=uuid.UUID(str(payload["sub"])),
            role=Role(payload["role"]),
            token_type=token_type,
            token_id=payload.get("jti"),
            issued_at=_timestamp(payload.get("iat")),
            expires_at=_timestamp(payload.get("exp")),
        )
    except (KeyError, ValueError):
        raise TokenInvalid()


async def _verify(
    session: AsyncSession,
    token: str | None,
    *,
    expected: TokenType,
    secret: str,
    settings: Settings,
) -> TokenClaims:
    if not token:
        raise TokenInvalid()
    if await revocation.is_token_revoked(session, token):
        raise TokenRevoked()

    unverified = decode_unverified(token)
    if unverified is None:
        raise TokenInvalid()
    if unverified.get("type") != expected.value:
        raise TokenWrongType()

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )
    except ExpiredSignatureError:
        raise TokenExpired()
    except JWTError:
        raise TokenInvalid()

    claims = _claims_from_payload(payload, expected)
    if expected is TokenType.REFRESH and not claims.token_id:
        raise TokenInvalid()
    return claims


async def verify_access_token(
    session: AsyncSession, token: str | None, settings: Settings
) -> TokenClaims:
    return await _verify(
        session, token, expected=TokenType.ACCESS, secret=settings.jwt_secret, settings=settings
    )


async def verify_refresh_token(
    session: AsyncSession, token: str | None, settings: Settings
) -> TokenClaims:
    return await _verify(
        session, token, expected=TokenType.REFRESH, secret=settings.refresh_secret, settings=settings
    )


# ── Startup check ─────────────────────────────────────────────────────────────

def _is_weak(secret: str) -> bool:
    return len(secret) < MIN_SECRET_LENGTH or secret.strip().lower() in KNOWN_WEAK_SECRETS


def signing_secret_problems(settings: Settings) -> list[str]:
    problems: list[str] = []
    if _is_weak(settings.jwt_secret):
        problems.append(
            f"JWT_SECRET is weak (placeholder or shorter than {MIN_SECRET_LENGTH} characters)"
        )
    if not settings.jwt_refresh_secret:
        problems.append("JWT_REFRESH_SECRET is not set; refresh tokens fall back to JWT_SECRET")
    elif settings.jwt_refresh_secret == settings.jwt_secret:
        problems.append("JWT_REFRESH_SECRET must differ from JWT_SECRET")
    elif _is_weak(settings.jwt_refresh_secret):
        problems.append(
            f"JWT_REFRESH_SECRET is weak (placeholder or shorter than {MIN_SECRET_LENGTH} characters)"
        )
    return problems


def check_signing_secrets(settings: Settings) -> None:
    """Refuse to start in production with weak or shared secrets; warn elsewhere."""
    problems = signing_secret_problems(settings)
    if not problems:
        return
    if settings.is_production:
        raise WeakSigningSecret("; ".join(problems))
    for problem in problems:
        logger.warning("Signing secret check: %s", problem)
