"""
Identity service — token revocation store.

A revoked token is recorded by its raw string so that a re-presented credential
is rejected even while its signature and expiry are still valid.  Records carry
the token's own expiry and are purged by the housekeeping sweep once it passes.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.constants import Role
from shared.database import upsert_statement

from identity.auth.constants import REFRESH_TOKEN_EXPIRE_SECONDS, RevocationReason, TokenType
from identity.auth.models import RevokedToken
from identity.auth.utils import utcnow

logger = logging.getLogger(__name__)


def _token_expiry(token: str) -> datetime:
    """exp claim of ``token`` without verification; falls back to the longest lifetime."""
    try:
        exp = jwt.get_unverified_claims(token).get("exp")
    except JWTError:
        exp = None
    if isinstance(exp, (int, float)):
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    return utcnow() + timedelta(seconds=REFRESH_TOKEN_EXPIRE_SECONDS)


async def get_revoked_token(session: AsyncSession, token: str) -> RevokedToken | None:
    result = await session.execute(
        select(RevokedToken)
        .where(RevokedToken.token == token)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def is_token_revoked(session: AsyncSession, token: str) -> bool:
    if not token:
        return False
    result = await session.execute(
        select(RevokedToken.id).where(RevokedToken.token == token).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def claim_token(
    session: AsyncSession,
    token: str,
    *,
    token_type: TokenType,
    subject_id: uuid.UUID,
    role: Role,
    reason: RevocationReason = RevocationReason.LOGOUT,
    expires_at: datetime | None = None,
) -> bool:
    """
    Insert a revocation record for ``token``.  Returns True only if this call
    created it; False if the token was already revoked.

    INSERT … ON CONFLICT (token) DO NOTHING RETURNING id: a concurrent insert of
    the same token waits on the unique index, then sees the conflict.
    """
    stmt = (
        upsert_statement(session, RevokedToken)
        .values(
            id=uuid.uuid4(),
            token=token,
            token_type=token_type,
            subject_id=subject_id,
            role=role,
            reason=reason,
            expires_at=expires_at or _token_expiry(token),
            revoked_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["token"])
        .returning(RevokedToken.id)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none() is not None


async def revoke_token(
    session: AsyncSession,
    token: str,
    *,
    token_type: TokenType,
    subject_id: uuid.UUID,
    role: Role,
    reason: RevocationReason = RevocationReason.LOGOUT,
    expires_at: datetime | None = None,
) -> RevokedToken:
    """
    Record ``token`` as revoked and return its record.

    Idempotent: a second call (or a concurrent one) returns the first record
    untouched.
    """
    await claim_token(
        session,
        token,
        token_type=token_type,
        subject_id=subject_id,
        role=role,
        reason=reason,
        expires_at=expires_at,
    )
    record = await get_revoked_token(session, token)
    if record is None:  # pragma: no cover - only if purged between the two statements
        raise RuntimeError("Revocation record vanished after insert")
    return record


async def purge_expired_revocations(
    session: AsyncSession, now: datetime | None = None
) -> int:
    """Delete records whose token has expired anyway.  Returns the row count."""
    result = await session.execute(
        delete(RevokedToken).where(RevokedToken.expires_at <= (now or utcnow()))
    )
    return result.rowcount or 0
