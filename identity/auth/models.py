"""
Identity service — SQLAlchemy ORM models for the auth domain.

Tables owned by this module:
  - revoked_tokens             Denylist of raw JWTs, kept until the token's own expiry
  - login_otp_challenges       One live login OTP per (phone, role)
  - password_reset_challenges  One live reset OTP / reset token per (email, role)
"""
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from shared.constants import Role
from shared.database import Base, UTCDateTime

from identity.auth.constants import OTP_MAX_ATTEMPTS, RevocationReason, TokenType
from identity.auth.utils import utcnow


def _enum(enum_cls: type, name: str) -> sa.Enum:
    # VARCHAR + CHECK instead of a native PG enum: adding a role needs no ALTER TYPE.
    return sa.Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda e: [x.value for x in e],
    )


class RevokedToken(Base):
    __tablename__ = "revoked_tokens"
    __table_args__ = (
        sa.Index("ix_revoked_tokens_subject", "subject_id", "role", "token_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    # Raw JWT string; looked up on every verification.
    token: Mapped[str] = mapped_column(sa.Text, unique=True, nullable=False)
    token_type: Mapped[TokenType] = mapped_column(_enum(TokenType, "tokentype"), nullable=False)
    subject_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, nullable=False)
    role: Mapped[Role] = mapped_column(_enum(Role, "role"), nullable=False)
    reason: Mapped[RevocationReason] = mapped_column(
        _enum(RevocationReason, "revocationreason"),
        nullable=False,
        default=RevocationReason.LOGOUT,
    )
    # Copied from the token's exp claim; the housekeeping sweep purges past this.
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    revoked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<RevokedToken subject={self.subject_id} type={self.token_type} reason={self.reason}>"


class LoginOTPChallenge(Base):
    __tablename__ = "login_otp_challenges"
    __table_args__ = (
        sa.UniqueConstraint("phone", "role", name="uq_login_otp_challenges_phone_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    # Normalized digits only (see utils.normalize_phone)
    phone: Mapped[str] = mapped_column(sa.String(20), nullable=False)
    role: Mapped[Role] = mapped_column(_enum(Role, "role"), nullable=False)
    otp_hash: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    otp_expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=OTP_MAX_ATTEMPTS)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<LoginOTPChallenge role={self.role} attempts={self.attempts}/{self.max_attempts}>"


class PasswordResetChallenge(Base):
    __tablename__ = "password_reset_challenges"
    __table_args__ = (
        sa.UniqueConstraint("email", "role", name="uq_password_reset_challenges_email_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    # Lower-cased on write
    email: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    role: Mapped[Role] = mapped_column(_enum(Role, "role"), nullable=False)
    otp_hash: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    otp_expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=OTP_MAX_ATTEMPTS)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    # Present only after the OTP step succeeds; single-use.
    reset_token: Mapped[str | None] = mapped_column(sa.String(128), nullable=True, index=True)
    reset_token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<PasswordResetChallenge role={self.role} verified={self.verified_at is not None}>"
