"""Initial identity schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

Tables created:
  - patients, doctors, pharmacies, laboratories, nurses, admins
                               Per-role accounts backing the role directory
  - revoked_tokens             Denylist of raw JWTs until their own expiry
  - login_otp_challenges       One live login OTP per (phone, role)
  - password_reset_challenges  One live reset OTP / reset token per (email, role)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ACCOUNT_TABLES = ("patients", "doctors", "pharmacies", "laboratories", "nurses", "admins")
_APPROVAL_TABLES = {"doctors", "pharmacies", "laboratories", "nurses"}


def _account_columns(with_status: bool) -> list[sa.Column]:
    columns = [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("full_name", sa.String(150), nullable=False, server_default=""),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]
    if with_status:
        columns.append(
            sa.Column("status", sa.String(20), nullable=False, server_default="pending")
        )
    return columns


def _challenge_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("otp_hash", sa.String(255), nullable=False),
        sa.Column("otp_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # ── Role directory ────────────────────────────────────────────────────────
    for table in _ACCOUNT_TABLES:
        op.create_table(
            table,
            *_account_columns(table in _APPROVAL_TABLES),
            sa.PrimaryKeyConstraint("id", name=f"pk_{table}"),
        )
        op.create_index(f"ix_{table}_email", table, ["email"], unique=True)
        op.create_index(f"ix_{table}_phone", table, ["phone"], unique=True)

    # ── Revocation store ──────────────────────────────────────────────────────
    op.create_table(
        "revoked_tokens",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("token_type", sa.String(20), nullable=False),
        sa.Column("subject_id", sa.Uuid(), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(20), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "revoked_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_revoked_tokens"),
        sa.UniqueConstraint("token", name="uq_revoked_tokens_token"),
    )
    op.create_index("ix_revoked_tokens_expires_at", "revoked_tokens", ["expires_at"])
    op.create_index(
        "ix_revoked_tokens_subject", "revoked_tokens", ["subject_id", "role", "token_type"]
    )

    # ── OTP challenges ────────────────────────────────────────────────────────
    op.create_table(
        "login_otp_challenges",
        sa.Column("phone", sa.String(20), nullable=False),
        *_challenge_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_login_otp_challenges"),
        sa.UniqueConstraint("phone", "role", name="uq_login_otp_challenges_phone_role"),
    )
    op.create_index(
        "ix_login_otp_challenges_otp_expires_at", "login_otp_challenges", ["otp_expires_at"]
    )

    op.create_table(
        "password_reset_challenges",
        sa.Column("email", sa.String(255), nullable=False),
        *_challenge_columns(),
        sa.Column("reset_token", sa.String(128), nullable=True),
        sa.Column("reset_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_password_reset_challenges"),
        sa.UniqueConstraint("email", "role", name="uq_password_reset_challenges_email_role"),
    )
    op.create_index(
        "ix_password_reset_challenges_otp_expires_at",
        "password_reset_challenges",
        ["otp_expires_at"],
    )
    op.create_index(
        "ix_password_reset_challenges_reset_token",
        "password_reset_challenges",
        ["reset_token"],
    )


def downgrade() -> None:
    op.drop_table("password_reset_challenges")
    op.drop_table("login_otp_challenges")
    op.drop_table("revoked_tokens")
    for table in reversed(_ACCOUNT_TABLES):
        op.drop_table(table)
