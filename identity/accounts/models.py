"""
Identity service — per-role account tables backing the role directory.

Every role gets its own table with the same login columns.  Provider roles
(doctor, pharmacy, laboratory, nurse) add an admin-controlled approval status.
"""
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from shared.constants import ApprovalStatus, Role
from shared.database import Base, UTCDateTime

from identity.auth.utils import utcnow


class _AccountColumns:
    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False, index=True)
    # Normalized digits; nullable for accounts that only log in with a password
    phone: Mapped[str | None] = mapped_column(sa.String(20), unique=True, nullable=True, index=True)
    # nullable: OTP-only accounts have no password
    password_hash: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    full_name: Mapped[str] = mapped_column(sa.String(150), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class _ApprovalColumns:
    @declared_attr
    def status(cls) -> Mapped[ApprovalStatus]:
        return mapped_column(
            sa.Enum(
                ApprovalStatus,
                name="approvalstatus",
                native_enum=False,
                length=20,
                values_callable=lambda e: [x.value for x in e],
            ),
            nullable=False,
            default=ApprovalStatus.PENDING,
        )


class Patient(_AccountColumns, Base):
    __tablename__ = "patients"
    role = Role.PATIENT


class Doctor(_AccountColumns, _ApprovalColumns, Base):
    __tablename__ = "doctors"
    role = Role.DOCTOR


class Pharmacy(_AccountColumns, _ApprovalColumns, Base):
    __tablename__ = "pharmacies"
    role = Role.PHARMACY


class Laboratory(_AccountColumns, _ApprovalColumns, Base):
    __tablename__ = "laboratories"
    role = Role.LABORATORY


class Nurse(_AccountColumns, _ApprovalColumns, Base):
    __tablename__ = "nurses"
    role = Role.NURSE


class Admin(_AccountColumns, Base):
    __tablename__ = "admins"
    role = Role.ADMIN


Account = Patient | Doctor | Pharmacy | Laboratory | Nurse | Admin

ACCOUNT_MODELS: dict[Role, type] = {
    Role.PATIENT: Patient,
    Role.DOCTOR: Doctor,
    Role.PHARMACY: Pharmacy,
    Role.LABORATORY: Laboratory,
    Role.NURSE: Nurse,
    Role.ADMIN: Admin,
}
