"""
Identity service — role directory.

Maps a role to the table holding that role's accounts.  The auth flows only
talk to ``RoleDirectory``; they never import the account models directly.
The map is built once at startup (``build_role_directory``) and injected.
"""
from __future__ import annotations

import uuid
from collections.abc import Iterator, Mapping

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.constants import Role

from identity.accounts.models import ACCOUNT_MODELS, Account
from identity.auth.utils import hash_secret, utcnow
from identity.exceptions import UnsupportedRole


class AccountDirectory:
    """Lookups and password writes for a single role's table."""

    def __init__(self, model: type) -> None:
        self.model = model

    @property
    def role(self) -> Role:
        return self.model.role

    async def find_by_phone(self, session: AsyncSession, phone: str) -> Account | None:
        result = await session.execute(select(self.model).where(self.model.phone == phone))
        return result.scalar_one_or_none()

    async def find_by_email(self, session: AsyncSession, email: str) -> Account | None:
        # Case-insensitive so that mixed-case registrations still match.
        result = await session.execute(
            select(self.model).where(func.lower(self.model.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def find_by_id(self, session: AsyncSession, account_id: uuid.UUID) -> Account | None:
        return await session.get(self.model, account_id)

    async def set_password(self, session: AsyncSession, account: Account, new_password: str) -> None:
        account.password_hash = hash_secret(new_password)
        await session.flush()

    async def record_login(self, session: AsyncSession, account: Account) -> None:
        account.last_login_at = utcnow()
        await session.flush()


class RoleDirectory(Mapping[Role, AccountDirectory]):
    """Explicit ``Role → AccountDirectory`` map with role-first convenience calls."""

    def __init__(self, directories: Mapping[Role, AccountDirectory]) -> None:
        self._directories = dict(directories)

    def __getitem__(self, role: Role) -> AccountDirectory:
        return self._directories[role]

    def __iter__(self) -> Iterator[Role]:
        return iter(self._directories)

    def __len__(self) -> int:
        return len(self._directories)

    def for_role(self, role: Role | str) -> AccountDirectory:
        try:
            return self._directories[Role(role)]
        except (KeyError, ValueError):
            raise UnsupportedRole(str(getattr(role, "value", role)))

    async def find_by_phone(self, session: AsyncSession, role: Role, phone: str) -> Account | None:
        return await self.for_role(role).find_by_phone(session, phone)

    async def find_by_email(self, session: AsyncSession, role: Role, email: str) -> Account | None:
        return await self.for_role(role).find_by_email(session, email)

    async def find_by_id(
        self, session: AsyncSession, role: Role, account_id: uuid.UUID
    ) -> Account | None:
        return await self.for_role(role).find_by_id(session, account_id)

    async def set_password(
        self, session: AsyncSession, role: Role, account: Account, new_password: str
    ) -> None:
        await self.for_role(role).set_password(session, account, new_password)

    async def record_login(self, session: AsyncSession, role: Role, account: Account) -> None:
        await self.for_role(role).record_login(session, account)


def build_role_directory(models: Mapping[Role, type] = ACCOUNT_MODELS) -> RoleDirectory:
    return RoleDirectory({role: AccountDirectory(model) for role, model in models.items()})
