"""
Column types shared by every service schema.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


class UTCDateTime(sa.TypeDecorator):
    """
    Timezone-aware UTC timestamp on every backend.

    PostgreSQL stores TIMESTAMPTZ natively.  SQLite has no timezone support, so
    values are written as naive UTC and re-tagged with UTC on the way out.
    Naive datetimes passed in are assumed to already be UTC.
    """

    impl = sa.DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def upsert_statement(session: AsyncSession, table: Any) -> Any:
    """
    Return a dialect-specific INSERT that supports ON CONFLICT clauses.

    Both PostgreSQL and SQLite expose ``on_conflict_do_update`` /
    ``on_conflict_do_nothing`` with the same signature.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"Upserts are not supported on the {dialect!r} dialect")
