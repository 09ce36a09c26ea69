from shared.database.postgres import (
    AsyncSessionFactory,
    Base,
    get_async_engine,
    get_async_session_factory,
    get_session,
)
from shared.database.types import UTCDateTime, upsert_statement

__all__ = [
    "AsyncSessionFactory",
    "Base",
    "UTCDateTime",
    "get_async_engine",
    "get_async_session_factory",
    "get_session",
    "upsert_statement",
]
