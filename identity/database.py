from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.database import get_session

# Import all models so SQLAlchemy's Base.metadata is populated.
# Required for Alembic autogenerate and create_all().
import identity.accounts.models  # noqa: F401
import identity.auth.models  # noqa: F401


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """One session per request: commit on success, roll back on any exception."""
    async for session in get_session(request.app.state.session_factory):
        yield session
