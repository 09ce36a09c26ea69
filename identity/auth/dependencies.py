"""
Identity service — auth-specific FastAPI dependencies.

Settings, the role directory and the notifier are built once in ``create_app``
and read from ``app.state`` here, so tests can swap any of them.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from shared.constants import Role
from shared.models import Principal

from identity.accounts.directory import RoleDirectory
from identity.auth.service import resolve_principal
from identity.config import Settings
from identity.database import get_db
from identity.exceptions import Forbidden, NotAuthenticated, TokenRejected
from identity.notifications import Notifier

logger = logging.getLogger(__name__)

http_bearer = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_role_directory(request: Request) -> RoleDirectory:
    return request.app.state.directory


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
) -> str | None:
    if not credentials or not credentials.credentials:
        return None
    return credentials.credentials


# ── Base principal dependency ─────────────────────────────────────────────────

async def get_current_principal(
    token: str | None = Depends(get_bearer_token),
    session: AsyncSession = Depends(get_db),
    directory: RoleDirectory = Depends(get_role_directory),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    Route guard: verify the bearer access token (revocation included), reload
    the account and apply the account-state guards.
    """
    if token is None:
        raise NotAuthenticated()
    try:
        return await resolve_principal(session, directory, settings, token)
    except TokenRejected as exc:
        # The client always sees the same 401; the kind is for operators.
        logger.info("Access token rejected: %s", exc.kind)
        raise


# ── Role guards ───────────────────────────────────────────────────────────────

def require_roles(*roles: Role) -> Callable[..., Principal]:
    """Dependency factory: 403 unless the principal holds one of ``roles``."""
    allowed = frozenset(roles)

    def _guard(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise Forbidden()
        return principal

    return _guard


require_admin = require_roles(Role.ADMIN)
