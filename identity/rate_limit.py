"""
Global slowapi rate limiter.

Imported by auth/router.py for per-endpoint limits: slowapi binds each
``@limiter.limit`` decorator to this instance at import time, so there is one
limiter per process, shared by every app built with ``create_app``.
``configure_limiter`` is the single place that switches it on or off; the last
app created decides for the whole process.

Storage: Redis when REDIS_URL is set, otherwise in-memory (single worker only).
"""
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from identity.config import Settings

# Per-endpoint limits
LOGIN_OTP_LIMIT = "3/5minutes"
PASSWORD_RESET_LIMIT = "3/hour"
PASSWORD_LOGIN_LIMIT = "5/15minutes"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)


def configure_limiter(settings: Settings) -> Limiter:
    """Apply ``rate_limit_enabled`` to the process-wide limiter and return it."""
    limiter.enabled = settings.rate_limit_enabled
    return limiter
