from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from identity.accounts.directory import build_role_directory
from identity.auth.router import router as auth_router
from identity.auth.tokens import check_signing_secrets
from identity.config import Settings
from identity.housekeeping import HousekeepingScheduler
from identity.notifications import Notifier
from identity.rate_limit import configure_limiter
from shared.database import AsyncSessionFactory, get_async_session_factory
from shared.middleware.error_handler import error_envelope_middleware
from shared.middleware.request_id import request_id_middleware


# ── OpenAPI metadata ──────────────────────────────────────────────────────────

_DESCRIPTION = """
## Healiinn Identity Service

Authentication and session tokens for every Healiinn role
(patient, doctor, pharmacy, laboratory, nurse, admin):

* **Login OTP** — phone-based passwordless login for patients, doctors,
  laboratories and pharmacies.
* **Password login** — email + password (admins and any account with a password).
* **Password reset** — 6-digit email OTP exchanged for a single-use reset token.
* **Session tokens** — JWT access + refresh pair, refresh-token rotation, logout
  with server-side revocation.

Provider accounts (doctor, pharmacy, laboratory, nurse) must be approved by an
admin before they can log in.

### Authentication
Protected endpoints require:
```
Authorization: Bearer <access_token>
```
Any rejected token (expired, revoked, malformed, wrong type) returns the same
`401` asking the client to log in again.

### Rate limits
`429 Too Many Requests` is returned when a rate limit is exceeded.
"""

_TAGS_METADATA = [
    {
        "name": "auth",
        "description": (
            "Login OTP, password login, password reset (OTP + reset token), "
            "token refresh and logout."
        ),
    },
]


# ── Health schema ─────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    service: str


# ── App factory ───────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    housekeeping: HousekeepingScheduler | None = None
    if settings.housekeeping_interval_minutes > 0:
        housekeeping = HousekeepingScheduler(
            app.state.session_factory, settings.housekeeping_interval_minutes
        )
        housekeeping.start()
    yield
    if housekeeping is not None:
        housekeeping.stop()
    await app.state.session_factory.kw["bind"].dispose()


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: AsyncSessionFactory | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    settings = settings or Settings()
    # Refuses to start in production with weak or shared signing secrets.
    check_signing_secrets(settings)

    app = FastAPI(
        title="Healiinn Identity Service",
        version="1.0.0",
        description=_DESCRIPTION,
        openapi_tags=_TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Collaborators are built once here and read by the dependencies in
    # auth/dependencies.py.
    app.state.settings = settings
    app.state.session_factory = session_factory or get_async_session_factory(
        settings.identity_database_url
    )
    app.state.directory = build_role_directory()
    app.state.notifier = notifier or Notifier(settings)

    # Attach rate limiter state before middleware
    app.state.limiter = configure_limiter(settings)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Middleware is applied in reverse-registration order (last added = outermost).
    # CORS must be outermost so ALL responses (including 429s) carry CORS headers.
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(error_envelope_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    app.include_router(auth_router, prefix="/api/v1")

    @app.get("/health", response_model=HealthResponse, tags=["health"], include_in_schema=True)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", service="identity")

    return app


app = create_app()
