from collections.abc import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

import identity.database  # noqa: F401 - registers every model with Base
from identity.accounts.directory import RoleDirectory, build_role_directory
from identity.accounts.models import ACCOUNT_MODELS, Account
from identity.auth.utils import hash_secret
from identity.config import Settings
from identity.main import create_app
from shared.constants import ApprovalStatus, Role
from shared.database import Base, get_async_engine

ACCESS_SECRET = "test-access-secret-0123456789abcdef0123456789"
REFRESH_SECRET = "test-refresh-secret-fedcba9876543210fedcba98"

DOCTOR_PHONE = "9876543210"
PATIENT_EMAIL = "a@b.com"
PASSWORD = "OldPass123!"


class RecordingNotifier:
    """Stands in for Notifier; records what would have been sent."""

    def __init__(self) -> None:
        self.sms: list[tuple[str, str, Role]] = []
        self.emails: list[tuple[str, str, Role]] = []

    async def send_otp_sms(self, phone: str, code: str, role: Role) -> None:
        self.sms.append((phone, code, role))

    async def send_otp_email(self, email: str, code: str, role: Role) -> None:
        self.emails.append((email, code, role))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        env_name="test",
        identity_database_url="sqlite+aiosqlite://",
        jwt_secret=ACCESS_SECRET,
        jwt_refresh_secret=REFRESH_SECRET,
        use_random_otp=False,
        rate_limit_enabled=False,
        housekeeping_interval_minutes=0,
        sms_provider="none",
    )


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    # One SQLite file per test: every session opens its own connection.
    engine = get_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'identity.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def directory() -> RoleDirectory:
    return build_role_directory()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def make_account(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Account]]:
    """Insert an account in its own committed transaction and return it."""

    async def _make(
        role: Role,
        *,
        email: str,
        phone: str | None = None,
        password: str | None = None,
        is_active: bool = True,
        status: ApprovalStatus = ApprovalStatus.APPROVED,
    ) -> Account:
        model = ACCOUNT_MODELS[role]
        fields = {
            "email": email,
            "phone": phone,
            "password_hash": hash_secret(password) if password else None,
            "full_name": f"Test {role.value.title()}",
            "is_active": is_active,
        }
        if hasattr(model, "status"):
            fields["status"] = status
        account = model(**fields)
        async with session_factory() as session:
            session.add(account)
            await session.commit()
        return account

    return _make


@pytest_asyncio.fixture
async def doctor(make_account) -> Account:
    return await make_account(Role.DOCTOR, email="doc@example.com", phone=DOCTOR_PHONE)


@pytest_asyncio.fixture
async def patient(make_account) -> Account:
    return await make_account(
        Role.PATIENT, email=PATIENT_EMAIL, phone="9123456780", password=PASSWORD
    )


@pytest.fixture
def app(settings: Settings, session_factory, notifier: RecordingNotifier) -> FastAPI:
    return create_app(settings, session_factory=session_factory, notifier=notifier)


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
