"""Pytest fixtures for backend tests."""

import os

# Settings are validated at import time, so configure them before any jobtrail import
os.environ["JWT_SECRET_KEY"] = "test-access-signing-key-0123456789abcdef"
os.environ["JWT_REFRESH_SECRET_KEY"] = "test-refresh-signing-key-0123456789abcdef"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.pop("EMAIL_API_URL", None)

import uuid
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from jobtrail.api.deps import get_rate_limiter
from jobtrail.core.security import get_password_hash, issue_token_pair
from jobtrail.db.base import Base
from jobtrail.db.session import get_db
from jobtrail.main import app
from jobtrail.models.audit_log import AuditEvent, AuditLog
from jobtrail.models.user import User, UserRole
from jobtrail.services.notification import EmailNotifier, drain_notifications
from jobtrail.services.rate_limit import RateLimiter

TEST_PASSWORD = "correct-horse-battery"


class FakeClock:
    """Controllable monotonic clock for the rate limiter."""

    def __init__(self, start: float = 10_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """In-memory SQLite engine; StaticPool keeps one shared connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(autouse=True)
async def drain_background_notifications():
    """Let fire-and-forget sends finish before the loop closes."""
    yield
    await drain_notifications()


async def _create_user(session: AsyncSession, email: str, role: UserRole) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email,
        name=email.split("@")[0].title(),
        password_hash=get_password_hash(TEST_PASSWORD),
        role=role,
        is_active=True,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def test_user(test_session: AsyncSession) -> User:
    """Create a regular test user."""
    return await _create_user(test_session, "jane@example.com", UserRole.USER)


@pytest_asyncio.fixture(scope="function")
async def admin_user(test_session: AsyncSession) -> User:
    """Create an admin user."""
    return await _create_user(test_session, "admin@example.com", UserRole.ADMIN)


@pytest.fixture
def user_token(test_user: User) -> str:
    return issue_token_pair(test_user.id, test_user.email, test_user.role.value).access_token


@pytest.fixture
def admin_token(admin_user: User) -> str:
    return issue_token_pair(admin_user.id, admin_user.email, admin_user.role.value).access_token


@pytest.fixture
def notifier() -> AsyncMock:
    """Notifier double; every send reports success."""
    mock = AsyncMock(spec=EmailNotifier)
    mock.send_account_locked_email.return_value = True
    mock.send_account_unlocked_email.return_value = True
    mock.send_forced_password_reset_email.return_value = True
    mock.send_password_reset_email.return_value = True
    return mock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def limiter(clock: FakeClock, sleeps: list[float]) -> RateLimiter:
    """Isolated limiter with controllable time and no real delays."""

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return RateLimiter(clock=clock, sleep=fake_sleep, max_delay=60.0, cleanup_interval=3600)


@pytest_asyncio.fixture(scope="function")
async def client(
    test_session: AsyncSession, limiter: RateLimiter
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client bound to the test session and limiter."""

    async def override():
        yield test_session

    app.dependency_overrides[get_db] = override
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


async def count_events(session: AsyncSession, event: AuditEvent, user_id=None) -> int:
    """Count audit entries of one kind, optionally for one user."""
    query = select(func.count()).select_from(AuditLog).where(AuditLog.event == event)
    if user_id is not None:
        query = query.where(AuditLog.user_id == user_id)
    result = await session.execute(query)
    return result.scalar() or 0
