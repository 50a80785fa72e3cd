# tests/conftest.py
import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Settings are read at import time; configure the environment before any app import
_TEST_DIR = Path(tempfile.gettempdir()) / "authguard-tests"
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-length-for-hs256")
os.environ.setdefault("SECURITY_LOG_PATH", str(_TEST_DIR / "security.log"))
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DIR / 'unused.db'}")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("TRUSTED_PROXY_HEADERS", "true")
os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from authguard.core import clock  # noqa: E402
from authguard.core.effective_settings import (  # noqa: E402
    DeliverySettings,
    DeliverySettingsProvider,
    get_delivery_settings_provider,
)
from authguard.core.request_context import ClientInfo  # noqa: E402
from authguard.db.base import Base  # noqa: E402
from authguard.db.models.user import User  # noqa: E402
from authguard.db.session import get_async_session  # noqa: E402
from authguard.services.brute_force_guard import BruteForceGuard, get_brute_force_guard  # noqa: E402
from tests.factories import UserFactory  # noqa: E402


class FakeClock:
    """Callable stand-in for clock.utcnow that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Replaces asyncio.sleep in the guard; remembers requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def frozen_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    # Starts at the real time so tokens minted under it pass expiry checks
    fake = FakeClock(datetime.now(UTC).replace(microsecond=0))
    monkeypatch.setattr(clock, "utcnow", fake)
    return fake


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path: Path):
    """File-backed SQLite per test so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'authguard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def guard(session_factory, recording_sleep) -> BruteForceGuard:
    return BruteForceGuard(session_factory=session_factory, sleep=recording_sleep)


@pytest.fixture
def client_info() -> ClientInfo:
    return ClientInfo(
        ip="203.0.113.10",
        user_agent=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
        ),
        accept_language="en-US,en;q=0.9",
        accept_encoding="gzip, deflate, br",
    )


@pytest.fixture
def delivery_settings() -> DeliverySettings:
    return DeliverySettings(
        mailgun_api_key="key-test",
        mailgun_domain="mg.example.com",
        mailgun_from_email="noreply@example.com",
        mailgun_from_name="AuthGuard",
        mailgun_api_base_url="https://mailgun.test/v3",
        telegram_api_base_url="https://telegram.test",
        timeout_seconds=5.0,
    )


@pytest.fixture
def delivery_provider(delivery_settings) -> DeliverySettingsProvider:
    async def _load() -> DeliverySettings:
        return delivery_settings

    return DeliverySettingsProvider(loader=_load, ttl_seconds=60)


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    account = UserFactory.create_user(db_session, email="alice@example.com")
    await db_session.commit()
    return account


@pytest_asyncio.fixture(scope="function")
async def test_client(
    session_factory, guard, delivery_provider
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient over the ASGI app with the test database, guard and
    delivery settings injected through dependency overrides.
    """
    from authguard.main import app as fastapi_app

    async def override_get_async_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_async_session] = override_get_async_session
    fastapi_app.dependency_overrides[get_brute_force_guard] = lambda: guard
    fastapi_app.dependency_overrides[get_delivery_settings_provider] = lambda: delivery_provider

    async with AsyncClient(
        transport=ASGITransport(app=fastapi_app), base_url="http://test"
    ) as client:
        yield client

    fastapi_app.dependency_overrides.clear()
