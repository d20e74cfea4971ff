"""Shared test configuration and fixtures.

Each test gets a fresh in-memory SQLite database (override with
``TEST_DATABASE_URL`` to run against PostgreSQL). The app's shared clients are
placed on ``app.state`` directly since the lifespan does not run under
``ASGITransport``.
"""

import os

TEST_BASIC_PRICE_ID = "price_test_basic"
TEST_PRO_PRICE_ID = "price_test_pro"

# Must be set before finwise.main parses settings at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-with-enough-entropy")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("STRIPE_BASIC_PRICE_ID", TEST_BASIC_PRICE_ID)
os.environ.setdefault("STRIPE_PRO_PRICE_ID", TEST_PRO_PRICE_ID)

import uuid  # noqa: E402
from collections.abc import AsyncGenerator  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from finwise.auth.jwt import create_access_token  # noqa: E402
from finwise.billing.rate_limit import SlidingWindowRateLimiter  # noqa: E402
from finwise.config import get_settings  # noqa: E402
from finwise.database import Base, create_session_factory  # noqa: E402
from finwise.main import app  # noqa: E402
from finwise.models.subscription import Subscription  # noqa: E402
from finwise.models.user import User  # noqa: E402

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


def _make_engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory DB
        return create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(TEST_DATABASE_URL, pool_pre_ping=True)


class FakeRedis:
    """Just enough of redis.asyncio for the sliding-window limiter."""

    def __init__(self) -> None:
        self.sets: dict[str, dict[str, float]] = {}

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def zrem(self, key: str, member: str) -> int:
        return 1 if self.sets.get(key, {}).pop(member, None) is not None else 0


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._ops: list = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    def zremrangebyscore(self, key, low, high):
        self._ops.append(("zremrangebyscore", key, low, high))

    def zadd(self, key, mapping):
        self._ops.append(("zadd", key, mapping))

    def zcard(self, key):
        self._ops.append(("zcard", key))

    def zrange(self, key, start, end, withscores=False):
        self._ops.append(("zrange", key, start, end))

    def expire(self, key, seconds):
        self._ops.append(("expire", key, seconds))

    async def execute(self) -> list:
        results = []
        for op, key, *args in self._ops:
            members = self._redis.sets.setdefault(key, {})
            if op == "zremrangebyscore":
                low, high = args
                stale = [m for m, s in members.items() if low <= s <= high]
                for m in stale:
                    del members[m]
                results.append(len(stale))
            elif op == "zadd":
                members.update(args[0])
                results.append(len(args[0]))
            elif op == "zcard":
                results.append(len(members))
            elif op == "zrange":
                ordered = sorted(members.items(), key=lambda item: item[1])
                start, end = args
                results.append(ordered[start : end + 1])
            else:
                results.append(True)
        self._ops = []
        return results


# ---------------------------------------------------------------------------
# Per-test database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """Create an engine with all tables, dropped again after the test."""
    engine = _make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session for arranging test data. Helpers commit what they add."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# App client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def stripe_client() -> MagicMock:
    """Stand-in for the app's StripeClient; tests patch the helpers that use it."""
    return MagicMock(name="StripeClient")


@pytest_asyncio.fixture
async def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest_asyncio.fixture
async def client(session_factory, stripe_client, fake_redis) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test DB and fake clients."""
    settings = get_settings()
    app.state.session_factory = session_factory
    app.state.stripe_client = stripe_client
    app.state.rate_limiter = SlidingWindowRateLimiter(
        fake_redis,
        limit=settings.billing_rate_limit_requests,
        window_seconds=settings.billing_rate_limit_window_seconds,
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Convenience fixtures: users and subscriptions
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession):
    """Factory creating committed users: ``await make_user(is_active=False)``."""

    async def _make(is_active: bool = True, stripe_customer_id: str | None = None) -> User:
        unique = uuid.uuid4().hex[:8]
        user = User(
            email=f"user-{unique}@test.com",
            name="Test User",
            is_active=is_active,
            stripe_customer_id=stripe_customer_id,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def make_subscription(db_session: AsyncSession):
    """Factory creating a committed subscription row for a user."""

    async def _make(user: User, **fields) -> Subscription:
        values = {"plan_type": "basic", "status": "active"}
        values.update(fields)
        subscription = Subscription(user_id=user.id, **values)
        db_session.add(subscription)
        await db_session.commit()
        return subscription

    return _make


def auth_headers_for(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), get_settings())}"}


@pytest_asyncio.fixture
async def headers_for():
    """Build Authorization headers for any user."""
    return auth_headers_for


@pytest_asyncio.fixture
async def test_user(make_user, make_subscription) -> User:
    """A user with an active Basic subscription."""
    user = await make_user()
    await make_subscription(user, plan_type="basic", status="active")
    return user


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict[str, str]:
    """Return Authorization headers for the test user."""
    return auth_headers_for(test_user)


@pytest_asyncio.fixture
async def test_free_user(make_user) -> User:
    """A user who has never subscribed (no subscription row)."""
    return await make_user()


@pytest_asyncio.fixture
async def free_auth_headers(test_free_user: User) -> dict[str, str]:
    """Return Authorization headers for the free test user."""
    return auth_headers_for(test_free_user)
