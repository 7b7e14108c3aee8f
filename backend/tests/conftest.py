import os
from collections.abc import AsyncGenerator
from unittest.mock import patch

import fakeredis
import fakeredis.aioredis
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

# Set test env vars before importing app modules
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["REDIS_URL"] = "memory://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("USER_SERVICE_URL", None)

# Shared FakeServer holds state; each call creates a fresh client
# bound to the current event loop (avoids pytest-asyncio loop mismatch).
_fake_server = fakeredis.FakeServer()


async def _mock_get_redis():
    return fakeredis.aioredis.FakeRedis(server=_fake_server, decode_responses=True)


# Patch the module-level get_redis() used as fallback in non-DI contexts
patch("feedback_analytics.core.redis.get_redis", _mock_get_redis).start()
patch("feedback_analytics.core.stream.get_redis", _mock_get_redis).start()

engine = create_async_engine(TEST_DATABASE_URL, echo=False)
TestingSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _make_fake_redis():
    """Create a fakeredis instance bound to the shared server."""
    return fakeredis.aioredis.FakeRedis(server=_fake_server, decode_responses=True)


@pytest.fixture(autouse=True)
async def setup_database():
    from feedback_analytics.core.limiter import limiter
    from feedback_analytics.db.base import Base
    from feedback_analytics.models.event import AnalyticsEvent  # noqa: F401
    from feedback_analytics.models.metrics import FeedbackMetrics, UserMetrics  # noqa: F401

    # Disable rate limiting in tests; limits are tested explicitly where needed
    limiter.enabled = False

    # Clear fakeredis for each test
    r = _make_fake_redis()
    await r.flushall()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def fake_redis():
    """Provide a fakeredis instance for direct use in tests."""
    return _make_fake_redis()


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    return TestingSessionLocal


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def aggregation_service(fake_redis):
    from feedback_analytics.services.aggregation_service import AggregationService

    return AggregationService(TestingSessionLocal, redis_client=fake_redis)


@pytest.fixture
async def scheduler(aggregation_service):
    from feedback_analytics.services.scheduler import AggregationScheduler

    sched = AggregationScheduler(aggregation_service, schedules={})
    yield sched
    await sched.shutdown()


@pytest.fixture
async def client(db_session: AsyncSession, scheduler) -> AsyncGenerator[AsyncClient, None]:
    from feedback_analytics.core.redis import get_redis_dep
    from feedback_analytics.db.session import get_db
    from feedback_analytics.main import app

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    async def override_get_redis_dep():
        return _make_fake_redis()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis_dep] = override_get_redis_dep

    # ASGITransport does not run the lifespan, so wire app.state by hand
    app.state.redis = _make_fake_redis()
    app.state.scheduler = scheduler

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.scheduler = None


@pytest.fixture
def add_events(session_factory):
    """Insert events in their own committed transaction."""

    async def _add(*events) -> None:
        async with session_factory() as session:
            session.add_all(events)
            await session.commit()

    return _add
