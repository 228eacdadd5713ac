"""
Campus Portal - Test Configuration and Fixtures
"""
import os
from typing import AsyncGenerator
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from faker import Faker

# Set testing environment
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test_portal.db'
os.environ['REDIS_URL'] = ''
os.environ['GUARD_CACHE_BACKEND'] = 'memory'
os.environ['ADMIN_API_TOKEN'] = ''
os.environ['LOG_LEVEL'] = 'WARNING'

from portal.main import app
from portal.core.database import Base
from portal.core.rate_limiter import limiter
from portal.services.document_store import SQLDocumentStore
from portal.services.guard import (
    GuardSessionRegistry,
    MemoryGuardCache,
    SecurityPolicy,
    StorePolicyProvider,
)
from portal.services.guard.policy import POLICY_COLLECTION, POLICY_DOCUMENT_ID

fake = Faker()

# Test database setup
TEST_DATABASE_URL = 'sqlite+aiosqlite:///./test_portal.db'
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False
)


class FakeClock:
    """Manually advanced wall clock (seconds since epoch)"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope='function')
async def db_tables() -> AsyncGenerator[None, None]:
    """Create a fresh documents table for each test"""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def store(db_tables) -> SQLDocumentStore:
    """Document store on the test database"""
    return SQLDocumentStore(TestSessionLocal)


@pytest.fixture
def guard_cache(clock: FakeClock) -> MemoryGuardCache:
    return MemoryGuardCache(clock=clock)


@pytest.fixture
async def policy_provider(store, guard_cache) -> AsyncGenerator[StorePolicyProvider, None]:
    """Policy provider subscribed to settings/security"""
    provider = StorePolicyProvider(store, cache=guard_cache)
    await provider.start()
    yield provider
    await provider.stop()


@pytest.fixture
async def registry(policy_provider, guard_cache, clock) -> AsyncGenerator[GuardSessionRegistry, None]:
    """Session registry; guard timers are driven by hand in tests"""
    registry = GuardSessionRegistry(policy_provider, guard_cache, clock=clock, start_timers=False)
    await registry.start()
    yield registry
    await registry.stop()


@pytest.fixture
def set_policy(store):
    """Write settings/security the way the admin screen does"""
    async def _set(**fields) -> SecurityPolicy:
        policy = SecurityPolicy(**fields)
        await store.set(POLICY_COLLECTION, POLICY_DOCUMENT_ID, policy.to_document())
        return policy
    return _set


@pytest.fixture
async def client(store, policy_provider, registry) -> AsyncGenerator[AsyncClient, None]:
    """Create test client wired to the test store, policy and registry"""
    app.state.document_store = store
    app.state.policy_provider = policy_provider
    app.state.guard_registry = registry
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.state.document_store = None
    app.state.policy_provider = None
    app.state.guard_registry = None


@pytest.fixture
def admin_headers() -> dict:
    """Operator identity headers for admin endpoints"""
    return {'X-Admin-Email': fake.email(), 'User-Agent': fake.user_agent()}


@pytest.fixture
def html_headers() -> dict:
    """Headers of a browser navigation"""
    return {'Accept': 'text/html,application/xhtml+xml', 'User-Agent': fake.user_agent()}


@pytest.fixture
async def visitor(client) -> AsyncGenerator[AsyncClient, None]:
    """A second browser with its own cookie jar (same app state as ``client``)"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac
