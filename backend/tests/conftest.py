"""
Centralized Test Configuration.
"""

import asyncio

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool
from redis.exceptions import LockError

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.redis_client import get_redis
from backend.app.core.dependencies import get_notifier
import backend.app.core.redis_client as redis_client_module
from backend.app.core.reliability import CircuitBreaker
from backend.app.services.notifier import RedisNotifier
from backend.tests.factories import (
    build_assignment_manager,
    build_clearance_manager,
    create_assignment,
    seed_network,
)

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Mock Redis for reliability in CI/CD
class MockLock:
    """In-process stand-in for redis.asyncio.lock.Lock."""

    def __init__(self, redis, name, timeout=None, blocking_timeout=None):
        self.redis = redis
        self.name = name
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self._owned = False

    async def acquire(self):
        lock = self.redis.locks.setdefault(self.name, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), self.blocking_timeout)
        except asyncio.TimeoutError:
            return False
        self._owned = True
        self.redis.lock_log.append(self.name)
        return True

    async def release(self):
        if not self._owned:
            raise LockError("Cannot release an unlocked lock")
        self._owned = False
        self.redis.locks[self.name].release()


class MockRedis:
    def __init__(self):
        self.store = {}
        self.locks = {}
        self.lock_log = []
        self.published = []
        self.fail_publish = False
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def publish(self, channel, message):
        if self._closed or self.fail_publish:
            raise ConnectionError("Redis unavailable")
        self.published.append((channel, message))
        return 1

    def lock(self, name, timeout=None, blocking_timeout=None):
        return MockLock(self, name, timeout=timeout, blocking_timeout=blocking_timeout)

    async def flushdb(self):
        if not self._closed:
            self.store = {}
            self.published = []

    async def aclose(self):
        self._closed = True
        self.store = {}

    def channels(self):
        return [channel for channel, _ in self.published]


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def breaker():
    """Per-test breaker so failures in one test never open the circuit for the next."""
    return CircuitBreaker(failure_threshold=5, reset_timeout=30)


@pytest.fixture
def notifier(redis_client, breaker):
    return RedisNotifier(redis_client, channel_prefix="test", breaker=breaker)


@pytest.fixture
def assignments(db_session, redis_client, notifier):
    return build_assignment_manager(db_session, redis_client, notifier)


@pytest.fixture
def clearance(db_session, notifier):
    return build_clearance_manager(db_session, notifier)


@pytest.fixture
async def network(db_session):
    return await seed_network(db_session)


@pytest.fixture
async def active_assignment(assignments, network):
    return await create_assignment(assignments, network)


@pytest.fixture
async def client(session_factory, redis_client, notifier, monkeypatch):
    """Async client for testing."""
    # Patch the global redis client used by the health check
    monkeypatch.setattr(redis_client_module, "redis_client", redis_client)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis():
        return redis_client

    async def override_get_notifier():
        return notifier

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_notifier] = override_get_notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}
