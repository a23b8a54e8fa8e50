"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from fleet_backend.app.main import app
from fleet_backend.app.db.session import get_db, Base
from fleet_backend.app.core.redis_client import get_redis
import fleet_backend.app.core.redis_client as redis_client_module
from fleet_backend.app.domain.trips.write_orchestrator import WriteContext
from fleet_backend.app.models.driver import Driver
from fleet_backend.app.models.enums import UserRole
from fleet_backend.app.models.vehicle import Vehicle
from fleet_backend.tests.factories import ORG_ID, auth_headers_for

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
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

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """
    # Patch the global redis client used by the cache service
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Auth helpers

@pytest.fixture
def auth_headers():
    return auth_headers_for(UserRole.FLEET_MANAGER)


@pytest.fixture
def operator_headers():
    return auth_headers_for(UserRole.OPERATOR, user_id=2)


@pytest.fixture
def ctx():
    return WriteContext(organization_id=ORG_ID, user_id=1, role=UserRole.FLEET_MANAGER.value)


# Fleet data

@pytest.fixture
async def vehicle(db_session):
    vehicle = Vehicle(organization_id=ORG_ID, registration_number="KA01AB1234", vehicle_type="Truck", fuel_type="Diesel")
    db_session.add(vehicle)
    await db_session.commit()
    await db_session.refresh(vehicle)
    return vehicle


@pytest.fixture
async def second_vehicle(db_session):
    vehicle = Vehicle(organization_id=ORG_ID, registration_number="KA01AB9999", vehicle_type="Van", fuel_type="Diesel")
    db_session.add(vehicle)
    await db_session.commit()
    await db_session.refresh(vehicle)
    return vehicle


@pytest.fixture
async def driver(db_session):
    driver = Driver(organization_id=ORG_ID, name="Ravi Kumar", license_number="DL-0420110012345")
    db_session.add(driver)
    await db_session.commit()
    await db_session.refresh(driver)
    return driver

