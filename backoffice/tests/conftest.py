"""
Centralized Test Configuration.
"""

import os

# Must be set before any backoffice import reads the settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SEED_ON_STARTUP"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-access-secret-key-at-least-32-characters"
os.environ["REFRESH_SECRET_KEY"] = "test-refresh-secret-key-at-least-32-characters"

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from backoffice.app.main import app
from backoffice.app.db.session import get_db, get_session_factory, Base
from backoffice.app.core.redis_client import get_redis
from backoffice.app.core.security import get_password_hash
from backoffice.app.models.audit_log import AuditLog
from backoffice.app.models.enums import UserStatus
from backoffice.app.models.role import Role, UserRole
from backoffice.app.models.user import User
from backoffice.app.services.seed import seed_rbac

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

DEFAULT_PASSWORD = "password123"


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
        self.ttls = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if self._closed:
            return False
        if nx and key in self.store:
            return None
        self.store[key] = str(value)
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def incr(self, key):
        if self._closed:
            raise ConnectionError("Redis is closed")
        self.store[key] = str(int(self.store.get(key, 0)) + 1)
        return int(self.store[key])

    async def expire(self, key, seconds):
        if self._closed:
            raise ConnectionError("Redis is closed")
        self.ttls[key] = seconds
        return key in self.store

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
            self.ttls = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    def override_get_session_factory():
        return TestingSessionLocal

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_session_factory] = override_get_session_factory
    yield

    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create and seed tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestingSessionLocal() as session:
        await seed_rbac(session, with_admin=False)

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


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def make_user():
    """Factory creating a user directly in the database, with the given role names."""

    async def _make_user(
        username: str,
        roles=(),
        password: str = DEFAULT_PASSWORD,
        status: UserStatus = UserStatus.ACTIVE,
        email_verified: bool = True,
    ) -> User:
        async with TestingSessionLocal() as session:
            user = User(
                email=f"{username}@example.com",
                username=username,
                hashed_password=get_password_hash(password),
                status=status,
                email_verified=email_verified,
            )
            session.add(user)
            await session.flush()
            for role_name in roles:
                role = (await session.execute(select(Role).where(Role.name == role_name))).scalar_one()
                session.add(UserRole(user_id=user.id, role_id=role.id))
            await session.commit()
            await session.refresh(user)
            return user

    return _make_user


async def _login(client, email: str, password: str = DEFAULT_PASSWORD, **extra):
    return await client.post("/api/auth/login", json={"email": email, "password": password, **extra})


@pytest.fixture
def api_login(client):
    """POST /api/auth/login and return the response."""

    async def _api_login(email: str, password: str = DEFAULT_PASSWORD, **extra):
        return await _login(client, email, password, **extra)

    return _api_login


@pytest.fixture
def bearer():
    """Authorization header for an access token."""
    return lambda token: {"Authorization": f"Bearer {token}"}


@pytest.fixture
def login_as(client, make_user):
    """Create a user with roles, log in and return (user, login data)."""

    async def _login_as(username: str, roles=()):
        user = await make_user(username, roles=roles)
        response = await _login(client, user.email)
        assert response.status_code == 200, response.text
        return user, response.json()["data"]

    return _login_as


@pytest.fixture
def audit_rows():
    """Fetch audit rows, optionally filtered by action, oldest first."""

    async def _audit_rows(action: str = None):
        async with TestingSessionLocal() as session:
            query = select(AuditLog).order_by(AuditLog.id)
            if action is not None:
                query = query.where(AuditLog.action == action)
            return list((await session.execute(query)).scalars().all())

    return _audit_rows
