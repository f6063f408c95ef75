"""
Pytest configuration and fixtures for relay tests
"""

import os
import sys
from collections.abc import AsyncGenerator
from datetime import timedelta

# Settings are read at import time; point them at throwaway resources first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))  # noqa: PTH100, PTH118, PTH119, PTH120

# Import Base first, before importing the app
from relay.database import Base
from relay.models import PushSubscription, User  # noqa: F401

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Create test engine and session maker BEFORE importing the app.
# StaticPool keeps the single in-memory database alive across sessions.
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

# Now import and patch the app's database components
import relay.database as database_module  # noqa: E402
import relay.services.connection_registry as registry_module  # noqa: E402
from main import app  # noqa: E402
from relay.auth import create_access_token  # noqa: E402
from relay.services.connection_registry import HubRegistry  # noqa: E402

# Replace the app's engine and session maker with test versions
database_module.engine = test_engine
database_module.AsyncSessionLocal = TestSessionLocal


@pytest.fixture(scope="function")
async def setup_test_database():
    """
    Create a fresh database for each test function that needs it.
    Tests should depend on this fixture (or fixtures that depend on it like test_db)
    to trigger database setup.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(scope="function")
async def test_db(setup_test_database) -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a database session for tests that need it.
    Depends on setup_test_database to ensure database is initialized.
    """
    async with TestSessionLocal() as session:
        yield session


@pytest.fixture(autouse=True)
def hubs(monkeypatch) -> HubRegistry:
    """Fresh hub registries for every test; routes and the broadcaster resolve them at call time."""
    registry = HubRegistry()
    monkeypatch.setattr(registry_module, "hub_registry", registry)
    return registry


@pytest.fixture
def client():
    """Create a test client for the FastAPI application with test database"""
    return TestClient(app)


@pytest.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _create_user(db: AsyncSession, username: str, **kwargs) -> User:
    user = User(username=username, email=f"{username}@example.com", **kwargs)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def test_user(test_db: AsyncSession) -> User:
    """Create a regular test user"""
    return await _create_user(test_db, "alice")


@pytest.fixture
async def other_user(test_db: AsyncSession) -> User:
    return await _create_user(test_db, "bob")


@pytest.fixture
async def test_admin(test_db: AsyncSession) -> User:
    """Create a test admin user"""
    return await _create_user(test_db, "admin", is_admin=True)


@pytest.fixture
async def banned_user(test_db: AsyncSession) -> User:
    return await _create_user(test_db, "mallory", banned=True)


def token_for(user: User) -> str:
    return create_access_token(data={"sub": user.id}, expires_delta=timedelta(minutes=30))


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authentication headers for test user"""
    return {"Authorization": f"Bearer {token_for(test_user)}"}


@pytest.fixture
def admin_auth_headers(test_admin: User) -> dict:
    """Generate authentication headers for test admin"""
    return {"Authorization": f"Bearer {token_for(test_admin)}"}


@pytest.fixture
def make_token():
    """Build a bearer token for any user"""
    return token_for
