"""Shared test configuration and fixtures.

Every test gets a fresh database with tables created from ``Base.metadata``.
By default that is in-memory SQLite (aiosqlite + StaticPool so all
connections share it); set ``TEST_DATABASE_URL`` to run against Postgres. The
API client overrides ``get_db`` to hand routes the test's session, so data
written through the API is visible to the test and vice versa.
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import uuid
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.auth.jwt import create_token_pair
from app.auth.passwords import hash_password
from app.database import Base, get_db
from app.main import app
from app.models.role import Role
from app.models.user import User

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


_test_db_url = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")


def _make_engine():
    if _test_db_url.startswith("sqlite"):
        return create_async_engine(
            _test_db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(_test_db_url, pool_pre_ping=True)


@pytest_asyncio.fixture
async def test_engine():
    """A fresh database with every table created, dropped again afterwards."""
    engine = _make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to use the test DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users and roles
# ---------------------------------------------------------------------------


async def _make_role(db: AsyncSession, name: str, permissions: dict | None = None) -> Role:
    role = Role(name=name, permissions=permissions or {})
    db.add(role)
    await db.flush()
    return role


async def _make_user(
    db: AsyncSession,
    name: str = "Test User",
    role: Role | None = None,
    token_balance: int = 0,
    is_active: bool = True,
) -> User:
    """Insert a user and load its relationships so routes can read ``user.role``."""
    unique = uuid.uuid4().hex[:8]
    user = User(
        email=f"{name.lower().replace(' ', '-')}-{unique}@test.com",
        hashed_password=hash_password("testpass123"),
        name=name,
        is_active=is_active,
        token_balance=token_balance,
        role_id=role.id if role is not None else None,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


def _headers_for(user: User) -> dict[str, str]:
    tokens = create_token_pair(str(user.id))
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """A regular user without a role."""
    return await _make_user(db_session)


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict[str, str]:
    """Return Authorization headers for the test user."""
    return _headers_for(test_user)


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    role = await _make_role(db_session, "ADMIN")
    return await _make_user(db_session, name="Admin User", role=role)


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict[str, str]:
    return _headers_for(admin_user)


@pytest_asyncio.fixture
async def support_user(db_session: AsyncSession) -> User:
    """A non-admin user whose role grants ticket read/update."""
    role = await _make_role(db_session, "support", {"ticket": {"read": True, "update": True}})
    return await _make_user(db_session, name="Support Agent", role=role)


@pytest_asyncio.fixture
async def support_headers(support_user: User) -> dict[str, str]:
    return _headers_for(support_user)


@pytest_asyncio.fixture
async def role_factory(db_session: AsyncSession):
    """``await role_factory(name, permissions)`` inserts a role."""

    async def _factory(name: str, permissions: dict | None = None) -> Role:
        return await _make_role(db_session, name, permissions)

    return _factory


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession):
    """``await user_factory(name=..., role=..., token_balance=...)`` inserts a user."""

    async def _factory(**kwargs) -> User:
        return await _make_user(db_session, **kwargs)

    return _factory


@pytest.fixture
def headers_for():
    """Build Authorization headers for any user."""
    return _headers_for
