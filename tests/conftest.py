# tests/conftest.py
import os

# Set up test environment variables BEFORE any other imports
os.environ["TESTING"] = "true"
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("DATABASE_URL", os.environ["TEST_DATABASE_URL"])
os.environ.setdefault("GEMINI_API_KEY", "")
os.environ.setdefault("RESUMABLE_STREAM_BACKEND", "none")

import uuid
from collections.abc import Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.dependencies import (
    get_current_user,
    get_db,
    get_session_factory,
    get_stream_context,
    get_token_producer,
    validate_token,
)
from app.domains.chat.context import NullStreamContext
from app.domains.chat.service import Caller
from app.main import app
from models import Base, Project, User, UserType
from tests.factories import ScriptedProducer


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Per-test SQLite database file."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def test_session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_db(test_session_factory):
    """Create a test database session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def fresh_session(test_session_factory) -> Callable[[], AsyncSession]:
    """Opens a new session, for assertions that must not see cached objects."""
    return test_session_factory


# User fixtures
async def _create_user(db: AsyncSession, user_type: str, email: str) -> User:
    user = User(
        clerk_user_id=f"clerk_user_{uuid.uuid4()}",
        email=email,
        username=email.split("@")[0],
        is_active=True,
        user_type=user_type,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(test_db):
    """Create a test user."""
    return await _create_user(test_db, UserType.REGULAR.value, "test@example.com")


@pytest_asyncio.fixture
async def test_user_2(test_db):
    """Create a second test user."""
    return await _create_user(test_db, UserType.REGULAR.value, "test2@example.com")


@pytest_asyncio.fixture
async def guest_user(test_db):
    """Create a guest user."""
    return await _create_user(test_db, UserType.GUEST.value, "guest@example.com")


@pytest.fixture
def caller(test_user) -> Caller:
    return Caller.from_user(test_user)


@pytest.fixture
def other_caller(test_user_2) -> Caller:
    return Caller.from_user(test_user_2)


# Project fixtures
@pytest_asyncio.fixture
async def test_project(test_db, test_user):
    """Create a test project."""
    project = Project(user_id=test_user.id, name="Test Project", description="A test project for testing")
    test_db.add(project)
    await test_db.commit()
    await test_db.refresh(project)
    return project


# Producer fixtures
@pytest.fixture
def scripted_producer() -> ScriptedProducer:
    return ScriptedProducer()


# Client fixtures
def _override_dependencies(test_session_factory, producer, stream_context=None):
    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: test_session_factory
    app.dependency_overrides[get_token_producer] = lambda: producer
    app.dependency_overrides[get_stream_context] = lambda: stream_context or NullStreamContext()


@pytest_asyncio.fixture
async def client(test_session_factory, scripted_producer):
    """Unauthenticated test client."""
    _override_dependencies(test_session_factory, scripted_producer)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def authenticated_client(test_session_factory, scripted_producer, test_user):
    """Create an authenticated test client."""
    _override_dependencies(test_session_factory, scripted_producer)
    app.dependency_overrides[get_current_user] = lambda: test_user
    app.dependency_overrides[validate_token] = lambda: {
        "sub": test_user.clerk_user_id,
        "email": test_user.email,
    }

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
