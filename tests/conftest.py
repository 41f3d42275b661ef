"""
Test infrastructure for the blog CMS API.

Strategy
--------
- SQLite in-memory via aiosqlite; StaticPool keeps every session on the one
  connection that owns the in-memory database.
- Foreign keys are switched on for that connection so comment cascades and
  the category RESTRICT rule behave as they do on PostgreSQL.
- The app's get_db dependency is overridden to use the test session factory.
- Tables are created before each test and dropped after it.
- Identity arrives through the ``X-User-Id`` / ``X-User-Role`` headers; the
  ``auth`` helper builds them.
"""
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from blogcms.database import Base, get_db, install_foreign_keys
from blogcms.main import app
from blogcms.middleware import install_query_counter

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)
install_foreign_keys(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


def auth(user_id: int, role: str = "user") -> dict:
    """Identity headers as the upstream identity service would set them."""
    return {"X-User-Id": str(user_id), "X-User-Role": role}


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """A live AsyncSession for calling services directly."""
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
