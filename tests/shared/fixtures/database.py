"""
Testcontainers-based PostgreSQL fixtures for integration tests.

Provides an ephemeral Postgres instance per test session. Each test gets a
clean schema.

Usage:
    from tests.shared.fixtures.database import postgres_adapter  # noqa: F401

    @pytest.mark.integration
    async def test_something(postgres_adapter):
        await postgres_adapter.create_user(...)
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool
from testcontainers.postgres import PostgresContainer

from authstore.backends.sqlalchemy import AuthStoreBase, SQLAlchemyAdapter

POSTGRES_IMAGE = "postgres:16-alpine"


@pytest.fixture(scope="session")
def postgres_container():
    """
    Start a PostgreSQL container for the test session.

    The container is shared across all tests in the session for performance
    and cleaned up automatically when the session ends.
    """
    with PostgresContainer(POSTGRES_IMAGE) as postgres:
        yield postgres


@pytest.fixture(scope="session")
def postgres_url(postgres_container) -> str:
    """Connection URL of the container in asyncpg format."""
    connection_url = postgres_container.get_connection_url()
    # Testcontainers may return postgresql+psycopg2:// or postgresql://
    async_url = connection_url.replace("postgresql+psycopg2://", "postgresql+asyncpg://")
    return async_url.replace("postgresql://", "postgresql+asyncpg://")


@pytest_asyncio.fixture
async def postgres_adapter(postgres_url):
    """
    Provide an adapter on a freshly created schema.

    Tables are dropped before and after each test for complete isolation.
    """
    engine = create_async_engine(postgres_url, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(AuthStoreBase.metadata.drop_all)

    adapter = SQLAlchemyAdapter(engine)
    await adapter.initialize()

    yield adapter

    async with engine.begin() as conn:
        await conn.run_sync(AuthStoreBase.metadata.drop_all)
    await adapter.close()
