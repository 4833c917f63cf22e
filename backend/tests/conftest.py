"""Common test fixtures and configuration for pytest.

Store-backed tests run against a SQLite database file per test through
aiosqlite, created from the model metadata.
"""

from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from seatsync.models import Base

# Import all fixtures so they are automatically available for all tests
from tests.fixtures.common import (  # noqa
    make_subscription,
    mock_billing_client,
    organization_id,
    sign_payload,
    webhook_secret,
)


@pytest.fixture
async def db_engine(tmp_path):
    """Create a test database engine for each test function."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'seatsync.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker:
    """Session factory bound to the test engine, for tests that need several sessions."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a new database session.

    Each test gets a fresh database file, so no cleanup is needed.
    """
    async with session_factory() as session:
        yield session
