"""
Shared fixtures: a fresh in-memory SQLite database per test.
"""
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from pollvault.database import build_sessionmaker
from pollvault.orm import Base
from pollvault.services import notification_service


@pytest_asyncio.fixture
async def engine():
    # StaticPool keeps every session on the one in-memory database
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return build_sessionmaker(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def notifications():
    """Collects (event, data) pairs sent through the dispatcher."""
    received = []

    def listener(event, data):
        received.append((event, data))

    notification_service.dispatcher.subscribe(listener)
    yield received
    notification_service.dispatcher.unsubscribe(listener)
