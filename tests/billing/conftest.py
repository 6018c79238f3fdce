"""Database fixtures for metering tests.

Each test gets its own temporary file-backed SQLite database. Connections are not
pooled, so concurrent sessions really contend on the file lock the way separate
service instances contend on a shared store.
"""

from collections.abc import AsyncIterator
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Register metering tables on Base.metadata
from wablast.metering.billing.core import entities  # noqa: F401
from wablast.metering.billing.ledger import TokenLedger
from wablast.metering.billing.pricing import PricingConfig, PricingResolver, PricingService
from wablast.metering.db import Base


@pytest_asyncio.fixture
async def async_engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """Async engine on a temporary SQLite file with the metering schema."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'metering.sqlite'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def tenant_id() -> str:
    return f"tenant-{uuid4().hex[:8]}"


@pytest.fixture
def resolver(session_factory) -> PricingResolver:
    return PricingResolver(session_factory, ttl_seconds=60, maxsize=64)


@pytest_asyncio.fixture
async def default_pricing(db_session, resolver) -> PricingConfig:
    """Default config: divisor 3450, markup 1.0, min 0.01."""
    return await PricingService(db_session, resolver).seed_default()


@pytest_asyncio.fixture
async def funded_tenant(session_factory, tenant_id) -> str:
    """Tenant with an open account holding 100.00 tokens."""
    async with session_factory() as session:
        await TokenLedger(session).credit(tenant_id, Decimal("100.00"), f"seed-{tenant_id}")
    return tenant_id
