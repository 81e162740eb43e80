"""SQLite-backed fixtures for the SQLAlchemy stores."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from support import FakeClock

from timehatch_mfa import MfaStores
from timehatch_mfa.persistence import (
    SQLAlchemyAuditStore,
    SQLAlchemyUnitOfWork,
    create_schema,
    sqlalchemy_stores,
)


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    # One shared connection so every session sees the same in-memory database.
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def stores(
    session_factory: async_sessionmaker[AsyncSession], clock: FakeClock
) -> MfaStores:
    return sqlalchemy_stores(session_factory, clock=clock)


@pytest.fixture
def sql_audit_store(
    session_factory: async_sessionmaker[AsyncSession],
) -> SQLAlchemyAuditStore:
    return SQLAlchemyAuditStore(
        lambda: SQLAlchemyUnitOfWork(session_factory=session_factory)
    )
