"""SQLAlchemy persistence for the MFA subsystem.

Example:
    ```python
    engine = create_async_engine("postgresql+asyncpg://...")
    await create_schema(engine)
    service = MfaService(
        config, sqlalchemy_stores(async_sessionmaker(engine, expire_on_commit=False))
    )
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..domain import utc_now
from ..service import MfaStores
from .models import MfaBase
from .stores import (
    SQLAlchemyAttemptStore,
    SQLAlchemyAuditStore,
    SQLAlchemyChallengeStore,
    SQLAlchemyFactorStore,
    SQLAlchemyRecoveryCodeStore,
    SQLAlchemySessionStore,
    SQLAlchemyTrustedDeviceStore,
)
from .uow import SQLAlchemyUnitOfWork

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from ..domain import Clock


async def create_schema(engine: AsyncEngine) -> None:
    """Create the MFA tables (for tests and development; use migrations in prod)."""
    async with engine.begin() as conn:
        await conn.run_sync(MfaBase.metadata.create_all)


def sqlalchemy_stores(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    clock: Clock = utc_now,
) -> MfaStores:
    """Build every MFA store on one session factory."""

    def uow_factory() -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory=session_factory)

    return MfaStores(
        factors=SQLAlchemyFactorStore(uow_factory),
        challenges=SQLAlchemyChallengeStore(uow_factory),
        recovery_codes=SQLAlchemyRecoveryCodeStore(uow_factory),
        devices=SQLAlchemyTrustedDeviceStore(uow_factory),
        attempts=SQLAlchemyAttemptStore(uow_factory),
        sessions=SQLAlchemySessionStore(uow_factory, clock=clock),
    )


__all__: list[str] = [
    "MfaBase",
    "SQLAlchemyUnitOfWork",
    "SQLAlchemyFactorStore",
    "SQLAlchemyChallengeStore",
    "SQLAlchemyRecoveryCodeStore",
    "SQLAlchemyTrustedDeviceStore",
    "SQLAlchemyAttemptStore",
    "SQLAlchemyAuditStore",
    "SQLAlchemySessionStore",
    "create_schema",
    "sqlalchemy_stores",
]
