"""SQLAlchemy implementation of the Unit of Work pattern."""

from __future__ import annotations

import contextlib
import logging
from collections import deque
from typing import TYPE_CHECKING, Any

from ..exceptions import SessionManagementError, UnitOfWorkError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    from sqlalchemy.ext.asyncio import AsyncSession

    AsyncSessionFactory = Callable[[], AsyncSession]

logger = logging.getLogger(__name__)


class SQLAlchemyUnitOfWork:
    """
    Unit of Work over a SQLAlchemy AsyncSession.

    Commits on clean exit, rolls back on exception. Callbacks registered with
    ``on_commit`` run only AFTER the commit succeeded.

    Supports two usage patterns:

    1. **Caller-managed sessions**:
       ```python
       async with SQLAlchemyUnitOfWork(session=session) as uow:
           ...
       ```

    2. **Self-managed sessions** (what the MFA stores use):
       ```python
       factory = async_sessionmaker(engine, expire_on_commit=False)
       async with SQLAlchemyUnitOfWork(session_factory=factory) as uow:
           ...
       ```

    **Important:** Exactly one of `session` or `session_factory` must be provided.
    """

    def __init__(
        self,
        session: AsyncSession | None = None,
        session_factory: AsyncSessionFactory | None = None,
    ) -> None:
        if session is not None and session_factory is not None:
            raise SessionManagementError(
                "Cannot provide both 'session' and 'session_factory'."
            )
        if session is None and session_factory is None:
            raise SessionManagementError(
                "Must provide either 'session' or 'session_factory'."
            )

        self._session: AsyncSession | None = session
        self._session_factory = session_factory
        self._owns_session = session_factory is not None
        self._on_commit_hooks: deque[Callable[[], Awaitable[Any]]] = deque()

    @property
    def session(self) -> AsyncSession:
        """Get the active session. Raises if session not yet created."""
        if self._session is None:
            raise UnitOfWorkError(
                "Session not yet created. Ensure __aenter__ was called."
            )
        return self._session

    def on_commit(self, callback: Callable[[], Awaitable[Any]]) -> None:
        """Register an async callback to run after a successful commit."""
        self._on_commit_hooks.append(callback)

    async def _trigger_commit_hooks(self) -> None:
        while self._on_commit_hooks:
            callback = self._on_commit_hooks.popleft()
            try:
                await callback()
            except Exception as exc:  # noqa: BLE001
                logger.error("Error in on_commit hook: %s", exc, exc_info=True)

    async def __aenter__(self) -> SQLAlchemyUnitOfWork:
        try:
            if self._owns_session and self._session_factory:
                self._session = self._session_factory()
            if not self.session.in_transaction():
                await self.session.begin()
            return self
        except (SessionManagementError, UnitOfWorkError):
            raise
        except Exception as e:  # noqa: BLE001
            raise SessionManagementError(f"Failed to initialize UoW: {e}") from e

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is None:
                await self.commit()
                await self._trigger_commit_hooks()
            else:
                self._on_commit_hooks.clear()
                await self.rollback()
        finally:
            if self._owns_session and self._session is not None:
                try:
                    await self._session.close()
                except Exception as e:  # noqa: BLE001
                    raise SessionManagementError(f"Failed to close session: {e}") from e

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except Exception as e:  # noqa: BLE001
            with contextlib.suppress(Exception):
                await self.rollback()
            raise UnitOfWorkError(f"Failed to commit transaction: {e}") from e

    async def rollback(self) -> None:
        try:
            if self.session.in_transaction():
                await self.session.rollback()
        except Exception as e:  # noqa: BLE001
            raise UnitOfWorkError(f"Failed to rollback transaction: {e}") from e


__all__: list[str] = ["SQLAlchemyUnitOfWork"]
