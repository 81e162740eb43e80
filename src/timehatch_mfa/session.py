"""Per-session MFA state.

The primary identity provider owns the login session; this module only
records which second-factor state a session has reached, keyed by the
session id, in an ``ISessionStore``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .domain import MfaSessionState

if TYPE_CHECKING:
    from .ports import ISessionStore

logger = logging.getLogger(__name__)

_KEY_PREFIX = "mfa:session:"


class MfaSessionTracker:
    """Reads and writes the MFA state of login sessions.

    A state stored for one account never applies to another account that
    presents the same session id.

    Args:
        store: Session store.
        ttl_seconds: Lifetime of a stored state.
    """

    def __init__(self, store: ISessionStore, ttl_seconds: int) -> None:
        self._store = store
        self._ttl = ttl_seconds

    @staticmethod
    def _key(session_id: str) -> str:
        return f"{_KEY_PREFIX}{session_id}"

    async def get_state(
        self, session_id: str | None, account_id: str
    ) -> MfaSessionState | None:
        if not session_id:
            return None
        data = await self._store.get(self._key(session_id))
        if not data or data.get("account_id") != account_id:
            return None
        try:
            return MfaSessionState(data.get("state"))
        except ValueError:
            logger.warning("Ignoring unknown MFA state for session %s", session_id)
            return None

    async def set_state(
        self, session_id: str | None, account_id: str, state: MfaSessionState
    ) -> None:
        if not session_id:
            return
        await self._store.store(
            self._key(session_id),
            {"account_id": account_id, "state": state.value},
            ttl=self._ttl,
        )

    async def is_satisfied(self, session_id: str | None, account_id: str) -> bool:
        return (
            await self.get_state(session_id, account_id)
        ) is MfaSessionState.MFA_SATISFIED


__all__: list[str] = ["MfaSessionTracker"]
