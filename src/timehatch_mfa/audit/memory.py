"""In-memory audit store for testing and development."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .events import MfaAuditEvent, MfaEventType


class InMemoryAuditStore:
    """In-memory implementation of IAuditStore.

    Note:
        Events are lost on restart. Not suitable for production use.
    """

    def __init__(self) -> None:
        self._events: list[MfaAuditEvent] = []
        self._by_account: dict[str, list[int]] = defaultdict(list)

    async def record(self, event: MfaAuditEvent) -> None:
        index = len(self._events)
        self._events.append(event)
        if event.account_id:
            self._by_account[event.account_id].append(index)

    async def get_events(
        self,
        account_id: str,
        *,
        event_types: list[MfaEventType] | None = None,
        limit: int = 100,
    ) -> list[MfaAuditEvent]:
        """Get audit events for an account, most recent first."""
        results: list[MfaAuditEvent] = []
        for idx in reversed(self._by_account.get(account_id, [])):
            event = self._events[idx]
            if event_types and event.event_type not in event_types:
                continue
            results.append(event)
            if len(results) >= limit:
                break
        return results

    def event_types(self, account_id: str | None = None) -> list[MfaEventType]:
        """Event types in recording order, optionally for one account."""
        if account_id is None:
            return [e.event_type for e in self._events]
        indexes = self._by_account.get(account_id, [])
        return [self._events[i].event_type for i in indexes]

    def clear(self) -> None:
        self._events.clear()
        self._by_account.clear()

    def count(self) -> int:
        return len(self._events)


__all__: list[str] = ["InMemoryAuditStore"]
