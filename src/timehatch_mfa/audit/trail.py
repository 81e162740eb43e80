"""Audit trail: store recording plus one JSON log line per event."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from ..observability.metrics import MfaMetrics

if TYPE_CHECKING:
    from ..ports import IAuditStore
    from .events import MfaAuditEvent

_log = logging.getLogger(__name__)
_audit_log = logging.getLogger("timehatch_mfa.audit")


class AuditTrail:
    """Fan out MFA audit events to a store, the audit logger and metrics.

    A failing audit store never fails the MFA operation that produced the
    event; the failure is logged instead.
    """

    def __init__(
        self,
        store: IAuditStore | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._log = logger or _audit_log

    async def emit(self, event: MfaAuditEvent) -> None:
        MfaMetrics.record_event(event)
        try:
            entry = {
                "kind": "audit",
                "event": event.event_type.value,
                "account_id": event.account_id,
                "outcome": "success" if event.success else "failure",
                "error_code": event.error_code,
                "correlation_id": event.request_id,
            }
            self._log.info(json.dumps(entry))
        except Exception:  # noqa: BLE001
            _log.debug("Failed to emit audit log entry", exc_info=True)

        if self._store is None:
            return
        try:
            await self._store.record(event)
        except Exception:  # noqa: BLE001
            _log.exception(
                "Failed to record audit event %s for account %s",
                event.event_type.value,
                event.account_id,
            )


__all__: list[str] = ["AuditTrail"]
