"""Audit module for MFA events.

Provides audit event types, an in-memory store and the audit trail that
records events and emits them as structured log lines.
"""

from __future__ import annotations

from .events import MfaAuditEvent, MfaEventType, build_event
from .memory import InMemoryAuditStore
from .trail import AuditTrail

__all__: list[str] = [
    "MfaEventType",
    "MfaAuditEvent",
    "build_event",
    "InMemoryAuditStore",
    "AuditTrail",
]
