"""Audit events for MFA operations.

Every security-relevant MFA action produces one ``MfaAuditEvent``. Events
never carry secrets, TOTP codes, recovery codes or device tokens.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..request_context import RequestContext


class MfaEventType(Enum):
    """Types of MFA audit events.

    Event naming follows the pattern: `auth.mfa.<action>`
    """

    ENROLLMENT_STARTED = "auth.mfa.enrollment_started"
    MFA_ENABLED = "auth.mfa.enabled"
    MFA_DISABLED = "auth.mfa.disabled"
    MFA_VERIFIED = "auth.mfa.verified"
    MFA_FAILED = "auth.mfa.failed"
    MFA_RATE_LIMITED = "auth.mfa.rate_limited"
    RECOVERY_CODES_REGENERATED = "auth.mfa.recovery_codes_regenerated"
    RECOVERY_CODE_USED = "auth.mfa.recovery_code_used"
    TRUSTED_DEVICE_ADDED = "auth.mfa.trusted_device_added"
    TRUSTED_DEVICE_REVOKED = "auth.mfa.trusted_device_revoked"


@dataclass(frozen=True)
class MfaAuditEvent:
    """MFA audit event.

    Attributes:
        event_type: The type of MFA event.
        account_id: Account the event concerns.
        timestamp: When the event occurred (UTC).
        ip_address: Client IP address (if available).
        user_agent: Client user agent string (if available).
        request_id: Correlation ID for request tracing.
        session_id: Login session identifier (if applicable).
        success: Whether the operation was successful.
        error_code: ``MfaError.code`` if the operation failed.
        metadata: Additional event-specific data (factor id, counts...).
    """

    event_type: MfaEventType
    account_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None
    session_id: str | None = None
    success: bool = True
    error_code: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.success and not self.error_code:
            object.__setattr__(self, "error_code", "UNKNOWN_ERROR")

    def to_dict(self) -> dict[str, Any]:
        """Convert event to a JSON-serializable dictionary."""
        return {
            "event_type": self.event_type.value,
            "account_id": self.account_id,
            "timestamp": self.timestamp.isoformat(),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "request_id": self.request_id,
            "session_id": self.session_id,
            "success": self.success,
            "error_code": self.error_code,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MfaAuditEvent:
        """Create event from dictionary.

        Raises:
            ValueError: If ``event_type`` is missing or unknown.
        """
        raw_type = data.get("event_type")
        if raw_type is None:
            raise ValueError("Missing required 'event_type'")
        try:
            event_type = MfaEventType(raw_type)
        except ValueError as e:
            raise ValueError(f"Invalid event_type: {raw_type}") from e

        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)
        elif timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return cls(
            event_type=event_type,
            account_id=data.get("account_id"),
            timestamp=timestamp,
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            request_id=data.get("request_id"),
            session_id=data.get("session_id"),
            success=data.get("success", True),
            error_code=data.get("error_code"),
            metadata=data.get("metadata") or {},
        )


def build_event(
    event_type: MfaEventType,
    account_id: str | None,
    timestamp: datetime,
    context: RequestContext | None = None,
    *,
    success: bool = True,
    error_code: str | None = None,
    **metadata: Any,
) -> MfaAuditEvent:
    """Create an event enriched with the request's IP, user agent and ids."""
    return MfaAuditEvent(
        event_type=event_type,
        account_id=account_id,
        timestamp=timestamp,
        ip_address=context.ip_address if context else None,
        user_agent=context.user_agent if context else None,
        request_id=context.request_id if context else None,
        session_id=context.session_id if context else None,
        success=success,
        error_code=error_code,
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


__all__: list[str] = ["MfaEventType", "MfaAuditEvent", "build_event"]
