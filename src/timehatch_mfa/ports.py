"""MFA ports (protocols).

Every state transition the MFA services rely on is a single store call.
Implementations must make the conditional operations (``consume``,
``mark_used``, ``mark_verified``, ``add_unverified``...) atomic so that two
concurrent requests resolve to exactly one winner.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .audit.events import MfaAuditEvent, MfaEventType
    from .domain import (
        AttemptRecord,
        AuthFactor,
        Challenge,
        FactorStatus,
        RecoveryCode,
        TrustedDevice,
    )
    from .notifications import SecurityNotice


# ═══════════════════════════════════════════════════════════════
# FACTOR STORE
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IFactorStore(Protocol):
    """Durable record of TOTP factors; source of truth for enrollment state."""

    async def get(self, factor_id: str) -> AuthFactor | None:
        """Get a factor by id."""
        ...

    async def list_for_account(
        self,
        account_id: str,
        status: FactorStatus | None = None,
    ) -> list[AuthFactor]:
        """List an account's factors, oldest first.

        Args:
            account_id: Account identifier.
            status: Optional status filter.
        """
        ...

    async def add_unverified(self, factor: AuthFactor) -> AuthFactor:
        """Insert an unverified factor unless the account already has one.

        Returns:
            The inserted factor, or the account's existing unverified
            factor if one was created concurrently.
        """
        ...

    async def mark_verified(self, factor_id: str, verified_at: datetime) -> bool:
        """Flip an unverified factor to verified.

        Returns:
            True if this call performed the transition.
        """
        ...

    async def advance_last_used_step(self, factor_id: str, step: int) -> bool:
        """Record the TOTP time step just accepted.

        Only succeeds if ``step`` is later than the stored step.

        Returns:
            True if the step was recorded (the code is not a replay).
        """
        ...

    async def delete(self, factor_ids: Sequence[str]) -> int:
        """Delete factors by id. Returns the number deleted."""
        ...

    async def delete_for_account(self, account_id: str) -> int:
        """Delete every factor of an account. Returns the number deleted."""
        ...


# ═══════════════════════════════════════════════════════════════
# CHALLENGE STORE
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IChallengeStore(Protocol):
    """Storage for short-lived verification challenges."""

    async def add(self, challenge: Challenge) -> None: ...

    async def get(self, challenge_id: str) -> Challenge | None: ...

    async def consume(self, challenge_id: str, consumed_at: datetime) -> bool:
        """Mark a challenge consumed if it is not already.

        Returns:
            True if this call consumed the challenge.
        """
        ...

    async def delete_expired(self, now: datetime) -> int: ...

    async def delete_for_account(self, account_id: str) -> int: ...


# ═══════════════════════════════════════════════════════════════
# RECOVERY CODE STORE
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IRecoveryCodeStore(Protocol):
    """Storage for hashed recovery codes."""

    async def replace_batch(
        self,
        account_id: str,
        codes: Sequence[RecoveryCode],
        invalidated_at: datetime,
    ) -> int:
        """Invalidate every unused code of the account and insert ``codes``.

        Both steps happen in one transaction.

        Returns:
            Number of previously unused codes that were invalidated.
        """
        ...

    async def find(self, account_id: str, code_hash: str) -> RecoveryCode | None:
        """Find a code by hash, preferring an unused row."""
        ...

    async def mark_used(self, code_id: str, used_at: datetime) -> bool:
        """Mark a code used if it is still unused.

        Returns:
            True if this call spent the code.
        """
        ...

    async def count_unused(self, account_id: str) -> int: ...

    async def delete_for_account(self, account_id: str) -> int: ...


# ═══════════════════════════════════════════════════════════════
# TRUSTED DEVICE STORE
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class ITrustedDeviceStore(Protocol):
    """Storage for trusted-device token hashes."""

    async def add(self, device: TrustedDevice) -> None: ...

    async def find_active(
        self, account_id: str, token_hash: str, now: datetime
    ) -> TrustedDevice | None:
        """Find a non-expired device of the account by token hash."""
        ...

    async def touch(self, device_id: str, seen_at: datetime) -> None:
        """Update ``last_seen_at``."""
        ...

    async def list_active(self, account_id: str, now: datetime) -> list[TrustedDevice]:
        ...

    async def delete(self, account_id: str, device_id: str) -> bool: ...

    async def delete_for_account(self, account_id: str) -> int: ...

    async def delete_expired(self, now: datetime) -> int: ...


# ═══════════════════════════════════════════════════════════════
# ATTEMPT STORE
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IAttemptStore(Protocol):
    """Append-only log of authentication attempts."""

    async def add(self, record: AttemptRecord) -> None: ...

    async def list_since(
        self,
        since: datetime,
        *,
        identifier: str | None = None,
        ip: str | None = None,
    ) -> list[AttemptRecord]:
        """List attempts newer than ``since``, oldest first.

        Attempts with equal timestamps keep insertion order.

        Args:
            since: Exclusive lower bound on ``timestamp``.
            identifier: Filter by account id or email.
            ip: Filter by client IP.
        """
        ...

    async def delete_older_than(self, cutoff: datetime) -> int: ...


# ═══════════════════════════════════════════════════════════════
# SESSION STORE
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class ISessionStore(Protocol):
    """Key/value store for per-session MFA markers.

    Implementations should use Redis (or the main database) in production.
    """

    async def store(
        self, key: str, data: dict[str, Any], ttl: int | None = None
    ) -> None:
        """Store data under a key.

        Args:
            key: Session key.
            data: Session data dictionary.
            ttl: Time-to-live in seconds (optional).
        """
        ...

    async def get(self, key: str) -> dict[str, Any] | None:
        """Retrieve data, or None if missing or expired."""
        ...

    async def delete(self, key: str) -> None: ...


# ═══════════════════════════════════════════════════════════════
# AUDIT & NOTIFICATION PORTS
# ═══════════════════════════════════════════════════════════════


@runtime_checkable
class IAuditStore(Protocol):
    """Protocol for MFA audit event storage."""

    async def record(self, event: MfaAuditEvent) -> None:
        """Record an audit event."""
        ...

    async def get_events(
        self,
        account_id: str,
        *,
        event_types: list[MfaEventType] | None = None,
        limit: int = 100,
    ) -> list[MfaAuditEvent]:
        """Get audit events for an account, most recent first."""
        ...


@runtime_checkable
class IMfaNotificationHook(Protocol):
    """Protocol for security notices sent to the account owner.

    This package does NOT send email; the application implements the hook.
    """

    async def send_security_notice(
        self,
        account_id: str,
        notice: SecurityNotice,
        details: dict[str, Any],
    ) -> None:
        """Deliver a security notice.

        Args:
            account_id: Account the notice is about.
            notice: Which event happened.
            details: IP address, user agent, remaining codes, etc.
        """
        ...


__all__: list[str] = [
    "IFactorStore",
    "IChallengeStore",
    "IRecoveryCodeStore",
    "ITrustedDeviceStore",
    "IAttemptStore",
    "ISessionStore",
    "IAuditStore",
    "IMfaNotificationHook",
]
