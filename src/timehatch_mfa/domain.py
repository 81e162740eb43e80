"""MFA domain records and value objects.

Records are immutable; stores hand out copies and state changes go through
the store's conditional operations, never through mutation of a shared
object.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_id() -> str:
    """Return a random UUIDv4 string identifier."""
    return str(uuid.uuid4())


class FactorType(str, Enum):
    TOTP = "totp"


class FactorStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"


class VerificationKind(str, Enum):
    """Which credential a verification attempt carries."""

    TOTP = "totp"
    RECOVERY = "recovery"


class AttemptChannel(str, Enum):
    """Authentication step an attempt belongs to."""

    PASSWORD = "password"  # noqa: S105
    MFA = "mfa"


class MfaSessionState(str, Enum):
    """Second-factor state of one login session.

    NO_MFA and MFA_SATISFIED are terminal for the session. A trusted device
    moves a session straight to MFA_SATISFIED.
    """

    NO_MFA = "no_mfa"
    MFA_PENDING = "mfa_pending"
    MFA_SATISFIED = "mfa_satisfied"


@dataclass(frozen=True)
class AuthFactor:
    """An enrolled (or enrolling) TOTP factor.

    ``secret_ciphertext`` is the Fernet token of the base32 secret; the
    plaintext secret never lives on this record.
    """

    id: str
    account_id: str
    secret_ciphertext: str
    status: FactorStatus
    created_at: datetime
    friendly_name: str | None = None
    factor_type: FactorType = FactorType.TOTP
    verified_at: datetime | None = None
    last_used_step: int | None = None

    @property
    def is_verified(self) -> bool:
        return self.status is FactorStatus.VERIFIED


@dataclass(frozen=True)
class Challenge:
    """Single-use, short-lived binding of one verification attempt to a factor."""

    id: str
    factor_id: str
    account_id: str
    created_at: datetime
    expires_at: datetime
    consumed: bool = False
    consumed_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class RecoveryCode:
    """Stored form of a recovery code: only the SHA-256 digest."""

    id: str
    account_id: str
    code_hash: str
    created_at: datetime
    used: bool = False
    used_at: datetime | None = None


@dataclass(frozen=True)
class TrustedDevice:
    """A browser allowed to skip MFA until ``expires_at``."""

    id: str
    account_id: str
    token_hash: str
    created_at: datetime
    expires_at: datetime
    device_name: str | None = None
    last_seen_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class AttemptRecord:
    """One authentication attempt. Only aggregates of these are meaningful."""

    identifier: str
    ip: str | None
    success: bool
    timestamp: datetime
    channel: AttemptChannel = AttemptChannel.MFA


@dataclass(frozen=True)
class LockoutStatus:
    """Result of a lockout check.

    Attributes:
        locked: Whether attempts are currently blocked.
        reason: ``"account"`` or ``"ip"`` when locked.
        retry_after: Whole seconds until the lockout lifts.
    """

    locked: bool
    reason: str | None = None
    retry_after: int | None = None

    @classmethod
    def unlocked(cls) -> LockoutStatus:
        return cls(locked=False)


@dataclass(frozen=True)
class EnrollmentStart:
    """Data needed to configure an authenticator app.

    Attributes:
        factor_id: The unverified factor awaiting confirmation.
        secret: Base32 secret for manual entry.
        provisioning_uri: otpauth:// URI for QR code rendering.
        reused: True when an abandoned enrollment was resumed.
    """

    factor_id: str
    secret: str
    provisioning_uri: str
    reused: bool = False


@dataclass(frozen=True)
class IssuedChallenge:
    challenge_id: str
    expires_at: datetime


@dataclass(frozen=True)
class TrustedDeviceGrant:
    """Plaintext device token, returned exactly once."""

    token: str
    device_id: str
    expires_at: datetime


@dataclass(frozen=True)
class VerifyOutcome:
    """Successful verification.

    ``remaining_recovery_codes`` is set only for recovery-code verifications.
    """

    account_id: str
    factor_id: str
    kind: VerificationKind
    remaining_recovery_codes: int | None = None


__all__: list[str] = [
    "Clock",
    "utc_now",
    "ensure_utc",
    "new_id",
    "FactorType",
    "FactorStatus",
    "VerificationKind",
    "AttemptChannel",
    "MfaSessionState",
    "AuthFactor",
    "Challenge",
    "RecoveryCode",
    "TrustedDevice",
    "AttemptRecord",
    "LockoutStatus",
    "EnrollmentStart",
    "IssuedChallenge",
    "TrustedDeviceGrant",
    "VerifyOutcome",
]
