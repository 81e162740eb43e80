"""MFA domain exceptions.

All MFA errors inherit from MfaError. Every concrete error carries a stable
``code`` that the service facade reports to callers instead of raising.
"""

from __future__ import annotations

# ═══════════════════════════════════════════════════════════════
# BASE ERROR
# ═══════════════════════════════════════════════════════════════


class MfaError(Exception):
    """Base class for all MFA errors."""

    code: str = "MfaError"


class ConfigurationError(MfaError):
    """Raised when the MFA configuration is missing or invalid.

    Fatal at startup (missing encryption key, malformed thresholds);
    never produced per request.
    """

    code = "ConfigurationError"


# ═══════════════════════════════════════════════════════════════
# REQUEST ERRORS
# ═══════════════════════════════════════════════════════════════


class ValidationError(MfaError):
    """Raised when a submitted value is malformed.

    Carries structured errors: ``{field: [messages]}``.
    """

    code = "ValidationFailed"

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"__root__": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


class UnknownOperationError(MfaError):
    """Raised when an RPC call names an operation that does not exist."""

    code = "UnknownOperation"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Unknown operation {operation!r}")


class InvalidCodeError(MfaError):
    """Raised when a well-formed TOTP or recovery code does not match."""

    code = "InvalidCode"


class NotFoundError(MfaError):
    """Raised when a factor, challenge or device cannot be found."""

    code = "NotFound"


class FactorNotFoundError(NotFoundError):
    """Raised when the referenced factor does not exist for the account."""

    code = "FactorNotFound"

    def __init__(self, factor_id: str) -> None:
        self.factor_id = factor_id
        super().__init__(f"Factor {factor_id!r} not found")


class ChallengeNotFoundError(NotFoundError):
    """Raised when the referenced challenge does not exist for the account."""

    code = "ChallengeNotFound"

    def __init__(self, challenge_id: str) -> None:
        self.challenge_id = challenge_id
        super().__init__(f"Challenge {challenge_id!r} not found")


class DeviceNotFoundError(NotFoundError):
    """Raised when revoking a trusted device that does not exist."""

    code = "DeviceNotFound"


class ExpiredError(MfaError):
    """Raised when a time-bounded object is used past its TTL."""

    code = "Expired"


class ChallengeExpiredError(ExpiredError):
    """Raised when a challenge is verified after ``expires_at``."""

    code = "ChallengeExpired"


class AlreadyUsedError(MfaError):
    """Raised when a single-use object has already been spent.

    Used for recovery codes that were redeemed or invalidated by
    regeneration.
    """

    code = "AlreadyUsed"


class ChallengeConsumedError(AlreadyUsedError):
    """Raised when a challenge was already consumed by an earlier attempt.

    Reported to callers as ``ChallengeExpired``: a consumed challenge is
    no longer usable and the client must request a new one.
    """

    code = "ChallengeExpired"


class ConflictError(MfaError):
    """Raised when an operation conflicts with the current enrollment state."""

    code = "Conflict"


class AlreadyEnrolledError(ConflictError):
    """Raised when enrolling an account that already has a verified factor."""

    code = "AlreadyEnrolled"


class NotEnrolledError(MfaError):
    """Raised when an operation requires a verified factor and there is none."""

    code = "NotEnrolled"


class NotVerifiedThisSessionError(MfaError):
    """Raised when trusting a device from a session that did not pass MFA."""

    code = "NotVerifiedThisSession"


class RateLimitedError(MfaError):
    """Raised while the lockout guard blocks the account or IP.

    The message never says whether the submitted code was otherwise
    correct.

    Attributes:
        retry_after: Seconds until the lockout lifts.
        reason: ``"account"`` or ``"ip"``.
    """

    code = "RateLimited"

    def __init__(
        self,
        message: str = "Too many failed attempts. Please wait before trying again.",
        retry_after: int | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.retry_after = retry_after
        self.reason = reason


# ═══════════════════════════════════════════════════════════════
# PERSISTENCE ERRORS
# ═══════════════════════════════════════════════════════════════


class PersistenceError(MfaError):
    """Base class for store failures."""

    code = "PersistenceError"


class SessionManagementError(PersistenceError):
    """Raised when session creation or management fails."""


class UnitOfWorkError(PersistenceError):
    """Raised when Unit of Work operations fail."""


__all__: list[str] = [
    # Base
    "MfaError",
    "ConfigurationError",
    # Request
    "ValidationError",
    "UnknownOperationError",
    "InvalidCodeError",
    "NotFoundError",
    "FactorNotFoundError",
    "ChallengeNotFoundError",
    "DeviceNotFoundError",
    "ExpiredError",
    "ChallengeExpiredError",
    "AlreadyUsedError",
    "ChallengeConsumedError",
    "ConflictError",
    "AlreadyEnrolledError",
    "NotEnrolledError",
    "NotVerifiedThisSessionError",
    "RateLimitedError",
    # Persistence
    "PersistenceError",
    "SessionManagementError",
    "UnitOfWorkError",
]
