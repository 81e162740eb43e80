"""TimeHatch multi-factor authentication.

TOTP enrollment, challenge/response verification, single-use recovery
codes, trusted-device bypass and attempt-based lockout, exposed through
``MfaService`` and routed by name through ``MfaRpcRouter``.

Example:
    ```python
    from timehatch_mfa import (
        MfaConfig,
        MfaRpcRouter,
        RequestContext,
        create_mfa_service,
    )

    service = create_mfa_service(MfaConfig.from_env())
    router = MfaRpcRouter(service)
    ctx = RequestContext(account_id="acc-1", session_id="sess-1")
    response = await router.dispatch("mfa.enroll.start", {}, ctx)
    ```
"""

from __future__ import annotations

from .audit import AuditTrail, InMemoryAuditStore, MfaAuditEvent, MfaEventType
from .challenges import ChallengeIssuer, Verifier
from .config import MfaConfig
from .crypto import SecretCipher
from .domain import (
    AttemptChannel,
    AttemptRecord,
    AuthFactor,
    Challenge,
    EnrollmentStart,
    FactorStatus,
    FactorType,
    IssuedChallenge,
    LockoutStatus,
    MfaSessionState,
    RecoveryCode,
    TrustedDevice,
    TrustedDeviceGrant,
    VerificationKind,
    VerifyOutcome,
)
from .enrollment import EnrollmentManager
from .exceptions import (
    AlreadyEnrolledError,
    AlreadyUsedError,
    ChallengeConsumedError,
    ChallengeExpiredError,
    ChallengeNotFoundError,
    ConfigurationError,
    ConflictError,
    DeviceNotFoundError,
    ExpiredError,
    FactorNotFoundError,
    InvalidCodeError,
    MfaError,
    NotEnrolledError,
    NotFoundError,
    NotVerifiedThisSessionError,
    PersistenceError,
    RateLimitedError,
    UnknownOperationError,
    ValidationError,
)
from .factory import create_housekeeping, create_mfa_service, in_memory_stores
from .housekeeping import MfaHousekeeping, SweepReport
from .lockout import LockoutGuard
from .notifications import SecurityNotice
from .ports import (
    IAttemptStore,
    IAuditStore,
    IChallengeStore,
    IFactorStore,
    IMfaNotificationHook,
    IRecoveryCodeStore,
    ISessionStore,
    ITrustedDeviceStore,
)
from .recovery_codes import RecoveryCodeVault
from .request_context import (
    RequestContext,
    get_request_context,
    reset_request_context,
    set_request_context,
)
from .rpc import MfaRpcRouter
from .service import MfaResult, MfaService, MfaStores, VerificationResult
from .totp import TotpCodec
from .trusted_devices import TrustedDeviceRegistry

__version__ = "0.1.0"

__all__: list[str] = [
    # Configuration
    "MfaConfig",
    # Service surface
    "MfaService",
    "MfaStores",
    "MfaResult",
    "VerificationResult",
    "MfaRpcRouter",
    "create_mfa_service",
    "create_housekeeping",
    "in_memory_stores",
    # Components
    "EnrollmentManager",
    "ChallengeIssuer",
    "Verifier",
    "RecoveryCodeVault",
    "TrustedDeviceRegistry",
    "LockoutGuard",
    "MfaHousekeeping",
    "SweepReport",
    "SecretCipher",
    "TotpCodec",
    # Domain
    "AuthFactor",
    "Challenge",
    "RecoveryCode",
    "TrustedDevice",
    "AttemptRecord",
    "AttemptChannel",
    "FactorStatus",
    "FactorType",
    "VerificationKind",
    "MfaSessionState",
    "LockoutStatus",
    "EnrollmentStart",
    "IssuedChallenge",
    "TrustedDeviceGrant",
    "VerifyOutcome",
    # Request context
    "RequestContext",
    "get_request_context",
    "set_request_context",
    "reset_request_context",
    # Ports
    "IFactorStore",
    "IChallengeStore",
    "IRecoveryCodeStore",
    "ITrustedDeviceStore",
    "IAttemptStore",
    "ISessionStore",
    "IAuditStore",
    "IMfaNotificationHook",
    # Audit & notifications
    "MfaAuditEvent",
    "MfaEventType",
    "InMemoryAuditStore",
    "AuditTrail",
    "SecurityNotice",
    # Exceptions
    "MfaError",
    "ConfigurationError",
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
    "PersistenceError",
]
