"""MFA service facade.

``MfaService`` wires the components together and is the only surface the
RPC layer talks to. Every per-request ``MfaError`` is converted into a
failed ``MfaResult``; callers never see exceptions for expected outcomes
such as a wrong code or a lockout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .audit.events import MfaEventType, build_event
from .audit.trail import AuditTrail
from .challenges import ChallengeIssuer, Verifier
from .crypto import SecretCipher
from .domain import AttemptChannel, MfaSessionState, VerificationKind, utc_now
from .enrollment import EnrollmentManager
from .exceptions import (
    ConfigurationError,
    MfaError,
    NotEnrolledError,
    NotVerifiedThisSessionError,
    PersistenceError,
    RateLimitedError,
    ValidationError,
)
from .lockout import LockoutGuard
from .notifications import SecurityNotice, SecurityNotifier
from .observability.metrics import MfaMetrics
from .recovery_codes import RecoveryCodeVault
from .request_context import RequestContext, get_request_context
from .session import MfaSessionTracker
from .totp import TotpCodec
from .trusted_devices import TrustedDeviceRegistry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .config import MfaConfig
    from .domain import (
        AuthFactor,
        Clock,
        EnrollmentStart,
        IssuedChallenge,
        LockoutStatus,
        TrustedDevice,
        TrustedDeviceGrant,
        VerifyOutcome,
    )
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

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ═══════════════════════════════════════════════════════════════
# RESULT TYPES
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class MfaResult(Generic[T]):
    """Outcome of one MFA operation.

    Attributes:
        ok: Whether the operation succeeded.
        value: Payload on success.
        error: Stable error code on failure (``InvalidCode``, ``RateLimited``...).
        message: Human-readable failure message.
        retry_after: Seconds to wait, for ``RateLimited`` failures.
        errors: Field errors, for ``ValidationFailed`` failures.
    """

    ok: bool
    value: T | None = None
    error: str | None = None
    message: str | None = None
    retry_after: int | None = None
    errors: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def success(cls, value: T) -> MfaResult[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, exc: MfaError) -> MfaResult[T]:
        return cls(
            ok=False,
            error=exc.code,
            message=str(exc),
            retry_after=getattr(exc, "retry_after", None),
            errors=exc.errors if isinstance(exc, ValidationError) else {},
        )


@dataclass(frozen=True)
class VerificationResult:
    """Successful ``mfa.verify``; ``device`` is set when the device was remembered."""

    outcome: VerifyOutcome
    device: TrustedDeviceGrant | None = None


@dataclass(frozen=True)
class MfaStores:
    """The stores an MfaService runs on."""

    factors: IFactorStore
    challenges: IChallengeStore
    recovery_codes: IRecoveryCodeStore
    devices: ITrustedDeviceStore
    attempts: IAttemptStore
    sessions: ISessionStore


# ═══════════════════════════════════════════════════════════════
# SERVICE
# ═══════════════════════════════════════════════════════════════


class MfaService:
    """MFA operations for the RPC surface.

    Example:
        ```python
        service = MfaService(MfaConfig.from_env(), stores)
        ctx = RequestContext(account_id="acc-1", session_id="s-1", ip_address=ip)

        start = await service.start_enrollment("acc-1")
        result = await service.finish_enrollment(start.value.factor_id, code, ctx)
        if not result.ok:
            print(result.error)
        ```
    """

    def __init__(
        self,
        config: MfaConfig,
        stores: MfaStores,
        *,
        audit_store: IAuditStore | None = None,
        notification_hook: IMfaNotificationHook | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config
        self.stores = stores
        self._clock = clock

        cipher = SecretCipher(config.encryption_key)
        totp = TotpCodec(
            issuer=config.issuer,
            digits=config.totp_digits,
            interval=config.totp_interval,
            valid_window=config.totp_valid_window,
        )
        self.guard = LockoutGuard(stores.attempts, config, clock=clock)
        self.vault = RecoveryCodeVault(stores.recovery_codes, config, clock=clock)
        self.devices = TrustedDeviceRegistry(stores.devices, config, clock=clock)
        self.issuer = ChallengeIssuer(
            stores.factors, stores.challenges, config, clock=clock
        )
        self.verifier = Verifier(
            stores.factors,
            stores.challenges,
            self.vault,
            self.guard,
            cipher,
            totp,
            config,
            clock=clock,
        )
        self.enrollment = EnrollmentManager(
            stores.factors,
            stores.challenges,
            self.issuer,
            self.verifier,
            self.vault,
            self.devices,
            cipher,
            totp,
            clock=clock,
        )
        self.sessions = MfaSessionTracker(stores.sessions, config.session_ttl_seconds)
        self._audit = AuditTrail(audit_store)
        self._notifier = SecurityNotifier(notification_hook)

    # ── plumbing ────────────────────────────────────────────────

    async def _run(
        self, operation: str, call: Callable[[], Awaitable[T]]
    ) -> MfaResult[T]:
        try:
            with MfaMetrics.operation(operation):
                value = await call()
        except MfaError as e:
            if isinstance(e, (ConfigurationError, PersistenceError)):
                logger.exception("%s failed", operation)
            else:
                logger.debug("%s failed: %s", operation, e.code)
            return MfaResult.failure(e)
        return MfaResult.success(value)

    @staticmethod
    def _resolve_context(
        context: RequestContext | None, account_id: str | None = None
    ) -> RequestContext:
        ctx = context or get_request_context()
        if ctx is None:
            if account_id is None:
                raise ValidationError({"context": ["Request context is required"]})
            return RequestContext(account_id=account_id)
        if account_id is not None and ctx.account_id != account_id:
            raise ValidationError({"account_id": ["Does not match the caller"]})
        return ctx

    async def _emit(
        self,
        event_type: MfaEventType,
        ctx: RequestContext,
        *,
        success: bool = True,
        error_code: str | None = None,
        **metadata: Any,
    ) -> None:
        await self._audit.emit(
            build_event(
                event_type,
                ctx.account_id,
                self._clock(),
                ctx,
                success=success,
                error_code=error_code,
                **metadata,
            )
        )

    async def _require_enrolled(self, account_id: str) -> AuthFactor:
        factor = await self.enrollment.verified_factor(account_id)
        if factor is None:
            raise NotEnrolledError("MFA is not enabled for this account")
        return factor

    # ── mfa.enroll.* ────────────────────────────────────────────

    async def start_enrollment(
        self,
        account_id: str,
        *,
        label: str | None = None,
        friendly_name: str | None = None,
        context: RequestContext | None = None,
    ) -> MfaResult[EnrollmentStart]:
        """mfa.enroll.start"""

        async def call() -> EnrollmentStart:
            ctx = self._resolve_context(context, account_id)
            start = await self.enrollment.start_enrollment(
                account_id, label=label, friendly_name=friendly_name
            )
            await self._emit(
                MfaEventType.ENROLLMENT_STARTED,
                ctx,
                factor_id=start.factor_id,
                reused=start.reused,
            )
            return start

        return await self._run("mfa.enroll.start", call)

    async def finish_enrollment(
        self, factor_id: str, code: str, context: RequestContext | None = None
    ) -> MfaResult[list[str]]:
        """mfa.enroll.finish"""

        async def call() -> list[str]:
            ctx = self._resolve_context(context)
            try:
                codes = await self.enrollment.finalize_enrollment(factor_id, code, ctx)
            except MfaError as e:
                await self._record_failure(ctx, e, factor_id=factor_id)
                raise
            await self.sessions.set_state(
                ctx.session_id, ctx.account_id, MfaSessionState.MFA_SATISFIED
            )
            await self._emit(MfaEventType.MFA_ENABLED, ctx, factor_id=factor_id)
            await self._notifier.notify(ctx.account_id, SecurityNotice.MFA_ENABLED, ctx)
            return codes

        return await self._run("mfa.enroll.finish", call)

    # ── mfa.challenge / mfa.verify ──────────────────────────────

    async def challenge(
        self, factor_id: str, context: RequestContext | None = None
    ) -> MfaResult[IssuedChallenge]:
        """mfa.challenge"""

        async def call() -> IssuedChallenge:
            ctx = self._resolve_context(context)
            return await self.issuer.issue(factor_id, account_id=ctx.account_id)

        return await self._run("mfa.challenge", call)

    async def verify(
        self,
        challenge_id: str,
        code: str,
        kind: VerificationKind | str = VerificationKind.TOTP,
        context: RequestContext | None = None,
        *,
        remember_device: bool = False,
    ) -> MfaResult[VerificationResult]:
        """mfa.verify

        On success the session becomes MFA-satisfied and, with
        ``remember_device``, the calling device is trusted.
        """

        async def call() -> VerificationResult:
            ctx = self._resolve_context(context)
            try:
                outcome = await self.verifier.verify(challenge_id, code, kind, ctx)
            except MfaError as e:
                await self._record_failure(ctx, e, challenge_id=challenge_id)
                raise

            await self.sessions.set_state(
                ctx.session_id, ctx.account_id, MfaSessionState.MFA_SATISFIED
            )
            await self._emit(
                MfaEventType.MFA_VERIFIED,
                ctx,
                factor_id=outcome.factor_id,
                kind=outcome.kind.value,
            )
            if outcome.kind is VerificationKind.RECOVERY:
                await self._emit(
                    MfaEventType.RECOVERY_CODE_USED,
                    ctx,
                    remaining=outcome.remaining_recovery_codes,
                )
                await self._notifier.notify(
                    ctx.account_id,
                    SecurityNotice.RECOVERY_CODE_USED,
                    ctx,
                    remaining_codes=outcome.remaining_recovery_codes,
                )

            device = None
            if remember_device:
                device = await self._trust_device(ctx)
            return VerificationResult(outcome=outcome, device=device)

        return await self._run("mfa.verify", call)

    async def _record_failure(
        self, ctx: RequestContext, error: MfaError, **metadata: Any
    ) -> None:
        if isinstance(error, RateLimitedError):
            await self._emit(
                MfaEventType.MFA_RATE_LIMITED,
                ctx,
                success=False,
                error_code=error.code,
                reason=error.reason,
                **metadata,
            )
        else:
            await self._emit(
                MfaEventType.MFA_FAILED,
                ctx,
                success=False,
                error_code=error.code,
                **metadata,
            )

    # ── mfa.recovery.* ──────────────────────────────────────────

    async def regenerate_recovery_codes(
        self, account_id: str, context: RequestContext | None = None
    ) -> MfaResult[list[str]]:
        """mfa.recovery.regenerate"""

        async def call() -> list[str]:
            ctx = self._resolve_context(context, account_id)
            await self._require_enrolled(account_id)
            codes = await self.vault.generate(account_id)
            await self._emit(
                MfaEventType.RECOVERY_CODES_REGENERATED, ctx, count=len(codes)
            )
            return codes

        return await self._run("mfa.recovery.regenerate", call)

    async def remaining_recovery_codes(self, account_id: str) -> MfaResult[int]:
        """mfa.recovery.remaining"""

        async def call() -> int:
            await self._require_enrolled(account_id)
            return await self.vault.remaining(account_id)

        return await self._run("mfa.recovery.remaining", call)

    # ── mfa.device.* ────────────────────────────────────────────

    async def check_device(
        self, account_id: str, device_token: str | None
    ) -> MfaResult[bool]:
        """mfa.device.check"""

        async def call() -> bool:
            return await self.devices.check(account_id, device_token)

        return await self._run("mfa.device.check", call)

    async def add_device(
        self, account_id: str, context: RequestContext | None = None
    ) -> MfaResult[TrustedDeviceGrant]:
        """mfa.device.add

        Only a session that completed MFA may trust its device.
        """

        async def call() -> TrustedDeviceGrant:
            ctx = self._resolve_context(context, account_id)
            if not await self.sessions.is_satisfied(ctx.session_id, account_id):
                raise NotVerifiedThisSessionError(
                    "Complete MFA verification in this session first"
                )
            return await self._trust_device(ctx)

        return await self._run("mfa.device.add", call)

    async def _trust_device(self, ctx: RequestContext) -> TrustedDeviceGrant:
        grant = await self.devices.add(ctx.account_id, user_agent=ctx.user_agent)
        await self._emit(
            MfaEventType.TRUSTED_DEVICE_ADDED, ctx, device_id=grant.device_id
        )
        return grant

    async def list_devices(self, account_id: str) -> MfaResult[list[TrustedDevice]]:
        """mfa.device.list"""

        async def call() -> list[TrustedDevice]:
            return await self.devices.list(account_id)

        return await self._run("mfa.device.list", call)

    async def revoke_device(
        self,
        account_id: str,
        device_id: str,
        context: RequestContext | None = None,
    ) -> MfaResult[bool]:
        """mfa.device.revoke"""

        async def call() -> bool:
            ctx = self._resolve_context(context, account_id)
            await self.devices.revoke_device(account_id, device_id)
            await self._emit(
                MfaEventType.TRUSTED_DEVICE_REVOKED, ctx, device_id=device_id
            )
            return True

        return await self._run("mfa.device.revoke", call)

    async def revoke_all_devices(
        self, account_id: str, context: RequestContext | None = None
    ) -> MfaResult[int]:
        async def call() -> int:
            ctx = self._resolve_context(context, account_id)
            revoked = await self.devices.revoke(account_id)
            await self._emit(MfaEventType.TRUSTED_DEVICE_REVOKED, ctx, count=revoked)
            return revoked

        return await self._run("mfa.device.revoke_all", call)

    # ── mfa.disable / status ────────────────────────────────────

    async def disable(
        self, account_id: str, context: RequestContext | None = None
    ) -> MfaResult[bool]:
        """mfa.disable"""

        async def call() -> bool:
            ctx = self._resolve_context(context, account_id)
            await self.enrollment.disable(account_id)
            await self.sessions.set_state(
                ctx.session_id, account_id, MfaSessionState.NO_MFA
            )
            await self._emit(MfaEventType.MFA_DISABLED, ctx)
            await self._notifier.notify(account_id, SecurityNotice.MFA_DISABLED, ctx)
            return True

        return await self._run("mfa.disable", call)

    async def session_status(
        self,
        context: RequestContext | None = None,
        *,
        device_token: str | None = None,
    ) -> MfaResult[MfaSessionState]:
        """mfa.session.status

        Resolve the session's state after primary authentication. A
        satisfied session stays satisfied; otherwise an account without a
        verified factor is exempt, and a trusted device satisfies MFA.
        """

        async def call() -> MfaSessionState:
            ctx = self._resolve_context(context)
            account_id = ctx.account_id
            stored = await self.sessions.get_state(ctx.session_id, account_id)
            if stored is MfaSessionState.MFA_SATISFIED:
                return stored

            if await self.enrollment.verified_factor(account_id) is None:
                state = MfaSessionState.NO_MFA
            elif await self.devices.check(account_id, device_token):
                state = MfaSessionState.MFA_SATISFIED
            else:
                state = MfaSessionState.MFA_PENDING

            await self.sessions.set_state(ctx.session_id, account_id, state)
            return state

        return await self._run("mfa.session.status", call)

    async def list_factors(self, account_id: str) -> MfaResult[list[AuthFactor]]:
        """mfa.factors.list"""

        async def call() -> list[AuthFactor]:
            return await self.enrollment.list_factors(account_id)

        return await self._run("mfa.factors.list", call)

    # ── primary-auth lockout ────────────────────────────────────

    async def check_lockout(
        self, identifier: str | None, ip: str | None = None
    ) -> MfaResult[LockoutStatus]:
        """Lockout status for the primary-auth layer.

        Password and MFA failures share one set of attempt records, so a
        lock earned on either channel blocks both.
        """

        async def call() -> LockoutStatus:
            return await self.guard.check_lockout(identifier, ip)

        return await self._run("auth.lockout.check", call)

    async def record_attempt(
        self,
        identifier: str,
        success: bool,
        ip: str | None = None,
        *,
        channel: AttemptChannel = AttemptChannel.PASSWORD,
    ) -> MfaResult[bool]:
        """Record a primary-auth attempt.

        Pass the account id when it is known; MFA verification checks the
        lockout by account id.
        """

        async def call() -> bool:
            if not identifier:
                raise ValidationError({"identifier": ["Must not be empty"]})
            await self.guard.record_attempt(identifier, ip, success, channel=channel)
            return True

        return await self._run("auth.lockout.record", call)


__all__: list[str] = ["MfaResult", "VerificationResult", "MfaStores", "MfaService"]
