"""Challenge issuer and verifier.

A challenge binds one verification attempt to one factor. It is consumed
by the first attempt that reaches it, whatever the outcome, so a code can
never be tried twice against the same challenge.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from .crypto import normalize_recovery_code
from .domain import (
    Challenge,
    IssuedChallenge,
    VerificationKind,
    VerifyOutcome,
    new_id,
    utc_now,
)
from .exceptions import (
    AlreadyUsedError,
    ChallengeConsumedError,
    ChallengeExpiredError,
    ChallengeNotFoundError,
    FactorNotFoundError,
    InvalidCodeError,
    ValidationError,
)

if TYPE_CHECKING:
    from datetime import datetime

    from .config import MfaConfig
    from .crypto import SecretCipher
    from .domain import AuthFactor, Clock
    from .lockout import LockoutGuard
    from .ports import IChallengeStore, IFactorStore
    from .recovery_codes import RecoveryCodeVault
    from .request_context import RequestContext
    from .totp import TotpCodec

logger = logging.getLogger(__name__)


class ChallengeIssuer:
    """Creates short-lived challenges for a factor."""

    def __init__(
        self,
        factors: IFactorStore,
        challenges: IChallengeStore,
        config: MfaConfig,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._factors = factors
        self._challenges = challenges
        self._ttl = timedelta(seconds=config.challenge_ttl_seconds)
        self._clock = clock

    async def issue(
        self, factor_id: str, *, account_id: str | None = None
    ) -> IssuedChallenge:
        """Issue a challenge for ``factor_id``.

        Earlier outstanding challenges stay valid until they expire.

        Args:
            factor_id: Factor to challenge.
            account_id: When given, the factor must belong to this account.

        Raises:
            FactorNotFoundError: If the factor does not exist for the account.
        """
        factor = await self._factors.get(factor_id)
        if factor is None or (
            account_id is not None and factor.account_id != account_id
        ):
            raise FactorNotFoundError(factor_id)

        now = self._clock()
        challenge = Challenge(
            id=new_id(),
            factor_id=factor.id,
            account_id=factor.account_id,
            created_at=now,
            expires_at=now + self._ttl,
        )
        await self._challenges.add(challenge)
        return IssuedChallenge(
            challenge_id=challenge.id, expires_at=challenge.expires_at
        )


class Verifier:
    """Validates a TOTP or recovery code against a challenge.

    The lockout guard is consulted before anything else. A locked caller
    learns nothing about the challenge or the code.
    """

    def __init__(
        self,
        factors: IFactorStore,
        challenges: IChallengeStore,
        vault: RecoveryCodeVault,
        guard: LockoutGuard,
        cipher: SecretCipher,
        totp: TotpCodec,
        config: MfaConfig,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._factors = factors
        self._challenges = challenges
        self._vault = vault
        self._guard = guard
        self._cipher = cipher
        self._totp = totp
        self._recovery_code_length = config.recovery_code_length
        self._clock = clock

    async def verify(
        self,
        challenge_id: str,
        code: str,
        kind: VerificationKind | str,
        context: RequestContext,
    ) -> VerifyOutcome:
        """Verify ``code`` against a challenge owned by ``context.account_id``.

        Returns:
            VerifyOutcome describing the accepted credential.

        Raises:
            RateLimitedError: If the account or IP is locked out.
            ChallengeNotFoundError: If the challenge does not exist for the account.
            ChallengeConsumedError: If the challenge was already used.
            ChallengeExpiredError: If the challenge is past its TTL.
            ValidationError: If the code is malformed (counts as a failure).
            InvalidCodeError: If the code does not match.
            AlreadyUsedError: If the recovery code was already spent.
        """
        try:
            kind = VerificationKind(kind)
        except ValueError as e:
            raise ValidationError({"kind": [f"Unsupported kind: {kind!r}"]}) from e

        account_id = context.account_id
        ip = context.ip_address

        await self._guard.ensure_not_locked(account_id, ip)

        challenge = await self._challenges.get(challenge_id)
        if challenge is None or challenge.account_id != account_id:
            raise ChallengeNotFoundError(challenge_id)
        if challenge.consumed:
            raise ChallengeConsumedError("Challenge has already been used")
        now = self._clock()
        if challenge.is_expired(now):
            raise ChallengeExpiredError("Challenge has expired")

        if not await self._challenges.consume(challenge.id, now):
            raise ChallengeConsumedError("Challenge has already been used")

        factor = await self._factors.get(challenge.factor_id)
        if factor is None:
            raise FactorNotFoundError(challenge.factor_id)

        try:
            if kind is VerificationKind.TOTP:
                outcome = await self._verify_totp(factor, code, now)
            else:
                outcome = await self._verify_recovery(factor, code)
        except (ValidationError, InvalidCodeError, AlreadyUsedError):
            await self._guard.record_attempt(account_id, ip, success=False)
            logger.info(
                "MFA %s verification failed for account %s", kind.value, account_id
            )
            raise

        await self._guard.record_attempt(account_id, ip, success=True)
        return outcome

    async def _verify_totp(
        self, factor: AuthFactor, code: str, now: datetime
    ) -> VerifyOutcome:
        candidate = code.strip().replace(" ", "")
        if not self._totp.is_well_formed(candidate):
            raise ValidationError(
                {"code": [f"Expected a {self._totp.digits}-digit code"]}
            )

        secret = self._cipher.decrypt(factor.secret_ciphertext)
        step = self._totp.match_step(secret, candidate, now)
        if step is None:
            raise InvalidCodeError("Invalid verification code")
        if not await self._factors.advance_last_used_step(factor.id, step):
            # Same or earlier time step than a code already accepted.
            raise InvalidCodeError("Invalid verification code")

        return VerifyOutcome(
            account_id=factor.account_id,
            factor_id=factor.id,
            kind=VerificationKind.TOTP,
        )

    async def _verify_recovery(self, factor: AuthFactor, code: str) -> VerifyOutcome:
        candidate = normalize_recovery_code(code)
        if (
            len(candidate) != self._recovery_code_length
            or not candidate.isascii()
            or not candidate.isalnum()
        ):
            raise ValidationError(
                {"code": [f"Expected a {self._recovery_code_length}-character code"]}
            )
        if not factor.is_verified:
            raise InvalidCodeError("Invalid verification code")

        if not await self._vault.redeem(factor.account_id, candidate):
            raise InvalidCodeError("Invalid verification code")

        return VerifyOutcome(
            account_id=factor.account_id,
            factor_id=factor.id,
            kind=VerificationKind.RECOVERY,
            remaining_recovery_codes=await self._vault.remaining(factor.account_id),
        )


__all__: list[str] = ["ChallengeIssuer", "Verifier"]
