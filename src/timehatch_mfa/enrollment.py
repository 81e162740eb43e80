"""Enrollment manager.

Owns the factor lifecycle: a factor is created unverified, becomes verified
exactly once when the account holder proves possession of the secret, and
is destroyed by disabling MFA, which also removes the account's recovery
codes, trusted devices and outstanding challenges.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .domain import (
    AuthFactor,
    EnrollmentStart,
    FactorStatus,
    VerificationKind,
    new_id,
    utc_now,
)
from .exceptions import AlreadyEnrolledError, FactorNotFoundError, NotEnrolledError

if TYPE_CHECKING:
    from .challenges import ChallengeIssuer, Verifier
    from .crypto import SecretCipher
    from .domain import Clock
    from .ports import IChallengeStore, IFactorStore
    from .recovery_codes import RecoveryCodeVault
    from .request_context import RequestContext
    from .totp import TotpCodec
    from .trusted_devices import TrustedDeviceRegistry

logger = logging.getLogger(__name__)


def _newest_first(factors: list[AuthFactor]) -> list[AuthFactor]:
    return sorted(factors, key=lambda f: (f.created_at, f.id), reverse=True)


class EnrollmentManager:
    """Starts, finalizes and disables TOTP enrollment."""

    def __init__(
        self,
        factors: IFactorStore,
        challenges: IChallengeStore,
        issuer: ChallengeIssuer,
        verifier: Verifier,
        vault: RecoveryCodeVault,
        devices: TrustedDeviceRegistry,
        cipher: SecretCipher,
        totp: TotpCodec,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._factors = factors
        self._challenges = challenges
        self._issuer = issuer
        self._verifier = verifier
        self._vault = vault
        self._devices = devices
        self._cipher = cipher
        self._totp = totp
        self._clock = clock

    async def start_enrollment(
        self,
        account_id: str,
        *,
        label: str | None = None,
        friendly_name: str | None = None,
    ) -> EnrollmentStart:
        """Begin (or resume) TOTP enrollment.

        Abandoned enrollments are collapsed: the newest unverified factor is
        reused with its original secret and older ones are deleted.

        Args:
            account_id: Account enrolling.
            label: Account label shown in the authenticator app
                (defaults to the account id).
            friendly_name: Optional name for the factor.

        Raises:
            AlreadyEnrolledError: If the account already has a verified factor.
        """
        if await self._factors.list_for_account(account_id, FactorStatus.VERIFIED):
            raise AlreadyEnrolledError("MFA is already enabled for this account")

        pending = _newest_first(
            await self._factors.list_for_account(account_id, FactorStatus.UNVERIFIED)
        )
        if len(pending) > 1:
            removed = await self._factors.delete([f.id for f in pending[1:]])
            logger.debug(
                "Removed %d abandoned enrollments for account %s", removed, account_id
            )

        if pending:
            factor, reused = pending[0], True
        else:
            candidate = AuthFactor(
                id=new_id(),
                account_id=account_id,
                secret_ciphertext=self._cipher.encrypt(self._totp.generate_secret()),
                status=FactorStatus.UNVERIFIED,
                created_at=self._clock(),
                friendly_name=friendly_name,
            )
            factor = await self._factors.add_unverified(candidate)
            reused = factor.id != candidate.id

        secret = self._cipher.decrypt(factor.secret_ciphertext)
        return EnrollmentStart(
            factor_id=factor.id,
            secret=secret,
            provisioning_uri=self._totp.provisioning_uri(secret, label or account_id),
            reused=reused,
        )

    async def finalize_enrollment(
        self, factor_id: str, code: str, context: RequestContext
    ) -> list[str]:
        """Confirm possession of the secret and enable MFA.

        A fresh challenge is issued for this call, so the code goes through
        the same lockout and single-use rules as a login verification.

        Returns:
            The first batch of recovery codes.

        Raises:
            FactorNotFoundError: If the factor does not exist for the account.
            AlreadyEnrolledError: If the factor is already verified.
            InvalidCodeError, ChallengeExpiredError, RateLimitedError:
                Propagated from verification; the factor stays unverified.
        """
        account_id = context.account_id
        factor = await self._factors.get(factor_id)
        if factor is None or factor.account_id != account_id:
            raise FactorNotFoundError(factor_id)
        if factor.is_verified:
            raise AlreadyEnrolledError("MFA is already enabled for this account")

        issued = await self._issuer.issue(factor_id, account_id=account_id)
        await self._verifier.verify(
            issued.challenge_id, code, VerificationKind.TOTP, context
        )

        if not await self._factors.mark_verified(factor_id, self._clock()):
            raise AlreadyEnrolledError("MFA is already enabled for this account")

        leftovers = [
            f.id
            for f in await self._factors.list_for_account(
                account_id, FactorStatus.UNVERIFIED
            )
            if f.id != factor_id
        ]
        if leftovers:
            await self._factors.delete(leftovers)

        codes = await self._vault.generate(account_id)
        logger.info("MFA enabled for account %s (factor %s)", account_id, factor_id)
        return codes

    async def verified_factor(self, account_id: str) -> AuthFactor | None:
        verified = await self._factors.list_for_account(
            account_id, FactorStatus.VERIFIED
        )
        return verified[0] if verified else None

    async def list_factors(self, account_id: str) -> list[AuthFactor]:
        return await self._factors.list_for_account(account_id)

    async def disable(self, account_id: str) -> None:
        """Remove every factor and all dependent MFA state of the account.

        Raises:
            NotEnrolledError: If the account has no verified factor.
        """
        if await self.verified_factor(account_id) is None:
            raise NotEnrolledError("MFA is not enabled for this account")

        await self._factors.delete_for_account(account_id)
        await self._challenges.delete_for_account(account_id)
        await self._vault.revoke(account_id)
        await self._devices.revoke(account_id)
        logger.info("MFA disabled for account %s", account_id)


__all__: list[str] = ["EnrollmentManager"]
