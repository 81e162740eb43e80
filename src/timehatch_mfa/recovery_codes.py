"""Recovery code vault.

Generates single-use recovery codes that let an account holder complete
MFA without the authenticator app. Only SHA-256 digests are stored; the
plaintext codes are returned once, at generation time.
"""

from __future__ import annotations

import logging
import secrets
import string
from typing import TYPE_CHECKING

from .crypto import hash_recovery_code, normalize_recovery_code
from .domain import RecoveryCode, new_id, utc_now
from .exceptions import AlreadyUsedError

if TYPE_CHECKING:
    from .config import MfaConfig
    from .domain import Clock
    from .ports import IRecoveryCodeStore

logger = logging.getLogger(__name__)


class RecoveryCodeVault:
    """Issues and redeems recovery codes.

    Example:
        ```python
        codes = await vault.generate("account-123")
        # show codes to the user once

        if await vault.redeem("account-123", "ab12-cd34"):
            ...
        ```
    """

    ALPHABET = string.ascii_uppercase + string.digits

    def __init__(
        self,
        store: IRecoveryCodeStore,
        config: MfaConfig,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._count = config.recovery_code_count
        self._length = config.recovery_code_length
        self._clock = clock

    def _generate_code(self) -> str:
        return "".join(secrets.choice(self.ALPHABET) for _ in range(self._length))

    async def generate(self, account_id: str) -> list[str]:
        """Create a fresh batch, invalidating every prior unused code.

        Returns:
            Plaintext codes. They are not retrievable afterwards.
        """
        now = self._clock()
        plaintext: list[str] = []
        while len(plaintext) < self._count:
            code = self._generate_code()
            if code not in plaintext:
                plaintext.append(code)

        records = [
            RecoveryCode(
                id=new_id(),
                account_id=account_id,
                code_hash=hash_recovery_code(code),
                created_at=now,
            )
            for code in plaintext
        ]
        invalidated = await self._store.replace_batch(account_id, records, now)
        logger.info(
            "Generated %d recovery codes for account %s (%d invalidated)",
            len(records),
            account_id,
            invalidated,
        )
        return plaintext

    async def redeem(self, account_id: str, candidate: str) -> bool:
        """Spend a recovery code.

        Args:
            account_id: Account the code must belong to.
            candidate: Code as typed; case, spaces and dashes are ignored.

        Returns:
            True if the code was valid and is now spent; False if no code
            of the account matches.

        Raises:
            AlreadyUsedError: If the code was already redeemed, or belongs
                to a batch invalidated by regeneration.
        """
        normalized = normalize_recovery_code(candidate)
        if not normalized:
            return False

        record = await self._store.find(account_id, hash_recovery_code(normalized))
        if record is None:
            return False
        if record.used:
            raise AlreadyUsedError("Recovery code has already been used")

        if not await self._store.mark_used(record.id, self._clock()):
            # Lost a race with a concurrent redemption of the same code.
            raise AlreadyUsedError("Recovery code has already been used")

        logger.info("Recovery code redeemed for account %s", account_id)
        return True

    async def remaining(self, account_id: str) -> int:
        return await self._store.count_unused(account_id)

    async def revoke(self, account_id: str) -> int:
        """Delete every recovery code of the account."""
        return await self._store.delete_for_account(account_id)


__all__: list[str] = ["RecoveryCodeVault"]
