"""Trusted device registry.

A trusted device is a browser that may skip the MFA prompt until its
grant expires. The client keeps a random token; only a keyed hash of the
token is stored, so the table alone cannot be used to forge a device.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import TYPE_CHECKING

from .crypto import hash_device_token
from .domain import TrustedDevice, TrustedDeviceGrant, new_id, utc_now
from .exceptions import DeviceNotFoundError

if TYPE_CHECKING:
    from .config import MfaConfig
    from .domain import Clock
    from .ports import ITrustedDeviceStore

logger = logging.getLogger(__name__)

_BROWSER_NAMES: tuple[tuple[str, str], ...] = (
    ("Mobile", "Mobile Device"),
    ("Chrome", "Chrome Browser"),
    ("Firefox", "Firefox Browser"),
    ("Safari", "Safari Browser"),
)


def device_name_from_user_agent(user_agent: str | None) -> str:
    """Coarse, human-readable device label for the device list."""
    if user_agent:
        for marker, name in _BROWSER_NAMES:
            if marker in user_agent:
                return name
    return "Unknown Device"


class TrustedDeviceRegistry:
    """Grants, checks and revokes trusted-device bypasses."""

    def __init__(
        self,
        store: ITrustedDeviceStore,
        config: MfaConfig,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._signing_key = config.signing_key
        self._ttl = timedelta(seconds=config.trusted_device_ttl_seconds)
        self._clock = clock

    async def check(self, account_id: str, device_token: str | None) -> bool:
        """True iff the token belongs to an unexpired device of the account.

        A matching device has its ``last_seen_at`` refreshed.
        """
        if not device_token:
            return False
        now = self._clock()
        device = await self._store.find_active(
            account_id, hash_device_token(self._signing_key, device_token), now
        )
        if device is None:
            return False
        await self._store.touch(device.id, now)
        return True

    async def add(
        self, account_id: str, *, user_agent: str | None = None
    ) -> TrustedDeviceGrant:
        """Trust the calling device.

        Returns:
            The grant; its plaintext ``token`` is not retrievable later.
        """
        now = self._clock()
        token = secrets.token_urlsafe(32)
        device = TrustedDevice(
            id=new_id(),
            account_id=account_id,
            token_hash=hash_device_token(self._signing_key, token),
            created_at=now,
            expires_at=now + self._ttl,
            device_name=device_name_from_user_agent(user_agent),
            last_seen_at=now,
        )
        await self._store.add(device)
        logger.info("Trusted device %s added for account %s", device.id, account_id)
        return TrustedDeviceGrant(
            token=token, device_id=device.id, expires_at=device.expires_at
        )

    async def list(self, account_id: str) -> list[TrustedDevice]:
        """Unexpired devices of the account, oldest first."""
        return await self._store.list_active(account_id, self._clock())

    async def revoke_device(self, account_id: str, device_id: str) -> None:
        """Revoke one device.

        Raises:
            DeviceNotFoundError: If the account has no such device.
        """
        if not await self._store.delete(account_id, device_id):
            raise DeviceNotFoundError(f"Trusted device {device_id!r} not found")

    async def revoke(self, account_id: str) -> int:
        """Revoke every device of the account. Returns the number revoked."""
        return await self._store.delete_for_account(account_id)


__all__: list[str] = ["TrustedDeviceRegistry", "device_name_from_user_agent"]
