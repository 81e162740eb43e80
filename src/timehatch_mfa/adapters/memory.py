"""In-memory store implementations for testing and development.

⚠️ WARNING: State lives in local dictionaries. It will NOT be shared
between worker processes. Use the SQLAlchemy stores in production.

Every conditional operation does its check and its write without an
intervening ``await``, so it is atomic with respect to other coroutines on
the same event loop.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ..domain import FactorStatus, utc_now

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..domain import (
        AttemptRecord,
        AuthFactor,
        Challenge,
        Clock,
        RecoveryCode,
        TrustedDevice,
    )


class InMemoryFactorStore:
    """In-memory IFactorStore."""

    def __init__(self) -> None:
        self._factors: dict[str, AuthFactor] = {}

    async def get(self, factor_id: str) -> AuthFactor | None:
        return self._factors.get(factor_id)

    async def list_for_account(
        self, account_id: str, status: FactorStatus | None = None
    ) -> list[AuthFactor]:
        found = [
            f
            for f in self._factors.values()
            if f.account_id == account_id and (status is None or f.status is status)
        ]
        return sorted(found, key=lambda f: (f.created_at, f.id))

    async def add_unverified(self, factor: AuthFactor) -> AuthFactor:
        for existing in self._factors.values():
            if (
                existing.account_id == factor.account_id
                and existing.status is FactorStatus.UNVERIFIED
            ):
                return existing
        self._factors[factor.id] = factor
        return factor

    async def mark_verified(self, factor_id: str, verified_at: datetime) -> bool:
        factor = self._factors.get(factor_id)
        if factor is None or factor.status is not FactorStatus.UNVERIFIED:
            return False
        if any(
            f.account_id == factor.account_id and f.status is FactorStatus.VERIFIED
            for f in self._factors.values()
        ):
            return False
        self._factors[factor_id] = replace(
            factor, status=FactorStatus.VERIFIED, verified_at=verified_at
        )
        return True

    async def advance_last_used_step(self, factor_id: str, step: int) -> bool:
        factor = self._factors.get(factor_id)
        if factor is None:
            return False
        if factor.last_used_step is not None and factor.last_used_step >= step:
            return False
        self._factors[factor_id] = replace(factor, last_used_step=step)
        return True

    async def delete(self, factor_ids: Sequence[str]) -> int:
        return sum(1 for fid in factor_ids if self._factors.pop(fid, None) is not None)

    async def delete_for_account(self, account_id: str) -> int:
        ids = [f.id for f in self._factors.values() if f.account_id == account_id]
        return await self.delete(ids)


class InMemoryChallengeStore:
    """In-memory IChallengeStore."""

    def __init__(self) -> None:
        self._challenges: dict[str, Challenge] = {}

    async def add(self, challenge: Challenge) -> None:
        self._challenges[challenge.id] = challenge

    async def get(self, challenge_id: str) -> Challenge | None:
        return self._challenges.get(challenge_id)

    async def consume(self, challenge_id: str, consumed_at: datetime) -> bool:
        challenge = self._challenges.get(challenge_id)
        if challenge is None or challenge.consumed:
            return False
        self._challenges[challenge_id] = replace(
            challenge, consumed=True, consumed_at=consumed_at
        )
        return True

    async def delete_expired(self, now: datetime) -> int:
        expired = [c.id for c in self._challenges.values() if c.is_expired(now)]
        for cid in expired:
            del self._challenges[cid]
        return len(expired)

    async def delete_for_account(self, account_id: str) -> int:
        ids = [c.id for c in self._challenges.values() if c.account_id == account_id]
        for cid in ids:
            del self._challenges[cid]
        return len(ids)


class InMemoryRecoveryCodeStore:
    """In-memory IRecoveryCodeStore."""

    def __init__(self) -> None:
        self._codes: dict[str, RecoveryCode] = {}

    async def replace_batch(
        self,
        account_id: str,
        codes: Sequence[RecoveryCode],
        invalidated_at: datetime,
    ) -> int:
        invalidated = 0
        for code in list(self._codes.values()):
            if code.account_id == account_id and not code.used:
                self._codes[code.id] = replace(code, used=True, used_at=invalidated_at)
                invalidated += 1
        for code in codes:
            self._codes[code.id] = code
        return invalidated

    async def find(self, account_id: str, code_hash: str) -> RecoveryCode | None:
        matches = [
            c
            for c in self._codes.values()
            if c.account_id == account_id and c.code_hash == code_hash
        ]
        if not matches:
            return None
        # Unused first, then newest.
        matches.sort(key=lambda c: (c.used, -c.created_at.timestamp()))
        return matches[0]

    async def mark_used(self, code_id: str, used_at: datetime) -> bool:
        code = self._codes.get(code_id)
        if code is None or code.used:
            return False
        self._codes[code_id] = replace(code, used=True, used_at=used_at)
        return True

    async def count_unused(self, account_id: str) -> int:
        return sum(
            1 for c in self._codes.values() if c.account_id == account_id and not c.used
        )

    async def delete_for_account(self, account_id: str) -> int:
        ids = [c.id for c in self._codes.values() if c.account_id == account_id]
        for cid in ids:
            del self._codes[cid]
        return len(ids)


class InMemoryTrustedDeviceStore:
    """In-memory ITrustedDeviceStore."""

    def __init__(self) -> None:
        self._devices: dict[str, TrustedDevice] = {}

    async def add(self, device: TrustedDevice) -> None:
        self._devices[device.id] = device

    async def find_active(
        self, account_id: str, token_hash: str, now: datetime
    ) -> TrustedDevice | None:
        for device in self._devices.values():
            if (
                device.account_id == account_id
                and device.token_hash == token_hash
                and device.is_active(now)
            ):
                return device
        return None

    async def touch(self, device_id: str, seen_at: datetime) -> None:
        device = self._devices.get(device_id)
        if device is not None:
            self._devices[device_id] = replace(device, last_seen_at=seen_at)

    async def list_active(self, account_id: str, now: datetime) -> list[TrustedDevice]:
        found = [
            d
            for d in self._devices.values()
            if d.account_id == account_id and d.is_active(now)
        ]
        return sorted(found, key=lambda d: d.created_at)

    async def delete(self, account_id: str, device_id: str) -> bool:
        device = self._devices.get(device_id)
        if device is None or device.account_id != account_id:
            return False
        del self._devices[device_id]
        return True

    async def delete_for_account(self, account_id: str) -> int:
        ids = [d.id for d in self._devices.values() if d.account_id == account_id]
        for did in ids:
            del self._devices[did]
        return len(ids)

    async def delete_expired(self, now: datetime) -> int:
        ids = [d.id for d in self._devices.values() if not d.is_active(now)]
        for did in ids:
            del self._devices[did]
        return len(ids)


class InMemoryAttemptStore:
    """In-memory IAttemptStore (append-only list)."""

    def __init__(self) -> None:
        self._records: list[AttemptRecord] = []

    async def add(self, record: AttemptRecord) -> None:
        self._records.append(record)

    async def list_since(
        self,
        since: datetime,
        *,
        identifier: str | None = None,
        ip: str | None = None,
    ) -> list[AttemptRecord]:
        found = [
            r
            for r in self._records
            if r.timestamp > since
            and (identifier is None or r.identifier == identifier)
            and (ip is None or r.ip == ip)
        ]
        return sorted(found, key=lambda r: r.timestamp)

    async def delete_older_than(self, cutoff: datetime) -> int:
        before = len(self._records)
        self._records = [r for r in self._records if r.timestamp >= cutoff]
        return before - len(self._records)

    def __len__(self) -> int:
        return len(self._records)


class InMemorySessionStore:
    """In-memory ISessionStore for development and testing only.

    Args:
        clock: Current-time source used for TTL expiry.
    """

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._store: dict[str, tuple[dict[str, Any], datetime | None]] = {}
        self._clock = clock

    async def store(
        self, key: str, data: dict[str, Any], ttl: int | None = None
    ) -> None:
        expires_at: datetime | None = None
        if ttl is not None and ttl > 0:
            expires_at = self._clock() + timedelta(seconds=ttl)
        self._store[key] = (dict(data), expires_at)

    async def get(self, key: str) -> dict[str, Any] | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        data, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._store[key]
            return None
        return dict(data)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)


__all__: list[str] = [
    "InMemoryFactorStore",
    "InMemoryChallengeStore",
    "InMemoryRecoveryCodeStore",
    "InMemoryTrustedDeviceStore",
    "InMemoryAttemptStore",
    "InMemorySessionStore",
]
