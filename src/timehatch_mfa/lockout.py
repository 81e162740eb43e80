"""Rate limiter / lockout guard.

Counts failed attempts in a rolling window. Per identifier, only
consecutive failures since the last success count, and each channel
(password, mfa) is evaluated on its own; the identifier is locked if any
channel reaches the threshold. Per IP, every failure in the window counts,
across all identifiers.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import timedelta
from typing import TYPE_CHECKING

from .domain import AttemptChannel, AttemptRecord, LockoutStatus, utc_now
from .exceptions import RateLimitedError

if TYPE_CHECKING:
    from datetime import datetime

    from .config import MfaConfig
    from .domain import Clock
    from .ports import IAttemptStore

logger = logging.getLogger(__name__)


class LockoutGuard:
    """Decides whether an identifier or IP may attempt authentication.

    Args:
        attempts: Attempt log.
        config: Window and thresholds.
        clock: Current-time source.
    """

    def __init__(
        self,
        attempts: IAttemptStore,
        config: MfaConfig,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._attempts = attempts
        self._window = timedelta(seconds=config.lockout_window_seconds)
        self._threshold = config.lockout_threshold
        self._ip_threshold = config.ip_lockout_threshold
        self._clock = clock

    async def check_lockout(
        self, identifier: str | None, ip: str | None = None
    ) -> LockoutStatus:
        """Return the lockout status of an identifier and client IP.

        Args:
            identifier: Account id or email; None skips the account check.
            ip: Client IP; None skips the IP check.
        """
        now = self._clock()
        since = now - self._window

        if identifier:
            records = await self._attempts.list_since(since, identifier=identifier)
            unlock_at = self._account_unlock_at(records)
            if unlock_at is not None:
                return LockoutStatus(
                    locked=True,
                    reason="account",
                    retry_after=self._seconds_until(unlock_at, now),
                )

        if ip:
            records = await self._attempts.list_since(since, ip=ip)
            failures = [r.timestamp for r in records if not r.success]
            if len(failures) >= self._ip_threshold:
                failures.sort(reverse=True)
                unlock_at = failures[self._ip_threshold - 1] + self._window
                return LockoutStatus(
                    locked=True,
                    reason="ip",
                    retry_after=self._seconds_until(unlock_at, now),
                )

        return LockoutStatus.unlocked()

    async def ensure_not_locked(self, identifier: str | None, ip: str | None) -> None:
        """Raise ``RateLimitedError`` if the identifier or IP is locked."""
        status = await self.check_lockout(identifier, ip)
        if status.locked:
            logger.info("Lockout active (%s) for %s", status.reason, identifier)
            raise RateLimitedError(retry_after=status.retry_after, reason=status.reason)

    async def record_attempt(
        self,
        identifier: str,
        ip: str | None,
        success: bool,
        *,
        channel: AttemptChannel = AttemptChannel.MFA,
    ) -> None:
        await self._attempts.add(
            AttemptRecord(
                identifier=identifier,
                ip=ip,
                success=success,
                timestamp=self._clock(),
                channel=channel,
            )
        )

    def _account_unlock_at(self, records: list[AttemptRecord]) -> datetime | None:
        by_channel: dict[AttemptChannel, list[AttemptRecord]] = defaultdict(list)
        for record in records:
            by_channel[record.channel].append(record)

        unlock_at: datetime | None = None
        for channel_records in by_channel.values():
            failures: list[datetime] = []
            # Stores return oldest first, ties in insertion order.
            for record in reversed(channel_records):
                if record.success:
                    break
                failures.append(record.timestamp)
            if len(failures) < self._threshold:
                continue
            # Lock lifts once the threshold-th newest failure leaves the window.
            candidate = failures[self._threshold - 1] + self._window
            if unlock_at is None or candidate > unlock_at:
                unlock_at = candidate
        return unlock_at

    @staticmethod
    def _seconds_until(moment: datetime, now: datetime) -> int:
        return max(1, math.ceil((moment - now).total_seconds()))


__all__: list[str] = ["LockoutGuard"]
