"""Periodic cleanup of expired MFA state.

Nothing depends on the sweep for correctness: expired challenges and
devices are already rejected on read. The sweep only bounds table growth.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from .domain import utc_now

if TYPE_CHECKING:
    from .config import MfaConfig
    from .domain import Clock
    from .ports import IAttemptStore, IChallengeStore, ITrustedDeviceStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepReport:
    challenges: int = 0
    devices: int = 0
    attempts: int = 0

    @property
    def total(self) -> int:
        return self.challenges + self.devices + self.attempts


class MfaHousekeeping:
    """Deletes expired challenges and devices, and old attempt records.

    Example:
        ```python
        housekeeping = MfaHousekeeping(challenges, devices, attempts, config)
        report = await housekeeping.sweep()
        ```
    """

    def __init__(
        self,
        challenges: IChallengeStore,
        devices: ITrustedDeviceStore,
        attempts: IAttemptStore,
        config: MfaConfig,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._challenges = challenges
        self._devices = devices
        self._attempts = attempts
        # Lockout decisions need attempts for at least one full window.
        self._retention = timedelta(
            seconds=max(config.attempt_retention_seconds, config.lockout_window_seconds)
        )
        self._clock = clock

    async def sweep(self) -> SweepReport:
        now = self._clock()
        report = SweepReport(
            challenges=await self._challenges.delete_expired(now),
            devices=await self._devices.delete_expired(now),
            attempts=await self._attempts.delete_older_than(now - self._retention),
        )
        if report.total:
            logger.info(
                "MFA sweep removed %d challenges, %d devices, %d attempts",
                report.challenges,
                report.devices,
                report.attempts,
            )
        return report


__all__: list[str] = ["MfaHousekeeping", "SweepReport"]
