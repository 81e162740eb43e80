"""Shared test doubles: a controllable clock, a recording hook, TOTP helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import pyotp

if TYPE_CHECKING:
    from timehatch_mfa import SecurityNotice

# 12:00:05 UTC, five seconds into a 30 s TOTP step.
START = datetime(2026, 1, 5, 12, 0, 5, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock; call it to get the current time."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingNotificationHook:
    """Notification hook that records every notice."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, SecurityNotice, dict[str, Any]]] = []

    async def send_security_notice(
        self, account_id: str, notice: SecurityNotice, details: dict[str, Any]
    ) -> None:
        self.sent.append((account_id, notice, details))

    def notices(self) -> list[SecurityNotice]:
        return [notice for _, notice, _ in self.sent]


class FailingNotificationHook:
    async def send_security_notice(
        self, account_id: str, notice: SecurityNotice, details: dict[str, Any]
    ) -> None:
        raise RuntimeError("mail relay down")


def totp_now(secret: str, clock: FakeClock, offset: int = 0) -> str:
    """Code an authenticator app would show at the clock's time."""
    return pyotp.TOTP(secret).at(clock.now, counter_offset=offset)


def wrong_code(secret: str, clock: FakeClock) -> str:
    """A well-formed code that matches none of the accepted steps."""
    valid = {totp_now(secret, clock, offset) for offset in (-1, 0, 1)}
    for candidate in ("000000", "111111", "222222", "333333"):
        if candidate not in valid:
            return candidate
    raise AssertionError("unreachable")
