"""Store adapters."""

from __future__ import annotations

from .memory import (
    InMemoryAttemptStore,
    InMemoryChallengeStore,
    InMemoryFactorStore,
    InMemoryRecoveryCodeStore,
    InMemorySessionStore,
    InMemoryTrustedDeviceStore,
)

__all__: list[str] = [
    "InMemoryFactorStore",
    "InMemoryChallengeStore",
    "InMemoryRecoveryCodeStore",
    "InMemoryTrustedDeviceStore",
    "InMemoryAttemptStore",
    "InMemorySessionStore",
]
