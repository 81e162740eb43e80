"""Factory functions for MFA service setup."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .adapters.memory import (
    InMemoryAttemptStore,
    InMemoryChallengeStore,
    InMemoryFactorStore,
    InMemoryRecoveryCodeStore,
    InMemorySessionStore,
    InMemoryTrustedDeviceStore,
)
from .domain import utc_now
from .housekeeping import MfaHousekeeping
from .service import MfaService, MfaStores

if TYPE_CHECKING:
    from .config import MfaConfig
    from .domain import Clock
    from .ports import IAuditStore, IMfaNotificationHook


def in_memory_stores(*, clock: Clock = utc_now) -> MfaStores:
    """Stores for tests and single-process development."""
    return MfaStores(
        factors=InMemoryFactorStore(),
        challenges=InMemoryChallengeStore(),
        recovery_codes=InMemoryRecoveryCodeStore(),
        devices=InMemoryTrustedDeviceStore(),
        attempts=InMemoryAttemptStore(),
        sessions=InMemorySessionStore(clock=clock),
    )


def create_mfa_service(
    config: MfaConfig,
    stores: MfaStores | None = None,
    *,
    audit_store: IAuditStore | None = None,
    notification_hook: IMfaNotificationHook | None = None,
    clock: Clock = utc_now,
) -> MfaService:
    """Create an MfaService, defaulting to in-memory stores.

    Example:
        ```python
        service = create_mfa_service(MfaConfig.from_env())
        ```
    """
    return MfaService(
        config,
        stores or in_memory_stores(clock=clock),
        audit_store=audit_store,
        notification_hook=notification_hook,
        clock=clock,
    )


def create_housekeeping(
    config: MfaConfig, stores: MfaStores, *, clock: Clock = utc_now
) -> MfaHousekeeping:
    return MfaHousekeeping(
        stores.challenges, stores.devices, stores.attempts, config, clock=clock
    )


__all__: list[str] = ["in_memory_stores", "create_mfa_service", "create_housekeeping"]
