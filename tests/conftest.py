"""Test configuration and fixtures."""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet
from support import FakeClock, RecordingNotificationHook

from timehatch_mfa import (
    InMemoryAuditStore,
    MfaConfig,
    MfaService,
    MfaStores,
    RequestContext,
    create_mfa_service,
    in_memory_stores,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def encryption_key() -> str:
    return Fernet.generate_key().decode()


@pytest.fixture
def config(encryption_key: str) -> MfaConfig:
    return MfaConfig(encryption_key=encryption_key, issuer="TimeHatch")


@pytest.fixture
def stores(clock: FakeClock) -> MfaStores:
    return in_memory_stores(clock=clock)


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def notification_hook() -> RecordingNotificationHook:
    return RecordingNotificationHook()


@pytest.fixture
def service(
    config: MfaConfig,
    stores: MfaStores,
    audit_store: InMemoryAuditStore,
    notification_hook: RecordingNotificationHook,
    clock: FakeClock,
) -> MfaService:
    return create_mfa_service(
        config,
        stores,
        audit_store=audit_store,
        notification_hook=notification_hook,
        clock=clock,
    )


@pytest.fixture
def ctx() -> RequestContext:
    """Caller context for account ``acc-1`` on session ``sess-1``."""
    return RequestContext(
        account_id="acc-1",
        session_id="sess-1",
        request_id="req-1",
        ip_address="203.0.113.7",
        user_agent="Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0",
    )
