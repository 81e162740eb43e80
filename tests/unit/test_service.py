"""Tests for the MFA service facade."""

from __future__ import annotations

import json
import logging

import pytest
from support import (
    FailingNotificationHook,
    FakeClock,
    RecordingNotificationHook,
    totp_now,
    wrong_code,
)

from timehatch_mfa import (
    InMemoryAuditStore,
    MfaConfig,
    MfaEventType,
    MfaService,
    MfaSessionState,
    MfaStores,
    RequestContext,
    SecurityNotice,
    VerificationKind,
    create_mfa_service,
    reset_request_context,
    set_request_context,
)


async def enroll(service: MfaService, ctx: RequestContext, clock: FakeClock) -> str:
    """Enroll ``ctx.account_id`` and return the TOTP secret."""
    start = await service.start_enrollment(ctx.account_id, context=ctx)
    assert start.ok and start.value is not None
    finish = await service.finish_enrollment(
        start.value.factor_id, totp_now(start.value.secret, clock), ctx
    )
    assert finish.ok
    clock.advance(30)
    return start.value.secret


async def factor_id_of(service: MfaService, account_id: str) -> str:
    factor = await service.enrollment.verified_factor(account_id)
    assert factor is not None
    return factor.id


class TestScenarios:
    @pytest.mark.asyncio
    async def test_enroll_and_finalize(
        self,
        service: MfaService,
        stores: MfaStores,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        start = await service.start_enrollment("acc-1", context=ctx)
        assert start.ok and start.value is not None

        result = await service.finish_enrollment(
            start.value.factor_id, totp_now(start.value.secret, clock), ctx
        )

        assert result.ok
        assert result.value is not None
        assert len(result.value) == 10
        assert len(set(result.value)) == 10
        factor = await stores.factors.get(start.value.factor_id)
        assert factor is not None and factor.is_verified

    @pytest.mark.asyncio
    async def test_expired_challenge(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        secret = await enroll(service, ctx, clock)
        issued = await service.challenge(await factor_id_of(service, "acc-1"), ctx)
        assert issued.ok and issued.value is not None

        clock.advance(301)
        result = await service.verify(
            issued.value.challenge_id, totp_now(secret, clock), "totp", ctx
        )

        assert not result.ok
        assert result.error == "ChallengeExpired"

    @pytest.mark.asyncio
    async def test_regeneration_invalidates_unused_codes(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        await enroll(service, ctx, clock)
        first = await service.regenerate_recovery_codes("acc-1", ctx)
        assert first.value is not None
        factor_id = await factor_id_of(service, "acc-1")

        issued = await service.challenge(factor_id, ctx)
        assert issued.value is not None
        redeemed = await service.verify(
            issued.value.challenge_id, first.value[2], "recovery", ctx
        )
        assert redeemed.ok

        await service.regenerate_recovery_codes("acc-1", ctx)

        issued = await service.challenge(factor_id, ctx)
        assert issued.value is not None
        result = await service.verify(
            issued.value.challenge_id, first.value[3], "recovery", ctx
        )
        assert not result.ok
        assert result.error == "AlreadyUsed"

    @pytest.mark.asyncio
    async def test_lockout_after_five_failures(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        secret = await enroll(service, ctx, clock)
        factor_id = await factor_id_of(service, "acc-1")

        for _ in range(5):
            issued = await service.challenge(factor_id, ctx)
            assert issued.value is not None
            failed = await service.verify(
                issued.value.challenge_id, wrong_code(secret, clock), "totp", ctx
            )
            assert failed.error == "InvalidCode"

        issued = await service.challenge(factor_id, ctx)
        assert issued.value is not None
        result = await service.verify(
            issued.value.challenge_id, totp_now(secret, clock), "totp", ctx
        )

        assert not result.ok
        assert result.error == "RateLimited"
        assert result.retry_after == 900


class TestEnrollmentResults:
    @pytest.mark.asyncio
    async def test_enroll_twice_is_conflict(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        await enroll(service, ctx, clock)
        result = await service.start_enrollment("acc-1", context=ctx)
        assert not result.ok
        assert result.error == "AlreadyEnrolled"

    @pytest.mark.asyncio
    async def test_account_must_match_caller(
        self, service: MfaService, ctx: RequestContext
    ) -> None:
        result = await service.start_enrollment("acc-2", context=ctx)
        assert not result.ok
        assert result.error == "ValidationFailed"
        assert "account_id" in result.errors

    @pytest.mark.asyncio
    async def test_context_required_for_verification(
        self, service: MfaService
    ) -> None:
        result = await service.verify("challenge", "123456")
        assert result.error == "ValidationFailed"
        assert "context" in result.errors

    @pytest.mark.asyncio
    async def test_context_from_contextvar(
        self, service: MfaService, ctx: RequestContext
    ) -> None:
        token = set_request_context(ctx)
        try:
            start = await service.start_enrollment("acc-1")
            assert start.value is not None
            issued = await service.challenge(start.value.factor_id)
        finally:
            reset_request_context(token)
        assert issued.ok

    @pytest.mark.asyncio
    async def test_wrong_code_on_finish(
        self,
        service: MfaService,
        ctx: RequestContext,
        clock: FakeClock,
        audit_store: InMemoryAuditStore,
    ) -> None:
        start = await service.start_enrollment("acc-1", context=ctx)
        assert start.value is not None
        result = await service.finish_enrollment(
            start.value.factor_id, wrong_code(start.value.secret, clock), ctx
        )

        assert result.error == "InvalidCode"
        assert audit_store.event_types("acc-1")[-1] is MfaEventType.MFA_FAILED


class TestVerifyResults:
    @pytest.mark.asyncio
    async def test_verify_satisfies_session(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        secret = await enroll(service, ctx, clock)
        login = RequestContext(account_id="acc-1", session_id="sess-2")
        status = await service.session_status(login)
        assert status.value is MfaSessionState.MFA_PENDING

        issued = await service.challenge(await factor_id_of(service, "acc-1"), login)
        assert issued.value is not None
        result = await service.verify(
            issued.value.challenge_id, totp_now(secret, clock), "totp", login
        )

        assert result.ok and result.value is not None
        assert result.value.outcome.kind is VerificationKind.TOTP
        assert result.value.device is None
        status = await service.session_status(login)
        assert status.value is MfaSessionState.MFA_SATISFIED

    @pytest.mark.asyncio
    async def test_remember_device(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        secret = await enroll(service, ctx, clock)
        issued = await service.challenge(await factor_id_of(service, "acc-1"), ctx)
        assert issued.value is not None

        result = await service.verify(
            issued.value.challenge_id,
            totp_now(secret, clock),
            "totp",
            ctx,
            remember_device=True,
        )

        assert result.value is not None and result.value.device is not None
        token = result.value.device.token
        assert (await service.check_device("acc-1", token)).value is True
        devices = await service.list_devices("acc-1")
        assert devices.value is not None
        assert devices.value[0].device_name == "Firefox Browser"

    @pytest.mark.asyncio
    async def test_recovery_verification_notifies_owner(
        self,
        service: MfaService,
        ctx: RequestContext,
        clock: FakeClock,
        audit_store: InMemoryAuditStore,
        notification_hook: RecordingNotificationHook,
    ) -> None:
        await enroll(service, ctx, clock)
        codes = (await service.regenerate_recovery_codes("acc-1", ctx)).value
        assert codes is not None
        issued = await service.challenge(await factor_id_of(service, "acc-1"), ctx)
        assert issued.value is not None

        challenge_id = issued.value.challenge_id
        result = await service.verify(challenge_id, codes[0], "recovery", ctx)

        assert result.value is not None
        assert result.value.outcome.remaining_recovery_codes == 9
        assert (await service.remaining_recovery_codes("acc-1")).value == 9
        assert audit_store.event_types("acc-1")[-2:] == [
            MfaEventType.MFA_VERIFIED,
            MfaEventType.RECOVERY_CODE_USED,
        ]
        account_id, notice, details = notification_hook.sent[-1]
        assert account_id == "acc-1"
        assert notice is SecurityNotice.RECOVERY_CODE_USED
        assert details["remaining_codes"] == 9
        assert details["ip_address"] == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_rate_limited_is_audited(
        self,
        service: MfaService,
        ctx: RequestContext,
        clock: FakeClock,
        audit_store: InMemoryAuditStore,
    ) -> None:
        secret = await enroll(service, ctx, clock)
        factor_id = await factor_id_of(service, "acc-1")
        for _ in range(6):
            issued = await service.challenge(factor_id, ctx)
            assert issued.value is not None
            await service.verify(
                issued.value.challenge_id, wrong_code(secret, clock), "totp", ctx
            )

        (event,) = await audit_store.get_events(
            "acc-1", event_types=[MfaEventType.MFA_RATE_LIMITED]
        )
        assert not event.success
        assert event.error_code == "RateLimited"
        assert event.metadata["reason"] == "account"
        failures = await audit_store.get_events(
            "acc-1", event_types=[MfaEventType.MFA_FAILED]
        )
        assert len(failures) == 5


class TestRecoveryResults:
    @pytest.mark.asyncio
    async def test_regenerate_requires_enrollment(
        self, service: MfaService, ctx: RequestContext
    ) -> None:
        result = await service.regenerate_recovery_codes("acc-1", ctx)
        assert result.error == "NotEnrolled"

    @pytest.mark.asyncio
    async def test_remaining_requires_enrollment(self, service: MfaService) -> None:
        result = await service.remaining_recovery_codes("acc-1")
        assert result.error == "NotEnrolled"


class TestDeviceResults:
    @pytest.mark.asyncio
    async def test_add_device_requires_satisfied_session(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        await enroll(service, ctx, clock)
        fresh = RequestContext(account_id="acc-1", session_id="sess-new")

        result = await service.add_device("acc-1", fresh)
        assert result.error == "NotVerifiedThisSession"

    @pytest.mark.asyncio
    async def test_add_device_after_enrollment(
        self,
        service: MfaService,
        ctx: RequestContext,
        clock: FakeClock,
        audit_store: InMemoryAuditStore,
    ) -> None:
        await enroll(service, ctx, clock)

        result = await service.add_device("acc-1", ctx)

        assert result.ok and result.value is not None
        assert (await service.check_device("acc-1", result.value.token)).value
        assert audit_store.event_types("acc-1")[-1] is MfaEventType.TRUSTED_DEVICE_ADDED

    @pytest.mark.asyncio
    async def test_revoke_device(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        await enroll(service, ctx, clock)
        grant = (await service.add_device("acc-1", ctx)).value
        assert grant is not None

        assert (await service.revoke_device("acc-1", grant.device_id, ctx)).ok
        assert (await service.check_device("acc-1", grant.token)).value is False
        again = await service.revoke_device("acc-1", grant.device_id, ctx)
        assert again.error == "DeviceNotFound"

    @pytest.mark.asyncio
    async def test_revoke_all_devices(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        await enroll(service, ctx, clock)
        await service.add_device("acc-1", ctx)
        await service.add_device("acc-1", ctx)

        assert (await service.revoke_all_devices("acc-1", ctx)).value == 2
        assert (await service.list_devices("acc-1")).value == []


class TestPrimaryAuthLockout:
    @pytest.mark.asyncio
    async def test_password_failures_block_mfa(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        secret = await enroll(service, ctx, clock)
        for _ in range(5):
            recorded = await service.record_attempt("acc-1", False, ctx.ip_address)
            assert recorded.ok

        status = await service.check_lockout("acc-1", ctx.ip_address)
        assert status.value is not None
        assert status.value.locked
        assert status.value.reason == "account"

        issued = await service.challenge(await factor_id_of(service, "acc-1"), ctx)
        assert issued.value is not None
        result = await service.verify(
            issued.value.challenge_id, totp_now(secret, clock), "totp", ctx
        )
        assert result.error == "RateLimited"
        assert result.retry_after == 900

    @pytest.mark.asyncio
    async def test_mfa_failures_block_password(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        secret = await enroll(service, ctx, clock)
        factor_id = await factor_id_of(service, "acc-1")
        for _ in range(5):
            issued = await service.challenge(factor_id, ctx)
            assert issued.value is not None
            await service.verify(
                issued.value.challenge_id, wrong_code(secret, clock), "totp", ctx
            )

        status = await service.check_lockout("acc-1")
        assert status.value is not None and status.value.locked

    @pytest.mark.asyncio
    async def test_successful_password_resets_run(self, service: MfaService) -> None:
        for _ in range(4):
            await service.record_attempt("acc-1", False)
        await service.record_attempt("acc-1", True)
        await service.record_attempt("acc-1", False)

        status = await service.check_lockout("acc-1")
        assert status.value is not None and not status.value.locked

    @pytest.mark.asyncio
    async def test_empty_identifier_rejected(self, service: MfaService) -> None:
        result = await service.record_attempt("", False)
        assert result.error == "ValidationFailed"
        assert "identifier" in result.errors

class TestSessionStatus:
    @pytest.mark.asyncio
    async def test_account_without_mfa(
        self, service: MfaService, ctx: RequestContext
    ) -> None:
        result = await service.session_status(ctx)
        assert result.value is MfaSessionState.NO_MFA

    @pytest.mark.asyncio
    async def test_trusted_device_skips_prompt(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        await enroll(service, ctx, clock)
        grant = (await service.add_device("acc-1", ctx)).value
        assert grant is not None

        login = RequestContext(account_id="acc-1", session_id="sess-2")
        pending = await service.session_status(login, device_token="stale")
        assert pending.value is MfaSessionState.MFA_PENDING

        other = RequestContext(account_id="acc-1", session_id="sess-3")
        satisfied = await service.session_status(other, device_token=grant.token)
        assert satisfied.value is MfaSessionState.MFA_SATISFIED

    @pytest.mark.asyncio
    async def test_session_state_not_shared_across_accounts(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        await enroll(service, ctx, clock)
        other = RequestContext(account_id="acc-2", session_id=ctx.session_id)

        assert not await service.sessions.is_satisfied(ctx.session_id, "acc-2")
        result = await service.session_status(other)
        assert result.value is MfaSessionState.NO_MFA

    @pytest.mark.asyncio
    async def test_satisfied_session_expires(
        self, service: MfaService, ctx: RequestContext, clock: FakeClock
    ) -> None:
        await enroll(service, ctx, clock)
        clock.advance(service.config.session_ttl_seconds)

        result = await service.session_status(ctx)
        assert result.value is MfaSessionState.MFA_PENDING


class TestDisable:
    @pytest.mark.asyncio
    async def test_disable(
        self,
        service: MfaService,
        ctx: RequestContext,
        clock: FakeClock,
        audit_store: InMemoryAuditStore,
        notification_hook: RecordingNotificationHook,
    ) -> None:
        await enroll(service, ctx, clock)

        result = await service.disable("acc-1", ctx)

        assert result.ok
        assert (await service.session_status(ctx)).value is MfaSessionState.NO_MFA
        assert (await service.list_factors("acc-1")).value == []
        assert audit_store.event_types("acc-1")[-1] is MfaEventType.MFA_DISABLED
        assert notification_hook.notices() == [
            SecurityNotice.MFA_ENABLED,
            SecurityNotice.MFA_DISABLED,
        ]

    @pytest.mark.asyncio
    async def test_disable_without_mfa(
        self, service: MfaService, ctx: RequestContext
    ) -> None:
        result = await service.disable("acc-1", ctx)
        assert result.error == "NotEnrolled"


class TestAuditAndNotifications:
    @pytest.mark.asyncio
    async def test_enrollment_audit_trail(
        self,
        service: MfaService,
        ctx: RequestContext,
        clock: FakeClock,
        audit_store: InMemoryAuditStore,
    ) -> None:
        await enroll(service, ctx, clock)

        assert audit_store.event_types("acc-1") == [
            MfaEventType.ENROLLMENT_STARTED,
            MfaEventType.MFA_ENABLED,
        ]
        (enabled,) = await audit_store.get_events(
            "acc-1", event_types=[MfaEventType.MFA_ENABLED]
        )
        assert enabled.request_id == "req-1"
        assert enabled.ip_address == "203.0.113.7"
        assert enabled.session_id == "sess-1"

    @pytest.mark.asyncio
    async def test_audit_events_carry_no_secrets(
        self,
        service: MfaService,
        ctx: RequestContext,
        clock: FakeClock,
        audit_store: InMemoryAuditStore,
    ) -> None:
        secret = await enroll(service, ctx, clock)
        codes = (await service.regenerate_recovery_codes("acc-1", ctx)).value
        assert codes is not None

        dumped = json.dumps(
            [e.to_dict() for e in await audit_store.get_events("acc-1")]
        )
        assert secret not in dumped
        assert all(code not in dumped for code in codes)

    @pytest.mark.asyncio
    async def test_audit_log_line(
        self,
        service: MfaService,
        ctx: RequestContext,
        clock: FakeClock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.INFO, logger="timehatch_mfa.audit"):
            await enroll(service, ctx, clock)

        entries = [
            json.loads(r.getMessage())
            for r in caplog.records
            if r.name == "timehatch_mfa.audit"
        ]
        assert entries[-1]["event"] == "auth.mfa.enabled"
        assert entries[-1]["outcome"] == "success"
        assert entries[-1]["correlation_id"] == "req-1"

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_fail_operation(
        self,
        config: MfaConfig,
        stores: MfaStores,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        service = create_mfa_service(
            config, stores, notification_hook=FailingNotificationHook(), clock=clock
        )
        await enroll(service, ctx, clock)
        assert (await service.disable("acc-1", ctx)).ok

    @pytest.mark.asyncio
    async def test_failing_audit_store_does_not_fail_operation(
        self,
        config: MfaConfig,
        stores: MfaStores,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        class BrokenAuditStore(InMemoryAuditStore):
            async def record(self, event: object) -> None:
                raise RuntimeError("audit database unavailable")

        service = create_mfa_service(
            config, stores, audit_store=BrokenAuditStore(), clock=clock
        )
        await enroll(service, ctx, clock)
        assert (await service.list_factors("acc-1")).value
