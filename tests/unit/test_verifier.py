"""Tests for challenge issuing and code verification."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

import pytest
from support import FakeClock, totp_now, wrong_code

from timehatch_mfa import (
    AlreadyUsedError,
    AttemptChannel,
    ChallengeConsumedError,
    ChallengeExpiredError,
    ChallengeNotFoundError,
    FactorNotFoundError,
    InvalidCodeError,
    MfaService,
    MfaStores,
    RateLimitedError,
    RequestContext,
    ValidationError,
    VerificationKind,
    Verifier,
)


@dataclass
class Enrolled:
    factor_id: str
    secret: str
    recovery_codes: list[str]


@pytest.fixture
def verifier(service: MfaService) -> Verifier:
    return service.verifier


@pytest.fixture
async def enrolled(
    service: MfaService, ctx: RequestContext, clock: FakeClock
) -> Enrolled:
    start = await service.enrollment.start_enrollment("acc-1")
    codes = await service.enrollment.finalize_enrollment(
        start.factor_id, totp_now(start.secret, clock), ctx
    )
    # Move past the step used to confirm enrollment.
    clock.advance(30)
    return Enrolled(start.factor_id, start.secret, codes)


async def new_challenge(service: MfaService, enrolled: Enrolled) -> str:
    issued = await service.issuer.issue(enrolled.factor_id, account_id="acc-1")
    return issued.challenge_id


class TestChallengeIssuer:
    @pytest.mark.asyncio
    async def test_issue(
        self, service: MfaService, enrolled: Enrolled, clock: FakeClock
    ) -> None:
        issued = await service.issuer.issue(enrolled.factor_id, account_id="acc-1")
        challenge = await service.stores.challenges.get(issued.challenge_id)

        assert challenge is not None
        assert challenge.factor_id == enrolled.factor_id
        assert (issued.expires_at - clock.now).total_seconds() == 300

    @pytest.mark.asyncio
    async def test_outstanding_challenges_stay_valid(
        self, service: MfaService, enrolled: Enrolled
    ) -> None:
        first = await new_challenge(service, enrolled)
        second = await new_challenge(service, enrolled)
        assert first != second
        assert await service.stores.challenges.get(first) is not None

    @pytest.mark.asyncio
    async def test_factor_of_other_account(
        self, service: MfaService, enrolled: Enrolled
    ) -> None:
        with pytest.raises(FactorNotFoundError):
            await service.issuer.issue(enrolled.factor_id, account_id="acc-2")
        with pytest.raises(FactorNotFoundError):
            await service.issuer.issue("missing")


class TestTotpVerification:
    @pytest.mark.asyncio
    async def test_correct_code(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        challenge_id = await new_challenge(service, enrolled)
        outcome = await verifier.verify(
            challenge_id, totp_now(enrolled.secret, clock), "totp", ctx
        )

        assert outcome.kind is VerificationKind.TOTP
        assert outcome.factor_id == enrolled.factor_id
        assert outcome.remaining_recovery_codes is None
        challenge = await service.stores.challenges.get(challenge_id)
        assert challenge is not None and challenge.consumed

    @pytest.mark.asyncio
    async def test_code_with_spaces(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        code = totp_now(enrolled.secret, clock)
        challenge_id = await new_challenge(service, enrolled)
        outcome = await verifier.verify(
            challenge_id, f" {code[:3]} {code[3:]} ", VerificationKind.TOTP, ctx
        )
        assert outcome.kind is VerificationKind.TOTP

    @pytest.mark.asyncio
    async def test_replay_in_same_step_rejected(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        code = totp_now(enrolled.secret, clock)
        await verifier.verify(await new_challenge(service, enrolled), code, "totp", ctx)

        with pytest.raises(InvalidCodeError):
            await verifier.verify(
                await new_challenge(service, enrolled), code, "totp", ctx
            )

    @pytest.mark.asyncio
    async def test_older_step_after_newer_rejected(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        await verifier.verify(
            await new_challenge(service, enrolled),
            totp_now(enrolled.secret, clock),
            "totp",
            ctx,
        )
        previous = totp_now(enrolled.secret, clock, -1)
        if previous == totp_now(enrolled.secret, clock):
            pytest.skip("codes collide across steps")

        with pytest.raises(InvalidCodeError):
            await verifier.verify(
                await new_challenge(service, enrolled), previous, "totp", ctx
            )

    @pytest.mark.asyncio
    async def test_wrong_code_consumes_challenge(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        challenge_id = await new_challenge(service, enrolled)
        with pytest.raises(InvalidCodeError):
            await verifier.verify(
                challenge_id, wrong_code(enrolled.secret, clock), "totp", ctx
            )

        with pytest.raises(ChallengeConsumedError) as exc_info:
            await verifier.verify(
                challenge_id, totp_now(enrolled.secret, clock), "totp", ctx
            )
        assert exc_info.value.code == "ChallengeExpired"

    @pytest.mark.asyncio
    async def test_expired_challenge_rejected_even_with_correct_code(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        challenge_id = await new_challenge(service, enrolled)
        clock.advance(300)

        with pytest.raises(ChallengeExpiredError):
            await verifier.verify(
                challenge_id, totp_now(enrolled.secret, clock), "totp", ctx
            )

    @pytest.mark.asyncio
    async def test_challenge_of_other_account(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        clock: FakeClock,
    ) -> None:
        challenge_id = await new_challenge(service, enrolled)
        intruder = RequestContext(account_id="acc-2", ip_address="192.0.2.1")

        with pytest.raises(ChallengeNotFoundError):
            await verifier.verify(
                challenge_id, totp_now(enrolled.secret, clock), "totp", intruder
            )
        challenge = await service.stores.challenges.get(challenge_id)
        assert challenge is not None and not challenge.consumed

    @pytest.mark.asyncio
    async def test_malformed_code_counts_as_failure(
        self,
        service: MfaService,
        verifier: Verifier,
        stores: MfaStores,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        challenge_id = await new_challenge(service, enrolled)
        with pytest.raises(ValidationError) as exc_info:
            await verifier.verify(challenge_id, "12ab", "totp", ctx)
        assert "code" in exc_info.value.errors

        records = await stores.attempts.list_since(
            clock.now - timedelta(minutes=15), identifier="acc-1"
        )
        assert records[-1].success is False

    @pytest.mark.asyncio
    async def test_unknown_kind(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
    ) -> None:
        challenge_id = await new_challenge(service, enrolled)
        with pytest.raises(ValidationError) as exc_info:
            await verifier.verify(challenge_id, "123456", "sms", ctx)
        assert "kind" in exc_info.value.errors


class TestLockoutDuringVerification:
    @pytest.mark.asyncio
    async def test_lockout_beats_correct_code(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        for _ in range(5):
            with pytest.raises(InvalidCodeError):
                await verifier.verify(
                    await new_challenge(service, enrolled),
                    wrong_code(enrolled.secret, clock),
                    "totp",
                    ctx,
                )

        challenge_id = await new_challenge(service, enrolled)
        with pytest.raises(RateLimitedError) as exc_info:
            await verifier.verify(
                challenge_id, totp_now(enrolled.secret, clock), "totp", ctx
            )
        assert exc_info.value.retry_after == 900

        challenge = await service.stores.challenges.get(challenge_id)
        assert challenge is not None and not challenge.consumed

    @pytest.mark.asyncio
    async def test_success_after_lock_expires(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        for _ in range(5):
            with pytest.raises(InvalidCodeError):
                await verifier.verify(
                    await new_challenge(service, enrolled),
                    wrong_code(enrolled.secret, clock),
                    "totp",
                    ctx,
                )
        clock.advance(900)

        outcome = await verifier.verify(
            await new_challenge(service, enrolled),
            totp_now(enrolled.secret, clock),
            "totp",
            ctx,
        )
        assert outcome.kind is VerificationKind.TOTP

    @pytest.mark.asyncio
    async def test_non_ascii_digits_count_toward_lockout(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        # Arabic-Indic, fullwidth, Devanagari and Persian digits.
        for digit in "\u0661\uff11\u0967\u0662\u06f1":
            with pytest.raises(ValidationError):
                await verifier.verify(
                    await new_challenge(service, enrolled), digit * 6, "totp", ctx
                )

        with pytest.raises(RateLimitedError):
            await verifier.verify(
                await new_challenge(service, enrolled),
                totp_now(enrolled.secret, clock),
                "totp",
                ctx,
            )

    @pytest.mark.asyncio
    async def test_password_failures_lock_verification(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
        clock: FakeClock,
    ) -> None:
        for _ in range(5):
            await service.guard.record_attempt(
                "acc-1", ctx.ip_address, False, channel=AttemptChannel.PASSWORD
            )

        with pytest.raises(RateLimitedError) as exc_info:
            await verifier.verify(
                await new_challenge(service, enrolled),
                totp_now(enrolled.secret, clock),
                "totp",
                ctx,
            )
        assert exc_info.value.reason == "account"


class TestRecoveryVerification:
    @pytest.mark.asyncio
    async def test_recovery_code(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
    ) -> None:
        outcome = await verifier.verify(
            await new_challenge(service, enrolled),
            enrolled.recovery_codes[0].lower(),
            "recovery",
            ctx,
        )
        assert outcome.kind is VerificationKind.RECOVERY
        assert outcome.remaining_recovery_codes == 9

    @pytest.mark.asyncio
    async def test_recovery_code_single_use(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
    ) -> None:
        code = enrolled.recovery_codes[0]
        challenge_id = await new_challenge(service, enrolled)
        await verifier.verify(challenge_id, code, "recovery", ctx)

        with pytest.raises(AlreadyUsedError):
            await verifier.verify(
                await new_challenge(service, enrolled), code, "recovery", ctx
            )

    @pytest.mark.asyncio
    async def test_unknown_recovery_code(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
    ) -> None:
        with pytest.raises(InvalidCodeError):
            await verifier.verify(
                await new_challenge(service, enrolled), "ZZZZ9999", "recovery", ctx
            )

    @pytest.mark.asyncio
    async def test_malformed_recovery_code(
        self,
        service: MfaService,
        verifier: Verifier,
        enrolled: Enrolled,
        ctx: RequestContext,
    ) -> None:
        with pytest.raises(ValidationError):
            await verifier.verify(
                await new_challenge(service, enrolled), "abc", "recovery", ctx
            )

    @pytest.mark.asyncio
    async def test_recovery_requires_verified_factor(
        self, service: MfaService, verifier: Verifier
    ) -> None:
        start = await service.enrollment.start_enrollment("acc-3")
        issued = await service.issuer.issue(start.factor_id)
        with pytest.raises(InvalidCodeError):
            await verifier.verify(
                issued.challenge_id,
                "ABCD1234",
                "recovery",
                RequestContext(account_id="acc-3"),
            )
