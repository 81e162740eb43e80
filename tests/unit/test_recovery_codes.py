"""Tests for the recovery code vault."""

from __future__ import annotations

import pytest
from support import FakeClock

from timehatch_mfa import AlreadyUsedError, MfaConfig, RecoveryCodeVault
from timehatch_mfa.adapters import InMemoryRecoveryCodeStore
from timehatch_mfa.crypto import hash_recovery_code


@pytest.fixture
def store() -> InMemoryRecoveryCodeStore:
    return InMemoryRecoveryCodeStore()


@pytest.fixture
def vault(
    store: InMemoryRecoveryCodeStore, config: MfaConfig, clock: FakeClock
) -> RecoveryCodeVault:
    return RecoveryCodeVault(store, config, clock=clock)


class TestGenerate:
    @pytest.mark.asyncio
    async def test_batch_shape(self, vault: RecoveryCodeVault) -> None:
        codes = await vault.generate("acc-1")

        assert len(codes) == 10
        assert len(set(codes)) == 10
        for code in codes:
            assert len(code) == 8
            assert set(code) <= set(RecoveryCodeVault.ALPHABET)
        assert await vault.remaining("acc-1") == 10

    @pytest.mark.asyncio
    async def test_only_hashes_are_stored(
        self, vault: RecoveryCodeVault, store: InMemoryRecoveryCodeStore
    ) -> None:
        codes = await vault.generate("acc-1")
        record = await store.find("acc-1", hash_recovery_code(codes[0]))
        assert record is not None
        assert record.code_hash != codes[0]
        assert codes[0] not in record.code_hash

    @pytest.mark.asyncio
    async def test_regenerate_invalidates_previous_batch(
        self, vault: RecoveryCodeVault
    ) -> None:
        old = await vault.generate("acc-1")
        new = await vault.generate("acc-1")

        assert await vault.remaining("acc-1") == 10
        with pytest.raises(AlreadyUsedError):
            await vault.redeem("acc-1", old[0])
        assert await vault.redeem("acc-1", new[0])


class TestRedeem:
    @pytest.mark.asyncio
    async def test_redeem_once(self, vault: RecoveryCodeVault) -> None:
        codes = await vault.generate("acc-1")

        assert await vault.redeem("acc-1", codes[3])
        assert await vault.remaining("acc-1") == 9
        with pytest.raises(AlreadyUsedError):
            await vault.redeem("acc-1", codes[3])

    @pytest.mark.asyncio
    async def test_formatting_is_ignored(self, vault: RecoveryCodeVault) -> None:
        code = (await vault.generate("acc-1"))[0]
        typed = f" {code[:4].lower()}-{code[4:].lower()} "
        assert await vault.redeem("acc-1", typed)

    @pytest.mark.asyncio
    async def test_unknown_code(self, vault: RecoveryCodeVault) -> None:
        await vault.generate("acc-1")
        assert not await vault.redeem("acc-1", "NOTACODE")
        assert not await vault.redeem("acc-1", "  ")

    @pytest.mark.asyncio
    async def test_codes_are_scoped_to_account(self, vault: RecoveryCodeVault) -> None:
        codes = await vault.generate("acc-1")
        await vault.generate("acc-2")
        assert not await vault.redeem("acc-2", codes[0])
        assert await vault.remaining("acc-1") == 10

    @pytest.mark.asyncio
    async def test_revoke(self, vault: RecoveryCodeVault) -> None:
        codes = await vault.generate("acc-1")
        assert await vault.revoke("acc-1") == 10
        assert await vault.remaining("acc-1") == 0
        assert not await vault.redeem("acc-1", codes[0])
