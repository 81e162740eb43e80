"""SQLAlchemy implementations of the MFA store ports.

Every store method runs in its own unit of work. Conditional state
transitions are single ``UPDATE ... WHERE <precondition>`` statements whose
``rowcount`` tells the caller whether it won.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from ..audit.events import MfaAuditEvent, MfaEventType
from ..domain import (
    AttemptChannel,
    AttemptRecord,
    AuthFactor,
    Challenge,
    FactorStatus,
    FactorType,
    RecoveryCode,
    TrustedDevice,
    ensure_utc,
    utc_now,
)
from ..exceptions import UnitOfWorkError
from .models import (
    AttemptRow,
    AuditEventRow,
    ChallengeRow,
    FactorRow,
    RecoveryCodeRow,
    SessionRow,
    TrustedDeviceRow,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from ..domain import Clock
    from .uow import SQLAlchemyUnitOfWork

    UnitOfWorkFactory = Callable[[], SQLAlchemyUnitOfWork]

logger = logging.getLogger(__name__)

_SYNC = {"synchronize_session": False}


def _utc(value: datetime) -> datetime:
    """Normalize to UTC before writing; SQLite drops the offset."""
    return ensure_utc(value).astimezone(timezone.utc)


def _opt(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


def _opt_utc(value: datetime | None) -> datetime | None:
    return _utc(value) if value is not None else None


def _is_integrity_error(exc: BaseException) -> bool:
    # Flush-time violations arrive wrapped by the unit of work.
    return isinstance(exc, IntegrityError) or isinstance(exc.__cause__, IntegrityError)


class _SQLAlchemyStore:
    def __init__(self, uow_factory: UnitOfWorkFactory) -> None:
        self._uow_factory = uow_factory


# ═══════════════════════════════════════════════════════════════
# FACTORS
# ═══════════════════════════════════════════════════════════════


def _factor_from_row(row: FactorRow) -> AuthFactor:
    return AuthFactor(
        id=row.id,
        account_id=row.account_id,
        secret_ciphertext=row.secret_ciphertext,
        status=FactorStatus(row.status),
        created_at=ensure_utc(row.created_at),
        friendly_name=row.friendly_name,
        factor_type=FactorType(row.factor_type),
        verified_at=_opt(row.verified_at),
        last_used_step=row.last_used_step,
    )


class SQLAlchemyFactorStore(_SQLAlchemyStore):
    """IFactorStore backed by ``mfa_factors``."""

    async def get(self, factor_id: str) -> AuthFactor | None:
        async with self._uow_factory() as uow:
            row = await uow.session.get(FactorRow, factor_id)
            return _factor_from_row(row) if row else None

    async def list_for_account(
        self, account_id: str, status: FactorStatus | None = None
    ) -> list[AuthFactor]:
        stmt = select(FactorRow).where(FactorRow.account_id == account_id)
        if status is not None:
            stmt = stmt.where(FactorRow.status == status.value)
        stmt = stmt.order_by(FactorRow.created_at, FactorRow.id)
        async with self._uow_factory() as uow:
            rows = (await uow.session.execute(stmt)).scalars().all()
            return [_factor_from_row(r) for r in rows]

    async def add_unverified(self, factor: AuthFactor) -> AuthFactor:
        try:
            async with self._uow_factory() as uow:
                uow.session.add(
                    FactorRow(
                        id=factor.id,
                        account_id=factor.account_id,
                        factor_type=factor.factor_type.value,
                        secret_ciphertext=factor.secret_ciphertext,
                        status=FactorStatus.UNVERIFIED.value,
                        friendly_name=factor.friendly_name,
                        created_at=_utc(factor.created_at),
                    )
                )
        except UnitOfWorkError as e:
            if not _is_integrity_error(e):
                raise
            existing = await self.list_for_account(
                factor.account_id, FactorStatus.UNVERIFIED
            )
            if not existing:
                raise
            logger.debug(
                "Concurrent enrollment for account %s, reusing factor %s",
                factor.account_id,
                existing[0].id,
            )
            return existing[0]
        return factor

    async def mark_verified(self, factor_id: str, verified_at: datetime) -> bool:
        stmt = (
            update(FactorRow)
            .where(
                FactorRow.id == factor_id,
                FactorRow.status == FactorStatus.UNVERIFIED.value,
            )
            .values(status=FactorStatus.VERIFIED.value, verified_at=_utc(verified_at))
            .execution_options(**_SYNC)
        )
        try:
            async with self._uow_factory() as uow:
                result = await uow.session.execute(stmt)
                return bool(result.rowcount)
        except (IntegrityError, UnitOfWorkError) as e:
            # Another factor of the account was verified first.
            if _is_integrity_error(e):
                return False
            raise

    async def advance_last_used_step(self, factor_id: str, step: int) -> bool:
        stmt = (
            update(FactorRow)
            .where(
                FactorRow.id == factor_id,
                or_(
                    FactorRow.last_used_step.is_(None),
                    FactorRow.last_used_step < step,
                ),
            )
            .values(last_used_step=step)
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            result = await uow.session.execute(stmt)
            return bool(result.rowcount)

    async def delete(self, factor_ids: Sequence[str]) -> int:
        if not factor_ids:
            return 0
        stmt = (
            delete(FactorRow)
            .where(FactorRow.id.in_(list(factor_ids)))
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            return (await uow.session.execute(stmt)).rowcount or 0

    async def delete_for_account(self, account_id: str) -> int:
        stmt = (
            delete(FactorRow)
            .where(FactorRow.account_id == account_id)
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            # Challenges reference factors; drop them in the same transaction.
            await uow.session.execute(
                delete(ChallengeRow)
                .where(ChallengeRow.account_id == account_id)
                .execution_options(**_SYNC)
            )
            return (await uow.session.execute(stmt)).rowcount or 0


# ═══════════════════════════════════════════════════════════════
# CHALLENGES
# ═══════════════════════════════════════════════════════════════


def _challenge_from_row(row: ChallengeRow) -> Challenge:
    return Challenge(
        id=row.id,
        factor_id=row.factor_id,
        account_id=row.account_id,
        created_at=ensure_utc(row.created_at),
        expires_at=ensure_utc(row.expires_at),
        consumed=row.consumed,
        consumed_at=_opt(row.consumed_at),
    )


class SQLAlchemyChallengeStore(_SQLAlchemyStore):
    """IChallengeStore backed by ``mfa_challenges``."""

    async def add(self, challenge: Challenge) -> None:
        async with self._uow_factory() as uow:
            uow.session.add(
                ChallengeRow(
                    id=challenge.id,
                    factor_id=challenge.factor_id,
                    account_id=challenge.account_id,
                    created_at=_utc(challenge.created_at),
                    expires_at=_utc(challenge.expires_at),
                    consumed=challenge.consumed,
                    consumed_at=None,
                )
            )

    async def get(self, challenge_id: str) -> Challenge | None:
        async with self._uow_factory() as uow:
            row = await uow.session.get(ChallengeRow, challenge_id)
            return _challenge_from_row(row) if row else None

    async def consume(self, challenge_id: str, consumed_at: datetime) -> bool:
        stmt = (
            update(ChallengeRow)
            .where(ChallengeRow.id == challenge_id, ChallengeRow.consumed.is_(False))
            .values(consumed=True, consumed_at=_utc(consumed_at))
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            return bool((await uow.session.execute(stmt)).rowcount)

    async def delete_expired(self, now: datetime) -> int:
        stmt = (
            delete(ChallengeRow)
            .where(ChallengeRow.expires_at <= _utc(now))
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            return (await uow.session.execute(stmt)).rowcount or 0

    async def delete_for_account(self, account_id: str) -> int:
        stmt = (
            delete(ChallengeRow)
            .where(ChallengeRow.account_id == account_id)
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            return (await uow.session.execute(stmt)).rowcount or 0


# ═══════════════════════════════════════════════════════════════
# RECOVERY CODES
# ═══════════════════════════════════════════════════════════════


def _code_from_row(row: RecoveryCodeRow) -> RecoveryCode:
    return RecoveryCode(
        id=row.id,
        account_id=row.account_id,
        code_hash=row.code_hash,
        created_at=ensure_utc(row.created_at),
        used=row.used,
        used_at=_opt(row.used_at),
    )


class SQLAlchemyRecoveryCodeStore(_SQLAlchemyStore):
    """IRecoveryCodeStore backed by ``mfa_recovery_codes``."""

    async def replace_batch(
        self,
        account_id: str,
        codes: Sequence[RecoveryCode],
        invalidated_at: datetime,
    ) -> int:
        invalidate = (
            update(RecoveryCodeRow)
            .where(
                RecoveryCodeRow.account_id == account_id,
                RecoveryCodeRow.used.is_(False),
            )
            .values(used=True, used_at=_utc(invalidated_at))
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            invalidated = (await uow.session.execute(invalidate)).rowcount or 0
            uow.session.add_all(
                RecoveryCodeRow(
                    id=code.id,
                    account_id=code.account_id,
                    code_hash=code.code_hash,
                    used=False,
                    created_at=_utc(code.created_at),
                )
                for code in codes
            )
            return invalidated

    async def find(self, account_id: str, code_hash: str) -> RecoveryCode | None:
        stmt = (
            select(RecoveryCodeRow)
            .where(
                RecoveryCodeRow.account_id == account_id,
                RecoveryCodeRow.code_hash == code_hash,
            )
            .order_by(RecoveryCodeRow.used, RecoveryCodeRow.created_at.desc())
            .limit(1)
        )
        async with self._uow_factory() as uow:
            row = (await uow.session.execute(stmt)).scalars().first()
            return _code_from_row(row) if row else None

    async def mark_used(self, code_id: str, used_at: datetime) -> bool:
        stmt = (
            update(RecoveryCodeRow)
            .where(RecoveryCodeRow.id == code_id, RecoveryCodeRow.used.is_(False))
            .values(used=True, used_at=_utc(used_at))
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            return bool((await uow.session.execute(stmt)).rowcount)

    async def count_unused(self, account_id: str) -> int:
        stmt = select(func.count()).where(
            RecoveryCodeRow.account_id == account_id,
            RecoveryCodeRow.used.is_(False),
        )
        async with self._uow_factory() as uow:
            return int((await uow.session.execute(stmt)).scalar_one())

    async def delete_for_account(self, account_id: str) -> int:
        stmt = (
            delete(RecoveryCodeRow)
            .where(RecoveryCodeRow.account_id == account_id)
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            return (await uow.session.execute(stmt)).rowcount or 0


# ═══════════════════════════════════════════════════════════════
# TRUSTED DEVICES
# ═══════════════════════════════════════════════════════════════


def _device_from_row(row: TrustedDeviceRow) -> TrustedDevice:
    return TrustedDevice(
        id=row.id,
        account_id=row.account_id,
        token_hash=row.token_hash,
        created_at=ensure_utc(row.created_at),
        expires_at=ensure_utc(row.expires_at),
        device_name=row.device_name,
        last_seen_at=_opt(row.last_seen_at),
    )


class SQLAlchemyTrustedDeviceStore(_SQLAlchemyStore):
    """ITrustedDeviceStore backed by ``mfa_trusted_devices``."""

    async def add(self, device: TrustedDevice) -> None:
        async with self._uow_factory() as uow:
            uow.session.add(
                TrustedDeviceRow(
                    id=device.id,
                    account_id=device.account_id,
                    token_hash=device.token_hash,
                    device_name=device.device_name,
                    created_at=_utc(device.created_at),
                    expires_at=_utc(device.expires_at),
                    last_seen_at=_opt_utc(device.last_seen_at),
                )
            )

    async def find_active(
        self, account_id: str, token_hash: str, now: datetime
    ) -> TrustedDevice | None:
        stmt = select(TrustedDeviceRow).where(
            TrustedDeviceRow.account_id == account_id,
            TrustedDeviceRow.token_hash == token_hash,
            TrustedDeviceRow.expires_at > _utc(now),
        )
        async with self._uow_factory() as uow:
            row = (await uow.session.execute(stmt)).scalars().first()
            return _device_from_row(row) if row else None

    async def touch(self, device_id: str, seen_at: datetime) -> None:
        stmt = (
            update(TrustedDeviceRow)
            .where(TrustedDeviceRow.id == device_id)
            .values(last_seen_at=_utc(seen_at))
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            await uow.session.execute(stmt)

    async def list_active(self, account_id: str, now: datetime) -> list[TrustedDevice]:
        stmt = (
            select(TrustedDeviceRow)
            .where(
                TrustedDeviceRow.account_id == account_id,
                TrustedDeviceRow.expires_at > _utc(now),
            )
            .order_by(TrustedDeviceRow.created_at)
        )
        async with self._uow_factory() as uow:
            rows = (await uow.session.execute(stmt)).scalars().all()
            return [_device_from_row(r) for r in rows]

    async def delete(self, account_id: str, device_id: str) -> bool:
        stmt = (
            delete(TrustedDeviceRow)
            .where(
                TrustedDeviceRow.id == device_id,
                TrustedDeviceRow.account_id == account_id,
            )
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            return bool((await uow.session.execute(stmt)).rowcount)

    async def delete_for_account(self, account_id: str) -> int:
        stmt = (
            delete(TrustedDeviceRow)
            .where(TrustedDeviceRow.account_id == account_id)
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            return (await uow.session.execute(stmt)).rowcount or 0

    async def delete_expired(self, now: datetime) -> int:
        stmt = (
            delete(TrustedDeviceRow)
            .where(TrustedDeviceRow.expires_at <= _utc(now))
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            return (await uow.session.execute(stmt)).rowcount or 0


# ═══════════════════════════════════════════════════════════════
# ATTEMPTS
# ═══════════════════════════════════════════════════════════════


class SQLAlchemyAttemptStore(_SQLAlchemyStore):
    """IAttemptStore backed by ``mfa_attempts``."""

    async def add(self, record: AttemptRecord) -> None:
        async with self._uow_factory() as uow:
            uow.session.add(
                AttemptRow(
                    identifier=record.identifier,
                    ip=record.ip,
                    success=record.success,
                    channel=record.channel.value,
                    timestamp=_utc(record.timestamp),
                )
            )

    async def list_since(
        self,
        since: datetime,
        *,
        identifier: str | None = None,
        ip: str | None = None,
    ) -> list[AttemptRecord]:
        stmt = select(AttemptRow).where(AttemptRow.timestamp > _utc(since))
        if identifier is not None:
            stmt = stmt.where(AttemptRow.identifier == identifier)
        if ip is not None:
            stmt = stmt.where(AttemptRow.ip == ip)
        stmt = stmt.order_by(AttemptRow.timestamp, AttemptRow.id)
        async with self._uow_factory() as uow:
            rows = (await uow.session.execute(stmt)).scalars().all()
            return [
                AttemptRecord(
                    identifier=r.identifier,
                    ip=r.ip,
                    success=r.success,
                    timestamp=ensure_utc(r.timestamp),
                    channel=AttemptChannel(r.channel),
                )
                for r in rows
            ]

    async def delete_older_than(self, cutoff: datetime) -> int:
        stmt = (
            delete(AttemptRow)
            .where(AttemptRow.timestamp < _utc(cutoff))
            .execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            return (await uow.session.execute(stmt)).rowcount or 0


# ═══════════════════════════════════════════════════════════════
# AUDIT & SESSIONS
# ═══════════════════════════════════════════════════════════════


class SQLAlchemyAuditStore(_SQLAlchemyStore):
    """IAuditStore backed by ``mfa_audit_events``."""

    async def record(self, event: MfaAuditEvent) -> None:
        async with self._uow_factory() as uow:
            uow.session.add(
                AuditEventRow(
                    event_type=event.event_type.value,
                    account_id=event.account_id,
                    timestamp=_utc(event.timestamp),
                    ip_address=event.ip_address,
                    user_agent=event.user_agent,
                    request_id=event.request_id,
                    session_id=event.session_id,
                    success=event.success,
                    error_code=event.error_code,
                    event_metadata=dict(event.metadata),
                )
            )

    async def get_events(
        self,
        account_id: str,
        *,
        event_types: list[MfaEventType] | None = None,
        limit: int = 100,
    ) -> list[MfaAuditEvent]:
        stmt = select(AuditEventRow).where(AuditEventRow.account_id == account_id)
        if event_types:
            stmt = stmt.where(
                AuditEventRow.event_type.in_([t.value for t in event_types])
            )
        stmt = stmt.order_by(AuditEventRow.id.desc()).limit(limit)
        async with self._uow_factory() as uow:
            rows = (await uow.session.execute(stmt)).scalars().all()
            return [
                MfaAuditEvent(
                    event_type=MfaEventType(r.event_type),
                    account_id=r.account_id,
                    timestamp=ensure_utc(r.timestamp),
                    ip_address=r.ip_address,
                    user_agent=r.user_agent,
                    request_id=r.request_id,
                    session_id=r.session_id,
                    success=r.success,
                    error_code=r.error_code,
                    metadata=dict(r.event_metadata or {}),
                )
                for r in rows
            ]


class SQLAlchemySessionStore(_SQLAlchemyStore):
    """ISessionStore backed by ``mfa_sessions``."""

    def __init__(
        self, uow_factory: UnitOfWorkFactory, *, clock: Clock = utc_now
    ) -> None:
        super().__init__(uow_factory)
        self._clock = clock

    async def store(
        self, key: str, data: dict[str, Any], ttl: int | None = None
    ) -> None:
        expires_at = (
            _utc(self._clock() + timedelta(seconds=ttl)) if ttl and ttl > 0 else None
        )
        async with self._uow_factory() as uow:
            await uow.session.merge(
                SessionRow(key=key, data=dict(data), expires_at=expires_at)
            )

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._uow_factory() as uow:
            row = await uow.session.get(SessionRow, key)
            if row is None:
                return None
            expires_at = _opt(row.expires_at)
            if expires_at is not None and self._clock() >= expires_at:
                await uow.session.delete(row)
                return None
            return dict(row.data)

    async def delete(self, key: str) -> None:
        stmt = (
            delete(SessionRow).where(SessionRow.key == key).execution_options(**_SYNC)
        )
        async with self._uow_factory() as uow:
            await uow.session.execute(stmt)


__all__: list[str] = [
    "SQLAlchemyFactorStore",
    "SQLAlchemyChallengeStore",
    "SQLAlchemyRecoveryCodeStore",
    "SQLAlchemyTrustedDeviceStore",
    "SQLAlchemyAttemptStore",
    "SQLAlchemyAuditStore",
    "SQLAlchemySessionStore",
]
